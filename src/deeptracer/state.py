# src/deeptracer/state.py
"""Per-emitter contextual state.

The root emitter creates one EmitterState. with_context() and for_request()
clone it, so each derived emitter holds an independent copy: setting the
user, tags, contexts or breadcrumbs on a child is never visible on the
parent or its siblings, and vice versa.

The Batcher and Transport are not part of this state. They
are shared by every emitter in a lineage; only this state is cloned.
"""

import threading
from collections.abc import Mapping
from typing import Any

from deeptracer.events import Breadcrumb


class EmitterState:
    """Mutable context for one emitter handle.

    Attributes:
        user: Current user as a plain dict, or None
        tags: Flat string tags, merged into event metadata as ``_tags``
        contexts: Named context blocks, merged as ``_contexts.{name}``
        breadcrumbs: Most recent breadcrumbs, oldest first
        max_breadcrumbs: Breadcrumb capacity

    Thread Safety:
        Mutators and clone() hold an internal lock, so a handle shared
        between threads stays consistent. Cloning never shares a mutable
        container with the source.
    """

    __slots__ = ("_lock", "breadcrumbs", "contexts", "max_breadcrumbs", "tags", "user")

    def __init__(self, max_breadcrumbs: int) -> None:
        if max_breadcrumbs < 1:
            raise ValueError(f"max_breadcrumbs must be >= 1, got {max_breadcrumbs}")
        self._lock = threading.Lock()
        self.user: dict[str, Any] | None = None
        self.tags: dict[str, str] = {}
        self.contexts: dict[str, dict[str, Any]] = {}
        self.breadcrumbs: list[Breadcrumb] = []
        self.max_breadcrumbs = max_breadcrumbs

    @classmethod
    def create(cls, max_breadcrumbs: int) -> "EmitterState":
        """Create a fresh state with the given breadcrumb capacity."""
        return cls(max_breadcrumbs)

    def clone(self) -> "EmitterState":
        """Return a value-independent copy of this state."""
        with self._lock:
            copy = EmitterState(self.max_breadcrumbs)
            copy.user = dict(self.user) if self.user is not None else None
            copy.tags = dict(self.tags)
            copy.contexts = {name: dict(block) for name, block in self.contexts.items()}
            # Breadcrumbs are frozen, copying the list is enough
            copy.breadcrumbs = list(self.breadcrumbs)
        return copy

    def add_breadcrumb(self, breadcrumb: Breadcrumb) -> None:
        """Append a breadcrumb, evicting the oldest once over capacity."""
        with self._lock:
            self.breadcrumbs.append(breadcrumb)
            while len(self.breadcrumbs) > self.max_breadcrumbs:
                self.breadcrumbs.pop(0)

    def breadcrumbs_snapshot(self) -> tuple[Breadcrumb, ...]:
        with self._lock:
            return tuple(self.breadcrumbs)

    def set_user(self, user: Mapping[str, Any]) -> None:
        with self._lock:
            self.user = dict(user)

    def clear_user(self) -> None:
        with self._lock:
            self.user = None

    def user_id(self) -> str | None:
        """The current user's ``id`` as a string, or None."""
        with self._lock:
            if self.user is None or self.user.get("id") is None:
                return None
            return str(self.user["id"])

    def set_tags(self, tags: Mapping[str, str]) -> None:
        """Merge tags into the existing tag map."""
        with self._lock:
            self.tags.update({str(key): str(value) for key, value in tags.items()})

    def clear_tags(self) -> None:
        with self._lock:
            self.tags = {}

    def set_context(self, name: str, data: Mapping[str, Any]) -> None:
        """Replace the named context block."""
        with self._lock:
            self.contexts[name] = dict(data)

    def clear_context(self, name: str | None = None) -> None:
        """Remove one named context block, or all of them when name is None."""
        with self._lock:
            if name is None:
                self.contexts = {}
            else:
                self.contexts.pop(name, None)

    def enrichment(self) -> dict[str, Any]:
        """Snapshot of user/tags/contexts for merging into event metadata.

        Keys are only present when the corresponding state is set.
        """
        with self._lock:
            extra: dict[str, Any] = {}
            if self.user is not None:
                extra["user"] = dict(self.user)
            if self.tags:
                extra["_tags"] = dict(self.tags)
            if self.contexts:
                extra["_contexts"] = {name: dict(block) for name, block in self.contexts.items()}
            return extra
