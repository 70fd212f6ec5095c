# tests/unit/test_state.py
"""Unit tests for EmitterState.

Tests cover:
- Breadcrumb ring buffer (FIFO eviction, capacity bound, order)
- clone() value independence in both directions
- enrichment() only exposes state that is set
- Property-based tests for ring buffer invariants
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from deeptracer.events import Breadcrumb
from deeptracer.state import EmitterState


def crumb(message: str, type: str = "log") -> Breadcrumb:  # noqa: A002
    return Breadcrumb(type=type, message=message, timestamp="2026-01-30T12:00:00.000Z")


# =============================================================================
# Breadcrumb Ring Buffer
# =============================================================================


class TestBreadcrumbRingBuffer:
    """Tests for add_breadcrumb() eviction behavior."""

    def test_capacity_two_keeps_last_two(self) -> None:
        """Capacity 2, insert 1,2,3 leaves [2, 3]."""
        state = EmitterState.create(2)

        for message in ("1", "2", "3"):
            state.add_breadcrumb(crumb(message))

        assert [b.message for b in state.breadcrumbs_snapshot()] == ["2", "3"]

    def test_under_capacity_keeps_everything(self) -> None:
        state = EmitterState.create(5)

        state.add_breadcrumb(crumb("a"))
        state.add_breadcrumb(crumb("b"))

        assert [b.message for b in state.breadcrumbs_snapshot()] == ["a", "b"]

    def test_snapshot_is_immutable_copy(self) -> None:
        """Later breadcrumbs never appear in an earlier snapshot."""
        state = EmitterState.create(5)
        state.add_breadcrumb(crumb("a"))

        snapshot = state.breadcrumbs_snapshot()
        state.add_breadcrumb(crumb("b"))

        assert len(snapshot) == 1

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_rejects_non_positive_capacity(self, capacity: int) -> None:
        with pytest.raises(ValueError, match="max_breadcrumbs"):
            EmitterState.create(capacity)


# =============================================================================
# Clone Independence
# =============================================================================


class TestClone:
    """clone() must not share any mutable container with its source."""

    @pytest.fixture
    def source(self) -> EmitterState:
        state = EmitterState.create(3)
        state.set_user({"id": "u1", "email": "a@example.com"})
        state.set_tags({"region": "eu"})
        state.set_context("order", {"id": 42})
        state.add_breadcrumb(crumb("first"))
        return state

    def test_clone_copies_values(self, source: EmitterState) -> None:
        clone = source.clone()

        assert clone.user == {"id": "u1", "email": "a@example.com"}
        assert clone.tags == {"region": "eu"}
        assert clone.contexts == {"order": {"id": 42}}
        assert [b.message for b in clone.breadcrumbs_snapshot()] == ["first"]
        assert clone.max_breadcrumbs == 3

    def test_mutating_clone_leaves_source_alone(self, source: EmitterState) -> None:
        clone = source.clone()

        clone.set_user({"id": "u2"})
        clone.set_tags({"tier": "gold"})
        clone.contexts["order"]["id"] = 99
        clone.set_context("cart", {"items": 1})
        clone.add_breadcrumb(crumb("second"))

        assert source.user == {"id": "u1", "email": "a@example.com"}
        assert source.tags == {"region": "eu"}
        assert source.contexts == {"order": {"id": 42}}
        assert [b.message for b in source.breadcrumbs_snapshot()] == ["first"]

    def test_mutating_source_leaves_clone_alone(self, source: EmitterState) -> None:
        clone = source.clone()

        source.user["id"] = "changed"  # type: ignore[index]
        source.clear_tags()
        source.clear_context()
        source.add_breadcrumb(crumb("second"))

        assert clone.user == {"id": "u1", "email": "a@example.com"}
        assert clone.tags == {"region": "eu"}
        assert clone.contexts == {"order": {"id": 42}}
        assert len(clone.breadcrumbs_snapshot()) == 1


# =============================================================================
# Context Mutators and Enrichment
# =============================================================================


class TestContextMutators:
    def test_set_tags_merges(self) -> None:
        state = EmitterState.create(5)

        state.set_tags({"a": "1"})
        state.set_tags({"b": "2", "a": "3"})

        assert state.tags == {"a": "3", "b": "2"}

    def test_clear_single_context(self) -> None:
        state = EmitterState.create(5)
        state.set_context("one", {"x": 1})
        state.set_context("two", {"y": 2})

        state.clear_context("one")

        assert state.contexts == {"two": {"y": 2}}

    def test_clear_missing_context_is_noop(self) -> None:
        state = EmitterState.create(5)

        state.clear_context("absent")

        assert state.contexts == {}

    def test_enrichment_empty_when_nothing_set(self) -> None:
        assert EmitterState.create(5).enrichment() == {}

    def test_enrichment_includes_only_set_fields(self) -> None:
        state = EmitterState.create(5)
        state.set_tags({"region": "eu"})

        assert state.enrichment() == {"_tags": {"region": "eu"}}

    def test_enrichment_full(self) -> None:
        state = EmitterState.create(5)
        state.set_user({"id": "u1"})
        state.set_tags({"region": "eu"})
        state.set_context("order", {"id": 42})

        assert state.enrichment() == {
            "user": {"id": "u1"},
            "_tags": {"region": "eu"},
            "_contexts": {"order": {"id": 42}},
        }

    def test_clear_user(self) -> None:
        state = EmitterState.create(5)
        state.set_user({"id": "u1"})

        state.clear_user()

        assert state.user is None
        assert "user" not in state.enrichment()

    @pytest.mark.parametrize(
        ("user", "expected"),
        [(None, None), ({"email": "a@example.com"}, None), ({"id": "u1"}, "u1"), ({"id": 42}, "42")],
    )
    def test_user_id(self, user: dict[str, object] | None, expected: str | None) -> None:
        state = EmitterState.create(5)
        if user is not None:
            state.set_user(user)

        assert state.user_id() == expected


# =============================================================================
# Property-Based Tests
# =============================================================================


class TestRingBufferProperties:
    @given(
        capacity=st.integers(min_value=1, max_value=30),
        messages=st.lists(st.text(max_size=8), max_size=100),
    )
    def test_buffer_is_last_capacity_insertions(self, capacity: int, messages: list[str]) -> None:
        """The buffer always equals the last `capacity` insertions, in order."""
        state = EmitterState.create(capacity)

        for message in messages:
            state.add_breadcrumb(crumb(message))

        stored = [b.message for b in state.breadcrumbs_snapshot()]
        assert len(stored) <= capacity
        assert stored == messages[-capacity:]

    @given(messages=st.lists(st.text(max_size=8), min_size=1, max_size=20))
    def test_clone_breadcrumbs_never_alias(self, messages: list[str]) -> None:
        state = EmitterState.create(10)
        for message in messages:
            state.add_breadcrumb(crumb(message))

        clone = state.clone()
        clone.add_breadcrumb(crumb("clone-only"))

        assert "clone-only" not in [b.message for b in state.breadcrumbs_snapshot()]
