# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures:
- recording_transport: a fresh RecordingTransport (tests/fixtures/transport.py)
- make_settings: delivery-ready DeepTracerSettings with test defaults
- make_emitter: root emitters wired to the recording transport

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from deeptracer.config import SERVERLESS_ENV_INDICATORS, DeepTracerSettings, RuntimeProfile
from deeptracer.emitter import Emitter
from tests.fixtures.transport import RecordingTransport

ENDPOINT = "https://ingest.deeptracer.test"
SECRET_KEY = "dt_secret_test"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell and CI platform variables out of tests."""
    for name in list(os.environ):
        if name.startswith("DEEPTRACER_"):
            monkeypatch.delenv(name)
    for name in (*SERVERLESS_ENV_INDICATORS, "PYTHON_ENV"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def make_settings() -> Callable[..., DeepTracerSettings]:
    """Factory for delivery-ready settings with test defaults."""

    def _make(**overrides: Any) -> DeepTracerSettings:
        fields: dict[str, Any] = {
            "secret_key": SECRET_KEY,
            "endpoint": ENDPOINT,
            "service": "api",
            "environment": "test",
            # Long interval: tests flush explicitly
            "flush_interval": 60.0,
        }
        fields.update(overrides)
        return DeepTracerSettings(**fields)

    return _make


@pytest.fixture
def make_emitter(
    make_settings: Callable[..., DeepTracerSettings],
    recording_transport: RecordingTransport,
) -> Iterator[Callable[..., Emitter]]:
    """Factory for root emitters wired to the recording transport.

    Every emitter created through the factory is destroyed on teardown so
    no batch timer thread outlives its test.
    """
    created: list[Emitter] = []

    def _make(**overrides: Any) -> Emitter:
        emitter = Emitter(
            make_settings(**overrides),
            profile=RuntimeProfile(),
            transport=recording_transport,  # type: ignore[arg-type]
        )
        created.append(emitter)
        return emitter

    yield _make

    for emitter in created:
        emitter.destroy(timeout=0.1)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
