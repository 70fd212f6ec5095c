# tests/fixtures/__init__.py
"""Shared test doubles for DeepTracer tests.

Available doubles:
- RecordingTransport: records payloads per channel instead of sending them
"""

from tests.fixtures.transport import RecordingTransport

__all__ = [
    "RecordingTransport",
]
