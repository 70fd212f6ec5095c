# src/deeptracer/errors.py
"""DeepTracer-specific exceptions.

Only ConfigurationError is ever visible to host code, and only when it
calls DeepTracerSettings.require_delivery() itself. The delivery errors
are raised inside a single delivery attempt and consumed by the retry
loop in the transport. They never reach callers.
"""


class DeepTracerError(Exception):
    """Base class for all DeepTracer exceptions."""


class ConfigurationError(DeepTracerError):
    """Raised when a required setting (credential or endpoint) is missing.

    Attributes:
        setting: Name of the missing setting
        message: Human-readable error description
    """

    def __init__(self, setting: str, message: str) -> None:
        self.setting = setting
        self.message = message
        super().__init__(f"Missing '{setting}': {message}")


class DeliveryError(DeepTracerError):
    """A single delivery attempt did not succeed.

    Attributes:
        label: Channel label used in warnings ("logs", "error", ...)
        status_code: HTTP status code, or None for network failures
        reason: Reason phrase or exception text
    """

    def __init__(self, label: str, status_code: int | None, reason: str) -> None:
        self.label = label
        self.status_code = status_code
        self.reason = reason
        detail = f"{status_code} {reason}" if status_code is not None else reason
        super().__init__(f"Failed to send {label}: {detail}")


class ClientRejectionError(DeliveryError):
    """4xx response. The payload or credential is wrong; never retried."""


class TransientDeliveryError(DeliveryError):
    """5xx response or network exception. Retried with backoff."""
