# src/deeptracer/config.py
"""Configuration for DeepTracer emitters.

Two layers, resolved once at construction:

- DeepTracerSettings: validated, frozen user configuration (pydantic).
  Built directly in code, or from DEEPTRACER_* environment variables via
  load_settings().
- RuntimeProfile: facts about the hosting platform that change defaults.
  Resolved once from the environment and injectable for tests, instead of
  ad hoc environment checks spread across the code.

Environment variables (all optional):
    DEEPTRACER_SECRET_KEY     server credential (preferred)
    DEEPTRACER_PUBLIC_KEY     client credential
    DEEPTRACER_ENDPOINT       ingestion base URL
    DEEPTRACER_SERVICE        service name (default "web")
    DEEPTRACER_ENVIRONMENT    environment name (falls back to PYTHON_ENV, then "production")
    DEEPTRACER_LOG_LEVEL      minimum level sent (debug/info/warn/error)
    DEEPTRACER_BATCH_SIZE     log entries per batch
    DEEPTRACER_FLUSH_INTERVAL seconds between timed flushes
    DEEPTRACER_DEBUG          mirror accepted logs to the local console
    DEEPTRACER_MAX_BREADCRUMBS breadcrumb ring buffer capacity
"""

import os
from collections.abc import Callable, Mapping
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Final

from pydantic import BaseModel, Field

from deeptracer.errors import ConfigurationError
from deeptracer.events import BeforeSendEvent, LogLevel

# Presence of any of these variables means the platform may freeze the
# process shortly after a response is returned.
SERVERLESS_ENV_INDICATORS: Final[tuple[str, ...]] = (
    "VERCEL",
    "AWS_LAMBDA_FUNCTION_NAME",
    "FUNCTIONS_WORKER_RUNTIME",
    "NETLIFY",
)

SERVERLESS_FLUSH_INTERVAL: Final[float] = 0.2
DEFAULT_FLUSH_INTERVAL: Final[float] = 5.0

BeforeSendHook = Callable[[BeforeSendEvent], BeforeSendEvent | None]
WaitUntilHook = Callable[[Future[None]], Any]


@dataclass(frozen=True, slots=True)
class RuntimeProfile:
    """Hosting platform facts that change pipeline defaults.

    Attributes:
        serverless: True when execution may freeze right after a response
        platform: Name of the detected indicator variable, if any
    """

    serverless: bool = False
    platform: str | None = None

    @classmethod
    def detect(cls, environ: Mapping[str, str] | None = None) -> "RuntimeProfile":
        """Resolve the profile from environment variables."""
        environ = os.environ if environ is None else environ
        for indicator in SERVERLESS_ENV_INDICATORS:
            if environ.get(indicator):
                return cls(serverless=True, platform=indicator)
        return cls()

    @property
    def default_flush_interval(self) -> float:
        return SERVERLESS_FLUSH_INTERVAL if self.serverless else DEFAULT_FLUSH_INTERVAL


class DeepTracerSettings(BaseModel):
    """Validated emitter configuration.

    All fields are optional so an emitter can always be constructed. A
    missing credential or endpoint puts the transport in disabled mode;
    init() turns that into an inert emitter instead.
    """

    model_config = {"frozen": True}

    secret_key: str | None = Field(default=None, description="Server-side API key (dt_secret_...)")
    public_key: str | None = Field(default=None, description="Client-side API key (dt_public_...)")
    endpoint: str | None = Field(default=None, description="Ingestion API base URL")
    service: str = Field(default="web", description="Service name attached to every payload")
    environment: str = Field(default="production", description="Deployment environment name")
    batch_size: int = Field(default=50, gt=0, description="Log entries per batch")
    flush_interval: float | None = Field(
        default=None,
        gt=0,
        description="Seconds between timed flushes (default from RuntimeProfile)",
    )
    level: LogLevel | None = Field(default=None, description="Minimum level sent to the backend")
    debug: bool = Field(default=False, description="Mirror accepted logs to the local console")
    max_breadcrumbs: int = Field(default=20, gt=0, description="Breadcrumb ring buffer capacity")
    before_send: BeforeSendHook | None = Field(
        default=None,
        description="Inspect, modify, or drop events before they are sent",
        exclude=True,
    )
    wait_until: WaitUntilHook | None = Field(
        default=None,
        description="Platform hook that keeps delivery work alive after a response",
        exclude=True,
    )

    @property
    def auth_key(self) -> str | None:
        """Credential used for the Authorization header (secret preferred)."""
        return self.secret_key or self.public_key

    @property
    def delivery_configured(self) -> bool:
        return bool(self.auth_key) and bool(self.endpoint)

    @property
    def min_level(self) -> LogLevel:
        if self.level is not None:
            return self.level
        return LogLevel.INFO if self.environment == "production" else LogLevel.DEBUG

    def require_delivery(self) -> "DeepTracerSettings":
        """Return self, or raise ConfigurationError if delivery cannot work.

        Raises:
            ConfigurationError: If no credential or no endpoint is configured
        """
        if not self.auth_key:
            raise ConfigurationError(
                "secret_key",
                "Set DEEPTRACER_SECRET_KEY or pass secret_key (or public_key).",
            )
        if not self.endpoint:
            raise ConfigurationError(
                "endpoint",
                "Set DEEPTRACER_ENDPOINT or pass endpoint.",
            )
        return self


# Dynaconf key (upper case, prefix stripped) -> settings field
_ENV_FIELDS: Final[dict[str, str]] = {
    "SECRET_KEY": "secret_key",
    "PUBLIC_KEY": "public_key",
    "ENDPOINT": "endpoint",
    "SERVICE": "service",
    "ENVIRONMENT": "environment",
    "LOG_LEVEL": "level",
    "BATCH_SIZE": "batch_size",
    "FLUSH_INTERVAL": "flush_interval",
    "DEBUG": "debug",
    "MAX_BREADCRUMBS": "max_breadcrumbs",
}

_STRING_FIELDS: Final[frozenset[str]] = frozenset({"secret_key", "public_key", "endpoint", "service", "environment"})


def load_settings(**overrides: Any) -> DeepTracerSettings:
    """Build settings from DEEPTRACER_* environment variables plus overrides.

    Precedence:
    1. Explicit keyword overrides (None values are ignored)
    2. Environment variables (DEEPTRACER_*)
    3. Defaults from the pydantic schema

    Raises:
        ValidationError: If a value fails pydantic validation
    """
    from dynaconf import Dynaconf

    dynaconf_settings = Dynaconf(
        envvar_prefix="DEEPTRACER",
        environments=False,
        load_dotenv=False,
    )

    raw: dict[str, Any] = {}
    for key, value in dynaconf_settings.as_dict().items():
        field_name = _ENV_FIELDS.get(key.upper())
        if field_name is None or value is None or value == "":
            continue
        # Dynaconf parses "123" as int; credentials and names stay strings
        if field_name == "level":
            value = str(value).lower()
        elif field_name in _STRING_FIELDS:
            value = str(value)
        raw[field_name] = value

    if "environment" not in raw and os.environ.get("PYTHON_ENV"):
        raw["environment"] = os.environ["PYTHON_ENV"]

    raw.update({key: value for key, value in overrides.items() if value is not None})
    return DeepTracerSettings(**raw)
