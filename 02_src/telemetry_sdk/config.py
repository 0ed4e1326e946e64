"""SDK configuration and environment helpers."""

import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Union

from dotenv import load_dotenv

PathLike = Union[str, Path]

ENV_PREFIX = "TELEMETRY_"
DEFAULT_API_URL = "https://api.rootsense.ai"

DEFAULT_PII_FIELDS: tuple[str, ...] = (
    "password",
    "token",
    "authorization",
    "apiKey",
    "secret",
    "ssn",
    "creditCard",
    "email",
    "phone",
    "address",
    "credit_card",
    "api_key",
    "access_token",
    "refresh_token",
)

_DSN_RE = re.compile(r"^(https?)://([^@]+)@(.+)$")


class ConfigError(ValueError):
    """Raised when the SDK cannot be configured safely."""


@dataclass(frozen=True)
class TelemetryConfig:
    """Immutable SDK settings shared by every component.

    Durations are in seconds.
    """

    api_key: str
    project_id: str
    api_url: str = DEFAULT_API_URL
    websocket_url: str = ""
    service_name: str = "unknown-service"
    environment: str = "production"
    version: str = "1.0.0"

    # Buffering and delivery
    max_buffer_size: int = 1000
    buffer_hard_limit: int = 10_000
    flush_interval: float = 5.0
    batch_size: int = 100
    retry_attempts: int = 3
    retry_delay: float = 1.0
    retry_max_delay: float = 30.0
    timeout: float = 10.0

    # Feature switches
    enable_error_tracking: bool = True
    enable_metrics: bool = True
    enable_websocket: bool = False
    enable_auto_instrumentation: bool = False

    # Privacy
    sanitize_pii: bool = True
    pii_fields: tuple[str, ...] = DEFAULT_PII_FIELDS

    max_breadcrumbs: int = 100
    tags: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise ConfigError(
                "API key is required. Provide dsn or api_key, "
                f"or set {ENV_PREFIX}API_KEY."
            )
        if not self.project_id:
            raise ConfigError(
                f"Project ID is required. Provide project_id or set {ENV_PREFIX}PROJECT_ID."
            )
        for name in ("max_buffer_size", "batch_size", "retry_attempts", "max_breadcrumbs"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.buffer_hard_limit < self.max_buffer_size:
            raise ConfigError(
                "buffer_hard_limit must be >= max_buffer_size, "
                f"got {self.buffer_hard_limit} < {self.max_buffer_size}"
            )
        for name in ("flush_interval", "timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0, got {getattr(self, name)}")
        for name in ("retry_delay", "retry_max_delay"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0, got {getattr(self, name)}")

        # Frozen: normalise through object.__setattr__
        object.__setattr__(self, "api_url", self.api_url.rstrip("/"))
        if not self.websocket_url:
            object.__setattr__(self, "websocket_url", derive_websocket_url(self.api_url))
        object.__setattr__(self, "pii_fields", tuple(self.pii_fields))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def batch_url(self) -> str:
        return f"{self.api_url}/events/batch"

    @property
    def success_url(self) -> str:
        return f"{self.api_url}/events/success"

    @property
    def stream_url(self) -> str:
        return f"{self.websocket_url.rstrip('/')}/stream"

    def with_overrides(self, **overrides: Any) -> "TelemetryConfig":
        """Return a copy with some fields replaced."""
        return replace(self, **overrides)


def parse_dsn(dsn: str) -> tuple[str, str]:
    """Split ``https://API_KEY@host/path`` into ``(api_key, api_url)``."""
    match = _DSN_RE.match(dsn.strip())
    if not match:
        raise ConfigError(
            "Invalid DSN format. Expected: https://API_KEY@api.example.com/v1"
        )
    scheme, api_key, rest = match.groups()
    return api_key, f"{scheme}://{rest}"


def derive_websocket_url(api_url: str) -> str:
    """Map an http(s) API base to its ws(s) counterpart."""
    return re.sub(r"^http", "ws", api_url, count=1)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_tags(value: str) -> dict[str, str]:
    """Parse ``key=value,key2=value2``."""
    tags: dict[str, str] = {}
    for pair in value.split(","):
        if "=" in pair:
            key, val = pair.split("=", 1)
            tags[key.strip()] = val.strip()
    return tags


# env var suffix -> (field name, converter)
_ENV_FIELDS = {
    "API_KEY": ("api_key", str),
    "PROJECT_ID": ("project_id", str),
    "API_URL": ("api_url", str),
    "WEBSOCKET_URL": ("websocket_url", str),
    "SERVICE_NAME": ("service_name", str),
    "ENVIRONMENT": ("environment", str),
    "VERSION": ("version", str),
    "MAX_BUFFER_SIZE": ("max_buffer_size", int),
    "FLUSH_INTERVAL": ("flush_interval", float),
    "BATCH_SIZE": ("batch_size", int),
    "RETRY_ATTEMPTS": ("retry_attempts", int),
    "RETRY_DELAY": ("retry_delay", float),
    "TIMEOUT": ("timeout", float),
    "ENABLE_ERROR_TRACKING": ("enable_error_tracking", _env_bool),
    "ENABLE_METRICS": ("enable_metrics", _env_bool),
    "ENABLE_WEBSOCKET": ("enable_websocket", _env_bool),
    "ENABLE_AUTO_INSTRUMENTATION": ("enable_auto_instrumentation", _env_bool),
    "SANITIZE_PII": ("sanitize_pii", _env_bool),
    "PII_FIELDS": ("pii_fields", lambda v: tuple(f.strip() for f in v.split(",") if f.strip())),
    "TAGS": ("tags", _env_tags),
}


def load_config(
    env_file: PathLike | None = None,
    *,
    dsn: str | None = None,
    **overrides: Any,
) -> TelemetryConfig:
    """
    Build a TelemetryConfig from environment variables and overrides.

    Args:
        env_file: Optional ``.env`` file loaded before reading the environment.
        dsn: ``https://API_KEY@host/path``; takes precedence over api_key/api_url.
        **overrides: Explicit field values; win over the environment.

    Raises:
        ConfigError: If credentials are missing or a value is out of range.
    """
    if env_file is not None:
        load_dotenv(env_file)

    values: dict[str, Any] = {}
    for suffix, (name, convert) in _ENV_FIELDS.items():
        raw = os.getenv(ENV_PREFIX + suffix)
        if raw:
            try:
                values[name] = convert(raw)
            except ValueError as e:
                raise ConfigError(f"Invalid {ENV_PREFIX}{suffix}: {raw!r}") from e

    dsn = dsn or os.getenv(ENV_PREFIX + "DSN")
    if dsn:
        values["api_key"], values["api_url"] = parse_dsn(dsn)

    values.update({k: v for k, v in overrides.items() if v is not None})
    values.setdefault("api_key", "")
    values.setdefault("project_id", "")
    return TelemetryConfig(**values)
