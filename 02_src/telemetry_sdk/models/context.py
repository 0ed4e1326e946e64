"""Request/response context passed alongside captured errors."""

from dataclasses import dataclass, field, fields
from typing import Any, Mapping


def _from_mapping(cls, value: Any):
    """Build a context dataclass from a mapping, ignoring unknown keys."""
    if value is None or isinstance(value, cls):
        return value
    names = {f.name for f in fields(cls)}
    aliases = getattr(cls, "_ALIASES", {})
    kwargs = {}
    for key, item in dict(value).items():
        key = aliases.get(key, key)
        if key in names:
            kwargs[key] = item
    return cls(**kwargs)


@dataclass
class RequestContext:
    """Inbound HTTP request being served when the error happened."""

    method: str | None = None
    path: str | None = None
    headers: Mapping[str, Any] | None = None
    query: Mapping[str, Any] | None = None
    params: Mapping[str, Any] | None = None
    ip: str | None = None
    user_agent: str | None = None
    body: Any = None

    _ALIASES = {"userAgent": "user_agent"}

    @classmethod
    def coerce(cls, value: Any) -> "RequestContext | None":
        return _from_mapping(cls, value)


@dataclass
class ResponseContext:
    """Outbound HTTP response, if one was produced."""

    status_code: int | None = None
    headers: Mapping[str, Any] | None = None
    duration: float | None = None  # milliseconds
    body: Any = None

    _ALIASES = {"statusCode": "status_code"}

    @classmethod
    def coerce(cls, value: Any) -> "ResponseContext | None":
        return _from_mapping(cls, value)


@dataclass
class CaptureContext:
    """Everything a caller may attach to capture_error()."""

    request: RequestContext | None = None
    response: ResponseContext | None = None
    additional: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "CaptureContext":
        """Accept a CaptureContext, a mapping with the same keys, or None."""
        if isinstance(value, cls):
            return value
        if value is None:
            return cls()
        data = dict(value)
        return cls(
            request=RequestContext.coerce(data.get("request")),
            response=ResponseContext.coerce(data.get("response")),
            additional=dict(data.get("additional") or {}),
        )
