"""Stable grouping keys for events."""

import hashlib
import uuid
from typing import Any, Mapping

FINGERPRINT_LENGTH = 16


def generate_fingerprint(kind: str, service: str, endpoint: str | None = None) -> str:
    """Hash (kind, service, endpoint) into a 16-char lowercase hex key.

    Deterministic for equal inputs. Collisions only merge groups.
    """
    data = f"{kind}:{service}:{endpoint or ''}"
    return hashlib.sha256(data.encode("utf-8", "surrogatepass")).hexdigest()[:FINGERPRINT_LENGTH]


def generate_event_id() -> str:
    """Return a new unique event id."""
    return str(uuid.uuid4())


def operation_fingerprint(
    operation_type: str, name: str, attributes: Mapping[str, Any]
) -> str:
    """Readable key for a traced operation, used by success signals."""
    if operation_type == "http":
        method = str(attributes.get("http.method") or "UNKNOWN")
        route = str(attributes.get("http.route") or attributes.get("http.target") or name)
        return f"http:{method}:{route}"
    if operation_type == "db":
        system = str(attributes.get("db.system") or "unknown")
        operation = name.split(" ")[0] or "query"
        table = str(attributes.get("db.sql.table") or "unknown")
        return f"db:{system}:{operation}:{table}"
    if operation_type == "redis":
        return f"redis:{attributes.get('db.operation') or name}"
    if operation_type == "celery":
        return f"celery:{attributes.get('celery.task_name') or name}"
    return f"{operation_type}:{name}"
