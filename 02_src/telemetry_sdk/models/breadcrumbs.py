"""Breadcrumb data model."""

from dataclasses import dataclass
from typing import Any, Literal

BreadcrumbLevel = Literal["debug", "info", "warning", "error"]


@dataclass(frozen=True)
class Breadcrumb:
    """A trail entry recorded before an error, attached to later ErrorEvents."""

    timestamp: str  # ISO-8601 UTC
    category: str
    message: str
    level: BreadcrumbLevel = "info"
    type: str = "log"
    data: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "timestamp": self.timestamp,
            "type": self.type,
            "category": self.category,
            "message": self.message,
            "level": self.level,
        }
        if self.data is not None:
            result["data"] = self.data
        return result
