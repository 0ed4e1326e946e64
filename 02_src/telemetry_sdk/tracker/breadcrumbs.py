"""BreadcrumbBuffer implementation."""

from collections import deque

from ..models import Breadcrumb


class BreadcrumbBuffer:
    """Bounded FIFO of recent breadcrumbs; oldest entries are evicted first."""

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._breadcrumbs: deque[Breadcrumb] = deque(maxlen=max_size)

    def add(self, breadcrumb: Breadcrumb) -> None:
        """Add a breadcrumb, evicting the oldest one when full."""
        self._breadcrumbs.append(breadcrumb)

    def get_all(self) -> list[Breadcrumb]:
        """Get a copy of all breadcrumbs, oldest first."""
        return list(self._breadcrumbs)

    def snapshot(self) -> tuple[Breadcrumb, ...] | None:
        """Point-in-time copy for attaching to an event, or None when empty."""
        return tuple(self._breadcrumbs) if self._breadcrumbs else None

    def clear(self) -> None:
        """Clear the buffer."""
        self._breadcrumbs.clear()

    @property
    def max_size(self) -> int:
        return self._breadcrumbs.maxlen or 0

    def __len__(self) -> int:
        return len(self._breadcrumbs)
