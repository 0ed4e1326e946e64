"""Tests for BreadcrumbBuffer."""

import pytest

from telemetry_sdk.models import Breadcrumb
from telemetry_sdk.tracker import BreadcrumbBuffer


def _crumb(n: int) -> Breadcrumb:
    return Breadcrumb(timestamp="2024-01-01T00:00:00+00:00", category="test", message=f"crumb {n}")


class TestBreadcrumbBuffer:
    """Tests for the bounded breadcrumb FIFO."""

    def test_cap_keeps_most_recent(self):
        """Test that 150 adds leave the newest 100, oldest evicted first."""
        buffer = BreadcrumbBuffer(max_size=100)
        for n in range(150):
            buffer.add(_crumb(n))

        crumbs = buffer.get_all()
        assert len(crumbs) == 100
        assert crumbs[0].message == "crumb 50"
        assert crumbs[-1].message == "crumb 149"

    def test_get_all_is_a_copy(self):
        """Test that callers cannot mutate internal state."""
        buffer = BreadcrumbBuffer()
        buffer.add(_crumb(1))

        crumbs = buffer.get_all()
        crumbs.clear()
        assert len(buffer) == 1

    def test_snapshot(self):
        """Test snapshot is None when empty and a tuple otherwise."""
        buffer = BreadcrumbBuffer()
        assert buffer.snapshot() is None

        buffer.add(_crumb(1))
        snap = buffer.snapshot()
        buffer.add(_crumb(2))
        assert snap == (_crumb(1),)

    def test_clear(self):
        """Test clear()."""
        buffer = BreadcrumbBuffer()
        buffer.add(_crumb(1))
        buffer.clear()
        assert len(buffer) == 0

    def test_invalid_size(self):
        """Test that a zero cap is rejected."""
        with pytest.raises(ValueError):
            BreadcrumbBuffer(max_size=0)

    def test_to_dict_omits_missing_data(self):
        """Test Breadcrumb serialisation."""
        assert _crumb(1).to_dict() == {
            "timestamp": "2024-01-01T00:00:00+00:00",
            "category": "test",
            "message": "crumb 1",
            "level": "info",
            "type": "log",
        }
