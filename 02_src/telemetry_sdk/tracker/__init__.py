"""Error tracking module."""

from .breadcrumbs import BreadcrumbBuffer
from .error_tracker import ErrorTracker, IErrorTracker

__all__ = ["BreadcrumbBuffer", "ErrorTracker", "IErrorTracker"]
