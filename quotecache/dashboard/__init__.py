"""HTTP dashboard exposing the cached quotes."""

from .app import create_dashboard_app

__all__ = ["create_dashboard_app"]
