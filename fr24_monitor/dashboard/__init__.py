from .app import create_app
from .settings import DashboardSettings

__all__ = ["DashboardSettings", "create_app"]
