"""Dashboard reporter package."""

from .config import ReporterConfig, load_config
from .errors import ReporterError
from .models import Dashboard, DashboardModel, Panel
from .report import Reporter, select_panels
from .timerange import TimeRange

__all__ = [
    "Dashboard",
    "DashboardModel",
    "Panel",
    "Reporter",
    "ReporterConfig",
    "ReporterError",
    "TimeRange",
    "load_config",
    "select_panels",
]
