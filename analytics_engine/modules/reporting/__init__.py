"""Reporting module: report definitions and dashboards."""

from analytics_engine.modules.reporting.dashboard_manager import DashboardManager
from analytics_engine.modules.reporting.report_manager import ReportManager, interpolate

__all__ = [
    "DashboardManager",
    "ReportManager",
    "interpolate",
]
