"""Value types for pipelines, reports, dashboards and schedules."""

from analytics_engine.models.dashboard import (
    Dashboard,
    DashboardLayout,
    Widget,
    WidgetPosition,
    WidgetSize,
)
from analytics_engine.models.pipeline import (
    AggregationMetadata,
    AggregationResult,
    Pipeline,
    Stage,
    StageType,
)
from analytics_engine.models.report import Report, ReportParameter, ReportResult
from analytics_engine.models.schedule import ScheduledReport

__all__ = [
    "AggregationMetadata",
    "AggregationResult",
    "Dashboard",
    "DashboardLayout",
    "Pipeline",
    "Report",
    "ReportParameter",
    "ReportResult",
    "ScheduledReport",
    "Stage",
    "StageType",
    "Widget",
    "WidgetPosition",
    "WidgetSize",
]
