"""Scheduling module: cron parsing, scheduled reports and the poll loop."""

from analytics_engine.modules.scheduling.cron import (
    CronExpression,
    CronField,
    CronFieldKind,
    cron_weekday,
    get_next_run,
    next_run_after,
    parse_cron,
)
from analytics_engine.modules.scheduling.report_scheduler import ReportScheduler
from analytics_engine.modules.scheduling.runner import ScheduleRunner

__all__ = [
    "CronExpression",
    "CronField",
    "CronFieldKind",
    "ReportScheduler",
    "ScheduleRunner",
    "cron_weekday",
    "get_next_run",
    "next_run_after",
    "parse_cron",
]
