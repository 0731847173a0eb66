"""Snapshot persistence of the report, dashboard and schedule registries.

The managers stay purely in-memory; ``RegistryStore`` copies their
contents to SQL tables and back.
"""

import logging
from typing import Optional

from sqlalchemy import delete, select

from analytics_engine.database import get_session, init_db
from analytics_engine.models.dashboard import Dashboard
from analytics_engine.models.records import DashboardRecord, ReportRecord, ScheduleRecord
from analytics_engine.models.report import Report
from analytics_engine.models.schedule import ScheduledReport
from analytics_engine.modules.reporting.dashboard_manager import DashboardManager
from analytics_engine.modules.reporting.report_manager import ReportManager
from analytics_engine.modules.scheduling.report_scheduler import ReportScheduler

logger = logging.getLogger(__name__)


class RegistryStore:
    """Saves and restores registries through SQLAlchemy.

    Usage::

        store = RegistryStore("sqlite:///data/analytics.db")
        store.save(reports, dashboards, scheduler)
        store.load(reports, dashboards, scheduler)
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False) -> None:
        self.database_url = database_url
        init_db(database_url=database_url, echo=echo)

    def save(
        self,
        reports: ReportManager,
        dashboards: DashboardManager,
        scheduler: ReportScheduler,
    ) -> dict[str, int]:
        """Replace the stored snapshot with the current registry contents."""
        report_rows = [
            ReportRecord(
                id=r.id, object_name=r.object_name, created_by=r.created_by,
                payload=r.to_dict(),
            )
            for r in reports.list()
        ]
        dashboard_rows = [
            DashboardRecord(id=d.id, owner=d.owner, shared=d.shared, payload=d.to_dict())
            for d in dashboards.list()
        ]
        schedule_rows = [
            ScheduleRecord(
                id=s.id, report_id=s.report_id, enabled=s.enabled,
                next_run=s.next_run, payload=s.to_dict(),
            )
            for s in scheduler.list_schedules()
        ]
        with get_session() as session:
            for model in (ReportRecord, DashboardRecord, ScheduleRecord):
                session.execute(delete(model))
            session.add_all(report_rows + dashboard_rows + schedule_rows)

        counts = {
            "reports": len(report_rows),
            "dashboards": len(dashboard_rows),
            "schedules": len(schedule_rows),
        }
        logger.info("Registries saved: %s", counts)
        return counts

    def load(
        self,
        reports: ReportManager,
        dashboards: DashboardManager,
        scheduler: ReportScheduler,
    ) -> dict[str, int]:
        """Replace the managers' contents with the stored snapshot."""
        with get_session() as session:
            report_payloads = [r.payload for r in session.scalars(select(ReportRecord))]
            dashboard_payloads = [d.payload for d in session.scalars(select(DashboardRecord))]
            schedule_payloads = [s.payload for s in session.scalars(select(ScheduleRecord))]

        reports.clear()
        dashboards.clear()
        scheduler.clear()
        for payload in report_payloads:
            reports.create(Report.from_dict(payload))
        for payload in dashboard_payloads:
            dashboards.create(Dashboard.from_dict(payload))
        for payload in schedule_payloads:
            scheduler.schedule(ScheduledReport.from_dict(payload))

        counts = {
            "reports": len(report_payloads),
            "dashboards": len(dashboard_payloads),
            "schedules": len(schedule_payloads),
        }
        logger.info("Registries loaded: %s", counts)
        return counts

    def counts(self) -> dict[str, int]:
        with get_session() as session:
            return {
                "reports": len(session.scalars(select(ReportRecord.id)).all()),
                "dashboards": len(session.scalars(select(DashboardRecord.id)).all()),
                "schedules": len(session.scalars(select(ScheduleRecord.id)).all()),
            }
