"""Cron-scheduled report runs with delivery to recipients."""

from __future__ import annotations

import inspect
import logging
import threading
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from analytics_engine.exceptions import ConflictError, NotFoundError, ValidationError
from analytics_engine.models.schedule import SCHEDULE_FORMATS, ScheduledReport
from analytics_engine.modules.reporting.report_manager import ReportManager
from analytics_engine.modules.scheduling.cron import (
    CronExpression,
    get_next_run,
    parse_cron,
)
from analytics_engine.utils.timeutils import ensure_utc, isoformat, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class ReportScheduler:
    """Registry of scheduled reports plus due-checking and execution.

    ``run_due`` treats every due schedule independently by default: one
    failing report is logged and recorded in ``last_errors`` while the
    rest of the batch still runs. With ``isolate_failures=False`` the
    first failure propagates. A failed schedule keeps its ``next_run`` and
    is retried on the next call.
    """

    def __init__(self, report_manager: ReportManager, isolate_failures: bool = True) -> None:
        self.report_manager = report_manager
        self.isolate_failures = isolate_failures
        self.last_errors: dict[str, str] = {}
        self._schedules: dict[str, ScheduledReport] = {}
        self._lock = threading.RLock()
        logger.info("ReportScheduler initialised (isolate_failures=%s)", isolate_failures)

    # ------------------------------------------------------------------
    # Cron helpers
    # ------------------------------------------------------------------

    @staticmethod
    def parse_cron(expression: str) -> CronExpression:
        return parse_cron(expression)

    @staticmethod
    def get_next_run(expression: str, start: Optional[datetime] = None) -> str:
        return get_next_run(expression, start)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def schedule(
        self,
        config: Union[ScheduledReport, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> ScheduledReport:
        """Validate and register a schedule.

        ``next_run`` is kept when supplied, otherwise computed from the
        cron expression relative to ``now``.
        """
        entry = ScheduledReport.from_dict(config)
        self._validate(entry)
        parsed = parse_cron(entry.cron)

        if entry.next_run:
            try:
                entry.next_run = isoformat(parse_timestamp(entry.next_run))
            except (TypeError, ValueError):
                raise ValidationError(
                    f"Schedule nextRun is not an ISO-8601 timestamp: {entry.next_run!r}"
                ) from None
        else:
            entry.next_run = get_next_run(parsed, now)

        with self._lock:
            if entry.id in self._schedules:
                raise ConflictError("Schedule", entry.id)
            self._schedules[entry.id] = entry
        logger.info(
            "Report %s scheduled as %s [%s], next run %s",
            entry.report_id, entry.id, entry.cron, entry.next_run,
        )
        return entry

    def unschedule(self, schedule_id: str) -> bool:
        with self._lock:
            removed = self._schedules.pop(schedule_id, None) is not None
            self.last_errors.pop(schedule_id, None)
        if removed:
            logger.info("Schedule removed: %s", schedule_id)
        return removed

    def get_schedule(self, schedule_id: str) -> Optional[ScheduledReport]:
        return self._schedules.get(schedule_id)

    def list_schedules(self) -> list[ScheduledReport]:
        return list(self._schedules.values())

    def set_enabled(self, schedule_id: str, enabled: bool) -> ScheduledReport:
        with self._lock:
            entry = self._schedules.get(schedule_id)
            if entry is None:
                raise NotFoundError("Schedule", schedule_id)
            entry.enabled = enabled
        logger.info("Schedule %s %s", schedule_id, "enabled" if enabled else "disabled")
        return entry

    def enable(self, schedule_id: str) -> ScheduledReport:
        return self.set_enabled(schedule_id, True)

    def disable(self, schedule_id: str) -> ScheduledReport:
        return self.set_enabled(schedule_id, False)

    def clear(self) -> None:
        with self._lock:
            self._schedules.clear()
            self.last_errors.clear()

    def __len__(self) -> int:
        return len(self._schedules)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def check_due(self, now: Optional[datetime] = None) -> list[ScheduledReport]:
        """Enabled schedules whose ``next_run`` is at or before ``now``."""
        now = ensure_utc(now) if now is not None else utcnow()
        return [
            s for s in list(self._schedules.values())
            if s.enabled and parse_timestamp(s.next_run) <= now
        ]

    async def run_due(
        self,
        data_source: Any = None,
        notifier: Any = None,
        now: Optional[datetime] = None,
    ) -> list[str]:
        """Execute every due report and deliver it; returns executed ids."""
        now = ensure_utc(now) if now is not None else utcnow()
        executed: list[str] = []

        for entry in self.check_due(now):
            try:
                result = await self.report_manager.execute(entry.report_id, None, data_source)
                next_run = get_next_run(entry.cron, now)
            except Exception as exc:
                if not self.isolate_failures:
                    raise
                logger.error(
                    "Scheduled report %s (report %s) failed: %s",
                    entry.id, entry.report_id, exc,
                )
                self.last_errors[entry.id] = str(exc)
                continue

            with self._lock:
                entry.last_run = isoformat(now)
                entry.next_run = next_run
                self.last_errors.pop(entry.id, None)

            if notifier is not None:
                await self._deliver(notifier, entry, result)
            executed.append(entry.id)
            logger.info(
                "Scheduled report %s executed, next run %s", entry.id, entry.next_run
            )

        return executed

    @staticmethod
    async def _deliver(notifier: Any, entry: ScheduledReport, result: Any) -> None:
        try:
            outcome = notifier.deliver(list(entry.recipients), result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning(
                "Delivery of schedule %s to %s failed: %s",
                entry.id, ", ".join(entry.recipients), exc,
            )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(entry: ScheduledReport) -> None:
        if not entry.id or not isinstance(entry.id, str):
            raise ValidationError("Schedule must have a valid id")
        if not entry.report_id or not isinstance(entry.report_id, str):
            raise ValidationError("Schedule must reference a reportId")
        if not entry.cron or not isinstance(entry.cron, str) or not entry.cron.strip():
            raise ValidationError("Schedule must have a cron expression")
        if not entry.recipients or not all(
            isinstance(r, str) and r.strip() for r in entry.recipients
        ):
            raise ValidationError("Schedule must have at least one recipient")
        if entry.format not in SCHEDULE_FORMATS:
            raise ValidationError(
                f"Schedule format must be one of {', '.join(SCHEDULE_FORMATS)}; "
                f"got {entry.format!r}"
            )
