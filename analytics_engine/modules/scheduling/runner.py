"""Background poll loop for scheduled reports built on APScheduler."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from analytics_engine.modules.scheduling.report_scheduler import ReportScheduler

logger = logging.getLogger(__name__)

JOB_ID = "analytics-run-due"


class ScheduleRunner:
    """Calls ``ReportScheduler.run_due`` on a fixed interval.

    Cron matching stays in ``ReportScheduler``; APScheduler only provides
    the ticking thread.

    Usage::

        runner = ScheduleRunner(scheduler, data_source, notifier, poll_interval_seconds=60)
        runner.start()
        ...
        runner.stop()
    """

    def __init__(
        self,
        scheduler: ReportScheduler,
        data_source: Any,
        notifier: Any = None,
        poll_interval_seconds: int = 60,
        timezone: str = "UTC",
        after_run: Optional[Callable[[list[str]], None]] = None,
    ):
        if poll_interval_seconds <= 0:
            raise ValueError(f"poll_interval_seconds must be > 0, got {poll_interval_seconds}")
        self.scheduler = scheduler
        self.data_source = data_source
        self.notifier = notifier
        self.poll_interval_seconds = poll_interval_seconds
        self.after_run = after_run
        self.ticks = 0

        self._scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": poll_interval_seconds,
            },
            timezone=timezone,
        )
        self._running = False
        logger.info(
            "ScheduleRunner initialized (interval=%ds, tz=%s)",
            poll_interval_seconds, timezone,
        )

    @property
    def is_running(self) -> bool:
        """Whether the poll loop is currently active."""
        return self._running

    def tick(self) -> list[str]:
        """Run one due-check synchronously; returns executed schedule ids."""
        executed = asyncio.run(self.scheduler.run_due(self.data_source, self.notifier))
        self.ticks += 1
        if executed:
            logger.info("Tick %d executed schedules: %s", self.ticks, ", ".join(executed))
        if self.after_run is not None:
            self.after_run(executed)
        return executed

    def _safe_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("Scheduled report tick failed")

    def start(self) -> None:
        """Start polling."""
        if self._running:
            logger.warning("ScheduleRunner is already running.")
            return
        self._scheduler.add_job(
            self._safe_tick,
            trigger=IntervalTrigger(seconds=self.poll_interval_seconds),
            id=JOB_ID,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info("ScheduleRunner started.")

    def stop(self, wait: bool = True) -> None:
        """Shut down the poll loop."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=wait)
        self._running = False
        logger.info("ScheduleRunner stopped.")

    def next_tick(self) -> Optional[str]:
        """ISO timestamp of the next poll, or None when stopped."""
        job = self._scheduler.get_job(JOB_ID)
        if job is None or job.next_run_time is None:
            return None
        return job.next_run_time.isoformat()

    def run_now(self) -> None:
        """Trigger a poll immediately (in addition to the interval)."""
        job = self._scheduler.get_job(JOB_ID)
        if job is None:
            raise ValueError("ScheduleRunner is not started")
        self._scheduler.modify_job(JOB_ID, next_run_time=datetime.now(timezone.utc))
        logger.info("Poll triggered for immediate execution.")
