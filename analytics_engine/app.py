"""Service facade wiring the engine, managers, scheduler and storage."""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from analytics_engine.config import AnalyticsConfig
from analytics_engine.integrations.data_sources import JsonFileDataSource
from analytics_engine.integrations.notifiers import LogNotifier
from analytics_engine.modules.aggregation.engine import AggregationEngine
from analytics_engine.modules.reporting.dashboard_manager import DashboardManager
from analytics_engine.modules.reporting.report_manager import ReportManager
from analytics_engine.modules.scheduling.report_scheduler import ReportScheduler
from analytics_engine.modules.scheduling.runner import ScheduleRunner

logger = logging.getLogger(__name__)


class AnalyticsService:
    """Owns one engine and one registry per entity kind.

    Usage::

        service = AnalyticsService(load_config())
        service.load_definitions("definitions.yaml")
        result = await service.reports.execute("by-dept", {}, service.data_source)
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        data_source: Any = None,
        notifier: Any = None,
    ) -> None:
        self.config = config or AnalyticsConfig()
        self.engine = AggregationEngine(max_stages=self.config.max_pipeline_stages)
        self.reports = ReportManager(self.engine)
        self.dashboards = DashboardManager(
            self.engine,
            self.reports,
            max_concurrency=self.config.max_concurrent_queries,
            isolate_failures=self.config.isolate_widget_failures,
        )
        self.scheduler = ReportScheduler(
            self.reports, isolate_failures=self.config.isolate_schedule_failures
        )
        self.data_source = data_source or JsonFileDataSource(self.config.data_dir)
        self.notifier = notifier or LogNotifier()
        self._store = None
        self._runner: Optional[ScheduleRunner] = None
        logger.info("AnalyticsService initialised.")

    # ------------------------------------------------------------------
    # Definitions and persistence
    # ------------------------------------------------------------------

    def load_definitions(
        self, path: Union[str, Path], skip_existing: bool = False
    ) -> dict[str, int]:
        """Register ``reports``, ``dashboards`` and ``schedules`` from a file.

        YAML and JSON files are accepted. With ``skip_existing`` entries
        whose id is already registered (for example restored from the
        database) are left untouched instead of raising ``ConflictError``.
        """
        path = Path(path)
        with open(path, "r", encoding="utf-8") as fh:
            if path.suffix == ".json":
                payload = json.load(fh)
            else:
                payload = yaml.safe_load(fh)
        payload = payload or {}

        sections = (
            ("reports", self.reports.get, self.reports.create),
            ("dashboards", self.dashboards.get, self.dashboards.create),
            ("schedules", self.scheduler.get_schedule, self.scheduler.schedule),
        )
        counts = {}
        for section, lookup, register in sections:
            loaded = 0
            for raw in payload.get(section) or []:
                if skip_existing and lookup(str(raw.get("id") or "")) is not None:
                    logger.debug("Skipping already registered %s %s", section, raw.get("id"))
                    continue
                register(raw)
                loaded += 1
            counts[section] = loaded
        logger.info("Definitions loaded from %s: %s", path, counts)
        return counts

    @property
    def store(self):
        """Lazily created ``RegistryStore``; None when no database is configured."""
        if self._store is None and self.config.database_url:
            from analytics_engine.storage import RegistryStore
            self._store = RegistryStore(self.config.database_url)
        return self._store

    def save(self) -> Optional[dict[str, int]]:
        if self.store is None:
            return None
        return self.store.save(self.reports, self.dashboards, self.scheduler)

    def restore(self) -> Optional[dict[str, int]]:
        if self.store is None:
            return None
        return self.store.load(self.reports, self.dashboards, self.scheduler)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def run_due(self) -> list[str]:
        """Run due schedules once and persist the updated run times."""
        if not self.config.scheduled_reports_enabled:
            logger.info("Scheduled reports disabled; skipping due check.")
            return []
        executed = await self.scheduler.run_due(self.data_source, self.notifier)
        if executed:
            self.save()
        return executed

    def start_scheduler(self) -> ScheduleRunner:
        if not self.config.scheduled_reports_enabled:
            raise RuntimeError("Scheduled reports are disabled in the configuration.")
        if self._runner is None:
            self._runner = ScheduleRunner(
                self.scheduler,
                self.data_source,
                self.notifier,
                poll_interval_seconds=self.config.poll_interval_seconds,
                timezone=self.config.timezone,
                after_run=lambda executed: self.save() if executed else None,
            )
        self._runner.start()
        return self._runner

    def stop_scheduler(self, wait: bool = True) -> None:
        if self._runner is not None:
            self._runner.stop(wait=wait)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Return health status of all major components."""
        status: dict[str, dict[str, Any]] = {
            "engine": {
                "status": "ok",
                "details": f"max_stages={self.engine.max_stages}",
            },
            "registries": {
                "status": "ok",
                "details": (
                    f"{len(self.reports)} reports, {len(self.dashboards)} dashboards, "
                    f"{len(self.scheduler)} schedules"
                ),
            },
        }

        running = self._runner.is_running if self._runner else False
        failing = len(self.scheduler.last_errors)
        status["scheduler"] = {
            "status": "warning" if failing else "ok",
            "details": (
                f"{'running' if running else 'stopped'}, "
                f"{'enabled' if self.config.scheduled_reports_enabled else 'disabled'}, "
                f"{failing} failing"
            ),
        }

        if not self.config.database_url:
            status["storage"] = {"status": "warning", "details": "no database configured"}
        else:
            try:
                counts = self.store.counts()
                status["storage"] = {
                    "status": "ok",
                    "details": ", ".join(f"{v} {k}" for k, v in counts.items()),
                }
            except Exception as exc:
                status["storage"] = {"status": "error", "details": str(exc)}
        return status
