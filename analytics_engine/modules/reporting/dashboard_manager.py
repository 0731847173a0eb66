"""Dashboards composed of widgets backed by inline pipelines or reports."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Mapping, Optional, Union

from analytics_engine.exceptions import ConflictError, NotFoundError, ValidationError
from analytics_engine.models.dashboard import WIDGET_TYPES, Dashboard, Widget
from analytics_engine.models.pipeline import AggregationResult
from analytics_engine.modules.aggregation.engine import AggregationEngine
from analytics_engine.modules.reporting.report_manager import ReportManager

logger = logging.getLogger(__name__)


class DashboardManager:
    """In-memory registry of dashboards keyed by id.

    Widget ids are unique per dashboard, not globally. Deleting a report
    does not touch widgets that reference it; the dangling reference
    surfaces as ``NotFoundError`` when the widget is executed.

    Args:
        engine: Engine used for inline widget pipelines.
        report_manager: Resolves ``reportId`` widgets.
        max_concurrency: Upper bound on widgets executed at once.
        isolate_failures: When True a failing widget yields an empty
            result carrying ``error`` instead of failing the whole call.
    """

    def __init__(
        self,
        engine: AggregationEngine,
        report_manager: ReportManager,
        max_concurrency: int = 10,
        isolate_failures: bool = False,
    ) -> None:
        self.engine = engine
        self.report_manager = report_manager
        self.max_concurrency = max(1, max_concurrency)
        self.isolate_failures = isolate_failures
        self._dashboards: dict[str, Dashboard] = {}
        self._lock = threading.RLock()
        logger.info(
            "DashboardManager initialised (max_concurrency=%d, isolate_failures=%s)",
            self.max_concurrency, isolate_failures,
        )

    # ------------------------------------------------------------------
    # Dashboard CRUD
    # ------------------------------------------------------------------

    def create(self, definition: Union[Dashboard, Mapping[str, Any]]) -> Dashboard:
        dashboard = (
            definition if isinstance(definition, Dashboard) else Dashboard.from_dict(definition)
        )
        self._validate_dashboard(dashboard)
        with self._lock:
            if dashboard.id in self._dashboards:
                raise ConflictError("Dashboard", dashboard.id)
            self._dashboards[dashboard.id] = dashboard
        logger.info(
            "Dashboard created: %s (%d widgets)", dashboard.id, len(dashboard.widgets)
        )
        return dashboard

    def get(self, dashboard_id: str) -> Optional[Dashboard]:
        return self._dashboards.get(dashboard_id)

    def require(self, dashboard_id: str) -> Dashboard:
        dashboard = self._dashboards.get(dashboard_id)
        if dashboard is None:
            raise NotFoundError("Dashboard", dashboard_id)
        return dashboard

    def update(self, dashboard_id: str, changes: Mapping[str, Any]) -> Dashboard:
        """Merge ``changes`` into a dashboard; ``id``/``createdAt`` stay fixed."""
        with self._lock:
            existing = self.require(dashboard_id)
            merged = existing.to_dict()
            for key, value in changes.items():
                if key in ("id", "createdAt", "created_at"):
                    continue
                if key == "widgets":
                    value = [w.to_dict() if isinstance(w, Widget) else w for w in value]
                elif key == "layout" and hasattr(value, "to_dict"):
                    value = value.to_dict()
                merged[key] = value
            updated = Dashboard.from_dict(merged)
            updated.created_at = existing.created_at
            self._validate_dashboard(updated)
            self._dashboards[dashboard_id] = updated
        logger.info("Dashboard updated: %s", dashboard_id)
        return updated

    def delete(self, dashboard_id: str) -> bool:
        with self._lock:
            removed = self._dashboards.pop(dashboard_id, None) is not None
        if removed:
            logger.info("Dashboard deleted: %s", dashboard_id)
        return removed

    def list(self, user_id: Optional[str] = None) -> list[Dashboard]:
        """All dashboards, or those owned by ``user_id`` plus shared ones."""
        dashboards = list(self._dashboards.values())
        if not user_id:
            return dashboards
        return [d for d in dashboards if d.owner == user_id or d.shared]

    def clear(self) -> None:
        with self._lock:
            self._dashboards.clear()

    def __len__(self) -> int:
        return len(self._dashboards)

    # ------------------------------------------------------------------
    # Widget CRUD
    # ------------------------------------------------------------------

    def add_widget(
        self, dashboard_id: str, widget: Union[Widget, Mapping[str, Any]]
    ) -> Dashboard:
        widget = widget if isinstance(widget, Widget) else Widget.from_dict(widget)
        self._validate_widget(widget)
        with self._lock:
            dashboard = self.require(dashboard_id)
            if dashboard.find_widget(widget.id) is not None:
                raise ConflictError("Widget", widget.id, parent=f'dashboard "{dashboard_id}"')
            dashboard.widgets.append(widget)
        logger.info("Widget %s added to dashboard %s", widget.id, dashboard_id)
        return dashboard

    def remove_widget(self, dashboard_id: str, widget_id: str) -> Dashboard:
        with self._lock:
            dashboard = self.require(dashboard_id)
            widget = self._require_widget(dashboard, widget_id)
            dashboard.widgets.remove(widget)
        logger.info("Widget %s removed from dashboard %s", widget_id, dashboard_id)
        return dashboard

    def update_widget(
        self, dashboard_id: str, widget_id: str, changes: Mapping[str, Any]
    ) -> Dashboard:
        with self._lock:
            dashboard = self.require(dashboard_id)
            widget = self._require_widget(dashboard, widget_id)
            merged = widget.to_dict()
            for key, value in changes.items():
                if key == "id":
                    continue
                if key == "report_id":
                    key = "reportId"
                if hasattr(value, "to_dict"):
                    value = value.to_dict()
                merged[key] = value
            updated = Widget.from_dict(merged)
            self._validate_widget(updated)
            index = dashboard.widgets.index(widget)
            dashboard.widgets[index] = updated
        logger.info("Widget %s updated in dashboard %s", widget_id, dashboard_id)
        return dashboard

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_widget(
        self, dashboard_id: str, widget_id: str, data_source: Any = None
    ) -> AggregationResult:
        dashboard = self.require(dashboard_id)
        widget = self._require_widget(dashboard, widget_id)
        return await self._run_widget(widget, data_source)

    async def execute_dashboard(
        self,
        dashboard_id: str,
        data_source: Any = None,
        isolate_failures: Optional[bool] = None,
    ) -> dict[str, AggregationResult]:
        """Execute every widget concurrently; returns ``{widget_id: result}``."""
        dashboard = self.require(dashboard_id)
        widgets = list(dashboard.widgets)
        isolate = self.isolate_failures if isolate_failures is None else isolate_failures
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run(widget: Widget) -> AggregationResult:
            async with semaphore:
                if not isolate:
                    return await self._run_widget(widget, data_source)
                try:
                    return await self._run_widget(widget, data_source)
                except Exception as exc:
                    logger.warning(
                        "Widget %s on dashboard %s failed: %s",
                        widget.id, dashboard_id, exc,
                    )
                    return AggregationResult.failed(str(exc))

        results = await asyncio.gather(*(run(w) for w in widgets))
        logger.info(
            "Dashboard %s executed (%d widgets)", dashboard_id, len(widgets)
        )
        return {w.id: r for w, r in zip(widgets, results)}

    async def _run_widget(self, widget: Widget, data_source: Any) -> AggregationResult:
        if widget.pipeline is not None:
            return await self.engine.execute(widget.pipeline, data_source)
        report_result = await self.report_manager.execute(
            widget.report_id, None, data_source
        )
        return AggregationResult(data=report_result.data, metadata=report_result.metadata)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _require_widget(dashboard: Dashboard, widget_id: str) -> Widget:
        widget = dashboard.find_widget(widget_id)
        if widget is None:
            raise NotFoundError("Widget", widget_id, parent=f'dashboard "{dashboard.id}"')
        return widget

    def _validate_dashboard(self, dashboard: Dashboard) -> None:
        if not dashboard.id or not isinstance(dashboard.id, str):
            raise ValidationError("Dashboard must have a valid id")
        if not dashboard.name or not isinstance(dashboard.name, str):
            raise ValidationError("Dashboard must have a valid name")
        if dashboard.layout.columns < 1 or dashboard.layout.row_height < 1:
            raise ValidationError("Dashboard layout columns and rowHeight must be positive")
        seen = set()
        for widget in dashboard.widgets:
            self._validate_widget(widget)
            if widget.id in seen:
                raise ValidationError(
                    f'Duplicate widget id "{widget.id}" in dashboard "{dashboard.id}"'
                )
            seen.add(widget.id)

    def _validate_widget(self, widget: Widget) -> None:
        if not widget.id or not isinstance(widget.id, str):
            raise ValidationError("Widget must have a valid id")
        if widget.type not in WIDGET_TYPES:
            raise ValidationError(f'Widget "{widget.id}" has unknown type {widget.type!r}')
        has_pipeline = widget.pipeline is not None
        has_report = bool(widget.report_id)
        if has_pipeline == has_report:
            raise ValidationError(
                f'Widget "{widget.id}" must reference exactly one of pipeline or reportId'
            )
        if has_pipeline:
            self.engine.validate_pipeline(widget.pipeline)
        if widget.size.w < 1 or widget.size.h < 1:
            raise ValidationError(f'Widget "{widget.id}" size must be positive')
