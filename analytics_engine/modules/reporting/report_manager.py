"""Report definitions: CRUD, parameter interpolation and execution."""

from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Any, Mapping, Optional, Union

from analytics_engine.exceptions import (
    ConflictError,
    MissingParameterError,
    NotFoundError,
    ValidationError,
)
from analytics_engine.models.pipeline import Pipeline, Stage
from analytics_engine.models.report import (
    PARAMETER_TYPES,
    REPORT_FORMATS,
    Report,
    ReportParameter,
    ReportResult,
)
from analytics_engine.modules.aggregation.engine import AggregationEngine
from analytics_engine.utils.timeutils import isoformat, utcnow

logger = logging.getLogger(__name__)

PARAM_PREFIX = "$param."
_IMMUTABLE_FIELDS = ("id", "created_at")


def interpolate(value: Any, params: Mapping[str, Any]) -> Any:
    """Replace ``$param.<name>`` tokens anywhere inside ``value``.

    A string that is exactly one token becomes the parameter value itself
    (type preserved); a token embedded in a longer string is substituted
    textually. Unknown names are left untouched.
    """
    if isinstance(value, str):
        if value.startswith(PARAM_PREFIX):
            name = value[len(PARAM_PREFIX):]
            if name in params:
                return params[name]
        if PARAM_PREFIX in value:
            # longest names first so $param.status does not eat $param.status_code
            for name in sorted(params, key=len, reverse=True):
                value = value.replace(PARAM_PREFIX + name, str(params[name]))
        return value
    if isinstance(value, Mapping):
        return {k: interpolate(v, params) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [interpolate(v, params) for v in value]
    return value


class ReportManager:
    """In-memory registry of report definitions keyed by id.

    Mutations are serialized by a lock; reads take a snapshot.
    """

    def __init__(self, engine: AggregationEngine) -> None:
        self.engine = engine
        self._reports: dict[str, Report] = {}
        self._lock = threading.RLock()
        logger.info("ReportManager initialised")

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, definition: Union[Report, Mapping[str, Any]]) -> Report:
        report = definition if isinstance(definition, Report) else Report.from_dict(definition)
        self.validate_definition(report)
        with self._lock:
            if report.id in self._reports:
                raise ConflictError("Report", report.id)
            self._reports[report.id] = report
        logger.info("Report created: %s (%s)", report.id, report.object_name)
        return report

    def get(self, report_id: str) -> Optional[Report]:
        return self._reports.get(report_id)

    def require(self, report_id: str) -> Report:
        report = self._reports.get(report_id)
        if report is None:
            raise NotFoundError("Report", report_id)
        return report

    def update(self, report_id: str, changes: Mapping[str, Any]) -> Report:
        """Merge ``changes`` (dict keys or dataclass field names) into a report.

        ``id`` and ``createdAt`` are immutable and silently kept.
        """
        with self._lock:
            existing = self.require(report_id)
            merged = existing.to_dict()
            merged.update(_camel_keys(changes))
            merged["id"] = existing.id
            merged["createdAt"] = existing.created_at
            updated = Report.from_dict(merged)
            self.validate_definition(updated)
            self._reports[report_id] = updated
        logger.info("Report updated: %s", report_id)
        return updated

    def delete(self, report_id: str) -> bool:
        with self._lock:
            removed = self._reports.pop(report_id, None) is not None
        if removed:
            logger.info("Report deleted: %s", report_id)
        return removed

    def list(
        self,
        object_name: Optional[str] = None,
        created_by: Optional[str] = None,
        format: Optional[str] = None,
    ) -> list[Report]:
        results = list(self._reports.values())
        if object_name:
            results = [r for r in results if r.object_name == object_name]
        if created_by:
            results = [r for r in results if r.created_by == created_by]
        if format:
            results = [r for r in results if r.format == format]
        return results

    def clear(self) -> None:
        with self._lock:
            self._reports.clear()

    def __len__(self) -> int:
        return len(self._reports)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        report_id: str,
        params: Optional[Mapping[str, Any]] = None,
        data_source: Any = None,
    ) -> ReportResult:
        """Interpolate parameters into the report's stages and run them."""
        report = self.require(report_id)
        resolved = self.resolve_parameters(report, params)
        pipeline = self.build_pipeline(report, resolved)

        result = await self.engine.execute(pipeline, data_source)
        logger.info(
            "Report %s executed: %d rows in %.1fms",
            report.id, len(result.data), result.metadata.execution_time_ms,
        )
        return ReportResult(
            report_id=report.id,
            report_name=report.name,
            data=result.data,
            executed_at=isoformat(utcnow()),
            metadata=result.metadata,
            parameters=resolved,
        )

    def build_pipeline(self, report: Report, params: Mapping[str, Any]) -> Pipeline:
        stages = tuple(
            Stage.from_dict(interpolate(stage.to_dict(), params), i)
            for i, stage in enumerate(report.stages)
        )
        return Pipeline(object_name=report.object_name, stages=stages)

    @staticmethod
    def resolve_parameters(
        report: Report, provided: Optional[Mapping[str, Any]] = None
    ) -> dict[str, Any]:
        """Resolve each declared parameter: provided value, then default.

        Undeclared provided values are passed through unchanged.

        Raises:
            MissingParameterError: a required parameter has no value.
        """
        provided = dict(provided or {})
        resolved: dict[str, Any] = {}
        for param in report.parameters:
            if param.name in provided:
                resolved[param.name] = provided.pop(param.name)
            elif param.has_default:
                resolved[param.name] = param.default_value
            elif param.required:
                raise MissingParameterError(param.name, report.id)
        resolved.update(provided)
        return resolved

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_definition(self, report: Report) -> None:
        for attr, label in (
            ("id", "id"),
            ("name", "name"),
            ("object_name", "objectName"),
            ("created_by", "createdBy"),
        ):
            value = getattr(report, attr)
            if not value or not isinstance(value, str):
                raise ValidationError(f"Report must have a valid {label}")
        if report.format not in REPORT_FORMATS:
            raise ValidationError(
                f"Report format must be one of {', '.join(REPORT_FORMATS)}; "
                f"got {report.format!r}"
            )
        if not report.stages:
            raise ValidationError("Report must have at least one pipeline stage")
        self.engine.validate_pipeline(
            Pipeline(object_name=report.object_name, stages=report.stages)
        )
        seen = set()
        for param in report.parameters:
            if not param.name:
                raise ValidationError("Report parameter must have a name")
            if param.name in seen:
                raise ValidationError(f'Duplicate report parameter "{param.name}"')
            if param.type not in PARAMETER_TYPES:
                raise ValidationError(
                    f'Report parameter "{param.name}" has unknown type {param.type!r}'
                )
            seen.add(param.name)


def _camel_keys(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Accept dataclass-style snake_case keys alongside camelCase ones."""
    out = {}
    for key, value in changes.items():
        if key in _IMMUTABLE_FIELDS or key == "createdAt":
            continue
        if "_" in key:
            head, *rest = key.split("_")
            key = head + "".join(part.title() for part in rest)
        if isinstance(value, (list, tuple)):
            value = [
                v.to_dict() if dataclasses.is_dataclass(v) else v for v in value
            ]
        out[key] = value
    return out
