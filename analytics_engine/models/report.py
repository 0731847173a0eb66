"""Report definitions, parameters and execution results."""

from dataclasses import dataclass, field
from typing import Any, Optional

from analytics_engine.models.pipeline import AggregationMetadata, Stage
from analytics_engine.utils.timeutils import isoformat, utcnow

REPORT_FORMATS = ("table", "chart", "json")
PARAMETER_TYPES = ("string", "number", "boolean", "date")


@dataclass(frozen=True)
class ReportParameter:
    """A named value substituted into ``$param.<name>`` tokens."""

    name: str
    type: str = "string"
    required: bool = False
    default_value: Any = None
    label: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return self.default_value is not None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ReportParameter":
        if isinstance(raw, ReportParameter):
            return raw
        return cls(
            name=raw.get("name", ""),
            type=raw.get("type", "string"),
            required=bool(raw.get("required", False)),
            default_value=raw.get("defaultValue", raw.get("default_value")),
            label=raw.get("label"),
        )

    def to_dict(self) -> dict[str, Any]:
        out = {"name": self.name, "type": self.type, "required": self.required}
        if self.default_value is not None:
            out["defaultValue"] = self.default_value
        if self.label:
            out["label"] = self.label
        return out


@dataclass
class Report:
    """A named, reusable pipeline definition."""

    id: str
    name: str
    object_name: str
    stages: tuple[Stage, ...]
    created_by: str
    format: str = "table"
    description: Optional[str] = None
    parameters: tuple[ReportParameter, ...] = ()
    created_at: str = field(default_factory=lambda: isoformat(utcnow()))

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Report":
        created_at = raw.get("createdAt") or raw.get("created_at")
        report = cls(
            id=raw.get("id", ""),
            name=raw.get("name", ""),
            object_name=raw.get("objectName", raw.get("object_name", "")),
            stages=tuple(
                Stage.from_dict(s, i) for i, s in enumerate(raw.get("stages") or [])
            ),
            created_by=raw.get("createdBy", raw.get("created_by", "")),
            format=raw.get("format", "table"),
            description=raw.get("description"),
            parameters=tuple(
                ReportParameter.from_dict(p) for p in raw.get("parameters") or []
            ),
        )
        if created_at:
            report.created_at = created_at
        return report

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "objectName": self.object_name,
            "stages": [s.to_dict() for s in self.stages],
            "format": self.format,
            "createdBy": self.created_by,
            "createdAt": self.created_at,
        }
        if self.description is not None:
            out["description"] = self.description
        if self.parameters:
            out["parameters"] = [p.to_dict() for p in self.parameters]
        return out


@dataclass
class ReportResult:
    """Output of ``ReportManager.execute``."""

    report_id: str
    report_name: str
    data: list[dict[str, Any]]
    executed_at: str
    metadata: AggregationMetadata = field(default_factory=AggregationMetadata)
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reportId": self.report_id,
            "reportName": self.report_name,
            "data": self.data,
            "executedAt": self.executed_at,
            "metadata": self.metadata.to_dict(),
            "parameters": self.parameters,
        }
