"""Pipeline value types: stages, pipelines and aggregation results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from analytics_engine.exceptions import ValidationError


class StageType(str, Enum):
    """The closed set of stage kinds a pipeline may contain."""

    MATCH = "match"
    GROUP = "group"
    SORT = "sort"
    LIMIT = "limit"
    SKIP = "skip"
    PROJECT = "project"
    ADD_FIELDS = "addFields"
    COUNT = "count"

    @classmethod
    def parse(cls, value: Any, index: int) -> "StageType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f'Invalid stage type "{value}" at index {index}'
            ) from None


@dataclass(frozen=True)
class Stage:
    """One transformation step: a type tag plus a type-specific body."""

    type: StageType
    body: Mapping[str, Any]

    @classmethod
    def from_dict(cls, raw: Any, index: int = 0) -> "Stage":
        if isinstance(raw, Stage):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError(f"Stage at index {index} must be an object")
        stage_type = StageType.parse(raw.get("type"), index)
        body = raw.get("body")
        if not isinstance(body, Mapping):
            raise ValidationError(f"Stage at index {index} must have a body object")
        return cls(type=stage_type, body=dict(body))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "body": dict(self.body)}


@dataclass(frozen=True)
class Pipeline:
    """An ordered sequence of stages applied to one object's records."""

    object_name: str
    stages: tuple[Stage, ...] = ()

    @classmethod
    def from_dict(cls, raw: Any) -> "Pipeline":
        if isinstance(raw, Pipeline):
            return raw
        if not isinstance(raw, Mapping):
            raise ValidationError("Pipeline must be an object")
        stages = raw.get("stages")
        if not isinstance(stages, (list, tuple)):
            raise ValidationError("Pipeline must have at least one stage")
        return cls(
            object_name=raw.get("objectName", raw.get("object_name", "")),
            stages=tuple(Stage.from_dict(s, i) for i, s in enumerate(stages)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "objectName": self.object_name,
            "stages": [s.to_dict() for s in self.stages],
        }


@dataclass
class AggregationMetadata:
    """Execution statistics for one pipeline run."""

    execution_time_ms: float = 0.0
    records_processed: int = 0
    stages_executed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "executionTimeMs": self.execution_time_ms,
            "recordsProcessed": self.records_processed,
            "stagesExecuted": self.stages_executed,
        }


@dataclass
class AggregationResult:
    """Records produced by a pipeline run, plus its metadata.

    ``error`` is only set when a dashboard isolates a failing widget.
    """

    data: list[dict[str, Any]] = field(default_factory=list)
    metadata: AggregationMetadata = field(default_factory=AggregationMetadata)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "AggregationResult":
        return cls(error=error)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "data": self.data,
            "metadata": self.metadata.to_dict(),
        }
        if self.error is not None:
            out["error"] = self.error
        return out
