"""In-memory aggregation engine.

Validates a pipeline, fetches the target object's records once from the
data collaborator and runs the stages strictly in order over that
snapshot.
"""

import copy
import inspect
import logging
import time
from typing import Any, Mapping, Optional, Union

from analytics_engine.exceptions import ExecutionError, ValidationError
from analytics_engine.models.pipeline import (
    AggregationMetadata,
    AggregationResult,
    Pipeline,
)
from analytics_engine.modules.aggregation.stages import StageFn, compile_stage

logger = logging.getLogger(__name__)

PipelineLike = Union[Pipeline, Mapping[str, Any]]


class AggregationEngine:
    """Executes aggregation pipelines against records from a data source.

    Usage::

        engine = AggregationEngine(max_stages=20)
        result = await engine.execute(
            {"objectName": "employee", "stages": [
                {"type": "match", "body": {"status": "active"}},
                {"type": "count", "body": {"as": "total"}},
            ]},
            data_source,
        )
    """

    def __init__(self, max_stages: Optional[int] = None) -> None:
        self.max_stages = max_stages
        logger.info("AggregationEngine initialised (max_stages=%s)", max_stages)

    def validate_pipeline(
        self, pipeline: PipelineLike, max_stages: Optional[int] = None
    ) -> Pipeline:
        """Check pipeline shape and return it as a ``Pipeline``.

        Raises:
            ValidationError: empty objectName, no stages, unknown stage
                type, missing body, or more stages than the ceiling.
        """
        pipeline = Pipeline.from_dict(pipeline)
        ceiling = max_stages if max_stages is not None else self.max_stages

        if not pipeline.object_name or not isinstance(pipeline.object_name, str):
            raise ValidationError("Pipeline must specify a valid objectName")
        if not pipeline.stages:
            raise ValidationError("Pipeline must have at least one stage")
        if ceiling is not None and len(pipeline.stages) > ceiling:
            raise ValidationError(f"Pipeline exceeds maximum of {ceiling} stages")
        return pipeline

    def compile(self, pipeline: PipelineLike) -> list[StageFn]:
        """Validate the pipeline and every stage body; return the transformers."""
        pipeline = self.validate_pipeline(pipeline)
        return [compile_stage(stage, i) for i, stage in enumerate(pipeline.stages)]

    def run_stages(
        self, pipeline: PipelineLike, records: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Apply a pipeline to an already materialised record list."""
        data = list(records)
        for fn in self.compile(pipeline):
            data = fn(data)
        return data

    async def execute(self, pipeline: PipelineLike, data_source: Any) -> AggregationResult:
        """Run a pipeline against ``data_source.fetch_records(objectName)``.

        The fetch may be sync or async. Raises ``ValidationError`` before
        any I/O when the pipeline is malformed and ``ExecutionError`` when
        the fetch fails.
        """
        started = time.perf_counter()
        pipeline = self.validate_pipeline(pipeline)
        stage_fns = [compile_stage(s, i) for i, s in enumerate(pipeline.stages)]

        data = await self._fetch(pipeline.object_name, data_source)
        records_processed = len(data)

        for index, fn in enumerate(stage_fns):
            data = fn(data)
            logger.debug(
                "[%s] stage %d/%d %s -> %d records",
                pipeline.object_name, index + 1, len(stage_fns),
                pipeline.stages[index].type.value, len(data),
            )

        elapsed_ms = round((time.perf_counter() - started) * 1000, 3)
        return AggregationResult(
            data=data,
            metadata=AggregationMetadata(
                execution_time_ms=elapsed_ms,
                records_processed=records_processed,
                stages_executed=len(stage_fns),
            ),
        )

    @staticmethod
    async def _fetch(object_name: str, data_source: Any) -> list[dict[str, Any]]:
        if data_source is None:
            raise ExecutionError("No data source provided")
        try:
            result = data_source.fetch_records(object_name)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise ExecutionError(
                f'Failed to fetch records for "{object_name}": {exc}'
            ) from exc

        if isinstance(result, Mapping) and "data" in result:
            result = result["data"]
        if result is None:
            return []
        if not isinstance(result, (list, tuple)):
            raise ExecutionError(
                f'Data source returned {type(result).__name__} for "{object_name}", '
                "expected a sequence of records"
            )
        for record in result:
            if not isinstance(record, Mapping):
                raise ExecutionError(
                    f'Data source returned a non-mapping record for "{object_name}"'
                )
        # stages work on private copies; the collaborator is never written back
        return [copy.deepcopy(dict(r)) for r in result]
