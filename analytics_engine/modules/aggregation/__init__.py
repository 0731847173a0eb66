"""Aggregation pipeline engine."""

from analytics_engine.modules.aggregation.engine import AggregationEngine
from analytics_engine.modules.aggregation.expressions import (
    FieldRef,
    Literal,
    Operator,
    evaluate,
    parse_expression,
)

__all__ = [
    "AggregationEngine",
    "FieldRef",
    "Literal",
    "Operator",
    "evaluate",
    "parse_expression",
]
