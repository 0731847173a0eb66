"""Stage interpreter: compiles each stage body into a record transformer.

Compilation validates the body for its stage kind, so a malformed body
fails before any data is fetched. Every compiled stage maps a list of
records to a new list of records and never mutates its input.
"""

import logging
import operator
from typing import Any, Callable, Mapping

from analytics_engine.exceptions import ValidationError
from analytics_engine.models.pipeline import Stage, StageType
from analytics_engine.modules.aggregation.expressions import (
    evaluate,
    field_name,
    get_path,
    has_path,
    parse_expression,
    sort_key,
    to_number,
)

logger = logging.getLogger(__name__)

Records = list[dict[str, Any]]
StageFn = Callable[[Records], Records]


# ---------------------------------------------------------------------------
# match
# ---------------------------------------------------------------------------

def _ordered(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, arg: Any) -> bool:
        if value is None or arg is None:
            return False
        try:
            return bool(op(value, arg))
        except TypeError:
            return False
    return check


def _member(value: Any, options: Any) -> bool:
    return any(value == option for option in options)


COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$gt": _ordered(operator.gt),
    "$gte": _ordered(operator.ge),
    "$lt": _ordered(operator.lt),
    "$lte": _ordered(operator.le),
    "$ne": lambda value, arg: value != arg,
    "$in": _member,
    "$nin": lambda value, arg: not _member(value, arg),
}


def _compile_condition(field: str, expected: Any) -> Callable[[Mapping], bool]:
    if isinstance(expected, Mapping) and expected:
        dollar_keys = [k for k in expected if isinstance(k, str) and k.startswith("$")]
        if dollar_keys and len(dollar_keys) != len(expected):
            raise ValidationError(
                f'match condition for "{field}" mixes operators and plain keys'
            )
        if dollar_keys:
            checks = []
            for op_name, arg in expected.items():
                if op_name not in COMPARATORS:
                    raise ValidationError(
                        f'Unknown match operator "{op_name}" for field "{field}"'
                    )
                if op_name in ("$in", "$nin") and not isinstance(arg, (list, tuple)):
                    raise ValidationError(
                        f'{op_name} for field "{field}" requires a list'
                    )
                checks.append((COMPARATORS[op_name], arg))

            def operator_match(record: Mapping) -> bool:
                value = get_path(record, field)
                return all(check(value, arg) for check, arg in checks)
            return operator_match

    def equals(record: Mapping) -> bool:
        return get_path(record, field) == expected
    return equals


def _compile_match(body: Mapping[str, Any]) -> StageFn:
    conditions = [_compile_condition(f, v) for f, v in body.items()]

    def run(records: Records) -> Records:
        return [r for r in records if all(cond(r) for cond in conditions)]
    return run


# ---------------------------------------------------------------------------
# group
# ---------------------------------------------------------------------------

def _acc_sum(records: Records, arg: Any) -> Any:
    if isinstance(arg, (int, float)) and not isinstance(arg, bool):
        return len(records) * arg
    path = field_name(arg)
    return sum((to_number(get_path(r, path)) for r in records), 0)


def _present(records: Records, arg: Any) -> list:
    path = field_name(arg)
    return [v for v in (get_path(r, path) for r in records) if v is not None]


def _acc_avg(records: Records, arg: Any) -> Any:
    values = [to_number(v) for v in _present(records, arg)]
    if not values:
        return None
    return sum(values) / len(values)


def _acc_min(records: Records, arg: Any) -> Any:
    values = _present(records, arg)
    return min(values, key=sort_key) if values else None


def _acc_max(records: Records, arg: Any) -> Any:
    values = _present(records, arg)
    return max(values, key=sort_key) if values else None


def _acc_count(records: Records, arg: Any) -> int:
    return len(records)


ACCUMULATORS: dict[str, Callable[[Records, Any], Any]] = {
    "$sum": _acc_sum,
    "$avg": _acc_avg,
    "$min": _acc_min,
    "$max": _acc_max,
    "$count": _acc_count,
}


def _group_key(value: Any) -> Any:
    try:
        hash(value)
        return (type(value).__name__, value) if isinstance(value, bool) else value
    except TypeError:
        return ("__unhashable__", repr(value))


def _compile_group(body: Mapping[str, Any]) -> StageFn:
    if "_id" not in body:
        raise ValidationError('group stage requires an "_id" key')
    group_by = body["_id"]
    group_path = None if group_by is None else field_name(group_by)

    accumulators = []
    for alias, operation in body.items():
        if alias == "_id":
            continue
        if not isinstance(operation, Mapping) or len(operation) != 1:
            raise ValidationError(
                f'group field "{alias}" must be a single-operator object'
            )
        op_name, arg = next(iter(operation.items()))
        if op_name not in ACCUMULATORS:
            raise ValidationError(f'Unknown group operator "{op_name}" for "{alias}"')
        if op_name in ("$avg", "$min", "$max"):
            field_name(arg)
        elif op_name == "$sum" and (
            isinstance(arg, bool) or not isinstance(arg, (int, float))
        ):
            field_name(arg)
        accumulators.append((alias, ACCUMULATORS[op_name], arg))

    def run(records: Records) -> Records:
        groups: dict[Any, tuple[Any, Records]] = {}
        for record in records:
            value = None if group_path is None else get_path(record, group_path)
            key = _group_key(value)
            if key not in groups:
                groups[key] = (value, [])
            groups[key][1].append(record)

        results = []
        for value, members in groups.values():
            row: dict[str, Any] = {"_id": value}
            for alias, func, arg in accumulators:
                row[alias] = func(members, arg)
            results.append(row)
        return results
    return run


# ---------------------------------------------------------------------------
# sort / limit / skip
# ---------------------------------------------------------------------------

def _compile_sort(body: Mapping[str, Any]) -> StageFn:
    if not body:
        raise ValidationError("sort stage requires at least one field")
    keys = []
    for path, direction in body.items():
        if direction not in (1, -1) or isinstance(direction, bool):
            raise ValidationError(
                f'sort direction for "{path}" must be 1 or -1, got {direction!r}'
            )
        keys.append((path, direction))

    def run(records: Records) -> Records:
        result = list(records)
        # least significant key first; list.sort is stable, reverse included
        for path, direction in reversed(keys):
            result.sort(
                key=lambda r, p=path: sort_key(get_path(r, p)),
                reverse=direction == -1,
            )
        return result
    return run


def _count_arg(body: Mapping[str, Any], legacy_key: str) -> int:
    n = body.get("n", body.get(legacy_key))
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ValidationError(
            f"{legacy_key} stage requires a non-negative integer n, got {n!r}"
        )
    return n


def _compile_limit(body: Mapping[str, Any]) -> StageFn:
    n = _count_arg(body, "limit")
    return lambda records: list(records[:n])


def _compile_skip(body: Mapping[str, Any]) -> StageFn:
    n = _count_arg(body, "skip")
    return lambda records: list(records[n:])


# ---------------------------------------------------------------------------
# project
# ---------------------------------------------------------------------------

def _without(record: Mapping[str, Any], path: str) -> dict[str, Any]:
    head, _, rest = path.partition(".")
    row = dict(record)
    if head not in row:
        return row
    if rest:
        if isinstance(row[head], Mapping):
            row[head] = _without(row[head], rest)
    else:
        del row[head]
    return row


def _compile_project(body: Mapping[str, Any]) -> StageFn:
    if not body:
        raise ValidationError("project stage requires at least one field")
    includes: list[tuple[str, str]] = []
    excludes: list[str] = []
    for path, flag in body.items():
        if isinstance(flag, str) and flag:
            includes.append((path, flag))
        elif flag in (1, True) and not isinstance(flag, float):
            includes.append((path, path))
        elif flag in (0, False) and not isinstance(flag, float):
            excludes.append(path)
        else:
            raise ValidationError(
                f'project value for "{path}" must be 1, 0 or a new field name'
            )
    if includes and excludes:
        raise ValidationError(
            "project stage cannot mix inclusion (1) and exclusion (0) fields"
        )

    if includes:
        def run(records: Records) -> Records:
            out = []
            for record in records:
                row: dict[str, Any] = {}
                for path, alias in includes:
                    if has_path(record, path):
                        row[alias] = get_path(record, path)
                out.append(row)
            return out
        return run

    def run_exclude(records: Records) -> Records:
        out = []
        for record in records:
            row = dict(record)
            for path in excludes:
                row = _without(row, path)
            out.append(row)
        return out
    return run_exclude


# ---------------------------------------------------------------------------
# addFields / count
# ---------------------------------------------------------------------------

def _compile_add_fields(body: Mapping[str, Any]) -> StageFn:
    if not body:
        raise ValidationError("addFields stage requires at least one field")
    fields = [(name, parse_expression(raw)) for name, raw in body.items()]

    def run(records: Records) -> Records:
        out = []
        for record in records:
            row = dict(record)
            for name, expr in fields:
                # operands always see the record as it entered the stage
                row[name] = evaluate(expr, record)
            out.append(row)
        return out
    return run


def _compile_count(body: Mapping[str, Any]) -> StageFn:
    alias = body.get("as", "count")
    if not isinstance(alias, str) or not alias:
        raise ValidationError('count stage "as" must be a non-empty string')
    return lambda records: [{alias: len(records)}]


COMPILERS: dict[StageType, Callable[[Mapping[str, Any]], StageFn]] = {
    StageType.MATCH: _compile_match,
    StageType.GROUP: _compile_group,
    StageType.SORT: _compile_sort,
    StageType.LIMIT: _compile_limit,
    StageType.SKIP: _compile_skip,
    StageType.PROJECT: _compile_project,
    StageType.ADD_FIELDS: _compile_add_fields,
    StageType.COUNT: _compile_count,
}


def compile_stage(stage: Stage, index: int = 0) -> StageFn:
    """Validate a stage body and return its record transformer."""
    try:
        return COMPILERS[stage.type](stage.body)
    except ValidationError as exc:
        raise ValidationError(
            f"Stage {index} ({stage.type.value}): {exc}"
        ) from exc
