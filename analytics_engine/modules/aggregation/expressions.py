"""Field paths and the small expression language used by ``addFields``.

An expression is one of three shapes:

* ``Literal(value)`` - any plain value,
* ``FieldRef(path)`` - written ``"$field"`` or ``"$nested.field"``,
* ``Operator(name, operands)`` - a one-key mapping such as
  ``{"$multiply": ["$price", 1.2]}`` whose operands are expressions.

Expressions are parsed once per stage and evaluated against the record
entering that stage.
"""

import copy
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Union

from analytics_engine.exceptions import ValidationError

ABSENT = object()


def get_path(record: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Resolve a dot-notation path inside nested mappings."""
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def has_path(record: Mapping[str, Any], path: str) -> bool:
    return get_path(record, path, ABSENT) is not ABSENT


def field_name(ref: Any) -> str:
    """Accept both ``"salary"`` and ``"$salary"`` as a field reference."""
    if not isinstance(ref, str) or not ref:
        raise ValidationError(f"Field reference must be a non-empty string, got {ref!r}")
    return ref[1:] if ref.startswith("$") else ref


def to_number(value: Any) -> Union[int, float]:
    """Coerce a value for arithmetic; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value) if value.strip() else 0
        except ValueError:
            return 0
    return 0


def sort_key(value: Any) -> tuple:
    """Total ordering across mixed types: None < numbers < strings < other."""
    if value is None:
        return (0, 0)
    if isinstance(value, (bool, int, float)):
        return (1, value)
    if isinstance(value, str):
        return (2, value)
    return (3, repr(value))


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class FieldRef:
    path: str


@dataclass(frozen=True)
class Operator:
    name: str
    operands: tuple


Expression = Union[Literal, FieldRef, Operator]


def _add(values: list) -> Any:
    return sum((to_number(v) for v in values), 0)


def _subtract(values: list) -> Any:
    return to_number(values[0]) - to_number(values[1])


def _multiply(values: list) -> Any:
    product: Union[int, float] = 1
    for v in values:
        product *= to_number(v)
    return product


def _divide(values: list) -> Any:
    divisor = to_number(values[1])
    if divisor == 0:
        return None
    return to_number(values[0]) / divisor


def _mod(values: list) -> Any:
    divisor = to_number(values[1])
    if divisor == 0:
        return None
    return to_number(values[0]) % divisor


def _concat(values: list) -> str:
    return "".join("" if v is None else str(v) for v in values)


def _if_null(values: list) -> Any:
    for v in values:
        if v is not None:
            return v
    return None


# name -> (implementation, exact operand count or None for variadic)
OPERATORS: dict[str, tuple[Callable[[list], Any], Any]] = {
    "$add": (_add, None),
    "$subtract": (_subtract, 2),
    "$multiply": (_multiply, None),
    "$divide": (_divide, 2),
    "$mod": (_mod, 2),
    "$concat": (_concat, None),
    "$ifNull": (_if_null, None),
}


def parse_expression(raw: Any) -> Expression:
    """Turn a raw ``addFields`` value into an expression tree."""
    if isinstance(raw, str) and raw.startswith("$") and len(raw) > 1:
        return FieldRef(raw[1:])
    if isinstance(raw, Mapping) and len(raw) == 1:
        name, args = next(iter(raw.items()))
        if isinstance(name, str) and name.startswith("$"):
            if name not in OPERATORS:
                raise ValidationError(f'Unknown expression operator "{name}"')
            operands = args if isinstance(args, (list, tuple)) else [args]
            arity = OPERATORS[name][1]
            if arity is not None and len(operands) != arity:
                raise ValidationError(
                    f'Operator "{name}" expects {arity} operands, got {len(operands)}'
                )
            return Operator(name, tuple(parse_expression(o) for o in operands))
    return Literal(raw)


def evaluate(expr: Expression, record: Mapping[str, Any]) -> Any:
    """Evaluate an expression against one record."""
    if isinstance(expr, Literal):
        if isinstance(expr.value, (dict, list)):
            return copy.deepcopy(expr.value)
        return expr.value
    if isinstance(expr, FieldRef):
        return get_path(record, expr.path)
    func = OPERATORS[expr.name][0]
    return func([evaluate(o, record) for o in expr.operands])
