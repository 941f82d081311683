"""
Filter specs shared by every table backend.

A filter spec is a mapping of field path to condition, combined with AND:

    {"status": "open"}                                   equality
    {"status": ["open", "closed"]}                       membership
    {"metadata.department": "works"}                     dotted path into nested maps
    {"createdAt": {"gte": "2025-01-01", "lt": "2025-02-01"}}
    {"metadata.tags": {"contains": "urgent"}}
    {"deletedAt": {"exists": False}}
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable

from boto3.dynamodb.conditions import Attr, ConditionBase

from ..errors import ValidationError

_MISSING = object()

OPERATORS = frozenset(
    {"eq", "ne", "gt", "gte", "lt", "lte", "between", "in", "contains", "exists", "begins_with"}
)


def get_path(doc: Mapping[str, Any] | None, path: str) -> Any:
    cur: Any = doc
    for part in str(path or "").split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            return _MISSING
        cur = cur[part]
    return cur


def is_missing(value: Any) -> bool:
    return value is _MISSING


def normalize_filters(filters: Mapping[str, Any] | None) -> list[tuple[str, str, Any]]:
    out: list[tuple[str, str, Any]] = []
    for path, cond in (filters or {}).items():
        p = str(path or "").strip()
        if not p:
            raise ValidationError(message="Filter field path must be non-empty")
        if isinstance(cond, Mapping):
            if not cond:
                raise ValidationError(message=f"Empty condition for filter field '{p}'")
            for op, operand in cond.items():
                if op not in OPERATORS:
                    raise ValidationError(
                        message=f"Unsupported filter operator '{op}' on '{p}'",
                        details={"supported": sorted(OPERATORS)},
                    )
                if op == "between" and (not isinstance(operand, (list, tuple)) or len(operand) != 2):
                    raise ValidationError(message=f"'between' on '{p}' needs a [low, high] pair")
                if op == "in" and not isinstance(operand, (list, tuple, set, frozenset)):
                    raise ValidationError(message=f"'in' on '{p}' needs a list of values")
                out.append((p, op, operand))
        elif isinstance(cond, (list, tuple, set, frozenset)):
            out.append((p, "in", list(cond)))
        else:
            out.append((p, "eq", cond))
    return out


def _compare(value: Any, op: str, operand: Any) -> bool:
    if op == "exists":
        return (not is_missing(value)) == bool(operand)
    if op == "ne":
        return is_missing(value) or value != operand
    if is_missing(value):
        return False
    try:
        if op == "eq":
            return value == operand
        if op == "in":
            return value in list(operand)
        if op == "gt":
            return value > operand
        if op == "gte":
            return value >= operand
        if op == "lt":
            return value < operand
        if op == "lte":
            return value <= operand
        if op == "between":
            lo, hi = operand
            return lo <= value <= hi
        if op == "contains":
            if isinstance(value, str):
                return str(operand) in value
            if isinstance(value, (list, tuple, set, frozenset)):
                return operand in value
            return False
        if op == "begins_with":
            return isinstance(value, str) and value.startswith(str(operand))
    except TypeError:
        # Mixed types never match (DynamoDB behaves the same way).
        return False
    return False


def matches(doc: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    for path, op, operand in normalize_filters(filters):
        if not _compare(get_path(doc, path), op, operand):
            return False
    return True


def to_condition(
    filters: Mapping[str, Any] | None,
    *,
    convert: Callable[[Any], Any] = lambda v: v,
) -> ConditionBase | None:
    """Translate a filter spec into a boto3 condition (AND of all predicates)."""
    cond: ConditionBase | None = None
    for path, op, operand in normalize_filters(filters):
        a = Attr(path)
        if op == "eq":
            c = a.eq(convert(operand))
        elif op == "ne":
            c = a.ne(convert(operand))
        elif op == "gt":
            c = a.gt(convert(operand))
        elif op == "gte":
            c = a.gte(convert(operand))
        elif op == "lt":
            c = a.lt(convert(operand))
        elif op == "lte":
            c = a.lte(convert(operand))
        elif op == "between":
            lo, hi = operand
            c = a.between(convert(lo), convert(hi))
        elif op == "in":
            c = a.is_in([convert(v) for v in operand])
        elif op == "contains":
            c = a.contains(convert(operand))
        elif op == "begins_with":
            c = a.begins_with(str(operand))
        else:  # exists
            c = a.exists() if bool(operand) else a.not_exists()
        cond = c if cond is None else cond & c
    return cond
