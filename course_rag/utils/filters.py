"""Payload filter evaluation shared by in-process stores and post-filtering.

Filters use a small Mongo-like syntax: plain values mean equality,
``{"$gte": x}``/``{"$lte": x}``/``{"$gt": x}``/``{"$lt": x}`` are numeric
ranges, ``{"$in": [...]}``/``{"$nin": [...]}`` test membership and
``$eq``/``$ne`` compare directly.  All keys must match.
"""

from __future__ import annotations

from typing import Any

from course_rag.config.constants import PAYLOAD_COURSE_ID, PAYLOAD_LANGUAGE, PAYLOAD_QUALITY
from course_rag.utils.errors import ValidationError

_RANGE_OPS = {
    "$gte": lambda v, x: v >= x,
    "$lte": lambda v, x: v <= x,
    "$gt": lambda v, x: v > x,
    "$lt": lambda v, x: v < x,
}
_MEMBERSHIP_OPS = frozenset({"$in", "$nin"})
_SUPPORTED_OPS = frozenset(_RANGE_OPS) | _MEMBERSHIP_OPS | {"$eq", "$ne"}


def build_filters(
    *,
    min_quality: float | None = None,
    language: str | None = None,
    course_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble a filter dict from retrieval options."""
    filters: dict[str, Any] = dict(extra or {})
    if min_quality is not None:
        filters[PAYLOAD_QUALITY] = {"$gte": float(min_quality)}
    if language:
        filters[PAYLOAD_LANGUAGE] = language
    if course_id:
        filters[PAYLOAD_COURSE_ID] = course_id
    validate_filters(filters)
    return filters


def validate_filters(filters: dict[str, Any] | None) -> None:
    """Raise :class:`ValidationError` for operators the stores cannot evaluate."""
    for key, condition in (filters or {}).items():
        if isinstance(condition, dict):
            unknown = set(condition) - _SUPPORTED_OPS
            if unknown:
                raise ValidationError(
                    message=f"Unsupported filter operator(s) for {key!r}: {sorted(unknown)}"
                )
            for op in _MEMBERSHIP_OPS.intersection(condition):
                if not isinstance(condition[op], (list, tuple, set, frozenset)):
                    raise ValidationError(
                        message=f"Filter operator {op} for {key!r} needs a list, "
                        f"got {type(condition[op]).__name__}"
                    )


def matches_filters(payload: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Return ``True`` if *payload* satisfies every condition in *filters*."""
    if not filters:
        return True
    for key, condition in filters.items():
        value = payload.get(key)
        if isinstance(condition, dict):
            if not _matches_operators(value, condition):
                return False
        elif value != condition:
            return False
    return True


def _matches_operators(value: Any, condition: dict[str, Any]) -> bool:
    for op, operand in condition.items():
        if op == "$in":
            if value not in operand:
                return False
        elif op == "$nin":
            if value in operand:
                return False
        elif op == "$eq":
            if value != operand:
                return False
        elif op == "$ne":
            if value == operand:
                return False
        else:
            if value is None:
                return False
            try:
                if not _RANGE_OPS[op](value, operand):
                    return False
            except TypeError:
                return False
    return True
