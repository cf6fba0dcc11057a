"""Helpers for paginated, searchable listings."""

from __future__ import annotations

from universo.constants import MAX_OFFSET, SortOrder

LIKE_ESCAPE_CHAR = "\\"


def parse_int_safe(value: object, default: int, minimum: int, maximum: int) -> int:
    """Parse ``value`` as an int clamped to ``[minimum, maximum]``.

    Anything that does not parse as an integer yields ``default``.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return default
    return max(minimum, min(maximum, parsed))


def clamp_offset(value: object) -> int:
    return parse_int_safe(value, 0, 0, MAX_OFFSET)


def parse_sort_order(value: object) -> SortOrder:
    """``asc`` (case-insensitive) sorts ascending, everything else descending."""
    if isinstance(value, str) and value.lower() == SortOrder.ASC:
        return SortOrder.ASC
    return SortOrder.DESC


def escape_like(term: str) -> str:
    """Escape LIKE wildcards so ``term`` matches literally."""
    return (
        term.replace(LIKE_ESCAPE_CHAR, LIKE_ESCAPE_CHAR * 2)
        .replace("%", LIKE_ESCAPE_CHAR + "%")
        .replace("_", LIKE_ESCAPE_CHAR + "_")
    )


def contains_pattern(term: str) -> str:
    """Build a ``%term%`` substring pattern with wildcards escaped."""
    return f"%{escape_like(term)}%"
