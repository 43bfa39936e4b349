"""
Query-string helpers for the PowerWatch API.

Parameters arrive as parsed by urllib.parse.parse_qs, a mapping of name
to list of values; the first value wins.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence


class QueryParameterError(ValueError):
    """Raised for query parameters that cannot be interpreted (HTTP 400)."""

    pass


_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


def get_param(params: dict[str, list[str]], name: str) -> str | None:
    """Get the first value of a query parameter, or None when absent or empty."""
    values = params.get(name)
    if not values:
        return None
    value = values[0].strip()
    return value or None


def parse_int_param(params: dict[str, list[str]], name: str, default: int) -> int:
    """
    Parse a positive integer parameter.

    Missing and non-positive values fall back to the default.

    Raises:
        QueryParameterError: If the value is not an integer
    """
    value = get_param(params, name)
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError:
        raise QueryParameterError(f"Invalid integer for '{name}': {value}")
    return number if number > 0 else default


def parse_bool(value: str, name: str = "") -> bool:
    """
    Parse a boolean filter value.

    Raises:
        QueryParameterError: If the value is not a recognised boolean
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise QueryParameterError(f"Invalid boolean for '{name}': {value}")


def apply_filters(
    items: list[dict[str, Any]],
    params: dict[str, list[str]],
    string_fields: Sequence[str] = (),
    bool_fields: Sequence[str] = (),
    upper_fields: Sequence[str] = (),
) -> list[dict[str, Any]]:
    """
    Apply equality filters to projected records.

    Parameter names match the response field names. String fields compare
    case-sensitively; upper fields compare against the upper-cased value;
    bool fields accept true/false/1/0/yes/no.
    """
    predicates = []
    for name in string_fields:
        value = get_param(params, name)
        if value is not None:
            predicates.append((name, value))
    for name in upper_fields:
        value = get_param(params, name)
        if value is not None:
            predicates.append((name, value.upper()))
    for name in bool_fields:
        value = get_param(params, name)
        if value is not None:
            predicates.append((name, parse_bool(value, name)))

    if not predicates:
        return items
    return [
        item for item in items
        if all(item.get(name) == expected for name, expected in predicates)
    ]


@dataclass(frozen=True)
class Pagination:
    """Page position within a filtered result set."""

    page: int
    page_size: int
    total_count: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size)

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def to_dict(self) -> dict[str, Any]:
        """Convert to API response shape."""
        return {
            "currentPage": self.page,
            "pageSize": self.page_size,
            "totalCount": self.total_count,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
            "hasPreviousPage": self.has_previous_page,
        }


def paginate(
    items: list[Any],
    params: dict[str, list[str]],
    default_page_size: int,
) -> tuple[list[Any], Pagination]:
    """
    Slice one page out of a result list.

    Returns:
        Tuple of (page items, pagination block)

    Raises:
        QueryParameterError: If page or pageSize is not an integer
    """
    page = parse_int_param(params, "page", 1)
    page_size = parse_int_param(params, "pageSize", default_page_size)
    pagination = Pagination(page=page, page_size=page_size, total_count=len(items))
    start = pagination.offset
    return items[start:start + page_size], pagination


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def envelope(plural: str, items: list[Any], pagination: Pagination) -> dict[str, Any]:
    """Wrap a page of results in the list response envelope."""
    return {
        plural: items,
        "pagination": pagination.to_dict(),
        "lastUpdated": utc_now_iso(),
    }
