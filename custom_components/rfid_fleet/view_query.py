"""
View query layer - filter, sort and paginate over devices or location rollups.

Pure functions only: no caching and no side effects. Every surface runs its
query against whatever snapshot the coordinator currently exposes.

Filtering is conjunctive, and fails closed: a record whose field is missing
never matches a non-empty predicate on that field.
"""
from __future__ import annotations

import dataclasses
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from .const import PAGE_SIZES
from .models import FleetSnapshot, LocationRollup

DEVICE_SEARCH_FIELDS: tuple[str, ...] = (
    "device_id",
    "mac_address",
    "asset_id",
    "serial_number",
    "location_name",
    "toll_plaza",
)

LOCATION_SEARCH_FIELDS: tuple[str, ...] = ("name", "region", "zone", "category")


@dataclasses.dataclass(frozen=True)
class ViewFilters:
    """
    Active filter predicates for one surface.

    search  - case-insensitive substring across the surface's search fields
    members - field → allowed values (an empty set disables that predicate)
    ranges  - field → inclusive (low, high); either end may be None
    """

    search: str = ""
    members: Mapping[str, frozenset] = dataclasses.field(default_factory=dict)
    ranges: Mapping[str, tuple[Any, Any]] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "members",
            MappingProxyType({k: frozenset(_normalize(v) for v in vals) for k, vals in self.members.items()}),
        )
        object.__setattr__(self, "ranges", MappingProxyType(dict(self.ranges)))


@dataclasses.dataclass(frozen=True)
class SortSpec:
    field: str
    descending: bool = False


@dataclasses.dataclass(frozen=True)
class QueryPage:
    items: tuple
    total_count: int
    page: int
    page_count: int
    page_size: int


def device_filters(
    search: str = "",
    statuses: Iterable = (),
    regions: Iterable[str] = (),
    vendors: Iterable[str] = (),
    device_classes: Iterable = (),
    health: tuple[float | None, float | None] | None = None,
    uptime: tuple[int | None, int | None] | None = None,
    last_seen: tuple[datetime | None, datetime | None] | None = None,
) -> ViewFilters:
    """Build ViewFilters for the device surfaces from named arguments."""
    members = {
        "status": frozenset(statuses),
        "region": frozenset(regions),
        "vendor": frozenset(vendors),
        "device_class": frozenset(device_classes),
    }
    ranges = {}
    if health is not None:
        ranges["health_score"] = health
    if uptime is not None:
        ranges["uptime"] = uptime
    if last_seen is not None:
        ranges["last_seen"] = last_seen
    return ViewFilters(
        search=search,
        members={k: v for k, v in members.items() if v},
        ranges=ranges,
    )


def matches(record: Any, filters: ViewFilters, search_fields: Sequence[str]) -> bool:
    """True when record satisfies every active predicate."""
    needle = filters.search.strip().casefold()
    if needle:
        haystack = [getattr(record, f, None) for f in search_fields]
        if not any(isinstance(v, str) and needle in v.casefold() for v in haystack):
            return False

    for field, allowed in filters.members.items():
        if not allowed:
            continue
        value = getattr(record, field, None)
        if value is None or _normalize(value) not in allowed:
            return False

    for field, (low, high) in filters.ranges.items():
        if low is None and high is None:
            continue
        value = getattr(record, field, None)
        if value is None:
            return False
        try:
            if low is not None and value < low:
                return False
            if high is not None and value > high:
                return False
        except TypeError:
            return False

    return True


def sort_records(records: Iterable[Any], sort: SortSpec | None) -> list:
    """Stable single-field sort; strings compare case-folded, missing values lowest."""
    records = list(records)
    if sort is None:
        return records

    def _key(record):
        value = getattr(record, sort.field, None)
        if value is None:
            return (0, 0)
        value = _normalize(value)
        if isinstance(value, str):
            value = value.casefold()
        return (1, value)

    return sorted(records, key=_key, reverse=sort.descending)


def paginate(records: Sequence[Any], page: int, page_size: int) -> QueryPage:
    """
    Slice one page out of records.

    The reported page is clamped to [1, page_count]; a requested page outside
    that range yields no items but still reports the full total_count.
    """
    if page_size <= 0:
        raise ValueError(f"page_size must be positive, got {page_size}")
    total = len(records)
    page_count = math.ceil(total / page_size)
    clamped = min(max(page, 1), max(page_count, 1))
    if page < 1 or page > page_count:
        items: tuple = ()
    else:
        start = (page - 1) * page_size
        items = tuple(records[start:start + page_size])
    return QueryPage(
        items=items,
        total_count=total,
        page=clamped,
        page_count=page_count,
        page_size=page_size,
    )


def query(
    records: Iterable[Any],
    filters: ViewFilters | None = None,
    sort: SortSpec | None = None,
    page: int = 1,
    page_size: int = PAGE_SIZES["device_table"],
    search_fields: Sequence[str] | None = None,
) -> QueryPage:
    """Filter, then sort, then paginate."""
    records = list(records)
    filters = filters or ViewFilters()
    if search_fields is None:
        search_fields = _default_search_fields(records)
    selected = [r for r in records if matches(r, filters, search_fields)]
    return paginate(sort_records(selected, sort), page, page_size)


def flatten_locations(snapshot: FleetSnapshot) -> tuple[LocationRollup, ...]:
    """Expose the rollup tree as location rows for grid/table surfaces."""
    return snapshot.locations()


def page_size_for(surface: str) -> int:
    try:
        return PAGE_SIZES[surface]
    except KeyError:
        raise ValueError(f"Unknown surface {surface!r}") from None


def _default_search_fields(records: Sequence[Any]) -> Sequence[str]:
    if records and isinstance(records[0], LocationRollup):
        return LOCATION_SEARCH_FIELDS
    return DEVICE_SEARCH_FIELDS


def _normalize(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value
