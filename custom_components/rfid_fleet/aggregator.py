"""
Status aggregator - folds a flat device list into the Category → Location → Device rollup.

Responsibilities:
- Group devices by location, count them into ACTIVE / STANDBY / DOWN buckets.
- Group locations by category and fold again, then fold categories into the fleet totals.
- Count devices seen inside each activity window (48h / 1w / 15d / 1m).
- Verify the sum invariants after every pass; a mismatch is logged, never raised.

Always a full fold: there is no incremental patching, so counters cannot drift.
No HA imports - this is a pure data module.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Collection, Sequence
from datetime import datetime, timedelta, timezone

from .const import (
    ACTIVITY_WINDOWS,
    DEFAULT_CATEGORY,
    UNKNOWN_CATEGORY,
    UNKNOWN_LOCATION,
)
from .models import (
    CategoryRollup,
    FleetDevice,
    FleetSnapshot,
    LocationRollup,
    RollupBucket,
    StatusBucketMap,
)

_LOGGER = logging.getLogger(__name__)

_DEFAULT_BUCKETS = StatusBucketMap()


def aggregate(
    devices: Sequence[FleetDevice],
    *,
    now: datetime | None = None,
    bucket_map: StatusBucketMap | None = None,
    known_locations: Collection[str] | None = None,
) -> FleetSnapshot:
    """
    Build a FleetSnapshot from the full device list.

    Devices without a location id, or whose id is not in known_locations (when
    given), are placed in the synthetic "Unknown" location instead of being dropped.
    """
    bucket_map = bucket_map or _DEFAULT_BUCKETS
    now = now or datetime.now(timezone.utc)

    groups: dict[str, list[FleetDevice]] = defaultdict(list)
    for device in devices:
        groups[_location_key(device, known_locations)].append(device)

    by_category: dict[str, list[LocationRollup]] = defaultdict(list)
    for location_id, members in groups.items():
        rollup = _fold_location(location_id, members, bucket_map)
        by_category[rollup.category].append(rollup)

    categories = tuple(
        _fold_category(name, locations)
        for name, locations in sorted(by_category.items())
    )

    snapshot = FleetSnapshot(
        total=sum(c.total for c in categories),
        active=sum(c.active for c in categories),
        standby=sum(c.standby for c in categories),
        down=sum(c.down for c in categories),
        activity=count_activity(devices, now),
        categories=categories,
        generated_at=now,
        source="client",
    )
    check_invariants(snapshot, expected_total=len(devices))
    return snapshot


def count_activity(devices: Sequence[FleetDevice], now: datetime) -> dict[str, int]:
    """Count devices whose last_seen falls inside each activity window."""
    counts = {label: 0 for label in ACTIVITY_WINDOWS}
    for device in devices:
        if device.last_seen is None:
            continue
        age = now - device.last_seen
        if age < timedelta(0):
            # Clock skew: a timestamp slightly in the future is still "seen now"
            age = timedelta(0)
        for label, hours in ACTIVITY_WINDOWS.items():
            if age <= timedelta(hours=hours):
                counts[label] += 1
    return counts


def check_invariants(snapshot: FleetSnapshot, expected_total: int | None = None) -> list[str]:
    """
    Re-check every rollup sum in the snapshot.

    Returns the list of violations (empty when consistent) and logs each one at
    ERROR level; a violation points at a defect, not at bad input.
    """
    problems: list[str] = []
    for category in snapshot.categories:
        for loc in category.locations:
            if loc.active + loc.standby + loc.down != loc.total:
                problems.append(f"location {loc.location_id!r}: buckets do not sum to total")
            if snapshot.source == "client" and loc.total != len(loc.device_ids):
                problems.append(f"location {loc.location_id!r}: total differs from device count")
        if category.total != sum(loc.total for loc in category.locations):
            problems.append(f"category {category.name!r}: total differs from its locations")
        if category.active + category.standby + category.down != category.total:
            problems.append(f"category {category.name!r}: buckets do not sum to total")
    if snapshot.total != sum(c.total for c in snapshot.categories):
        problems.append("fleet total differs from the sum of its categories")
    if expected_total is not None and snapshot.total != expected_total:
        problems.append(f"fleet total {snapshot.total} differs from {expected_total} input devices")

    for problem in problems:
        _LOGGER.error("Rollup invariant violated: %s", problem)
    return problems


def compare_rollups(first: FleetSnapshot, second: FleetSnapshot) -> list[str]:
    """Return the names of locations whose counters differ between two snapshots."""

    def _counters(snapshot: FleetSnapshot) -> dict[str, tuple[int, int, int, int]]:
        return {
            loc.name: (loc.active, loc.standby, loc.down, loc.total)
            for loc in snapshot.locations()
        }

    left, right = _counters(first), _counters(second)
    return sorted(
        name for name in set(left) | set(right)
        if left.get(name) != right.get(name)
    )


class StatusAggregator:
    """
    Memoising wrapper around aggregate().

    The fold is re-run only when a different device sequence object arrives;
    callers hand over the same tuple for as long as the snapshot is unchanged.
    """

    def __init__(self, bucket_map: StatusBucketMap | None = None) -> None:
        self.bucket_map = bucket_map or _DEFAULT_BUCKETS
        self._last_input: Sequence[FleetDevice] | None = None
        self._last_output: FleetSnapshot | None = None
        self.passes = 0

    def aggregate(
        self,
        devices: Sequence[FleetDevice],
        now: datetime | None = None,
        known_locations: Collection[str] | None = None,
    ) -> FleetSnapshot:
        if self._last_output is not None and devices is self._last_input:
            return self._last_output
        snapshot = aggregate(
            devices, now=now, bucket_map=self.bucket_map, known_locations=known_locations
        )
        self.passes += 1
        self._last_input = devices
        self._last_output = snapshot
        return snapshot

    def set_bucket_map(self, bucket_map: StatusBucketMap) -> None:
        """Swap the status table; the next call re-folds."""
        self.bucket_map = bucket_map
        self._last_input = None
        self._last_output = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _location_key(device: FleetDevice, known_locations: Collection[str] | None) -> str:
    if not device.location_id:
        return UNKNOWN_LOCATION
    if known_locations is not None and device.location_id not in known_locations:
        _LOGGER.debug(
            "Device %s references unknown location %s", device.device_id, device.location_id
        )
        return UNKNOWN_LOCATION
    return device.location_id


def _fold_location(
    location_id: str, members: list[FleetDevice], bucket_map: StatusBucketMap
) -> LocationRollup:
    members = sorted(members, key=lambda d: d.device_id)
    counts = {bucket: 0 for bucket in RollupBucket}
    for device in members:
        counts[bucket_map.bucket_for(device.status, device.sub_status)] += 1

    if location_id == UNKNOWN_LOCATION:
        name, category = UNKNOWN_LOCATION, UNKNOWN_CATEGORY
    else:
        name = _first(d.location_name or d.toll_plaza for d in members) or location_id
        category = _first(d.category for d in members) or DEFAULT_CATEGORY

    return LocationRollup(
        location_id=location_id,
        name=name,
        category=category,
        region=_first(d.region for d in members),
        zone=_first(d.zone for d in members),
        active=counts[RollupBucket.ACTIVE],
        standby=counts[RollupBucket.STANDBY],
        down=counts[RollupBucket.DOWN],
        total=len(members),
        device_ids=tuple(d.device_id for d in members),
    )


def _fold_category(name: str, locations: list[LocationRollup]) -> CategoryRollup:
    locations = sorted(locations, key=lambda loc: (loc.name.casefold(), loc.location_id))
    return CategoryRollup(
        name=name,
        active=sum(loc.active for loc in locations),
        standby=sum(loc.standby for loc in locations),
        down=sum(loc.down for loc in locations),
        total=sum(loc.total for loc in locations),
        locations=tuple(locations),
    )


def _first(values):
    for value in values:
        if value:
            return value
    return None
