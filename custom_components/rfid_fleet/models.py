"""
Domain models for the RFID fleet integration.

This module contains pure data classes representing fleet entities.
These classes have no dependencies on HTTP, API logic, or Home Assistant internals.
Every object here is immutable; "updating" means building a new one.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

_LOGGER = logging.getLogger(__name__)


class DeviceStatus(StrEnum):
    LIVE = "LIVE"
    DOWN = "DOWN"
    MAINTENANCE = "MAINTENANCE"
    WARNING = "WARNING"
    SHUTDOWN = "SHUTDOWN"


class DeviceClass(StrEnum):
    FIXED_READER = "FIXED_READER"
    HANDHELD_DEVICE = "HANDHELD_DEVICE"


class RollupBucket(StrEnum):
    ACTIVE = "ACTIVE"
    STANDBY = "STANDBY"
    DOWN = "DOWN"


class ClusterTier(StrEnum):
    CRITICAL = "critical"
    WARNING = "warning"
    HEALTHY = "healthy"


class ClusterMode(StrEnum):
    INDIVIDUAL = "individual"
    CLUSTERED = "clustered"


def parse_status(value: Any) -> DeviceStatus | None:
    """Return the DeviceStatus for a raw backend value, or None when it cannot be parsed."""
    if isinstance(value, DeviceStatus):
        return value
    if not isinstance(value, str):
        return None
    try:
        return DeviceStatus(value.strip().upper())
    except ValueError:
        _LOGGER.debug("Unparseable device status: %r", value)
        return None


def parse_device_class(value: Any) -> DeviceClass | None:
    """Map the backend device type spellings onto DeviceClass."""
    if isinstance(value, DeviceClass):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    if normalized in ("FIXED_READER", "FIXED", "FIXED-READER"):
        return DeviceClass.FIXED_READER
    if normalized in ("HANDHELD_DEVICE", "HANDHELD", "HHD"):
        return DeviceClass.HANDHELD_DEVICE
    return None


def default_bucket(status: DeviceStatus | None, sub_status: str | None = None) -> RollupBucket:
    """
    Map a device status onto one of the three rollup buckets.

    Every DeviceStatus member is listed explicitly; adding a new status without
    extending this function raises instead of silently defaulting.
    An unparseable status (None) counts as DOWN.
    """
    if status is None:
        return RollupBucket.DOWN
    if status is DeviceStatus.LIVE:
        if sub_status is not None and sub_status.strip().lower() == "standby":
            return RollupBucket.STANDBY
        return RollupBucket.ACTIVE
    elif status is DeviceStatus.WARNING:
        return RollupBucket.STANDBY
    elif status is DeviceStatus.MAINTENANCE:
        return RollupBucket.STANDBY
    elif status is DeviceStatus.DOWN:
        return RollupBucket.DOWN
    elif status is DeviceStatus.SHUTDOWN:
        return RollupBucket.DOWN
    raise ValueError(f"No rollup bucket defined for status {status!r}")


@dataclasses.dataclass(frozen=True)
class StatusBucketMap:
    """
    Status → bucket table used by the aggregator.

    Starts from default_bucket() and applies per-status overrides taken from
    configuration, so the mapping can be aligned with the backend contract
    without code changes.
    """

    overrides: Mapping[DeviceStatus, RollupBucket] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "overrides", MappingProxyType(dict(self.overrides)))

    @classmethod
    def from_config(cls, raw: Mapping[str, str] | None) -> StatusBucketMap:
        """Build from a {"WARNING": "ACTIVE", ...} dict; invalid pairs are logged and skipped."""
        overrides: dict[DeviceStatus, RollupBucket] = {}
        for raw_status, raw_bucket in (raw or {}).items():
            status = parse_status(raw_status)
            try:
                bucket = RollupBucket(str(raw_bucket).strip().upper())
            except ValueError:
                bucket = None
            if status is None or bucket is None:
                _LOGGER.warning("Ignoring invalid status bucket override %s → %s", raw_status, raw_bucket)
                continue
            overrides[status] = bucket
        return cls(overrides)

    def bucket_for(self, status: DeviceStatus | None, sub_status: str | None = None) -> RollupBucket:
        if status is not None and status in self.overrides:
            return self.overrides[status]
        return default_bucket(status, sub_status)


def compute_health_score(sample: Mapping[str, Any] | None) -> int | None:
    """
    Derive a 0–100 health score from one metrics sample.

    Penalties: CPU and RAM above 70 %, temperature above 55 °C (double weight),
    and a fixed amount per failed antenna / network / power check.
    Returns None when there is no sample.
    """
    if not sample:
        return None

    def _number(key: str) -> float:
        value = sample.get(key)
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return number if math.isfinite(number) else 0.0

    score = 100.0
    score -= max(_number("cpuUsage") - 70.0, 0.0)
    score -= max(_number("ramUsage") - 70.0, 0.0)
    score -= max(_number("temperature") - 55.0, 0.0) * 2
    if sample.get("antennaStatus") is False:
        score -= 25
    if sample.get("networkStatus") is False:
        score -= 25
    if sample.get("powerStatus") is False:
        score -= 30
    return clamp_health(score)


def clamp_health(value: Any) -> int | None:
    """Clamp a health score into [0, 100]; None for anything non-numeric."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(round(min(max(number, 0.0), 100.0)))


@dataclasses.dataclass(frozen=True)
class FleetDevice:
    """Representation of a single monitored RFID reader."""

    device_id: str
    status: DeviceStatus | None = None
    sub_status: str | None = None
    device_class: DeviceClass | None = None
    vendor: str | None = None
    model: str | None = None

    # Where the device sits
    location_id: str | None = None
    location_name: str | None = None
    toll_plaza: str | None = None
    region: str | None = None
    zone: str | None = None
    category: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    # Activity
    last_seen: datetime | None = None
    last_transaction: datetime | None = None
    uptime: int | None = None
    success_count: int = 0
    pending_count: int = 0
    transaction_count: int = 0
    health_score: int | None = None

    # Identifiers used by search
    mac_address: str | None = None
    asset_id: str | None = None
    serial_number: str | None = None

    @property
    def has_coordinates(self) -> bool:
        """True when both coordinates are present, finite and inside the valid range."""
        if self.latitude is None or self.longitude is None:
            return False
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            return False
        return -90.0 <= self.latitude <= 90.0 and -180.0 <= self.longitude <= 180.0


@dataclasses.dataclass(frozen=True)
class LocationRollup:
    """A toll plaza and its derived device counters."""

    location_id: str
    name: str
    category: str
    region: str | None = None
    zone: str | None = None
    active: int = 0
    standby: int = 0
    down: int = 0
    total: int = 0
    device_ids: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class CategoryRollup:
    """Locations grouped by device category, rolled up one level higher."""

    name: str
    active: int = 0
    standby: int = 0
    down: int = 0
    total: int = 0
    locations: tuple[LocationRollup, ...] = ()


@dataclasses.dataclass(frozen=True)
class FleetSnapshot:
    """
    Root aggregate of the fleet.

    Built once per aggregation pass and never mutated; readers holding a
    reference always see a consistent rollup.
    """

    total: int = 0
    active: int = 0
    standby: int = 0
    down: int = 0
    # window label → devices seen within the window
    activity: Mapping[str, int] = dataclasses.field(default_factory=dict)
    categories: tuple[CategoryRollup, ...] = ()
    # Build time only; two folds of the same devices compare equal
    generated_at: datetime | None = dataclasses.field(default=None, compare=False)
    # "client" when folded locally, "server" when parsed from the backend hierarchy
    source: str = "client"

    def __post_init__(self) -> None:
        object.__setattr__(self, "activity", MappingProxyType(dict(self.activity)))

    def locations(self) -> tuple[LocationRollup, ...]:
        return tuple(loc for cat in self.categories for loc in cat.locations)

    def get_location(self, location_id: str) -> LocationRollup | None:
        for loc in self.locations():
            if loc.location_id == location_id:
                return loc
        return None


@dataclasses.dataclass(frozen=True)
class GeoCluster:
    """A map marker: one device (individual mode) or one region (clustered mode)."""

    key: str
    kind: str                       # "device" or "region"
    label: str
    latitude: float
    longitude: float
    member_ids: tuple[str, ...]
    status_mix: Mapping[str, int]
    color: str
    tier: ClusterTier | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "status_mix", MappingProxyType(dict(self.status_mix)))

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclasses.dataclass(frozen=True)
class AlertsSummary:
    """Active alert counts by severity."""

    total: int = 0
    critical: int = 0
    warning: int = 0
    info: int = 0
    unread: int = 0
