"""
Geo-cluster builder - derives map markers from the current device list.

Two modes:
    individual - one marker per device with valid coordinates
    clustered  - one marker per region at the mean position of its members

Clusters are rebuilt from scratch on every call; nothing is patched in place.
Devices without usable coordinates are left out of both modes.
"""
from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Mapping, Sequence

from .const import (
    DEFAULT_MARKER_COLOR,
    HEALTHY_LIVE_RATIO,
    STATUS_COLORS,
    UNKNOWN_REGION,
)
from .models import ClusterMode, ClusterTier, DeviceStatus, FleetDevice, GeoCluster

_LOGGER = logging.getLogger(__name__)

TIER_COLORS: dict[ClusterTier, str] = {
    ClusterTier.CRITICAL: STATUS_COLORS["DOWN"],
    ClusterTier.HEALTHY:  STATUS_COLORS["LIVE"],
    ClusterTier.WARNING:  STATUS_COLORS["WARNING"],
}

UNKNOWN_STATUS = "UNKNOWN"


def build_clusters(
    devices: Sequence[FleetDevice], mode: ClusterMode | str
) -> tuple[GeoCluster, ...]:
    """Return the markers for devices in the requested mode."""
    mode = ClusterMode(mode)
    located = [d for d in devices if d.has_coordinates]
    skipped = len(devices) - len(located)
    if skipped:
        _LOGGER.debug("%s device(s) without coordinates left off the map", skipped)

    if mode is ClusterMode.INDIVIDUAL:
        return tuple(_device_marker(d) for d in sorted(located, key=lambda d: d.device_id))

    by_region: dict[str, list[FleetDevice]] = defaultdict(list)
    for device in located:
        by_region[device.region or UNKNOWN_REGION].append(device)
    return tuple(
        _region_cluster(region, members)
        for region, members in sorted(by_region.items())
        if members
    )


def cluster_tier(status_mix: Mapping[str, int]) -> ClusterTier:
    """
    Colour tier for a region from its status counts.

    Any DOWN member makes the cluster critical; otherwise more than 90 % LIVE is
    healthy and everything else is a warning. An empty mix is a warning.
    """
    total = sum(status_mix.values())
    if status_mix.get(DeviceStatus.DOWN.value, 0) > 0:
        return ClusterTier.CRITICAL
    if total > 0 and status_mix.get(DeviceStatus.LIVE.value, 0) > total * HEALTHY_LIVE_RATIO:
        return ClusterTier.HEALTHY
    return ClusterTier.WARNING


def status_color(status: DeviceStatus | None) -> str:
    if status is None:
        return DEFAULT_MARKER_COLOR
    return STATUS_COLORS.get(status.value, DEFAULT_MARKER_COLOR)


def _device_marker(device: FleetDevice) -> GeoCluster:
    status_key = device.status.value if device.status is not None else UNKNOWN_STATUS
    return GeoCluster(
        key=f"device:{device.device_id}",
        kind="device",
        label=device.device_id,
        latitude=device.latitude,
        longitude=device.longitude,
        member_ids=(device.device_id,),
        status_mix={status_key: 1},
        color=status_color(device.status),
    )


def _region_cluster(region: str, members: list[FleetDevice]) -> GeoCluster:
    members = sorted(members, key=lambda d: d.device_id)
    count = len(members)
    mix = Counter(
        d.status.value if d.status is not None else UNKNOWN_STATUS for d in members
    )
    tier = cluster_tier(mix)
    return GeoCluster(
        key=f"region:{region}",
        kind="region",
        label=region,
        latitude=sum(d.latitude for d in members) / count,
        longitude=sum(d.longitude for d in members) / count,
        member_ids=tuple(d.device_id for d in members),
        status_mix=dict(sorted(mix.items())),
        color=TIER_COLORS[tier],
        tier=tier,
    )
