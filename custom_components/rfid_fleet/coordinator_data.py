"""
FleetData - immutable snapshot of all fleet data shared with entities.

This is a pure data module with no HA or network dependencies.
"""
from __future__ import annotations

import dataclasses
from datetime import datetime

from .models import AlertsSummary, ClusterMode, FleetDevice, FleetSnapshot, GeoCluster


@dataclasses.dataclass(frozen=True)
class FleetData:
    """
    Typed, copy-on-write snapshot of everything the entities render.

    Always replace via dataclasses.replace() - never mutate in place. The
    coordinator swaps the whole object, so an entity reading several fields
    during one update always sees one consistent generation.
    """

    # Flat device list as last fetched
    devices: tuple[FleetDevice, ...] = ()

    # Client-side rollup of `devices`
    snapshot: FleetSnapshot = dataclasses.field(default_factory=FleetSnapshot)

    # Rollup as computed by the backend, kept for reconciliation only
    server_snapshot: FleetSnapshot | None = None

    # Map markers for the current cluster mode
    clusters: tuple[GeoCluster, ...] = ()
    cluster_mode: ClusterMode = ClusterMode.INDIVIDUAL

    alerts: AlertsSummary | None = None

    # Time of the last successful device refresh, and the error of the last failed one
    last_updated: datetime | None = None
    last_error: str | None = None

    def get_device(self, device_id: str) -> FleetDevice | None:
        for device in self.devices:
            if device.device_id == device_id:
                return device
        return None


@dataclasses.dataclass(frozen=True)
class DeviceStatusView:
    """What a read hook hands a surface: the rollup plus whether it is still loading."""

    data: FleetSnapshot
    is_loading: bool
    last_updated: datetime | None = None
    is_stale: bool = False
