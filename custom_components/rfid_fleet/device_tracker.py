"""
Platform for fleet map markers.
This module is responsible for setting up one tracker entity per GeoCluster:
a single device in individual mode, a region centroid in clustered mode.
Markers of the inactive mode stay registered but unavailable.
"""
from __future__ import annotations

import logging

from homeassistant.components.device_tracker import SourceType
from homeassistant.components.device_tracker.config_entry import TrackerEntity
from homeassistant.core import HomeAssistant, callback
from homeassistant import config_entries
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from custom_components.rfid_fleet.coordinator import FleetCoordinator
from custom_components.rfid_fleet.models import GeoCluster

_LOGGER = logging.getLogger(__name__)


class FleetMarker(CoordinatorEntity[FleetCoordinator], TrackerEntity):
    """
    Representation of one map marker.
    Position and colour come from the GeoCluster with the same key in the
    current snapshot.
    """

    def __init__(self, coordinator: FleetCoordinator, cluster: GeoCluster) -> None:
        """Initialize the marker."""
        super().__init__(coordinator)
        self._key = cluster.key
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_{cluster.key.replace(':', '_')}"
        if cluster.kind == "region":
            self._attr_name = f"{cluster.label} Region"
            self._attr_icon = "mdi:map-marker-multiple"
        else:
            self._attr_name = f"Reader {cluster.label}"
            self._attr_icon = "mdi:map-marker"

    def _cluster(self) -> GeoCluster | None:
        for cluster in self.coordinator.data.clusters:
            if cluster.key == self._key:
                return cluster
        return None

    @property
    def available(self) -> bool:
        return super().available and self._cluster() is not None

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_fleet_device_info()

    @property
    def latitude(self) -> float | None:
        """Return latitude value of the marker."""
        cluster = self._cluster()
        return cluster.latitude if cluster else None

    @property
    def longitude(self) -> float | None:
        """Return longitude value of the marker."""
        cluster = self._cluster()
        return cluster.longitude if cluster else None

    @property
    def source_type(self) -> SourceType:
        """Return the source type, eg gps or router, of the device."""
        return SourceType.GPS

    @property
    def extra_state_attributes(self) -> dict | None:
        cluster = self._cluster()
        if cluster is None:
            return None
        return {
            "kind": cluster.kind,
            "members": list(cluster.member_ids),
            "size": cluster.size,
            "status_mix": dict(cluster.status_mix),
            "color": cluster.color,
            "tier": cluster.tier.value if cluster.tier else None,
        }


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add map markers for passed config_entry in HA."""
    coordinator: FleetCoordinator = config_entry.runtime_data
    known_keys: set[str] = set()

    @callback
    def _add_new_markers() -> None:
        new_entities = []
        for cluster in coordinator.data.clusters:
            if cluster.key in known_keys:
                continue
            known_keys.add(cluster.key)
            new_entities.append(FleetMarker(coordinator, cluster))
        if new_entities:
            _LOGGER.debug("Adding %s map marker(s)", len(new_entities))
            async_add_entities(new_entities)

    _add_new_markers()
    config_entry.async_on_unload(coordinator.async_add_listener(_add_new_markers))
