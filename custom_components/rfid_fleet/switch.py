"""
Platform for the fleet cluster-mode switch.
On shows one marker per region, off shows one marker per device.
"""
from __future__ import annotations

import logging

from homeassistant.components.switch import SwitchEntity, SwitchDeviceClass
from homeassistant.core import HomeAssistant
from homeassistant import config_entries
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from custom_components.rfid_fleet.coordinator import FleetCoordinator
from custom_components.rfid_fleet.models import ClusterMode

_LOGGER = logging.getLogger(__name__)


class ClusterModeSwitch(CoordinatorEntity[FleetCoordinator], SwitchEntity):
    """
    Representation of the map cluster-mode switch.
    The mode lives in the coordinator snapshot; turning the switch rebuilds
    the markers right away without a refetch.
    """

    def __init__(self, coordinator: FleetCoordinator) -> None:
        """Initialize the switch."""
        super().__init__(coordinator)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_cluster_markers"
        self._attr_name = "Fleet Cluster Map Markers"
        self._attr_icon = "mdi:map-marker-multiple"

    @property
    def available(self) -> bool:
        return True

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_fleet_device_info()

    @property
    def device_class(self) -> SwitchDeviceClass | str | None:
        return SwitchDeviceClass.SWITCH

    @property
    def is_on(self) -> bool:
        """Return true if markers are clustered by region."""
        return self.coordinator.data.cluster_mode is ClusterMode.CLUSTERED

    async def async_turn_on(self, **kwargs) -> None:
        """Cluster markers by region."""
        _LOGGER.debug("Switching map markers to clustered mode")
        self.coordinator.set_cluster_mode(ClusterMode.CLUSTERED)

    async def async_turn_off(self, **kwargs) -> None:
        """Show one marker per device."""
        _LOGGER.debug("Switching map markers to individual mode")
        self.coordinator.set_cluster_mode(ClusterMode.INDIVIDUAL)


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add the cluster-mode switch for passed config_entry in HA."""
    coordinator: FleetCoordinator = config_entry.runtime_data
    async_add_entities([ClusterModeSwitch(coordinator)])
