"""
Platform for fleet binary sensor integration.
This module is responsible for setting up the per-location problem sensors
(on while any device at the location is DOWN) and the fleet data-stale sensor.
"""
from __future__ import annotations

import logging

from homeassistant.components.binary_sensor import BinarySensorEntity, BinarySensorDeviceClass
from homeassistant.core import HomeAssistant, callback
from homeassistant import config_entries
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from custom_components.rfid_fleet.coordinator import FleetCoordinator

_LOGGER = logging.getLogger(__name__)


class LocationProblemSensor(CoordinatorEntity[FleetCoordinator], BinarySensorEntity):
    """
    Representation of a location problem sensor.
    On while at least one device at the location rolls up as DOWN.
    """

    def __init__(self, coordinator: FleetCoordinator, location_id: str) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._location_id = location_id
        location = coordinator.data.snapshot.get_location(location_id)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_{location_id}_problem"
        self._attr_name = f"{location.name if location else location_id} Devices Down"

    def _location(self):
        return self.coordinator.data.snapshot.get_location(self._location_id)

    @property
    def available(self) -> bool:
        return super().available and self._location() is not None

    @property
    def icon(self) -> str | None:
        """Return the icon of the sensor."""
        if self.is_on:
            return "mdi:alert-circle"
        return "mdi:check-circle-outline"

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_location_device_info(self._location_id)

    @property
    def device_class(self) -> BinarySensorDeviceClass | str | None:
        return BinarySensorDeviceClass.PROBLEM

    @property
    def is_on(self) -> bool | None:
        """Return if the binary sensor is on."""
        location = self._location()
        if location is None:
            return None
        return location.down > 0


class DataStaleSensor(CoordinatorEntity[FleetCoordinator], BinarySensorEntity):
    """On when the device list has not refreshed for longer than STALE_AFTER."""

    def __init__(self, coordinator: FleetCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_data_stale"
        self._attr_name = "Fleet Data Stale"
        self._attr_icon = "mdi:timer-sand"

    @property
    def available(self) -> bool:
        # Staleness is exactly what this entity reports, so it stays available when refreshes fail
        return True

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_fleet_device_info()

    @property
    def device_class(self) -> BinarySensorDeviceClass | str | None:
        return BinarySensorDeviceClass.PROBLEM

    @property
    def is_on(self) -> bool:
        return self.coordinator.device_status_data().is_stale


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add binary sensors for passed config_entry in HA."""
    coordinator: FleetCoordinator = config_entry.runtime_data

    async_add_entities([DataStaleSensor(coordinator)])

    known_locations: set[str] = set()

    @callback
    def _add_new_locations() -> None:
        new_entities = []
        for location in coordinator.data.snapshot.locations():
            if location.location_id in known_locations:
                continue
            known_locations.add(location.location_id)
            new_entities.append(LocationProblemSensor(coordinator, location.location_id))
        if new_entities:
            async_add_entities(new_entities)

    _add_new_locations()
    config_entry.async_on_unload(coordinator.async_add_listener(_add_new_locations))
