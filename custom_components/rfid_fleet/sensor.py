"""
Platform for fleet sensor integration.
This module is responsible for setting up the fleet-wide rollup counters, the
activity window counters, the per-location rollup sensors, the alerts summary
and the "last updated" timestamp, all read from the coordinator snapshot.
"""
from __future__ import annotations

import logging

from homeassistant.components.sensor import SensorEntity, SensorDeviceClass, SensorStateClass
from homeassistant.core import HomeAssistant, callback
from homeassistant import config_entries
from homeassistant.helpers.entity import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from custom_components.rfid_fleet.const import ACTIVITY_WINDOWS
from custom_components.rfid_fleet.coordinator import FleetCoordinator

_LOGGER = logging.getLogger(__name__)

# snapshot attribute → (name suffix, icon)
FLEET_COUNTERS: dict[str, tuple[str, str]] = {
    "total":   ("Devices", "mdi:access-point-network"),
    "active":  ("Active", "mdi:access-point-check"),
    "standby": ("Standby", "mdi:access-point-minus"),
    "down":    ("Down", "mdi:access-point-off"),
}

ACTIVITY_NAMES: dict[str, str] = {
    "48h": "Active Last 48 Hours",
    "1w":  "Active Last Week",
    "15d": "Active Last 15 Days",
    "1m":  "Active Last Month",
}


class FleetCounterSensor(CoordinatorEntity[FleetCoordinator], SensorEntity):
    """
    Representation of one fleet-wide rollup counter (total, active, standby or down).
    Reads the immutable FleetSnapshot held by the coordinator.
    """

    def __init__(self, coordinator: FleetCoordinator, counter: str) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._counter = counter
        suffix, icon = FLEET_COUNTERS[counter]
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_{counter}"
        self._attr_name = f"Fleet {suffix}"
        self._attr_icon = icon

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_fleet_device_info()

    @property
    def state_class(self) -> SensorStateClass | str | None:
        return SensorStateClass.MEASUREMENT

    @property
    def native_value(self) -> int:
        return getattr(self.coordinator.data.snapshot, self._counter)

    @property
    def native_unit_of_measurement(self) -> str | None:
        return "devices"

    @property
    def extra_state_attributes(self) -> dict | None:
        if self._counter != "total":
            return None
        snapshot = self.coordinator.data.snapshot
        return {
            "categories": {
                category.name: {
                    "active": category.active,
                    "standby": category.standby,
                    "down": category.down,
                    "total": category.total,
                    "locations": len(category.locations),
                }
                for category in snapshot.categories
            },
        }


class FleetActivitySensor(CoordinatorEntity[FleetCoordinator], SensorEntity):
    """Number of devices seen within one activity window."""

    def __init__(self, coordinator: FleetCoordinator, window: str) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._window = window
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_activity_{window}"
        self._attr_name = f"Fleet {ACTIVITY_NAMES.get(window, window)}"
        self._attr_icon = "mdi:history"

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_fleet_device_info()

    @property
    def state_class(self) -> SensorStateClass | str | None:
        return SensorStateClass.MEASUREMENT

    @property
    def native_value(self) -> int:
        return self.coordinator.data.snapshot.activity.get(self._window, 0)

    @property
    def native_unit_of_measurement(self) -> str | None:
        return "devices"


class LocationDevicesSensor(CoordinatorEntity[FleetCoordinator], SensorEntity):
    """
    Representation of one location's rollup.
    State is the number of devices at the location; the bucket counters are attributes.
    Unavailable while the location is absent from the current snapshot.
    """

    def __init__(self, coordinator: FleetCoordinator, location_id: str) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        self._location_id = location_id
        location = coordinator.data.snapshot.get_location(location_id)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_{location_id}_devices"
        self._attr_name = f"{location.name if location else location_id} Devices"
        self._attr_icon = "mdi:boom-gate"

    def _location(self):
        return self.coordinator.data.snapshot.get_location(self._location_id)

    @property
    def available(self) -> bool:
        return super().available and self._location() is not None

    @property
    def device_info(self) -> DeviceInfo | None:
        """Return the device info."""
        return self.coordinator.get_location_device_info(self._location_id)

    @property
    def state_class(self) -> SensorStateClass | str | None:
        return SensorStateClass.MEASUREMENT

    @property
    def native_value(self) -> int | None:
        location = self._location()
        return location.total if location else None

    @property
    def native_unit_of_measurement(self) -> str | None:
        return "devices"

    @property
    def extra_state_attributes(self) -> dict | None:
        location = self._location()
        if location is None:
            return None
        return {
            "active": location.active,
            "standby": location.standby,
            "down": location.down,
            "category": location.category,
            "region": location.region,
            "zone": location.zone,
            "device_ids": list(location.device_ids),
        }


class AlertsSummarySensor(CoordinatorEntity[FleetCoordinator], SensorEntity):
    """Active alerts; severity counts are attributes."""

    def __init__(self, coordinator: FleetCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_alerts"
        self._attr_name = "Fleet Alerts"

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_fleet_device_info()

    @property
    def state_class(self) -> SensorStateClass | str | None:
        return SensorStateClass.MEASUREMENT

    @property
    def native_value(self) -> int | None:
        alerts = self.coordinator.data.alerts
        return alerts.total if alerts else None

    @property
    def icon(self) -> str | None:
        alerts = self.coordinator.data.alerts
        if alerts is not None and alerts.critical > 0:
            return "mdi:bell-alert"
        return "mdi:bell"

    @property
    def extra_state_attributes(self) -> dict | None:
        alerts = self.coordinator.data.alerts
        if alerts is None:
            return None
        return {
            "critical": alerts.critical,
            "warning": alerts.warning,
            "info": alerts.info,
            "unread": alerts.unread,
        }


class LastUpdatedSensor(CoordinatorEntity[FleetCoordinator], SensorEntity):
    """
    Time of the last successful device refresh.
    This is the non-blocking staleness indicator: fetch errors show up as
    attributes here instead of making the other entities unavailable.
    """

    def __init__(self, coordinator: FleetCoordinator) -> None:
        """Initialize the sensor."""
        super().__init__(coordinator)
        guid = coordinator.entry_data["guid"]
        self._attr_unique_id = f"rfid_fleet_{guid}_last_updated"
        self._attr_name = "Fleet Last Updated"
        self._attr_icon = "mdi:clock-check-outline"

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.coordinator.get_fleet_device_info()

    @property
    def device_class(self) -> SensorDeviceClass | str | None:
        return SensorDeviceClass.TIMESTAMP

    @property
    def native_value(self):
        return self.coordinator.data.last_updated

    @property
    def extra_state_attributes(self) -> dict | None:
        return {
            "last_error": self.coordinator.data.last_error,
            "live_updates_connected": self.coordinator.live_connected,
            "cache": self.coordinator.cache_stats(),
        }


async def async_setup_entry(
    hass: HomeAssistant,
    config_entry: config_entries.ConfigEntry,
    async_add_entities,
):
    """Add sensors for passed config_entry in HA."""
    coordinator: FleetCoordinator = config_entry.runtime_data

    entities: list[SensorEntity] = [FleetCounterSensor(coordinator, counter) for counter in FLEET_COUNTERS]
    entities.extend(FleetActivitySensor(coordinator, window) for window in ACTIVITY_WINDOWS)
    entities.append(AlertsSummarySensor(coordinator))
    entities.append(LastUpdatedSensor(coordinator))
    async_add_entities(entities)

    # Locations come and go with the device list; add sensors for new ones as they appear
    known_locations: set[str] = set()

    @callback
    def _add_new_locations() -> None:
        new_entities = []
        for location in coordinator.data.snapshot.locations():
            if location.location_id in known_locations:
                continue
            known_locations.add(location.location_id)
            new_entities.append(LocationDevicesSensor(coordinator, location.location_id))
        if new_entities:
            _LOGGER.debug("Adding %s location sensor(s)", len(new_entities))
            async_add_entities(new_entities)

    _add_new_locations()
    config_entry.async_on_unload(coordinator.async_add_listener(_add_new_locations))
