"""
DataUpdateCoordinator for the RFID fleet integration.

Responsibilities:
- Own one QueryCache per config entry with three keys (device list, status
  hierarchy, alerts summary) and their static topic subscriptions.
- Poll every POLL_INTERVAL seconds by invalidating the "poll" topic; the
  live update channel (when configured) invalidates finer topics in between.
- Rebuild the FleetData snapshot whenever a cache key applies a new result:
  rollup via StatusAggregator, markers via build_clusters, both memoised on
  the identity of the device tuple.
- Serve read hooks for the entity surfaces: device_status_data(),
  query_devices(), query_locations(), select_device().
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from homeassistant.config_entries import ConfigEntry
from homeassistant.core import HomeAssistant
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from .aggregator import StatusAggregator, compare_rollups
from .api.alerts import fetch_alerts_summary
from .api.devices import fetch_devices
from .api.hierarchy import fetch_status_hierarchy
from .const import (
    CONF_API_TOKEN,
    CONF_API_URL,
    CONF_CLUSTER_MARKERS,
    CONF_ENTRY_NAME,
    CONF_STATUS_BUCKETS,
    CONF_WS_URL,
    DOMAIN,
    EVENT_DEVICE_SELECTED,
    KEY_ALERTS,
    KEY_DEVICES,
    KEY_HIERARCHY,
    POLL_INTERVAL,
    STALE_AFTER,
    SUBSCRIPTIONS,
    TOPIC_POLL,
    VERSION,
)
from .coordinator_data import DeviceStatusView, FleetData
from .geo_clusters import build_clusters
from .live_updates import LiveMessage, LiveUpdateChannel
from .models import ClusterMode, FleetDevice, GeoCluster, StatusBucketMap
from .query_cache import QueryCache
from .requests import get_standard_headers
from .view_query import (
    DEVICE_SEARCH_FIELDS,
    LOCATION_SEARCH_FIELDS,
    QueryPage,
    SortSpec,
    ViewFilters,
    flatten_locations,
    page_size_for,
    query,
)

_LOGGER = logging.getLogger(__name__)

SelectionListener = Callable[[str], None]


# ---------------------------------------------------------------------------
# FleetCoordinator - main coordinator
# ---------------------------------------------------------------------------

class FleetCoordinator(DataUpdateCoordinator[FleetData]):
    """
    Coordinator for the RFID fleet integration.

    Entities never see the cache directly: they read self.data, which is
    swapped as a whole on every applied fetch.
    """

    def __init__(
        self, hass: HomeAssistant, entry_data: dict, config_entry: ConfigEntry | None = None
    ) -> None:
        """Initialize the coordinator from config-entry data (options already merged in)."""
        super().__init__(
            hass,
            _LOGGER,
            config_entry=config_entry,
            name=DOMAIN,
            update_interval=timedelta(seconds=POLL_INTERVAL),
        )
        self._entry_data = entry_data
        self.api_url: str = entry_data[CONF_API_URL]
        self._headers = get_standard_headers(entry_data.get(CONF_API_TOKEN))

        self.cache = QueryCache()
        self.cache.register(KEY_DEVICES, self._fetch_devices, SUBSCRIPTIONS[KEY_DEVICES])
        self.cache.register(KEY_HIERARCHY, self._fetch_hierarchy, SUBSCRIPTIONS[KEY_HIERARCHY])
        self.cache.register(KEY_ALERTS, self._fetch_alerts, SUBSCRIPTIONS[KEY_ALERTS])
        self._remove_cache_listener = self.cache.add_listener(self._on_cache_update)

        self.aggregator = StatusAggregator(
            StatusBucketMap.from_config(entry_data.get(CONF_STATUS_BUCKETS))
        )

        # (device tuple, mode, markers) of the last cluster build
        self._cluster_memo: tuple[tuple[FleetDevice, ...], ClusterMode, tuple[GeoCluster, ...]] | None = None
        # identity pair of the last reconciled (client, server) snapshots
        self._last_reconciled: tuple[int, int] | None = None

        self._selection_listeners: list[SelectionListener] = []
        self._refresh_tasks: set[asyncio.Task] = set()
        self._live: LiveUpdateChannel | None = None
        self._initial_refresh_done: bool = False

        mode = ClusterMode.CLUSTERED if entry_data.get(CONF_CLUSTER_MARKERS) else ClusterMode.INDIVIDUAL
        self.data = FleetData(cluster_mode=mode)

    # ------------------------------------------------------------------
    # HA entry point
    # ------------------------------------------------------------------

    async def _async_update_data(self) -> FleetData:
        """
        Called by HA on every update_interval tick.

        First call: suspends until every key has resolved once, so that
        async_config_entry_first_refresh() only succeeds with real data.

        Subsequent calls: keys that already hold data start a background
        refresh and return immediately; entities receive the new snapshot via
        async_set_updated_data() when each fetch applies.
        """
        self.cache.invalidate(TOPIC_POLL)
        await asyncio.gather(*(self.cache.get(key) for key in self.cache.keys))

        if not self._initial_refresh_done:
            if self.cache.peek(KEY_DEVICES) is None and self.cache.peek(KEY_HIERARCHY) is None:
                status = self.cache.status(KEY_DEVICES)
                raise UpdateFailed(f"Fleet API unavailable: {status.error}")
            self._initial_refresh_done = True

        return self._build_data()

    # ------------------------------------------------------------------
    # Fetchers registered with the cache
    # ------------------------------------------------------------------

    async def _fetch_devices(self):
        return await fetch_devices(self.api_url, self._headers)

    async def _fetch_hierarchy(self):
        return await fetch_status_hierarchy(self.api_url, self._headers)

    async def _fetch_alerts(self):
        return await fetch_alerts_summary(self.api_url, self._headers)

    # ------------------------------------------------------------------
    # Snapshot building
    # ------------------------------------------------------------------

    def _on_cache_update(self, key: str) -> None:
        """Cache listener: push a fresh snapshot once setup has completed."""
        if not self._initial_refresh_done:
            return
        _LOGGER.debug("Cache key %s updated, rebuilding fleet snapshot", key)
        self.async_set_updated_data(self._build_data())

    def _build_data(self) -> FleetData:
        hierarchy = self.cache.peek(KEY_HIERARCHY)
        server_snapshot, server_devices = hierarchy if hierarchy is not None else (None, ())

        devices = self.cache.peek(KEY_DEVICES)
        source_key = KEY_DEVICES
        if devices is None:
            # Only the hierarchy is available: fold its flattened rows instead
            devices = server_devices
            source_key = KEY_HIERARCHY
        devices = tuple(devices)

        snapshot = self.aggregator.aggregate(devices)
        clusters = self._clusters_for(devices, self.data.cluster_mode)
        if server_snapshot is not None and source_key == KEY_DEVICES:
            self._reconcile(snapshot, server_snapshot)

        status = self.cache.status(source_key)
        return dataclasses.replace(
            self.data,
            devices=devices,
            snapshot=snapshot,
            server_snapshot=server_snapshot,
            clusters=clusters,
            alerts=self.cache.peek(KEY_ALERTS),
            last_updated=status.updated_at,
            last_error=str(status.error) if status.error is not None else None,
        )

    def _clusters_for(self, devices: tuple[FleetDevice, ...], mode: ClusterMode) -> tuple[GeoCluster, ...]:
        memo = self._cluster_memo
        if memo is not None and memo[0] is devices and memo[1] is mode:
            return memo[2]
        clusters = build_clusters(devices, mode)
        self._cluster_memo = (devices, mode, clusters)
        return clusters

    def _reconcile(self, client, server) -> None:
        pair = (id(client), id(server))
        if pair == self._last_reconciled:
            return
        self._last_reconciled = pair
        differing = compare_rollups(client, server)
        if differing:
            _LOGGER.warning(
                "Server status hierarchy disagrees with the device list for %s location(s): %s",
                len(differing), ", ".join(differing[:10]),
            )

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    def async_start_live_updates(self) -> None:
        """Open the push channel when a websocket URL is configured."""
        ws_url = self._entry_data.get(CONF_WS_URL)
        if not ws_url:
            _LOGGER.debug("No websocket URL configured, polling only")
            return
        if self._live is None:
            self._live = LiveUpdateChannel(ws_url, self._headers, self._handle_live_message)
        self._live.start()

    def _handle_live_message(self, message: LiveMessage) -> None:
        """Invalidate the message's topics and schedule the refetches; never blocks."""
        affected: list[str] = []
        for topic in message.topics:
            affected.extend(self.cache.invalidate(topic))
        if not affected:
            return
        task = self.hass.async_create_task(self._async_refresh_keys(sorted(set(affected))))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _async_refresh_keys(self, keys: list[str]) -> None:
        await asyncio.gather(*(self.cache.get(key) for key in keys))

    @property
    def live_connected(self) -> bool:
        return self._live is not None and self._live.connected

    # ------------------------------------------------------------------
    # Read hooks for entity surfaces
    # ------------------------------------------------------------------

    def device_status_data(self) -> DeviceStatusView:
        """Current rollup plus loading and staleness flags."""
        has_data = (
            self.cache.status(KEY_DEVICES).has_data
            or self.cache.status(KEY_HIERARCHY).has_data
        )
        last_updated = self.data.last_updated
        is_stale = last_updated is None or (
            datetime.now(timezone.utc) - last_updated > timedelta(seconds=STALE_AFTER)
        )
        return DeviceStatusView(
            data=self.data.snapshot,
            is_loading=not has_data,
            last_updated=last_updated,
            is_stale=is_stale,
        )

    def query_devices(
        self,
        filters: ViewFilters | None = None,
        sort: SortSpec | None = None,
        page: int = 1,
        surface: str = "device_table",
    ) -> QueryPage:
        return query(
            self.data.devices, filters, sort, page, page_size_for(surface), DEVICE_SEARCH_FIELDS
        )

    def query_locations(
        self,
        filters: ViewFilters | None = None,
        sort: SortSpec | None = None,
        page: int = 1,
        surface: str = "plaza_grid",
    ) -> QueryPage:
        return query(
            flatten_locations(self.data.snapshot), filters, sort, page,
            page_size_for(surface), LOCATION_SEARCH_FIELDS,
        )

    def cache_stats(self) -> dict:
        return self.cache.stats()

    # ------------------------------------------------------------------
    # Write paths - cluster mode and device selection
    # ------------------------------------------------------------------

    def set_cluster_mode(self, mode: ClusterMode | str) -> None:
        """Switch the marker mode and push rebuilt clusters immediately."""
        mode = ClusterMode(mode)
        if mode is self.data.cluster_mode:
            return
        clusters = self._clusters_for(self.data.devices, mode)
        self.async_set_updated_data(
            dataclasses.replace(self.data, cluster_mode=mode, clusters=clusters)
        )

    def select_device(self, device_id: str) -> bool:
        """
        Announce that a surface opened the detail view of device_id.

        Fires EVENT_DEVICE_SELECTED on the HA bus and calls every selection
        listener. Returns False for ids not in the current snapshot.
        """
        device = self.data.get_device(device_id)
        if device is None:
            _LOGGER.warning("Cannot select unknown device %s", device_id)
            return False
        self.hass.bus.async_fire(
            EVENT_DEVICE_SELECTED,
            {"device_id": device_id, "location_id": device.location_id},
        )
        for listener in list(self._selection_listeners):
            try:
                listener(device_id)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Device selection listener failed for %s", device_id)
        return True

    def add_selection_listener(self, listener: SelectionListener) -> Callable[[], None]:
        self._selection_listeners.append(listener)

        def _remove() -> None:
            if listener in self._selection_listeners:
                self._selection_listeners.remove(listener)

        return _remove

    # ------------------------------------------------------------------
    # Entity helper - device info dicts
    # ------------------------------------------------------------------

    def get_fleet_device_info(self) -> dict:
        """HA DeviceInfo dict for the fleet as a whole."""
        return {
            "identifiers": {(DOMAIN, self._entry_data["guid"])},
            "name": self._entry_data.get(CONF_ENTRY_NAME) or "RFID Fleet",
            "manufacturer": "RFID Fleet Monitor",
            "model": "Fleet",
            "sw_version": VERSION,
        }

    def get_location_device_info(self, location_id: str) -> dict | None:
        """HA DeviceInfo dict for one location, attached to the fleet device."""
        location = self.data.snapshot.get_location(location_id)
        if location is None:
            return None
        return {
            "identifiers": {(DOMAIN, f"{self._entry_data['guid']}_{location_id}")},
            "name": location.name,
            "manufacturer": "RFID Fleet Monitor",
            "model": location.category or "Unknown",
            "sw_version": VERSION,
            "via_device": (DOMAIN, self._entry_data["guid"]),
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def async_shutdown(self) -> None:
        """Clean up all resources owned by this coordinator."""
        if self._live is not None:
            await self._live.stop()
        for task in list(self._refresh_tasks):
            task.cancel()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks, return_exceptions=True)
        self._refresh_tasks.clear()
        await self.cache.shutdown()
        self._selection_listeners.clear()

    @property
    def entry_data(self):
        return self._entry_data
