"""
Real API integration tests for FleetCoordinator.
Requires the RFID_FLEET_API_URL environment variable (and RFID_FLEET_API_TOKEN
for backends that need one) to run.
Skip with:  pytest -k "not Integration"
"""

from __future__ import annotations

import asyncio
import os
import unittest
from unittest.mock import MagicMock

from dotenv import load_dotenv

from custom_components.rfid_fleet.api.devices import fetch_devices
from custom_components.rfid_fleet.coordinator import FleetCoordinator
from custom_components.rfid_fleet.coordinator_data import FleetData
from custom_components.rfid_fleet.requests import check_backend_availability

from .test_common import make_entry_data


class TestCoordinatorIntegration(unittest.IsolatedAsyncioTestCase):
    """
    Integration tests that hit a real fleet backend.
    Skipped automatically when RFID_FLEET_API_URL is not set.
    """

    def setUp(self):
        load_dotenv()
        api_url = os.getenv("RFID_FLEET_API_URL")
        if not api_url:
            self.skipTest("RFID_FLEET_API_URL not set - skipping integration tests")

        self._entry_data = make_entry_data(
            api_url=api_url,
            api_token=os.getenv("RFID_FLEET_API_TOKEN", ""),
        )

    def _make_real_coordinator(self) -> FleetCoordinator:
        hass = MagicMock()
        hass.async_create_task = lambda coro: asyncio.ensure_future(coro)
        return FleetCoordinator(hass, self._entry_data)

    async def test_backend_reachable(self):
        self.assertTrue(await check_backend_availability(self._entry_data["api_url"]))

    async def test_fetch_devices(self):
        coord = self._make_real_coordinator()

        devices = await fetch_devices(coord.api_url, coord._headers)

        for device in devices:
            self.assertIsNotNone(device.device_id)

    async def test_first_refresh_builds_consistent_rollup(self):
        coord = self._make_real_coordinator()
        try:
            data = await coord._async_update_data()
        finally:
            await coord.async_shutdown()

        self.assertIsInstance(data, FleetData)
        snapshot = data.snapshot
        self.assertEqual(snapshot.total, len(data.devices))
        self.assertEqual(snapshot.active + snapshot.standby + snapshot.down, snapshot.total)
