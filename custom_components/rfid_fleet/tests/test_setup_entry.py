"""
Unit tests for __init__.py: credential probing, async_setup_entry,
async_unload_entry and the select_device service.

Coverage:
- cannot_connect → raises ConfigEntryNotReady before coordinator is created
- invalid_auth   → raises ConfigEntryNotReady before coordinator is created
- valid credentials + coordinator success → returns True, runtime_data set, live channel started
- valid credentials + coordinator first-refresh fails → raises ConfigEntryNotReady
- options override data when the coordinator is built
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
from homeassistant.config_entries import ConfigEntryState
from homeassistant.exceptions import ConfigEntryNotReady, ServiceValidationError

from custom_components.rfid_fleet.requests import ApiResponseError

from .test_common import make_entry_data


def _make_mock_entry(options: dict | None = None) -> MagicMock:
    """Return a minimal mock ConfigEntry."""
    entry = MagicMock()
    entry.data = make_entry_data()
    entry.options = dict(options or {})
    entry.async_on_unload = MagicMock()
    entry.add_update_listener = MagicMock(return_value=MagicMock())
    return entry


def _make_mock_coordinator(first_refresh=None) -> MagicMock:
    coordinator = MagicMock()
    coordinator.async_config_entry_first_refresh = first_refresh or AsyncMock()
    coordinator.async_shutdown = AsyncMock()
    return coordinator


class TestValidateCredentials(unittest.IsolatedAsyncioTestCase):

    async def _validate(self, available=True, check=None):
        from custom_components.rfid_fleet import _validate_credentials

        check = check or AsyncMock(return_value={"total": 0})
        with patch(
            "custom_components.rfid_fleet.check_backend_availability",
            new=AsyncMock(return_value=available),
        ), patch("custom_components.rfid_fleet.make_request", new=check):
            return await _validate_credentials("https://fleet.example.com/api", "token")

    async def test_ok(self):
        self.assertIsNone(await self._validate())

    async def test_unreachable(self):
        self.assertEqual(await self._validate(available=False), "cannot_connect")

    async def test_rejected_token(self):
        check = AsyncMock(side_effect=ApiResponseError(401, {"message": "bad token"}))

        self.assertEqual(await self._validate(check=check), "invalid_auth")

    async def test_check_failures(self):
        for exc in (ApiResponseError(500), aiohttp.ClientConnectionError("reset"),
                    asyncio.TimeoutError(), ValueError("not json")):
            with self.subTest(exc=type(exc).__name__):
                with self.assertLogs("custom_components.rfid_fleet", level="WARNING"):
                    result = await self._validate(check=AsyncMock(side_effect=exc))

                self.assertEqual(result, "cannot_connect")

    async def test_check_uses_single_attempt_and_token(self):
        check = AsyncMock(return_value={})

        await self._validate(check=check)

        args, kwargs = check.await_args
        self.assertEqual(args[1], "https://fleet.example.com/api/alerts-summary")
        self.assertEqual(args[2]["Authorization"], "Bearer token")
        self.assertEqual(kwargs["max_attempts"], 1)


class TestAsyncSetupEntry(unittest.IsolatedAsyncioTestCase):
    """Tests for async_setup_entry in __init__.py."""

    async def test_cannot_connect_raises_config_entry_not_ready(self):
        from custom_components.rfid_fleet import async_setup_entry

        with patch(
            "custom_components.rfid_fleet._validate_credentials",
            new=AsyncMock(return_value="cannot_connect"),
        ), patch("custom_components.rfid_fleet.FleetCoordinator") as MockCoord:
            with self.assertRaises(ConfigEntryNotReady) as ctx:
                await async_setup_entry(MagicMock(), _make_mock_entry())

        self.assertIn("fleet API", str(ctx.exception))
        MockCoord.assert_not_called()

    async def test_invalid_auth_raises_config_entry_not_ready(self):
        from custom_components.rfid_fleet import async_setup_entry

        with patch(
            "custom_components.rfid_fleet._validate_credentials",
            new=AsyncMock(return_value="invalid_auth"),
        ), patch("custom_components.rfid_fleet.FleetCoordinator") as MockCoord:
            with self.assertRaises(ConfigEntryNotReady) as ctx:
                await async_setup_entry(MagicMock(), _make_mock_entry())

        self.assertIn("credentials", str(ctx.exception))
        MockCoord.assert_not_called()

    async def test_valid_credentials_completes_setup(self):
        from custom_components.rfid_fleet import PLATFORMS, async_setup_entry

        hass = MagicMock()
        hass.config_entries.async_forward_entry_setups = AsyncMock()
        entry = _make_mock_entry()
        mock_coordinator = _make_mock_coordinator()

        with patch(
            "custom_components.rfid_fleet._validate_credentials",
            new=AsyncMock(return_value=None),
        ), patch(
            "custom_components.rfid_fleet.FleetCoordinator",
            return_value=mock_coordinator,
        ):
            result = await async_setup_entry(hass, entry)

        self.assertTrue(result)
        self.assertEqual(entry.runtime_data, mock_coordinator)
        mock_coordinator.async_config_entry_first_refresh.assert_awaited_once()
        hass.config_entries.async_forward_entry_setups.assert_awaited_once_with(entry, PLATFORMS)
        mock_coordinator.async_start_live_updates.assert_called_once()
        entry.add_update_listener.assert_called_once()

    async def test_options_override_entry_data(self):
        from custom_components.rfid_fleet import async_setup_entry

        hass = MagicMock()
        hass.config_entries.async_forward_entry_setups = AsyncMock()
        entry = _make_mock_entry(options={"api_url": "https://override.example.com/api"})
        validate = AsyncMock(return_value=None)

        with patch("custom_components.rfid_fleet._validate_credentials", new=validate), patch(
            "custom_components.rfid_fleet.FleetCoordinator",
            return_value=_make_mock_coordinator(),
        ) as MockCoord:
            await async_setup_entry(hass, entry)

        validate.assert_awaited_once_with("https://override.example.com/api", "secret-token")
        entry_data = MockCoord.call_args.args[1]
        self.assertEqual(entry_data["api_url"], "https://override.example.com/api")
        self.assertEqual(entry_data["guid"], "test-guid")

    async def test_coordinator_first_refresh_failure_raises_config_entry_not_ready(self):
        from custom_components.rfid_fleet import async_setup_entry

        hass = MagicMock()
        mock_coordinator = _make_mock_coordinator(
            AsyncMock(side_effect=ConfigEntryNotReady("refresh failed"))
        )

        with patch(
            "custom_components.rfid_fleet._validate_credentials",
            new=AsyncMock(return_value=None),
        ), patch(
            "custom_components.rfid_fleet.FleetCoordinator",
            return_value=mock_coordinator,
        ):
            with self.assertRaises(ConfigEntryNotReady):
                await async_setup_entry(hass, _make_mock_entry())

        mock_coordinator.async_start_live_updates.assert_not_called()


class TestAsyncUnloadEntry(unittest.IsolatedAsyncioTestCase):

    async def test_unload_shuts_down_coordinator(self):
        from custom_components.rfid_fleet import async_unload_entry

        hass = MagicMock()
        hass.config_entries.async_unload_platforms = AsyncMock(return_value=True)
        entry = _make_mock_entry()
        entry.runtime_data = _make_mock_coordinator()

        self.assertTrue(await async_unload_entry(hass, entry))
        entry.runtime_data.async_shutdown.assert_awaited_once()

    async def test_failed_unload_keeps_coordinator(self):
        from custom_components.rfid_fleet import async_unload_entry

        hass = MagicMock()
        hass.config_entries.async_unload_platforms = AsyncMock(return_value=False)
        entry = _make_mock_entry()
        entry.runtime_data = _make_mock_coordinator()

        self.assertFalse(await async_unload_entry(hass, entry))
        entry.runtime_data.async_shutdown.assert_not_awaited()


class TestSelectDeviceService(unittest.IsolatedAsyncioTestCase):

    async def _register(self, entries):
        from custom_components.rfid_fleet import async_setup

        hass = MagicMock()
        hass.config_entries.async_entries.return_value = entries
        self.assertTrue(await async_setup(hass, {}))
        domain, service, handler = hass.services.async_register.call_args.args[:3]
        self.assertEqual((domain, service), ("rfid_fleet", "select_device"))
        return handler

    def _entry(self, state, selects):
        entry = MagicMock()
        entry.state = state
        entry.runtime_data.select_device.return_value = selects
        return entry

    async def test_selects_on_loaded_entry(self):
        not_loaded = self._entry(ConfigEntryState.SETUP_RETRY, True)
        other = self._entry(ConfigEntryState.LOADED, False)
        owner = self._entry(ConfigEntryState.LOADED, True)
        handler = await self._register([not_loaded, other, owner])

        await handler(MagicMock(data={"device_id": "RDR-1"}))

        not_loaded.runtime_data.select_device.assert_not_called()
        owner.runtime_data.select_device.assert_called_once_with("RDR-1")

    async def test_unknown_device_raises(self):
        handler = await self._register([self._entry(ConfigEntryState.LOADED, False)])

        with self.assertRaises(ServiceValidationError):
            await handler(MagicMock(data={"device_id": "NOPE"}))
