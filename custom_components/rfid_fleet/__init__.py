import asyncio
import logging

import aiohttp
import voluptuous as vol

from homeassistant import config_entries, core
from homeassistant.config_entries import ConfigEntryState
from homeassistant.const import Platform
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import ConfigEntryNotReady, ServiceValidationError
import homeassistant.helpers.config_validation as cv

from .api.alerts import ALERTS_SUMMARY_PATH
from .const import CONF_API_TOKEN, CONF_API_URL, DOMAIN, SERVICE_SELECT_DEVICE
from .coordinator import FleetCoordinator
from .requests import (
    ApiResponseError,
    build_url,
    check_backend_availability,
    get_standard_headers,
    make_request,
)

PLATFORMS: list[Platform] = [Platform.DEVICE_TRACKER, Platform.SENSOR, Platform.BINARY_SENSOR, Platform.SWITCH]
_LOGGER = logging.getLogger(__name__)

CONFIG_SCHEMA = cv.config_entry_only_config_schema(DOMAIN)

SELECT_DEVICE_SCHEMA = vol.Schema({vol.Required("device_id"): cv.string})


async def _validate_credentials(api_url: str, api_token: str | None) -> str | None:
    """
    Probe the backend with the configured URL and token.

    Returns None when both work, "cannot_connect" when the backend is
    unreachable and "invalid_auth" when it rejects the token.
    """
    if not await check_backend_availability(api_url):
        return "cannot_connect"
    try:
        await make_request(
            "GET",
            build_url(api_url, ALERTS_SUMMARY_PATH),
            get_standard_headers(api_token),
            max_attempts=1,
        )
    except ApiResponseError as exc:
        if exc.is_auth_error:
            return "invalid_auth"
        _LOGGER.warning("Fleet API credential check failed: %s", exc)
        return "cannot_connect"
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        _LOGGER.warning("Fleet API credential check failed: %s", exc)
        return "cannot_connect"
    return None


async def async_setup(hass: core.HomeAssistant, config: dict) -> bool:
    """Set up the integration-wide select_device service."""

    async def _async_select_device(call: ServiceCall) -> None:
        device_id = call.data["device_id"]
        for entry in hass.config_entries.async_entries(DOMAIN):
            if entry.state is not ConfigEntryState.LOADED:
                continue
            if entry.runtime_data.select_device(device_id):
                return
        raise ServiceValidationError(f"Unknown fleet device: {device_id}")

    hass.services.async_register(
        DOMAIN, SERVICE_SELECT_DEVICE, _async_select_device, schema=SELECT_DEVICE_SCHEMA
    )
    return True


async def async_setup_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Set up platforms from a ConfigEntry."""
    entry_data = {**entry.data, **entry.options}

    error = await _validate_credentials(entry_data[CONF_API_URL], entry_data.get(CONF_API_TOKEN))
    if error == "cannot_connect":
        raise ConfigEntryNotReady(f"Cannot reach the fleet API at {entry_data[CONF_API_URL]}")
    if error == "invalid_auth":
        raise ConfigEntryNotReady("The fleet API rejected the configured credentials")

    coordinator = FleetCoordinator(hass, entry_data, entry)
    await coordinator.async_config_entry_first_refresh()
    entry.runtime_data = coordinator

    entry.async_on_unload(
        entry.add_update_listener(_async_update_listener)
    )

    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    coordinator.async_start_live_updates()
    return True


async def async_remove_config_entry_device(
    hass: core.HomeAssistant, config_entry: config_entries.ConfigEntry, device_entry
) -> bool:
    """Allow removing a location device; it comes back if the location reappears."""
    return True


async def _async_update_listener(hass: HomeAssistant, config_entry):
    """Handle config options update."""
    # Reload the integration when the options change.
    await hass.config_entries.async_reload(config_entry.entry_id)


async def async_unload_entry(
    hass: core.HomeAssistant, entry: config_entries.ConfigEntry
) -> bool:
    """Unload a config entry."""
    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if unload_ok:
        await entry.runtime_data.async_shutdown()
    return unload_ok
