"""Config flow for the RFID Fleet Monitor integration."""
from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, Optional
import homeassistant.helpers.config_validation as cv
import voluptuous as vol

from homeassistant import config_entries
from homeassistant.core import callback

from . import _validate_credentials
from .const import (
    CONF_API_TOKEN,
    CONF_API_URL,
    CONF_CLUSTER_MARKERS,
    CONF_ENTRY_NAME,
    CONF_STATUS_BUCKETS,
    CONF_WS_URL,
    DOMAIN,
)
from .models import DeviceStatus, RollupBucket

_LOGGER = logging.getLogger(__name__)

CONFIG_SCHEMA = vol.Schema(
            {
                vol.Required(CONF_ENTRY_NAME, default='My RFID Fleet'): cv.string,
                vol.Required(CONF_API_URL, default=''): cv.string,
                vol.Optional(CONF_API_TOKEN, default=''): cv.string,
                vol.Optional(CONF_WS_URL, default=''): cv.string,
                vol.Required(CONF_CLUSTER_MARKERS, default=False): cv.boolean,
            }
        )


def _check_urls(data: Dict[str, Any]) -> str | None:
    """Return an error key for a missing or malformed URL, None when both are fine."""
    if not data.get(CONF_API_URL):
        return 'api_url_required'
    if not data[CONF_API_URL].startswith(('http://', 'https://')):
        return 'invalid_api_url'
    if data.get(CONF_WS_URL) and not data[CONF_WS_URL].startswith(('ws://', 'wss://')):
        return 'invalid_ws_url'
    return None


def parse_status_buckets(text: str) -> Dict[str, str]:
    """
    Parse "WARNING=ACTIVE, MAINTENANCE=DOWN" into {"WARNING": "ACTIVE", ...}.

    Raises vol.Invalid for unknown statuses, unknown buckets or malformed pairs.
    """
    overrides: Dict[str, str] = {}
    for part in (text or '').split(','):
        part = part.strip()
        if not part:
            continue
        status, sep, bucket = part.partition('=')
        status, bucket = status.strip().upper(), bucket.strip().upper()
        if not sep or status not in DeviceStatus.__members__ or bucket not in RollupBucket.__members__:
            raise vol.Invalid(f"Invalid status bucket override: {part}")
        overrides[status] = bucket
    return overrides


def format_status_buckets(overrides: Dict[str, str] | None) -> str:
    return ', '.join(f"{status}={bucket}" for status, bucket in sorted((overrides or {}).items()))


class CustomFlow(config_entries.ConfigFlow, domain=DOMAIN):
    data: Optional[Dict[str, Any]]

    async def async_step_user(self, user_input: Optional[Dict[str, Any]] = None):
        errors: Dict[str, str] = {}
        if user_input is not None:
            self.data = user_input
            # Create new guid for the entry
            self.data['guid'] = str(uuid.uuid4())
            if not self.data.get(CONF_ENTRY_NAME):
                errors['base'] = 'entry_name_required'
            url_error = _check_urls(self.data)
            if url_error:
                errors['base'] = url_error
            if not errors:
                # One entry per backend
                self._async_abort_entries_match({CONF_API_URL: self.data[CONF_API_URL]})
                error = await _validate_credentials(self.data[CONF_API_URL], self.data.get(CONF_API_TOKEN))
                if error:
                    errors['base'] = error
            if not errors:
                return self.async_create_entry(title=f"{self.data[CONF_ENTRY_NAME]}", data=self.data)

        return self.async_show_form(step_id="user", data_schema=CONFIG_SCHEMA, errors=errors)

    @staticmethod
    @callback
    def async_get_options_flow(config_entry):
        """Get the options flow for this handler."""
        return OptionsFlowHandler(config_entry)


class OptionsFlowHandler(config_entries.OptionsFlow):
    """Handles options flow for the component."""

    def __init__(self, config_entry: config_entries.ConfigEntry) -> None:
        self._entry = config_entry

    def _current(self, key: str, default: Any) -> Any:
        """Options take precedence over the original entry data."""
        if key in self._entry.options:
            return self._entry.options[key]
        return self._entry.data.get(key, default)

    async def async_step_init(
        self, user_input: Dict[str, Any] = None
    ) -> Dict[str, Any]:
        errors: Dict[str, str] = {}

        if user_input is not None:
            overrides: Dict[str, str] = {}
            try:
                overrides = parse_status_buckets(user_input.get(CONF_STATUS_BUCKETS, ''))
            except vol.Invalid as exc:
                _LOGGER.debug("Rejected status bucket overrides: %s", exc)
                errors['base'] = 'invalid_status_buckets'
            url_error = _check_urls(user_input)
            if url_error:
                errors['base'] = url_error
            if not errors:
                error = await _validate_credentials(user_input[CONF_API_URL], user_input.get(CONF_API_TOKEN))
                if error:
                    errors['base'] = error
            if not errors:
                new_data = {
                    'guid': self._entry.data['guid'],
                    CONF_ENTRY_NAME: user_input[CONF_ENTRY_NAME],
                    CONF_API_URL: user_input[CONF_API_URL],
                    CONF_API_TOKEN: user_input.get(CONF_API_TOKEN, ''),
                    CONF_WS_URL: user_input.get(CONF_WS_URL, ''),
                    CONF_CLUSTER_MARKERS: user_input[CONF_CLUSTER_MARKERS],
                    CONF_STATUS_BUCKETS: overrides,
                }

                # Rename the entry in the UI
                self.hass.config_entries.async_update_entry(
                    self._entry,
                    data=new_data,
                    title=new_data[CONF_ENTRY_NAME],
                )

                return self.async_create_entry(title=f"{new_data[CONF_ENTRY_NAME]}", data=new_data)

        OPTIONS_SCHEMA = vol.Schema(
            {
                vol.Required(CONF_ENTRY_NAME, default=self._current(CONF_ENTRY_NAME, '')): cv.string,
                vol.Required(CONF_API_URL, default=self._current(CONF_API_URL, '')): cv.string,
                vol.Optional(CONF_API_TOKEN, default=self._current(CONF_API_TOKEN, '')): cv.string,
                vol.Optional(CONF_WS_URL, default=self._current(CONF_WS_URL, '')): cv.string,
                vol.Required(CONF_CLUSTER_MARKERS, default=self._current(CONF_CLUSTER_MARKERS, False)): cv.boolean,
                vol.Optional(
                    CONF_STATUS_BUCKETS,
                    default=format_status_buckets(self._current(CONF_STATUS_BUCKETS, {})),
                ): cv.string,
            }
        )
        return self.async_show_form(step_id="init", data_schema=OPTIONS_SCHEMA, errors=errors)
