"""
Low-level device data fetching from the fleet API.

Responsible for:
- Fetching the raw device list from the API
- Mapping the JSON response fields onto FleetDevice model instances

Malformed rows never abort a fetch: bad fields become None, and only a row
without any identifier is skipped.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any

from custom_components.rfid_fleet.models import (
    FleetDevice,
    clamp_health,
    compute_health_score,
    parse_device_class,
    parse_status,
)
from custom_components.rfid_fleet.requests import build_url, make_request

_LOGGER = logging.getLogger(__name__)

DEVICES_PATH = "devices"


def normalize_list_response(raw_json: Any) -> list:
    """Accept a bare list, {"data": [...]} or {"success": [...]}; anything else is empty."""
    if raw_json is None:
        return []
    if isinstance(raw_json, list):
        return raw_json
    if isinstance(raw_json, dict):
        for key in ("data", "success"):
            if isinstance(raw_json.get(key), list):
                return raw_json[key]
    _LOGGER.warning("Unexpected list response shape: %s", type(raw_json).__name__)
    return []


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            _LOGGER.debug("Unparseable timestamp: %r", value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_float(value: Any) -> float | None:
    """Coordinates arrive as decimal strings; empty or non-numeric values become None."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_int(value: Any, default: int | None = 0) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        # OverflowError: "Infinity" and 1e400 parse as float but have no int value
        return default


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_device(device: dict) -> FleetDevice | None:
    """Map a single raw API device dict onto a FleetDevice instance."""
    if not isinstance(device, dict):
        _LOGGER.warning("Skipping non-object device row: %r", device)
        return None
    device_id = _text(device.get("id")) or _text(device.get("deviceId"))
    if device_id is None:
        _LOGGER.warning("Device row without an id, skipping: %s", device)
        return None

    if device.get("healthScore") is not None:
        health = clamp_health(device["healthScore"])
    else:
        health = compute_health_score(device.get("metrics"))

    return FleetDevice(
        device_id=device_id,
        status=parse_status(device.get("status")),
        sub_status=_text(device.get("subStatus")),
        device_class=parse_device_class(device.get("deviceType")),
        vendor=_text(device.get("vendor")),
        model=_text(device.get("model")),
        location_id=_text(device.get("locationId")) or _text(device.get("tollPlaza")),
        location_name=_text(device.get("location")),
        toll_plaza=_text(device.get("tollPlaza")),
        region=_text(device.get("region")),
        zone=_text(device.get("zone")),
        category=_text(device.get("category")),
        latitude=parse_float(device.get("latitude")),
        longitude=parse_float(device.get("longitude")),
        last_seen=parse_timestamp(device.get("lastSeen")),
        last_transaction=parse_timestamp(device.get("lastTransaction")),
        uptime=parse_int(device.get("uptime"), default=None),
        success_count=parse_int(device.get("successCount")),
        pending_count=parse_int(device.get("pendingCount")),
        transaction_count=parse_int(device.get("transactionCount")),
        health_score=health,
        mac_address=_text(device.get("macAddress")),
        asset_id=_text(device.get("assetId")),
        serial_number=_text(device.get("serialNumber")),
    )


def parse_devices(raw_json: Any) -> tuple[FleetDevice, ...]:
    """Parse a device list payload; a repeated id keeps its last row."""
    by_id: dict[str, FleetDevice] = {}
    for row in normalize_list_response(raw_json):
        parsed = parse_device(row)
        if parsed is None:
            continue
        if parsed.device_id in by_id:
            _LOGGER.debug("Duplicate device id %s in payload, keeping last row", parsed.device_id)
        by_id[parsed.device_id] = parsed
    return tuple(by_id.values())


async def fetch_devices(api_url: str, headers: dict) -> tuple[FleetDevice, ...]:
    """
    Fetch the full device list from the fleet API.

    Errors propagate to the caller; the query cache records them and keeps
    serving the previous list.

    Corresponding CURL command:
    curl -X 'GET' '<api_url>/devices' -H 'Authorization: Bearer <token>'
    """
    raw_json = await make_request("GET", build_url(api_url, DEVICES_PATH), headers)
    devices = parse_devices(raw_json)
    _LOGGER.debug("Fetched %s device(s)", len(devices))
    return devices
