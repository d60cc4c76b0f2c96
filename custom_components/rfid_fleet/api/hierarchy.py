"""
Fetching and parsing of the server-computed status hierarchy.

Responsible for:
- Fetching the Category → Location → Device tree with server rollups
- Mapping it onto a FleetSnapshot (source="server")
- Flattening its device rows into FleetDevice records so the client-side
  aggregator can run on the same data
"""
import logging
from datetime import datetime, timezone
from typing import Any

from custom_components.rfid_fleet.const import (
    ACTIVITY_WINDOWS,
    HIERARCHY_STATUS_CODES,
    UNKNOWN_CATEGORY,
    UNKNOWN_LOCATION,
)
from custom_components.rfid_fleet.models import (
    CategoryRollup,
    FleetDevice,
    FleetSnapshot,
    LocationRollup,
    parse_status,
)
from custom_components.rfid_fleet.requests import build_url, make_request
from custom_components.rfid_fleet.api.devices import parse_int, parse_timestamp

_LOGGER = logging.getLogger(__name__)

HIERARCHY_PATH = "device-status-hierarchy"

# Activity window label → payload field
_ACTIVITY_FIELDS: dict[str, str] = {
    "48h": "LastActive48H",
    "1w":  "LastActive1W",
    "15d": "LastActive15D",
    "1m":  "LastActive1M",
}


def _unwrap(raw_json: Any) -> dict:
    if isinstance(raw_json, dict) and isinstance(raw_json.get("data"), dict):
        return raw_json["data"]
    if isinstance(raw_json, dict):
        return raw_json
    _LOGGER.warning("Unexpected hierarchy response shape: %s", type(raw_json).__name__)
    return {}


def parse_status_code(code: Any):
    """Map the numeric DeviceStatus code onto (status, sub_status); unknown codes give (None, None)."""
    mapped = HIERARCHY_STATUS_CODES.get(parse_int(code, default=None))
    if mapped is None:
        return None, None
    status, sub_status = mapped
    return parse_status(status), sub_status


def _parse_device_row(row: dict, location: str, category: str) -> FleetDevice | None:
    device_id = row.get("ASSET_ID") or row.get("MAC_ID")
    if not device_id:
        _LOGGER.warning("Hierarchy device row without ASSET_ID/MAC_ID at %s, skipping", location)
        return None
    status, sub_status = parse_status_code(row.get("DeviceStatus"))
    return FleetDevice(
        device_id=str(device_id),
        status=status,
        sub_status=sub_status,
        location_id=location,
        location_name=location,
        category=category,
        last_seen=parse_timestamp(row.get("LastSync")),
        success_count=parse_int(row.get("Success")),
        pending_count=parse_int(row.get("Pending")),
        mac_address=row.get("MAC_ID") or None,
        asset_id=row.get("ASSET_ID") or None,
    )


def parse_hierarchy(
    raw_json: Any, now: datetime | None = None
) -> tuple[FleetSnapshot, tuple[FleetDevice, ...]]:
    """Return (server snapshot, flattened devices) for a hierarchy payload."""
    data = _unwrap(raw_json)
    now = now or datetime.now(timezone.utc)

    categories: list[CategoryRollup] = []
    devices: list[FleetDevice] = []
    for cat in data.get("CAT") or []:
        cat_name = cat.get("CATTYPE") or UNKNOWN_CATEGORY
        locations: list[LocationRollup] = []
        for loc in cat.get("LOC") or []:
            loc_name = loc.get("LOCATION_NAME") or UNKNOWN_LOCATION
            rows = [
                _parse_device_row(row, loc_name, cat_name)
                for row in loc.get("DEVICES") or []
                if isinstance(row, dict)
            ]
            rows = [r for r in rows if r is not None]
            devices.extend(rows)
            locations.append(
                LocationRollup(
                    location_id=loc_name,
                    name=loc_name,
                    category=cat_name,
                    active=parse_int(loc.get("ACTIVE")),
                    standby=parse_int(loc.get("STANDBY")),
                    down=parse_int(loc.get("DOWN")),
                    total=parse_int(loc.get("Total")),
                    device_ids=tuple(sorted(r.device_id for r in rows)),
                )
            )
        categories.append(
            CategoryRollup(
                name=cat_name,
                active=parse_int(cat.get("ACTIVE")),
                standby=parse_int(cat.get("STANDBY")),
                down=parse_int(cat.get("DOWN")),
                total=sum(loc.total for loc in locations),
                locations=tuple(locations),
            )
        )

    activity = {
        label: parse_int(data.get(field))
        for label, field in _ACTIVITY_FIELDS.items()
        if label in ACTIVITY_WINDOWS
    }
    snapshot = FleetSnapshot(
        total=parse_int(data.get("Total")),
        active=parse_int(data.get("ACTIVE")),
        standby=parse_int(data.get("STANDBY")),
        down=parse_int(data.get("DOWN")),
        activity=activity,
        categories=tuple(categories),
        generated_at=now,
        source="server",
    )
    return snapshot, tuple(devices)


async def fetch_status_hierarchy(api_url: str, headers: dict) -> tuple[FleetSnapshot, tuple[FleetDevice, ...]]:
    """
    Fetch the pre-aggregated status hierarchy.

    Corresponding CURL command:
    curl -X 'GET' '<api_url>/device-status-hierarchy' -H 'Authorization: Bearer <token>'
    """
    raw_json = await make_request("GET", build_url(api_url, HIERARCHY_PATH), headers)
    return parse_hierarchy(raw_json)
