"""
Low-level alerts summary fetching from the fleet API.
"""
import logging
from typing import Any

from custom_components.rfid_fleet.models import AlertsSummary
from custom_components.rfid_fleet.requests import build_url, make_request
from custom_components.rfid_fleet.api.devices import parse_int

_LOGGER = logging.getLogger(__name__)

ALERTS_SUMMARY_PATH = "alerts-summary"


def parse_alerts_summary(raw_json: Any) -> AlertsSummary:
    """Map {total, critical, warning, info, unread} (optionally under "data") onto AlertsSummary."""
    if isinstance(raw_json, dict) and isinstance(raw_json.get("data"), dict):
        raw_json = raw_json["data"]
    if not isinstance(raw_json, dict):
        _LOGGER.warning("Unexpected alerts summary shape: %s", type(raw_json).__name__)
        return AlertsSummary()
    return AlertsSummary(
        total=parse_int(raw_json.get("total")),
        critical=parse_int(raw_json.get("critical")),
        warning=parse_int(raw_json.get("warning")),
        info=parse_int(raw_json.get("info")),
        unread=parse_int(raw_json.get("unread")),
    )


async def fetch_alerts_summary(api_url: str, headers: dict) -> AlertsSummary:
    """
    Fetch active alert counts by severity.

    Corresponding CURL command:
    curl -X 'GET' '<api_url>/alerts-summary' -H 'Authorization: Bearer <token>'
    """
    raw_json = await make_request("GET", build_url(api_url, ALERTS_SUMMARY_PATH), headers)
    return parse_alerts_summary(raw_json)
