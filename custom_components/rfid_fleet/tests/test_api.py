"""
Tests for the api package and requests.py - payload normalisation, row
mapping, the status hierarchy and the HTTP response handling.
"""

from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from custom_components.rfid_fleet.api.alerts import fetch_alerts_summary, parse_alerts_summary
from custom_components.rfid_fleet.api.devices import (
    fetch_devices,
    normalize_list_response,
    parse_device,
    parse_devices,
    parse_float,
    parse_int,
    parse_timestamp,
)
from custom_components.rfid_fleet.api.hierarchy import (
    fetch_status_hierarchy,
    parse_hierarchy,
    parse_status_code,
)
from custom_components.rfid_fleet.const import FETCH_TIMEOUT
from custom_components.rfid_fleet.models import AlertsSummary, DeviceClass, DeviceStatus
from custom_components.rfid_fleet.requests import (
    ApiResponseError,
    _process_response,
    build_url,
    REQUEST_ATTEMPTS,
    REQUEST_TIMEOUT,
    get_standard_headers,
)

from .test_common import NOW, make_raw_device


def _hierarchy_payload():
    return {
        "data": {
            "Total": 3, "ACTIVE": 1, "STANDBY": 1, "DOWN": 1,
            "LastActive48H": 2, "LastActive1W": 3, "LastActive15D": 3, "LastActive1M": 3,
            "CAT": [
                {
                    "CATTYPE": "TOLLPLAZA", "ACTIVE": 1, "STANDBY": 1, "DOWN": 1,
                    "LOC": [
                        {
                            "LOCATION_NAME": "Vashi", "ACTIVE": 1, "STANDBY": 1, "DOWN": 0, "Total": 2,
                            "DEVICES": [
                                {"ASSET_ID": "RDR-2", "MAC_ID": "AA:02", "DeviceStatus": 3,
                                 "LastSync": "2026-10-01T10:00:00Z", "Success": 10, "Pending": 1},
                                {"ASSET_ID": "RDR-1", "MAC_ID": "AA:01", "DeviceStatus": 4},
                            ],
                        },
                        {
                            "LOCATION_NAME": "Khed", "ACTIVE": 0, "STANDBY": 0, "DOWN": 1, "Total": 1,
                            "DEVICES": [{"MAC_ID": "AA:03", "DeviceStatus": 2}],
                        },
                    ],
                },
            ],
        },
    }


class TestNormalizeListResponse(unittest.TestCase):

    def test_shapes(self):
        self.assertEqual(normalize_list_response([1]), [1])
        self.assertEqual(normalize_list_response({"data": [2]}), [2])
        self.assertEqual(normalize_list_response({"success": [3]}), [3])
        self.assertEqual(normalize_list_response(None), [])

    def test_unexpected_shape_is_empty(self):
        with self.assertLogs("custom_components.rfid_fleet.api.devices", level="WARNING"):
            self.assertEqual(normalize_list_response({"data": "oops"}), [])


class TestFieldParsers(unittest.TestCase):

    def test_timestamps(self):
        expected = datetime(2026, 10, 1, 11, 55, tzinfo=timezone.utc)
        self.assertEqual(parse_timestamp("2026-10-01T11:55:00Z"), expected)
        self.assertEqual(parse_timestamp("2026-10-01T17:25:00+05:30"), expected)
        self.assertEqual(parse_timestamp("2026-10-01T11:55:00"), expected)
        self.assertEqual(parse_timestamp(expected.timestamp()), expected)
        self.assertIsNone(parse_timestamp("yesterday"))
        self.assertIsNone(parse_timestamp(""))

    def test_floats(self):
        self.assertEqual(parse_float("19.0760"), 19.076)
        self.assertIsNone(parse_float(""))
        self.assertIsNone(parse_float("north"))
        self.assertIsNone(parse_float("nan"))
        self.assertIsNone(parse_float(True))

    def test_ints(self):
        self.assertEqual(parse_int("42"), 42)
        self.assertEqual(parse_int("7.9"), 7)
        self.assertEqual(parse_int("lots"), 0)
        self.assertIsNone(parse_int(None, default=None))
        for value in (float("inf"), float("-inf"), "Infinity", "1e400"):
            with self.subTest(value=value):
                self.assertEqual(parse_int(value), 0)
                self.assertIsNone(parse_int(value, default=None))


class TestParseDevice(unittest.TestCase):

    def test_maps_backend_fields(self):
        device = parse_device(make_raw_device())

        self.assertEqual(device.device_id, "RDR-1")
        self.assertIs(device.status, DeviceStatus.LIVE)
        self.assertEqual(device.sub_status, "active")
        self.assertIs(device.device_class, DeviceClass.FIXED_READER)
        self.assertEqual(device.location_id, "PLAZA-A")
        self.assertEqual(device.location_name, "Plaza A")
        self.assertAlmostEqual(device.latitude, 19.076)
        self.assertEqual(device.last_seen, datetime(2026, 10, 1, 11, 55, tzinfo=timezone.utc))
        self.assertEqual(device.uptime, 3600)
        self.assertEqual(device.transaction_count, 42)
        self.assertEqual(device.mac_address, "AA:BB:CC:DD:EE:01")

    def test_bad_fields_become_none(self):
        device = parse_device(make_raw_device(status="EXPLODED", latitude="", lastSeen="never", uptime=None))

        self.assertIsNone(device.status)
        self.assertIsNone(device.latitude)
        self.assertFalse(device.has_coordinates)
        self.assertIsNone(device.last_seen)
        self.assertIsNone(device.uptime)

    def test_health_score_from_payload_or_metrics(self):
        clamped = parse_device(make_raw_device(healthScore=130))
        derived = parse_device(make_raw_device(metrics={"cpuUsage": 90}))
        missing = parse_device(make_raw_device())

        self.assertEqual(clamped.health_score, 100)
        self.assertEqual(derived.health_score, 80)
        self.assertIsNone(missing.health_score)

    def test_device_id_fallback(self):
        raw = make_raw_device()
        del raw["id"]
        raw["deviceId"] = "RDR-9"

        self.assertEqual(parse_device(raw).device_id, "RDR-9")

    def test_row_without_id_is_skipped(self):
        raw = make_raw_device()
        del raw["id"]

        with self.assertLogs("custom_components.rfid_fleet.api.devices", level="WARNING"):
            self.assertIsNone(parse_device(raw))

    def test_duplicate_ids_keep_last_row(self):
        payload = {"data": [
            make_raw_device("RDR-1", status="LIVE"),
            make_raw_device("RDR-2"),
            make_raw_device("RDR-1", status="DOWN"),
        ]}

        devices = parse_devices(payload)

        self.assertEqual([d.device_id for d in devices], ["RDR-1", "RDR-2"])
        self.assertIs(devices[0].status, DeviceStatus.DOWN)

    def test_infinite_counters_do_not_drop_the_fleet(self):
        payload = [
            make_raw_device("RDR-1"),
            make_raw_device("RDR-2", uptime=float("inf"), successCount="Infinity", pendingCount=1e400),
        ]

        devices = parse_devices(payload)

        self.assertEqual([d.device_id for d in devices], ["RDR-1", "RDR-2"])
        self.assertEqual(devices[0].uptime, 3600)
        self.assertIsNone(devices[1].uptime)
        self.assertEqual(devices[1].success_count, 0)
        self.assertEqual(devices[1].pending_count, 0)


class TestHierarchy(unittest.TestCase):

    def test_status_codes(self):
        self.assertEqual(parse_status_code(4), (DeviceStatus.LIVE, "active"))
        self.assertEqual(parse_status_code("3"), (DeviceStatus.LIVE, "standby"))
        self.assertEqual(parse_status_code(2), (DeviceStatus.DOWN, None))
        self.assertEqual(parse_status_code(99), (None, None))

    def test_server_snapshot(self):
        snapshot, _ = parse_hierarchy(_hierarchy_payload(), now=NOW)

        self.assertEqual(snapshot.source, "server")
        self.assertEqual((snapshot.total, snapshot.active, snapshot.standby, snapshot.down), (3, 1, 1, 1))
        self.assertEqual(dict(snapshot.activity), {"48h": 2, "1w": 3, "15d": 3, "1m": 3})
        vashi = snapshot.get_location("Vashi")
        self.assertEqual((vashi.active, vashi.standby, vashi.total), (1, 1, 2))
        self.assertEqual(vashi.device_ids, ("RDR-1", "RDR-2"))
        self.assertEqual(snapshot.categories[0].total, 3)

    def test_flattened_devices(self):
        _, devices = parse_hierarchy(_hierarchy_payload(), now=NOW)

        by_id = {d.device_id: d for d in devices}
        self.assertEqual(set(by_id), {"RDR-1", "RDR-2", "AA:03"})
        self.assertEqual(by_id["RDR-2"].sub_status, "standby")
        self.assertEqual(by_id["RDR-2"].success_count, 10)
        self.assertEqual(by_id["AA:03"].location_id, "Khed")
        self.assertIs(by_id["AA:03"].status, DeviceStatus.DOWN)

    def test_bare_payload_and_garbage(self):
        snapshot, devices = parse_hierarchy({"Total": 0}, now=NOW)
        self.assertEqual(snapshot.total, 0)
        self.assertEqual(devices, ())

        with self.assertLogs("custom_components.rfid_fleet.api.hierarchy", level="WARNING"):
            snapshot, devices = parse_hierarchy(["nope"], now=NOW)
        self.assertEqual(snapshot.categories, ())


class TestAlertsSummary(unittest.TestCase):

    def test_parse(self):
        summary = parse_alerts_summary({"data": {"total": 5, "critical": 2, "warning": "3"}})

        self.assertEqual(summary, AlertsSummary(total=5, critical=2, warning=3))

    def test_infinite_count(self):
        summary = parse_alerts_summary({"total": float("inf"), "critical": 1})

        self.assertEqual(summary, AlertsSummary(total=0, critical=1))

    def test_garbage(self):
        with self.assertLogs("custom_components.rfid_fleet.api.alerts", level="WARNING"):
            self.assertEqual(parse_alerts_summary("error"), AlertsSummary())


class TestFetchers(unittest.IsolatedAsyncioTestCase):

    async def test_fetch_devices(self):
        mock_request = AsyncMock(return_value=[make_raw_device("RDR-1"), make_raw_device("RDR-2")])
        with patch("custom_components.rfid_fleet.api.devices.make_request", mock_request):
            devices = await fetch_devices("https://fleet.example.com/api/", {"accept": "application/json"})

        self.assertEqual(len(devices), 2)
        mock_request.assert_awaited_once_with(
            "GET", "https://fleet.example.com/api/devices", {"accept": "application/json"}
        )

    async def test_fetch_hierarchy(self):
        mock_request = AsyncMock(return_value=_hierarchy_payload())
        with patch("custom_components.rfid_fleet.api.hierarchy.make_request", mock_request):
            snapshot, devices = await fetch_status_hierarchy("https://fleet.example.com/api", {})

        self.assertEqual(snapshot.total, 3)
        self.assertEqual(len(devices), 3)
        self.assertEqual(mock_request.await_args.args[1], "https://fleet.example.com/api/device-status-hierarchy")

    async def test_fetch_alerts(self):
        mock_request = AsyncMock(return_value={"total": 1, "critical": 1})
        with patch("custom_components.rfid_fleet.api.alerts.make_request", mock_request):
            summary = await fetch_alerts_summary("https://fleet.example.com/api", {})

        self.assertEqual(summary.critical, 1)

    async def test_fetch_errors_propagate(self):
        mock_request = AsyncMock(side_effect=ApiResponseError(503))
        with patch("custom_components.rfid_fleet.api.devices.make_request", mock_request):
            with self.assertRaises(ApiResponseError):
                await fetch_devices("https://fleet.example.com/api", {})


class TestRequests(unittest.IsolatedAsyncioTestCase):

    def _response(self, status, content_type="application/json", json_body=None, text=""):
        response = MagicMock()
        response.status = status
        response.headers = {"Content-Type": content_type}
        response.json = AsyncMock(return_value=json_body)
        response.text = AsyncMock(return_value=text)
        return response

    def test_cache_timeout_leaves_room_for_every_attempt(self):
        attempt_timeouts = [REQUEST_TIMEOUT * (attempt + 1) for attempt in range(REQUEST_ATTEMPTS)]

        self.assertGreaterEqual(FETCH_TIMEOUT, sum(attempt_timeouts))

    def test_headers_and_urls(self):
        self.assertEqual(get_standard_headers(None), {"accept": "application/json"})
        self.assertEqual(get_standard_headers("t")["Authorization"], "Bearer t")
        self.assertEqual(build_url("https://x/api/", "/devices"), "https://x/api/devices")

    async def test_json_success(self):
        result = await _process_response(self._response(200, json_body={"ok": True}), "u")

        self.assertEqual(result, {"ok": True})

    async def test_non_json_success_raises(self):
        with self.assertLogs("custom_components.rfid_fleet.requests", level="WARNING"):
            with self.assertRaises(ValueError):
                await _process_response(self._response(200, "text/html", text="<html>"), "u")

    async def test_auth_error(self):
        with self.assertRaises(ApiResponseError) as ctx:
            await _process_response(self._response(401, json_body={"message": "bad token"}), "u")

        self.assertTrue(ctx.exception.is_auth_error)
        self.assertEqual(ctx.exception.error_json, {"message": "bad token"})

    async def test_html_error_page(self):
        with self.assertLogs("custom_components.rfid_fleet.requests", level="WARNING"):
            with self.assertRaises(ApiResponseError) as ctx:
                await _process_response(self._response(502, "text/html", text="Bad gateway"), "u")

        self.assertFalse(ctx.exception.is_auth_error)
        self.assertEqual(ctx.exception.status, 502)
