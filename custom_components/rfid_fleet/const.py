DOMAIN = "rfid_fleet"
VERSION = "0.3.0"

# Config entry keys
CONF_ENTRY_NAME = "entry_name"
CONF_API_URL = "api_url"
CONF_API_TOKEN = "api_token"
CONF_WS_URL = "ws_url"
CONF_CLUSTER_MARKERS = "cluster_markers"
CONF_STATUS_BUCKETS = "status_buckets"

# Update intervals (seconds)
POLL_INTERVAL = 30           # full device list backstop, even with push updates active
STALE_AFTER = 120            # "last updated at" indicator turns on after this many seconds

# Fetch behaviour
FETCH_TIMEOUT = 30           # per cache-key fetch; covers all make_request attempts (5 + 10 + 15 s)
RETRY_BACKOFF_BASE = 2.0     # first retry delay after a failed fetch
RETRY_BACKOFF_CAP = 300.0    # retry delay never grows beyond this

# Push channel reconnects: 2^attempt seconds, giving up after this many attempts
WS_MAX_RECONNECT_ATTEMPTS = 5

# Cache keys (query identities) and the topics that invalidate them
KEY_DEVICES = "devices"
KEY_HIERARCHY = "device-status-hierarchy"
KEY_ALERTS = "alerts-summary"

TOPIC_DEVICE_METRICS = "device-metrics"
TOPIC_ALERTS_SUMMARY = "alerts-summary"
TOPIC_POLL = "poll"

SUBSCRIPTIONS: dict[str, tuple[str, ...]] = {
    KEY_DEVICES:   (TOPIC_DEVICE_METRICS, TOPIC_POLL),
    KEY_HIERARCHY: (TOPIC_DEVICE_METRICS, TOPIC_POLL),
    KEY_ALERTS:    (TOPIC_ALERTS_SUMMARY, TOPIC_POLL),
}

# Push message type → topics it invalidates
MESSAGE_TOPICS: dict[str, tuple[str, ...]] = {
    "device_metrics": (TOPIC_DEVICE_METRICS,),
    "device_status":  (TOPIC_DEVICE_METRICS,),
    "alerts_summary": (TOPIC_ALERTS_SUMMARY,),
}

# Push message types that are understood but carry nothing for the rollup
IGNORED_MESSAGE_TYPES = frozenset({"connection", "pong", "weather_update"})

# Windowed-activity counters, keyed by label → window length in hours
ACTIVITY_WINDOWS: dict[str, int] = {
    "48h": 48,
    "1w":  24 * 7,
    "15d": 24 * 15,
    "1m":  24 * 30,
}

# Server hierarchy payload: numeric DeviceStatus code → (status, sub_status)
HIERARCHY_STATUS_CODES: dict[int, tuple[str, str | None]] = {
    2: ("DOWN", None),
    3: ("LIVE", "standby"),
    4: ("LIVE", "active"),
}

UNKNOWN_LOCATION = "Unknown"
UNKNOWN_CATEGORY = "UNKNOWN"
UNKNOWN_REGION = "Unknown"
DEFAULT_CATEGORY = "TOLLPLAZA"

# Fixed page sizes per surface
PAGE_SIZES: dict[str, int] = {
    "device_table": 10,
    "plaza_grid":   12,
    "device_list":  50,
}

# Marker colours
STATUS_COLORS: dict[str, str] = {
    "LIVE":        "#22c55e",
    "DOWN":        "#ef4444",
    "WARNING":     "#f59e0b",
    "MAINTENANCE": "#3b82f6",
}
DEFAULT_MARKER_COLOR = "#6b7280"

# A cluster with no DOWN member is healthy only when more than this share is LIVE
HEALTHY_LIVE_RATIO = 0.9

EVENT_DEVICE_SELECTED = f"{DOMAIN}_device_selected"
SERVICE_SELECT_DEVICE = "select_device"
