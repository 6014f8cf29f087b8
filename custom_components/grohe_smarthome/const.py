"""Constants for Grohe Smarthome integration.

This module contains all the constants used throughout the integration,
including API endpoints, configuration keys, polling tiers and login
failure markers.
"""

from .models import DeviceKind, EndpointTier, PollOperation

DOMAIN = "grohe_smarthome"
MANUFACTURER = "Grohe"
MODEL_NAMES: dict[int, str] = {
    DeviceKind.SENSE: "Sense",
    DeviceKind.SENSE_GUARD: "Sense Guard",
    DeviceKind.BLUE_HOME: "Blue Home",
    DeviceKind.BLUE_PROFESSIONAL: "Blue Professional",
}

BASE_URL = "https://idp2-apigw.cloud.grohe.com/v3/iot"
LOGIN_URL = f"{BASE_URL}/oidc/login"
REFRESH_URL = f"{BASE_URL}/oidc/refresh"
USER_AGENT = "Mozilla/5.0 (Linux; Android 10) AppleWebKit/537.36"

LOGIN_TIMEOUT = 30.0
REQUEST_TIMEOUT = 15.0
LOGIN_ATTEMPTS = 3
LOGIN_RETRY_DELAY = 2  # seconds, multiplied by the attempt number
MAX_LOGIN_REDIRECTS = 20
MAX_TOKEN_REDIRECTS = 15
TOKEN_EXPIRY_MARGIN = 60  # seconds
DEFAULT_TOKEN_LIFETIME = 3600  # seconds

DEFAULT_POLL_INTERVAL = 300
MIN_POLL_INTERVAL = 30
MAX_BACKOFF_INTERVAL = 3600
HISTORY_LOOKBACK_DAYS = 365

STORAGE_VERSION = 1
STORAGE_KEY = f"{DOMAIN}.credentials"

CONF_POLL_INTERVAL = "poll_interval"
CONF_EMIT_RAW_FIELDS = "emit_raw_fields"
CONF_REFRESH_TOKEN = "refresh_token"

SERVICE_DISPENSE = "dispense"
SERVICE_ATTR_APPLIANCE_ID = "appliance_id"
SERVICE_ATTR_TAP_TYPE = "tap_type"
SERVICE_ATTR_AMOUNT = "amount"

ERROR_INVALID_AUTH = "invalid_auth"
ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_TIMEOUT = "timeout_error"
ERROR_API_ERROR = "api_error"
ERROR_UNKNOWN = "unknown_error"

ISSUE_RATE_LIMITED = "rate_limited"
RATE_LIMIT_HINT = (
    "Grohe cloud answered 403 (Forbidden). Check that the Grohe app still "
    "works and that the account is active; polling backs off meanwhile."
)

REASON_INVALID_CREDENTIALS = "invalid_credentials"
REASON_SESSION_EXPIRED = "session_expired"
REASON_PROVIDER_ERROR = "provider_error"
REASON_FORM_REDISPLAYED = "form_redisplayed"

# Markup fragments the identity provider renders on a failed login.
DEFAULT_LOGIN_ERROR_MARKERS: dict[str, str] = {
    "Invalid username or password": REASON_INVALID_CREDENTIALS,
    "Restart login cookie not found": REASON_SESSION_EXPIRED,
    "We're sorry": REASON_PROVIDER_ERROR,
}

_CONSUMPTION_KINDS = frozenset(
    {DeviceKind.SENSE_GUARD, DeviceKind.BLUE_HOME, DeviceKind.BLUE_PROFESSIONAL}
)
_BLUE_KINDS = frozenset({DeviceKind.BLUE_HOME, DeviceKind.BLUE_PROFESSIONAL})

ENDPOINT_TIERS: dict[PollOperation, EndpointTier] = {
    PollOperation.STATUS: EndpointTier(
        divisor=5,
        kinds=frozenset(DeviceKind),
        rationale="Online and battery state change slowly",
    ),
    PollOperation.NOTIFICATIONS: EndpointTier(
        divisor=5,
        kinds=None,
        rationale="Account-wide list, one call per cycle at most",
    ),
    PollOperation.COMMAND: EndpointTier(
        divisor=3,
        kinds=frozenset({DeviceKind.SENSE_GUARD}) | _BLUE_KINDS,
        rationale="Valve and dispenser state can be changed from the app",
    ),
    PollOperation.MEASUREMENT_TRIGGER: EndpointTier(
        divisor=3,
        kinds=_BLUE_KINDS,
        rationale="Blue only publishes fresh readings when asked",
    ),
    PollOperation.CONSUMPTION_TODAY: EndpointTier(
        divisor=5,
        kinds=_CONSUMPTION_KINDS,
        rationale="Aggregates are recomputed server side every few minutes",
    ),
    PollOperation.PRESSURE_TEST: EndpointTier(
        divisor=10,
        kinds=frozenset({DeviceKind.SENSE_GUARD}),
        rationale="Results only change after a manual or nightly test",
    ),
    PollOperation.CONSUMPTION_HISTORY: EndpointTier(
        divisor=None,
        kinds=_CONSUMPTION_KINDS,
        rationale="Full history is large; refreshed once per local day",
    ),
}
