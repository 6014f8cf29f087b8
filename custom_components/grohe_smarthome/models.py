"""Data models for Grohe Smarthome integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import IntEnum, StrEnum
from typing import Any
from urllib.parse import urljoin

ONDUS_PREFIX = "ondus://"


class DeviceKind(IntEnum):
    """Appliance type codes reported by the dashboard."""

    SENSE = 101
    SENSE_GUARD = 103
    BLUE_HOME = 104
    BLUE_PROFESSIONAL = 105


class TapType(IntEnum):
    """Water types a Blue dispenser can tap."""

    STILL = 1
    MEDIUM = 2
    CARBONATED = 3


class ConsumableKind(StrEnum):
    """Blue consumables whose counters can be reset."""

    CO2 = "co2"
    FILTER = "filter"


class PollOperation(StrEnum):
    """Secondary operations the coordinator may run in a cycle."""

    STATUS = "status"
    NOTIFICATIONS = "notifications"
    COMMAND = "command"
    MEASUREMENT_TRIGGER = "measurement_trigger"
    CONSUMPTION_TODAY = "consumption_today"
    PRESSURE_TEST = "pressure_test"
    CONSUMPTION_HISTORY = "consumption_history"


@dataclass(frozen=True)
class EndpointTier:
    """Polling frequency of one operation.

    Attributes:
        divisor: The operation runs on cycles where ``cycle % divisor == 0``.
            ``None`` means once per local calendar day.
        kinds: Device kinds the operation applies to. ``None`` marks an
            account-wide operation that is not tied to an appliance.
        rationale: Why the operation runs at this frequency.

    """

    divisor: int | None
    kinds: frozenset[DeviceKind] | None
    rationale: str


@dataclass
class GroheSession:
    """Access and refresh token with the instant the access token expires."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def has_valid_access_token(self, now: datetime) -> bool:
        """Return True if the access token is held and not yet expired."""
        return (
            self.access_token is not None
            and self.expires_at is not None
            and now < self.expires_at
        )


@dataclass(frozen=True)
class HttpsRedirect:
    """An ordinary redirect that has to be followed."""

    url: str


@dataclass(frozen=True)
class TokenExchange:
    """Terminal redirect: the ``ondus://`` target rewritten to ``https://``."""

    url: str


RedirectTarget = HttpsRedirect | TokenExchange


def classify_location(location: str, base_url: str) -> RedirectTarget:
    """Classify a Location header value.

    Args:
        location: Raw Location header value.
        base_url: Address of the response carrying the header, used to
            resolve relative locations.

    Returns:
        TokenExchange for ``ondus://`` locations, HttpsRedirect otherwise.

    """
    if location.startswith(ONDUS_PREFIX):
        return TokenExchange(url="https://" + location[len(ONDUS_PREFIX) :])
    return HttpsRedirect(url=urljoin(base_url, location))


@dataclass
class PollState:
    """Mutable bookkeeping of the poll coordinator."""

    configured_interval: int
    current_interval: int
    cycle: int = 0
    failures: int = 0
    last_daily_aggregate: date | None = None


@dataclass(frozen=True)
class GroheAppliance:
    """An appliance as found on the dashboard."""

    appliance_id: str
    kind: int
    name: str
    location_id: str
    room_id: str
    installation_date: str | None = None
    measurement: dict[str, Any] = field(default_factory=dict)
    status: list[dict[str, Any]] = field(default_factory=list)

    @property
    def device_kind(self) -> DeviceKind | None:
        """Return the known device kind, or None for unknown codes."""
        try:
            return DeviceKind(self.kind)
        except ValueError:
            return None

    def status_value(self, status_type: str) -> Any:
        """Return the value of the first status entry of the given type."""
        for entry in self.status:
            if entry.get("type") == status_type:
                return entry.get("value")
        return None


@dataclass
class GroheApplianceData:
    """Latest data known for one appliance."""

    appliance: GroheAppliance
    status: list[dict[str, Any]] | None = None
    command: dict[str, Any] | None = None
    consumption_today: dict[str, Any] | None = None
    consumption_history: dict[str, Any] | None = None
    pressure_test: dict[str, Any] | None = None


@dataclass
class GroheData:
    """Everything one poll cycle produced."""

    appliances: dict[str, GroheApplianceData] = field(default_factory=dict)
    notifications: list[dict[str, Any]] = field(default_factory=list)
