"""Coordinator for Grohe Smarthome integration."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

import httpx
from homeassistant.const import CONF_EMAIL, CONF_PASSWORD
from homeassistant.helpers import issue_registry as ir
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed
from homeassistant.util import dt as dt_util

from . import api
from .const import (
    DEFAULT_POLL_INTERVAL,
    DOMAIN,
    ENDPOINT_TIERS,
    HISTORY_LOOKBACK_DAYS,
    ISSUE_RATE_LIMITED,
    MAX_BACKOFF_INTERVAL,
    MIN_POLL_INTERVAL,
    RATE_LIMIT_HINT,
)
from .exceptions import (
    GroheAuthError,
    GroheError,
    GroheLoginError,
    GroheNotFoundError,
    GroheRateLimitedError,
)
from .models import (
    DeviceKind,
    GroheAppliance,
    GroheApplianceData,
    GroheData,
    PollOperation,
    PollState,
)

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .auth import GroheAuthSession

_LOGGER = logging.getLogger(__name__)

NOON = time(12, 0)


def resolve_poll_interval(value: Any) -> int:
    """Return the configured poll interval in seconds.

    Missing or unparsable values fall back to the default; anything below
    the minimum is raised to it.
    """
    try:
        interval = int(value)
    except (TypeError, ValueError):
        return DEFAULT_POLL_INTERVAL
    if interval <= 0:
        return DEFAULT_POLL_INTERVAL
    return max(interval, MIN_POLL_INTERVAL)


def compute_backoff_interval(configured: int, failures: int) -> int:
    """Return ``min(configured * 2**failures, MAX_BACKOFF_INTERVAL)``."""
    return min(configured * 2**failures, MAX_BACKOFF_INTERVAL)


def backoff_reaches_cap(configured: int, failures: int) -> bool:
    """Return True once the doubled interval hits the backoff ceiling."""
    return configured * 2**failures >= MAX_BACKOFF_INTERVAL


def next_quiet_boundary(now: datetime) -> datetime:
    """Return the next local noon if before noon, else the next midnight.

    Args:
        now: Timezone-aware local time.

    Returns:
        The boundary instant in the same timezone.

    """
    today_noon = datetime.combine(now.date(), NOON, tzinfo=now.tzinfo)
    if now < today_noon:
        return today_noon
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time(0, 0), tzinfo=now.tzinfo)


def time_until_quiet_boundary(now: datetime) -> timedelta:
    """Return the elapsed time until the next quiet boundary.

    Computed in UTC so that a daylight saving change between now and the
    boundary is accounted for.
    """
    return dt_util.as_utc(next_quiet_boundary(now)) - dt_util.as_utc(now)


def operations_due(cycle: int, kind: DeviceKind | None) -> set[PollOperation]:
    """Return the divisor-based operations due for an appliance kind.

    Args:
        cycle: Current cycle number.
        kind: Appliance kind, or None for the account-wide operations.

    Returns:
        Set of operations to run in this cycle.

    """
    due = set()
    for operation, tier in ENDPOINT_TIERS.items():
        if tier.divisor is None or cycle % tier.divisor != 0:
            continue
        if kind is None:
            if tier.kinds is None:
                due.add(operation)
        elif tier.kinds is not None and kind in tier.kinds:
            due.add(operation)
    return due


def appliances_for(
    operation: PollOperation,
    appliances: list[GroheAppliance],
) -> list[GroheAppliance]:
    """Return the appliances an operation applies to."""
    kinds = ENDPOINT_TIERS[operation].kinds or frozenset()
    return [a for a in appliances if a.device_kind in kinds]


class GroheDataCoordinator(DataUpdateCoordinator[GroheData]):
    """Coordinator that polls the Grohe cloud in tiers.

    The dashboard is fetched every cycle; every other endpoint runs on a
    subset of cycles. Failures of the dashboard call back off the polling
    interval, failures of any other call only leave its data stale.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        client: api.GroheApiClient,
        auth: GroheAuthSession,
        config_entry: ConfigEntry,
        poll_interval: int,
    ) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            update_interval=timedelta(seconds=poll_interval),
        )
        self.client = client
        self.auth = auth
        self.config_entry = config_entry
        self.poll_state = PollState(
            configured_interval=poll_interval,
            current_interval=poll_interval,
        )
        self.connected = False
        self.data = GroheData()

    async def _async_update_data(self) -> GroheData:
        """Run one poll cycle."""
        state = self.poll_state
        state.cycle += 1
        _LOGGER.debug("Starting poll cycle %d", state.cycle)

        try:
            dashboard = await self._async_fetch_dashboard()
        except GroheRateLimitedError as err:
            self._record_failure()
            ir.async_create_issue(
                self.hass,
                DOMAIN,
                ISSUE_RATE_LIMITED,
                is_fixable=False,
                severity=ir.IssueSeverity.WARNING,
                translation_key=ISSUE_RATE_LIMITED,
            )
            _LOGGER.warning(RATE_LIMIT_HINT)
            error_msg = f"Rate limited by Grohe cloud: {err}"
            raise UpdateFailed(error_msg) from err
        except (GroheError, httpx.RequestError) as err:
            self._record_failure()
            error_msg = f"Error polling Grohe dashboard: {err}"
            raise UpdateFailed(error_msg) from err

        self._record_success()

        appliances = api.extract_appliances(dashboard)
        data = self._build_data(appliances)

        await self._async_poll_secondary(data, appliances)
        _LOGGER.debug(
            "Poll cycle %d finished with %d appliances", state.cycle, len(appliances)
        )
        return data

    async def async_confirm_write(self, appliance: GroheAppliance) -> None:
        """Read back the state after a command without starting a poll cycle.

        Fetches the dashboard and, for appliances that have one, the
        command document of the written appliance. The cycle counter and
        the backoff state are left untouched so the endpoint tiers keep
        their alignment. Failures are logged; the next poll picks up the
        state.

        Args:
            appliance: The appliance a command was sent to.

        """
        try:
            dashboard = await self.client.async_get_dashboard()
        except (GroheError, httpx.RequestError) as err:
            _LOGGER.warning(
                "Failed to read back state of %s: %s", appliance.appliance_id, err
            )
            return

        appliances = api.extract_appliances(dashboard)
        data = self._build_data(appliances)
        record = data.appliances.get(appliance.appliance_id)
        if record is not None and appliance.device_kind in (
            ENDPOINT_TIERS[PollOperation.COMMAND].kinds or frozenset()
        ):
            result = await self._async_secondary(
                PollOperation.COMMAND,
                record.appliance,
                self.client.async_get_appliance_command(record.appliance),
            )
            if self._has_shape(PollOperation.COMMAND, appliance, result, dict):
                record.command = result

        self.async_set_updated_data(data)

    def _build_data(self, appliances: list[GroheAppliance]) -> GroheData:
        previous = self.data or GroheData()
        return GroheData(
            appliances={
                appliance.appliance_id: self._carry_over(appliance, previous)
                for appliance in appliances
            },
            notifications=previous.notifications,
        )

    async def _async_fetch_dashboard(self) -> dict[str, Any]:
        try:
            return await self.client.async_get_dashboard()
        except GroheAuthError as err:
            _LOGGER.warning(
                "Grohe session no longer valid, attempting automatic "
                "re-authentication: %s",
                err,
            )
            await self._async_reauth()
            return await self.client.async_get_dashboard()

    async def _async_reauth(self) -> None:
        """Perform a full login with the stored credentials.

        Raises:
            UpdateFailed: If credentials are missing or the login fails.

        """
        email = self.config_entry.data.get(CONF_EMAIL)
        password = self.config_entry.data.get(CONF_PASSWORD)

        if not email or not password:
            error_msg = (
                "Email or password not found in config entry. Cannot re-authenticate."
            )
            _LOGGER.error(error_msg)
            self._record_failure()
            raise UpdateFailed(error_msg)

        try:
            _LOGGER.info("Performing automatic re-authentication with email: %s", email)
            await self.auth.async_login(email, password)
        except (GroheAuthError, GroheLoginError) as err:
            self._record_failure()
            error_msg = f"Auto re-authentication failed with stored credentials: {err}"
            _LOGGER.warning("Auto re-authentication failed: %s", err)
            raise UpdateFailed(error_msg) from err

        _LOGGER.info("Successfully re-authenticated with Grohe cloud")

    def _record_failure(self) -> None:
        state = self.poll_state
        state.failures += 1
        state.current_interval = compute_backoff_interval(
            state.configured_interval, state.failures
        )
        self.connected = False

        if backoff_reaches_cap(state.configured_interval, state.failures):
            now = dt_util.now()
            self.update_interval = time_until_quiet_boundary(now)
            _LOGGER.warning(
                "Grohe cloud failed %d times in a row; next poll at %s",
                state.failures,
                next_quiet_boundary(now).isoformat(),
            )
        else:
            self.update_interval = timedelta(seconds=state.current_interval)
            _LOGGER.debug(
                "Poll failure %d, next poll in %d s",
                state.failures,
                state.current_interval,
            )

    def _record_success(self) -> None:
        state = self.poll_state
        if state.failures:
            _LOGGER.info("Grohe cloud reachable again after %d failures", state.failures)
        state.failures = 0
        state.current_interval = state.configured_interval
        self.update_interval = timedelta(seconds=state.configured_interval)
        self.connected = True
        ir.async_delete_issue(self.hass, DOMAIN, ISSUE_RATE_LIMITED)

    @staticmethod
    def _carry_over(appliance: GroheAppliance, previous: GroheData) -> GroheApplianceData:
        old = previous.appliances.get(appliance.appliance_id)
        if old is None:
            return GroheApplianceData(appliance=appliance)
        return replace(old, appliance=appliance)

    async def _async_poll_secondary(
        self,
        data: GroheData,
        appliances: list[GroheAppliance],
    ) -> None:
        cycle = self.poll_state.cycle

        if PollOperation.NOTIFICATIONS in operations_due(cycle, None):
            result = await self._async_secondary(
                PollOperation.NOTIFICATIONS,
                None,
                self.client.async_get_profile_notifications(),
            )
            if self._has_shape(PollOperation.NOTIFICATIONS, None, result, list):
                data.notifications = list(result)

        for appliance in appliances:
            record = data.appliances[appliance.appliance_id]
            due = operations_due(cycle, appliance.device_kind)

            if PollOperation.STATUS in due:
                result = await self._async_secondary(
                    PollOperation.STATUS,
                    appliance,
                    self.client.async_get_appliance_status(appliance),
                )
                if self._has_shape(PollOperation.STATUS, appliance, result, list):
                    record.status = list(result)

            if PollOperation.COMMAND in due:
                result = await self._async_secondary(
                    PollOperation.COMMAND,
                    appliance,
                    self.client.async_get_appliance_command(appliance),
                )
                if self._has_shape(PollOperation.COMMAND, appliance, result, dict):
                    record.command = result

            if PollOperation.MEASUREMENT_TRIGGER in due:
                await self._async_secondary(
                    PollOperation.MEASUREMENT_TRIGGER,
                    appliance,
                    self.client.async_request_current_measurement(appliance),
                )

            if PollOperation.CONSUMPTION_TODAY in due:
                today = dt_util.now().date()
                result = await self._async_secondary(
                    PollOperation.CONSUMPTION_TODAY,
                    appliance,
                    self.client.async_get_appliance_data(
                        appliance, today, today, group_by="day"
                    ),
                )
                if self._has_shape(
                    PollOperation.CONSUMPTION_TODAY, appliance, result, dict
                ):
                    record.consumption_today = result

            if PollOperation.PRESSURE_TEST in due:
                result = await self._async_secondary(
                    PollOperation.PRESSURE_TEST,
                    appliance,
                    self.client.async_get_pressure_measurement(appliance),
                )
                if self._has_shape(
                    PollOperation.PRESSURE_TEST, appliance, result, dict
                ):
                    record.pressure_test = result

        await self._async_poll_history(data, appliances)

    async def _async_poll_history(
        self,
        data: GroheData,
        appliances: list[GroheAppliance],
    ) -> None:
        today = dt_util.now().date()
        if self.poll_state.last_daily_aggregate == today:
            return

        for appliance in appliances_for(PollOperation.CONSUMPTION_HISTORY, appliances):
            date_from = self._history_start(appliance, today)
            result = await self._async_secondary(
                PollOperation.CONSUMPTION_HISTORY,
                appliance,
                self.client.async_get_appliance_data(
                    appliance, date_from, today, group_by="month"
                ),
            )
            if self._has_shape(
                PollOperation.CONSUMPTION_HISTORY, appliance, result, dict
            ):
                data.appliances[appliance.appliance_id].consumption_history = result

        self.poll_state.last_daily_aggregate = today

    @staticmethod
    def _history_start(appliance: GroheAppliance, today: date) -> date:
        lookback = today - timedelta(days=HISTORY_LOOKBACK_DAYS)
        if not appliance.installation_date:
            return lookback
        installed = dt_util.parse_datetime(appliance.installation_date)
        if installed is None:
            return lookback
        return max(installed.date(), lookback)

    async def _async_secondary(
        self,
        operation: PollOperation,
        appliance: GroheAppliance | None,
        request: Any,
    ) -> Any:
        """Await a secondary request; failures are logged, never raised."""
        target = appliance.appliance_id if appliance else "account"
        try:
            return await request
        except GroheNotFoundError as err:
            if operation is PollOperation.PRESSURE_TEST:
                _LOGGER.debug("No pressure test recorded for %s", target)
            else:
                _LOGGER.warning("%s for %s not found: %s", operation, target, err)
        except (GroheError, httpx.RequestError) as err:
            _LOGGER.warning("Failed to poll %s for %s: %s", operation, target, err)
        return None

    @staticmethod
    def _has_shape(
        operation: PollOperation,
        appliance: GroheAppliance | None,
        result: Any,
        expected: type,
    ) -> bool:
        """Return True if a secondary result has the expected JSON type."""
        if result is None:
            return False
        if isinstance(result, expected):
            return True
        _LOGGER.warning(
            "Unexpected %s response for %s: %s",
            operation,
            appliance.appliance_id if appliance else "account",
            type(result).__name__,
        )
        return False
