"""API client for the Grohe ONDUS cloud.

This module provides the authenticated request layer and the named
endpoint operations for Sense, Sense Guard and Blue appliances.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

import httpx
from homeassistant.helpers.httpx_client import create_async_httpx_client
from httpx_retries import Retry, RetryTransport

from .const import BASE_URL, LOGIN_TIMEOUT, REQUEST_TIMEOUT, USER_AGENT
from .exceptions import (
    GroheApiClientError,
    GroheAuthenticationFailedError,
    GroheInvalidInputError,
    GroheNotFoundError,
    GroheRateLimitedError,
)
from .models import ConsumableKind, GroheAppliance, TapType

if TYPE_CHECKING:
    from homeassistant.core import HomeAssistant

    from .auth import GroheAuthSession

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404


def create_headers(access_token: str | None = None) -> dict[str, str]:
    """Create HTTP headers for Grohe API requests.

    Args:
        access_token: Optional access token sent as bearer authorization.

    Returns:
        Dictionary containing HTTP headers for API requests.

    """
    headers = {
        "content-type": "application/json",
        "accept": "application/json",
        "user-agent": USER_AGENT,
    }
    if access_token:
        headers["authorization"] = f"Bearer {access_token}"
    return headers


def is_http_error(status: int) -> bool:
    """Check if HTTP status code indicates an error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 400 or higher, False otherwise.

    """
    return status >= HTTP_BAD_REQUEST


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates authentication error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 401, False otherwise.

    """
    return status == HTTP_UNAUTHORIZED


def validate_response(response: httpx.Response) -> Any:
    """Validate HTTP response and return parsed JSON data.

    Args:
        response: HTTP response object to validate.

    Returns:
        Parsed JSON data from response, or None for an empty body.

    Raises:
        GroheRateLimitedError: If the cloud answers 403.
        GroheNotFoundError: If the resource does not exist.
        GroheApiClientError: For any other unsuccessful status, or a body
            that is not JSON.

    """
    _validate_http_status(response)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as err:
        error_msg = "Invalid JSON response"
        raise GroheApiClientError(error_msg, response.status_code) from err


def _validate_http_status(response: httpx.Response) -> None:
    status = response.status_code
    if not is_http_error(status):
        return

    if status == HTTP_FORBIDDEN:
        error_msg = "Forbidden, possibly rate limited"
        raise GroheRateLimitedError(error_msg, status)
    if status == HTTP_NOT_FOUND:
        error_msg = "Resource not found"
        raise GroheNotFoundError(error_msg, status)

    error_msg = f"Request failed: {status}"
    raise GroheApiClientError(error_msg, status)


def _appliance_kind(value: Any) -> int:
    """Return the type code, or 0 when it is missing or not a number."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def extract_appliances(dashboard: dict[str, Any] | None) -> list[GroheAppliance]:
    """Extract appliances from the dashboard document.

    Walks locations, rooms and appliances; appliances whose registration
    is not complete are skipped.

    Args:
        dashboard: Dashboard response data.

    Returns:
        List of GroheAppliance objects.

    """
    appliances = []
    if not isinstance(dashboard, dict):
        return appliances
    for location in dashboard.get("locations") or []:
        for room in location.get("rooms") or []:
            for appliance in room.get("appliances") or []:
                appliance_id = appliance.get("appliance_id")
                if appliance.get("registration_complete") is False:
                    _LOGGER.debug("Skipping unregistered appliance %s", appliance_id)
                    continue
                if not appliance_id:
                    continue
                latest = appliance.get("data_latest") or {}
                appliances.append(
                    GroheAppliance(
                        appliance_id=str(appliance_id),
                        kind=_appliance_kind(appliance.get("type")),
                        name=appliance.get("name") or "Grohe Device",
                        location_id=str(location.get("id")),
                        room_id=str(room.get("id")),
                        installation_date=appliance.get("installation_date"),
                        measurement=dict(latest.get("measurement") or {}),
                        status=list(appliance.get("status") or []),
                    )
                )
    return appliances


def create_session_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for the Grohe API.

    Args:
        hass: Home Assistant instance.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    base_client = create_async_httpx_client(hass, timeout=REQUEST_TIMEOUT)
    retry = Retry(total=3, backoff_factor=0.5)
    base_client._transport = RetryTransport(  # noqa: SLF001
        transport=base_client._transport,  # noqa: SLF001
        retry=retry,
    )
    return base_client


def create_login_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create a client for one login attempt; redirects are not followed."""
    return create_async_httpx_client(
        hass,
        auto_cleanup=False,
        timeout=LOGIN_TIMEOUT,
        follow_redirects=False,
    )


class GroheApiClient:
    """Named operations on the Grohe cloud, authorized through the session."""

    def __init__(self, session: httpx.AsyncClient, auth: GroheAuthSession) -> None:
        """Initialize the client.

        Args:
            session: HTTP client session.
            auth: Session engine that supplies access tokens.

        """
        self._session = session
        self._auth = auth

    async def _async_request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Execute an authorized request, renewing once on 401.

        Args:
            method: HTTP method.
            path: Path relative to the API base address.
            params: Optional query parameters.
            json: Optional JSON body.

        Returns:
            Parsed JSON data, or None for an empty body.

        Raises:
            GroheAuthenticationFailedError: If the retry is also rejected.
            GroheRateLimitedError: On 403; not retried.
            GroheNotFoundError: On 404.
            GroheApiClientError: On any other unsuccessful status.

        """
        url = f"{BASE_URL}{path}"
        token = await self._auth.async_get_valid_token()

        _LOGGER.debug("%s %s", method, path)
        response = await self._session.request(
            method, url, headers=create_headers(token), params=params, json=json
        )

        if is_auth_error(response.status_code):
            _LOGGER.debug("Got 401 for %s, renewing token and retrying", path)
            token = await self._auth.async_renew(stale_token=token)
            response = await self._session.request(
                method, url, headers=create_headers(token), params=params, json=json
            )
            if is_auth_error(response.status_code):
                error_msg = f"Request rejected after token renewal: {path}"
                raise GroheAuthenticationFailedError(error_msg)

        if response.status_code == HTTP_FORBIDDEN:
            _LOGGER.warning(
                "HTTP 403 (Forbidden) for %s. Check that the Grohe app works "
                "and the account is still active",
                path,
            )
        return validate_response(response)

    @staticmethod
    def _appliance_path(appliance: GroheAppliance) -> str:
        return (
            f"/locations/{appliance.location_id}"
            f"/rooms/{appliance.room_id}"
            f"/appliances/{appliance.appliance_id}"
        )

    async def async_get_dashboard(self) -> dict[str, Any]:
        """Fetch the dashboard with every location, room and appliance."""
        data = await self._async_request("GET", "/dashboard") or {}
        if not isinstance(data, dict):
            error_msg = "Dashboard response is not an object"
            raise GroheApiClientError(error_msg)
        _LOGGER.debug(
            "Retrieved dashboard with %d locations",
            len(data.get("locations") or []),
        )
        return data

    async def async_get_appliance_details(self, appliance: GroheAppliance) -> Any:
        """Fetch appliance details."""
        return await self._async_request(
            "GET", f"{self._appliance_path(appliance)}/details"
        )

    async def async_get_appliance_status(self, appliance: GroheAppliance) -> Any:
        """Fetch the status entries (online, battery, update state)."""
        return await self._async_request(
            "GET", f"{self._appliance_path(appliance)}/status"
        )

    async def async_get_appliance_command(self, appliance: GroheAppliance) -> Any:
        """Fetch the current command document."""
        return await self._async_request(
            "GET", f"{self._appliance_path(appliance)}/command"
        )

    async def async_set_appliance_command(
        self,
        appliance: GroheAppliance,
        fields: dict[str, Any],
    ) -> Any:
        """Merge fields into the current command document and post it back.

        Args:
            appliance: Target appliance.
            fields: Command fields to set.

        Returns:
            The command document returned by the cloud.

        """
        path = f"{self._appliance_path(appliance)}/command"
        current = await self._async_request("GET", path) or {}
        document = dict(current)
        document["command"] = {**(current.get("command") or {}), **fields}

        _LOGGER.debug(
            "Sending command to appliance %s: %s", appliance.appliance_id, fields
        )
        return await self._async_request("POST", path, json=document)

    async def async_get_appliance_data(
        self,
        appliance: GroheAppliance,
        date_from: date,
        date_to: date,
        group_by: str = "day",
    ) -> Any:
        """Fetch aggregated consumption data.

        Args:
            appliance: Target appliance.
            date_from: First day, inclusive.
            date_to: Last day, inclusive.
            group_by: Aggregation bucket: ``hour``, ``day``, ``week``,
                ``month`` or ``year``.

        Returns:
            Aggregated data document.

        """
        return await self._async_request(
            "GET",
            f"{self._appliance_path(appliance)}/data/aggregated",
            params={
                "from": date_from.isoformat(),
                "to": date_to.isoformat(),
                "groupBy": group_by,
            },
        )

    async def async_get_pressure_measurement(self, appliance: GroheAppliance) -> Any:
        """Fetch the latest pressure test result.

        Raises:
            GroheNotFoundError: If no pressure test was ever run.

        """
        return await self._async_request(
            "GET", f"{self._appliance_path(appliance)}/pressuremeasurement"
        )

    async def async_get_appliance_notifications(
        self,
        appliance: GroheAppliance,
        page_size: int = 10,
    ) -> Any:
        """Fetch the notifications of one appliance."""
        return await self._async_request(
            "GET",
            f"{self._appliance_path(appliance)}/notifications",
            params={"pageSize": page_size},
        )

    async def async_get_profile_notifications(self, limit: int = 50) -> Any:
        """Fetch the account-wide notification list."""
        return await self._async_request(
            "GET", "/profile/notifications", params={"pageSize": limit}
        )

    async def async_set_valve(self, appliance: GroheAppliance, open_valve: bool) -> Any:
        """Open or close the Sense Guard valve."""
        return await self.async_set_appliance_command(
            appliance, {"valve_open": open_valve}
        )

    async def async_start_pressure_measurement(self, appliance: GroheAppliance) -> Any:
        """Start a Sense Guard pressure test."""
        return await self.async_set_appliance_command(appliance, {"measure_now": True})

    async def async_set_snooze(self, appliance: GroheAppliance, minutes: int) -> Any:
        """Snooze Sense Guard leak detection for a number of minutes."""
        if minutes <= 0:
            error_msg = f"Snooze duration must be positive, got {minutes}"
            raise GroheInvalidInputError(error_msg)
        return await self.async_set_appliance_command(
            appliance, {"snooze_duration": minutes}
        )

    async def async_tap_water(
        self,
        appliance: GroheAppliance,
        tap_type: int,
        amount: int,
    ) -> Any:
        """Dispense water from a Blue appliance.

        Args:
            appliance: Target Blue appliance.
            tap_type: 1 still, 2 medium, 3 carbonated.
            amount: Amount in millilitres.

        Returns:
            The command document returned by the cloud.

        Raises:
            GroheInvalidInputError: If tap type or amount is invalid.

        """
        try:
            tap = TapType(tap_type)
        except ValueError as err:
            error_msg = f"Unknown tap type: {tap_type}"
            raise GroheInvalidInputError(error_msg) from err
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            error_msg = f"Tap amount must be a positive integer, got {amount!r}"
            raise GroheInvalidInputError(error_msg)

        return await self.async_set_appliance_command(
            appliance, {"tap_type": int(tap), "tap_amount": amount}
        )

    async def async_reset_consumable(
        self,
        appliance: GroheAppliance,
        kind: ConsumableKind | str,
    ) -> Any:
        """Reset the CO2 or filter counter of a Blue appliance."""
        try:
            consumable = ConsumableKind(kind)
        except ValueError as err:
            error_msg = f"Unknown consumable: {kind}"
            raise GroheInvalidInputError(error_msg) from err
        return await self.async_set_appliance_command(
            appliance, {f"{consumable}_status_reset": True}
        )

    async def async_request_current_measurement(
        self,
        appliance: GroheAppliance,
    ) -> Any:
        """Ask a Blue appliance to publish fresh readings."""
        return await self.async_set_appliance_command(
            appliance, {"get_current_measurement": True}
        )
