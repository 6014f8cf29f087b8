"""
Configuration flow for Grohe Smarthome integration.

This module handles the setup and configuration of the Grohe Smarthome
integration through Home Assistant's config flow system.
"""

import logging
from typing import Any

import httpx
import voluptuous as vol
from homeassistant.config_entries import ConfigFlow, ConfigFlowResult
from homeassistant.const import CONF_EMAIL, CONF_PASSWORD
from homeassistant.helpers.httpx_client import get_async_client

from . import api
from .auth import GroheAuthSession
from .const import (
    CONF_EMIT_RAW_FIELDS,
    CONF_POLL_INTERVAL,
    CONF_REFRESH_TOKEN,
    DEFAULT_POLL_INTERVAL,
    DOMAIN,
    ERROR_API_ERROR,
    ERROR_CANNOT_CONNECT,
    ERROR_INVALID_AUTH,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
    MIN_POLL_INTERVAL,
    REASON_FORM_REDISPLAYED,
    REASON_INVALID_CREDENTIALS,
)
from .coordinator import resolve_poll_interval
from .exceptions import GroheAuthenticationFailedError, GroheInvalidInputError

_LOGGER = logging.getLogger(__name__)

INVALID_AUTH_REASONS = (REASON_INVALID_CREDENTIALS, REASON_FORM_REDISPLAYED)


def login_error_key(err: GroheAuthenticationFailedError) -> str:
    """Map a failed login to a config flow error key.

    Args:
        err: The error raised after the last login attempt.

    Returns:
        Translation key of the form error.

    """
    cause = err.__cause__
    if isinstance(cause, httpx.TimeoutException):
        return ERROR_TIMEOUT
    if isinstance(cause, httpx.RequestError):
        return ERROR_CANNOT_CONNECT
    if err.reason in INVALID_AUTH_REASONS:
        return ERROR_INVALID_AUTH
    return ERROR_API_ERROR


class GroheSmarthomeConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for Grohe Smarthome integration."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing email, password and
                polling options.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        errors: dict[str, str] = {}

        if user_input is not None:
            email = user_input[CONF_EMAIL].strip()
            password = user_input[CONF_PASSWORD]

            try:
                session = get_async_client(self.hass)
                auth = GroheAuthSession(
                    session,
                    login_client_factory=lambda: api.create_login_client(self.hass),
                )
                refresh_token = await auth.async_login(email, password)
                _LOGGER.info("Successfully authenticated with Grohe cloud")

            except GroheInvalidInputError as err:
                _LOGGER.warning("Invalid input (%s): %s", ERROR_INVALID_AUTH, err)
                errors["base"] = ERROR_INVALID_AUTH
            except GroheAuthenticationFailedError as err:
                errors["base"] = login_error_key(err)
                _LOGGER.warning("Authentication failed (%s): %s", errors["base"], err)
            except Exception:
                _LOGGER.exception(
                    "Unexpected error during authentication (%s)",
                    ERROR_UNKNOWN,
                )
                errors["base"] = ERROR_UNKNOWN

            else:
                await self.async_set_unique_id(email.lower())
                self._abort_if_unique_id_configured()

                return self.async_create_entry(
                    title=f"Grohe Smarthome ({email})",
                    data={
                        CONF_EMAIL: email,
                        CONF_PASSWORD: password,
                        CONF_POLL_INTERVAL: resolve_poll_interval(
                            user_input.get(CONF_POLL_INTERVAL)
                        ),
                        CONF_EMIT_RAW_FIELDS: user_input.get(
                            CONF_EMIT_RAW_FIELDS, False
                        ),
                        CONF_REFRESH_TOKEN: refresh_token,
                    },
                )

        return self.async_show_form(
            step_id="user",
            data_schema=vol.Schema(
                {
                    vol.Required(CONF_EMAIL): str,
                    vol.Required(CONF_PASSWORD): str,
                    vol.Optional(
                        CONF_POLL_INTERVAL, default=DEFAULT_POLL_INTERVAL
                    ): vol.All(vol.Coerce(int), vol.Range(min=MIN_POLL_INTERVAL)),
                    vol.Optional(CONF_EMIT_RAW_FIELDS, default=False): bool,
                }
            ),
            errors=errors,
        )
