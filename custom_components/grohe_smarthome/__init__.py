from __future__ import annotations

import logging

import httpx
import voluptuous as vol
from homeassistant.config_entries import ConfigEntry
from homeassistant.const import CONF_EMAIL, CONF_PASSWORD, Platform
from homeassistant.core import HomeAssistant, ServiceCall
from homeassistant.exceptions import (
    ConfigEntryNotReady,
    HomeAssistantError,
    ServiceValidationError,
)
from homeassistant.helpers import config_validation as cv

from . import api
from .api import create_session_client
from .auth import GroheAuthSession
from .const import (
    CONF_POLL_INTERVAL,
    DOMAIN,
    SERVICE_ATTR_AMOUNT,
    SERVICE_ATTR_APPLIANCE_ID,
    SERVICE_ATTR_TAP_TYPE,
    SERVICE_DISPENSE,
)
from .coordinator import GroheDataCoordinator, resolve_poll_interval
from .credential_store import GroheCredentialStore
from .exceptions import GroheAuthError, GroheError, GroheLoginError
from .models import DeviceKind, TapType

_LOGGER = logging.getLogger(__name__)

PLATFORMS = [Platform.BINARY_SENSOR, Platform.BUTTON, Platform.SENSOR, Platform.VALVE]

DISPENSE_SCHEMA = vol.Schema(
    {
        vol.Required(SERVICE_ATTR_APPLIANCE_ID): cv.string,
        vol.Required(SERVICE_ATTR_TAP_TYPE): vol.All(
            vol.Coerce(int), vol.In([int(tap) for tap in TapType])
        ),
        vol.Required(SERVICE_ATTR_AMOUNT): vol.All(vol.Coerce(int), vol.Range(min=1)),
    }
)

BLUE_KINDS = (DeviceKind.BLUE_HOME, DeviceKind.BLUE_PROFESSIONAL)


async def _async_start_session(
    auth: GroheAuthSession,
    store: GroheCredentialStore,
    entry: ConfigEntry,
) -> None:
    """Resume from the stored refresh token, or log in when that fails."""
    refresh_token = await store.async_load()
    if refresh_token:
        auth.adopt_refresh_token(refresh_token)
        try:
            await auth.async_renew()
        except (GroheAuthError, GroheLoginError) as err:
            _LOGGER.info(
                "Stored refresh token for entry %s unusable (%s), logging in",
                entry.entry_id,
                err,
            )
        else:
            _LOGGER.debug("Resumed Grohe session from stored refresh token")
            return

    await auth.async_login(entry.data[CONF_EMAIL], entry.data[CONF_PASSWORD])


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Setting up Grohe Smarthome integration for entry %s", entry.entry_id)

    session = create_session_client(hass)
    store = GroheCredentialStore(hass, entry)
    auth = GroheAuthSession(
        session,
        login_client_factory=lambda: api.create_login_client(hass),
        token_update_callback=store.async_save,
    )

    try:
        await _async_start_session(auth, store, entry)
    except (GroheAuthError, GroheLoginError) as err:
        _LOGGER.warning(
            "Authentication failed for entry %s: %s", entry.entry_id, str(err)
        )
        await session.aclose()
        return False
    except httpx.RequestError as err:
        _LOGGER.error("Connection error for entry %s: %s", entry.entry_id, str(err))
        await session.aclose()
        return False

    poll_interval = resolve_poll_interval(entry.data.get(CONF_POLL_INTERVAL))
    client = api.GroheApiClient(session, auth)
    coordinator = GroheDataCoordinator(hass, client, auth, entry, poll_interval)
    try:
        await coordinator.async_config_entry_first_refresh()
    except ConfigEntryNotReady:
        await session.aclose()
        raise

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = {
        "session": session,
        "auth": auth,
        "client": client,
        "coordinator": coordinator,
        "store": store,
    }
    _LOGGER.debug(
        "Stored data for entry %s: %d appliances, polling every %d s",
        entry.entry_id,
        len(coordinator.data.appliances),
        poll_interval,
    )

    _async_register_services(hass)
    await hass.config_entries.async_forward_entry_setups(entry, PLATFORMS)
    _LOGGER.info(
        "Successfully setup Grohe Smarthome integration for entry %s", entry.entry_id
    )
    return True


def _async_register_services(hass: HomeAssistant) -> None:
    if hass.services.has_service(DOMAIN, SERVICE_DISPENSE):
        return

    async def async_dispense(call: ServiceCall) -> None:
        appliance_id = call.data[SERVICE_ATTR_APPLIANCE_ID]
        for entry_data in hass.data.get(DOMAIN, {}).values():
            coordinator: GroheDataCoordinator = entry_data["coordinator"]
            record = coordinator.data.appliances.get(appliance_id)
            if record is None:
                continue
            if record.appliance.device_kind not in BLUE_KINDS:
                error_msg = f"Appliance {appliance_id} cannot dispense water"
                raise ServiceValidationError(error_msg)

            _LOGGER.info(
                "Dispensing %d ml (tap type %d) on %s",
                call.data[SERVICE_ATTR_AMOUNT],
                call.data[SERVICE_ATTR_TAP_TYPE],
                appliance_id,
            )
            try:
                await entry_data["client"].async_tap_water(
                    record.appliance,
                    call.data[SERVICE_ATTR_TAP_TYPE],
                    call.data[SERVICE_ATTR_AMOUNT],
                )
            except (GroheError, httpx.RequestError) as err:
                error_msg = f"Dispensing on {appliance_id} failed: {err}"
                raise HomeAssistantError(error_msg) from err
            await coordinator.async_confirm_write(record.appliance)
            return

        error_msg = f"Unknown Grohe appliance: {appliance_id}"
        raise ServiceValidationError(error_msg)

    hass.services.async_register(
        DOMAIN, SERVICE_DISPENSE, async_dispense, schema=DISPENSE_SCHEMA
    )


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Unloading Grohe Smarthome integration for entry %s", entry.entry_id)

    unload_ok = await hass.config_entries.async_unload_platforms(entry, PLATFORMS)
    if not unload_ok:
        _LOGGER.warning("Failed to unload some platforms for entry %s", entry.entry_id)
        return False

    entry_data = hass.data[DOMAIN].pop(entry.entry_id)
    await entry_data["coordinator"].async_shutdown()
    await entry_data["session"].aclose()
    _LOGGER.debug("Cleaned up data for entry %s", entry.entry_id)

    if not hass.data[DOMAIN]:
        hass.services.async_remove(DOMAIN, SERVICE_DISPENSE)
    return True


async def async_remove_entry(hass: HomeAssistant, entry: ConfigEntry) -> None:
    """Delete the stored refresh token of a removed entry."""
    await GroheCredentialStore(hass, entry).async_remove()
