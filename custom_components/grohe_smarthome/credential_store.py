"""Persistence of the Grohe refresh token.

The token lives in a private Home Assistant storage file per config entry
rather than in the config entry data.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from homeassistant.helpers.storage import Store

from .const import CONF_REFRESH_TOKEN, STORAGE_KEY, STORAGE_VERSION

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

_LOGGER = logging.getLogger(__name__)


class GroheCredentialStore:
    """Load and save the refresh token of one config entry."""

    def __init__(self, hass: HomeAssistant, entry: ConfigEntry) -> None:
        self._hass = hass
        self._entry = entry
        self._store: Store[dict[str, Any]] = Store(
            hass,
            STORAGE_VERSION,
            f"{STORAGE_KEY}.{entry.entry_id}",
            private=True,
        )
        self._token: str | None = None

    async def async_load(self) -> str | None:
        """Return the persisted refresh token, migrating a legacy one.

        A refresh token found in the config entry data is moved into the
        store and removed from the entry.
        """
        data = await self._store.async_load()
        if data and data.get(CONF_REFRESH_TOKEN):
            self._token = data[CONF_REFRESH_TOKEN]
            _LOGGER.debug("Loaded refresh token for entry %s", self._entry.entry_id)
            return self._token

        legacy_token = self._entry.data.get(CONF_REFRESH_TOKEN)
        if not legacy_token:
            _LOGGER.debug("No stored refresh token for entry %s", self._entry.entry_id)
            return None

        _LOGGER.info(
            "Migrating refresh token of entry %s into credential storage",
            self._entry.entry_id,
        )
        await self.async_save(legacy_token)
        entry_data = {
            key: value
            for key, value in self._entry.data.items()
            if key != CONF_REFRESH_TOKEN
        }
        self._hass.config_entries.async_update_entry(self._entry, data=entry_data)
        return legacy_token

    async def async_save(self, refresh_token: str) -> None:
        """Persist the refresh token if it changed."""
        if refresh_token == self._token:
            return
        await self._store.async_save({CONF_REFRESH_TOKEN: refresh_token})
        self._token = refresh_token
        _LOGGER.debug("Saved refresh token for entry %s", self._entry.entry_id)

    async def async_remove(self) -> None:
        """Delete the stored token."""
        await self._store.async_remove()
        self._token = None
