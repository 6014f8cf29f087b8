"""Valve entity for the Grohe Sense Guard."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from homeassistant.components.valve import (
    ValveDeviceClass,
    ValveEntity,
    ValveEntityFeature,
)
from homeassistant.exceptions import HomeAssistantError

from .const import DOMAIN
from .entity import GroheEntity
from .exceptions import GroheError
from .models import DeviceKind

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import GroheDataCoordinator
    from .models import GroheAppliance

_LOGGER = logging.getLogger(__name__)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up the main water valve of every Sense Guard."""
    coordinator: GroheDataCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    async_add_entities(
        GroheValve(coordinator, record.appliance)
        for record in coordinator.data.appliances.values()
        if record.appliance.device_kind is DeviceKind.SENSE_GUARD
    )


class GroheValve(GroheEntity, ValveEntity):
    """Main water valve of a Sense Guard."""

    _attr_device_class = ValveDeviceClass.WATER
    _attr_supported_features = ValveEntityFeature.OPEN | ValveEntityFeature.CLOSE
    _attr_reports_position = False
    _attr_name = "Valve"

    def __init__(
        self, coordinator: GroheDataCoordinator, appliance: GroheAppliance
    ) -> None:
        super().__init__(coordinator, appliance, "valve")

    @property
    def is_closed(self) -> bool | None:
        record = self.record
        if record is None:
            return None
        command = (record.command or {}).get("command") or {}
        if "valve_open" in command:
            return not command["valve_open"]
        value = record.appliance.status_value("open")
        if value is None:
            return None
        return not (value is True or value == "open" or value == 1)

    async def async_open_valve(self, **kwargs: Any) -> None:
        await self._async_set_valve(True)

    async def async_close_valve(self, **kwargs: Any) -> None:
        await self._async_set_valve(False)

    async def _async_set_valve(self, open_valve: bool) -> None:
        record = self.record
        if record is None:
            error_msg = f"Appliance {self._appliance_id} is not available"
            raise HomeAssistantError(error_msg)

        _LOGGER.info(
            "%s valve of %s", "Opening" if open_valve else "Closing", self._appliance_id
        )
        try:
            await self.coordinator.client.async_set_valve(record.appliance, open_valve)
        except (GroheError, httpx.RequestError) as err:
            error_msg = f"Failed to set valve of {self._appliance_id}: {err}"
            raise HomeAssistantError(error_msg) from err
        await self.coordinator.async_confirm_write(record.appliance)
