"""Buttons: Sense Guard pressure test and Blue consumable resets."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from homeassistant.components.button import ButtonEntity, ButtonEntityDescription
from homeassistant.exceptions import HomeAssistantError

from .const import DOMAIN
from .entity import GroheEntity
from .exceptions import GroheError
from .models import ConsumableKind, DeviceKind

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .api import GroheApiClient
    from .coordinator import GroheDataCoordinator
    from .models import GroheAppliance

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class GroheButtonEntityDescription(ButtonEntityDescription):
    """Describes a Grohe button and the command it sends."""

    kinds: frozenset[DeviceKind]
    press_fn: Callable[[GroheApiClient, GroheAppliance], Awaitable[Any]]


_BLUE = frozenset({DeviceKind.BLUE_HOME, DeviceKind.BLUE_PROFESSIONAL})

BUTTONS: tuple[GroheButtonEntityDescription, ...] = (
    GroheButtonEntityDescription(
        key="pressure_test",
        name="Start pressure test",
        kinds=frozenset({DeviceKind.SENSE_GUARD}),
        press_fn=lambda client, appliance: client.async_start_pressure_measurement(
            appliance
        ),
    ),
    GroheButtonEntityDescription(
        key="reset_co2",
        name="Reset CO2",
        kinds=_BLUE,
        press_fn=lambda client, appliance: client.async_reset_consumable(
            appliance, ConsumableKind.CO2
        ),
    ),
    GroheButtonEntityDescription(
        key="reset_filter",
        name="Reset filter",
        kinds=_BLUE,
        press_fn=lambda client, appliance: client.async_reset_consumable(
            appliance, ConsumableKind.FILTER
        ),
    ),
)


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up command buttons for Grohe appliances."""
    coordinator: GroheDataCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    async_add_entities(
        GroheButton(coordinator, record.appliance, description)
        for record in coordinator.data.appliances.values()
        for description in BUTTONS
        if record.appliance.device_kind in description.kinds
    )


class GroheButton(GroheEntity, ButtonEntity):
    """Sends one command to an appliance."""

    entity_description: GroheButtonEntityDescription

    def __init__(
        self,
        coordinator: GroheDataCoordinator,
        appliance: GroheAppliance,
        description: GroheButtonEntityDescription,
    ) -> None:
        super().__init__(coordinator, appliance, description.key)
        self.entity_description = description

    async def async_press(self) -> None:
        record = self.record
        if record is None:
            error_msg = f"Appliance {self._appliance_id} is not available"
            raise HomeAssistantError(error_msg)

        _LOGGER.info("%s on %s", self.entity_description.key, self._appliance_id)
        try:
            await self.entity_description.press_fn(
                self.coordinator.client, record.appliance
            )
        except (GroheError, httpx.RequestError) as err:
            error_msg = f"{self.entity_description.key} failed on {self._appliance_id}: {err}"
            raise HomeAssistantError(error_msg) from err
        await self.coordinator.async_confirm_write(record.appliance)
