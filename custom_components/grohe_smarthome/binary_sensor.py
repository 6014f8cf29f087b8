"""Binary sensors: cloud connection and Sense battery state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from homeassistant.components.binary_sensor import (
    BinarySensorDeviceClass,
    BinarySensorEntity,
)
from homeassistant.const import EntityCategory
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN
from .coordinator import GroheDataCoordinator
from .entity import GroheEntity
from .models import DeviceKind

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .models import GroheAppliance


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up binary sensors for a Grohe account."""
    coordinator: GroheDataCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]

    entities: list[BinarySensorEntity] = [
        GroheConnectionBinarySensor(coordinator, entry.entry_id)
    ]
    entities.extend(
        GroheBatteryLowBinarySensor(coordinator, record.appliance)
        for record in coordinator.data.appliances.values()
        if record.appliance.device_kind is DeviceKind.SENSE
    )
    async_add_entities(entities)


class GroheConnectionBinarySensor(
    CoordinatorEntity[GroheDataCoordinator], BinarySensorEntity
):
    """On while the last dashboard poll succeeded."""

    _attr_device_class = BinarySensorDeviceClass.CONNECTIVITY
    _attr_entity_category = EntityCategory.DIAGNOSTIC
    _attr_name = "Grohe cloud connection"

    def __init__(self, coordinator: GroheDataCoordinator, entry_id: str) -> None:
        super().__init__(coordinator)
        self._attr_unique_id = f"{entry_id}_connection"

    @property
    def available(self) -> bool:
        return True

    @property
    def is_on(self) -> bool:
        return self.coordinator.connected


class GroheBatteryLowBinarySensor(GroheEntity, BinarySensorEntity):
    """Low battery indicator of a Sense."""

    _attr_device_class = BinarySensorDeviceClass.BATTERY
    _attr_name = "Battery low"

    def __init__(
        self, coordinator: GroheDataCoordinator, appliance: GroheAppliance
    ) -> None:
        super().__init__(coordinator, appliance, "battery_low")

    @property
    def is_on(self) -> bool | None:
        record = self.record
        if record is None:
            return None
        status = record.status if record.status is not None else record.appliance.status
        for entry in status:
            if entry.get("type") == "battery":
                return entry.get("value") == "low"
        return None
