"""Base entity for Grohe appliances."""

from __future__ import annotations

from homeassistant.helpers.device_registry import DeviceInfo
from homeassistant.helpers.update_coordinator import CoordinatorEntity

from .const import DOMAIN, MANUFACTURER, MODEL_NAMES
from .coordinator import GroheDataCoordinator
from .models import GroheAppliance, GroheApplianceData


class GroheEntity(CoordinatorEntity[GroheDataCoordinator]):
    """An entity bound to one appliance of the coordinator data."""

    _attr_has_entity_name = True

    def __init__(
        self,
        coordinator: GroheDataCoordinator,
        appliance: GroheAppliance,
        key: str,
    ) -> None:
        super().__init__(coordinator)
        self._appliance_id = appliance.appliance_id
        self._attr_unique_id = f"{appliance.appliance_id}_{key}"
        self._attr_device_info = DeviceInfo(
            identifiers={(DOMAIN, appliance.appliance_id)},
            name=appliance.name,
            manufacturer=MANUFACTURER,
            model=MODEL_NAMES.get(appliance.kind, f"Unknown ({appliance.kind})"),
        )

    @property
    def record(self) -> GroheApplianceData | None:
        """Return the latest data of this appliance."""
        if self.coordinator.data is None:
            return None
        return self.coordinator.data.appliances.get(self._appliance_id)

    @property
    def available(self) -> bool:
        return super().available and self.record is not None
