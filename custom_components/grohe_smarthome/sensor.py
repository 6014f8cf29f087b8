"""Sensor entities for Grohe Sense, Sense Guard and Blue appliances."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from homeassistant.components.sensor import (
    SensorDeviceClass,
    SensorEntity,
    SensorEntityDescription,
    SensorStateClass,
)
from homeassistant.const import (
    PERCENTAGE,
    UnitOfPressure,
    UnitOfTemperature,
    UnitOfTime,
    UnitOfVolume,
)

from .const import CONF_EMIT_RAW_FIELDS, DOMAIN
from .entity import GroheEntity
from .models import DeviceKind, GroheAppliance, GroheApplianceData

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant
    from homeassistant.helpers.entity_platform import AddEntitiesCallback

    from .coordinator import GroheDataCoordinator

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class GroheSensorEntityDescription(SensorEntityDescription):
    """Describes a Grohe sensor and how to read its value."""

    value_fn: Callable[[GroheApplianceData], Any]


def _measurement(key: str) -> Callable[[GroheApplianceData], Any]:
    return lambda record: record.appliance.measurement.get(key)


def consumption_total(document: dict[str, Any] | None) -> float | None:
    """Sum the water consumption of an aggregated data document."""
    if not document:
        return None
    withdrawals = (document.get("data") or {}).get("withdrawals")
    if withdrawals is None:
        return None
    return round(
        sum(float(entry.get("waterconsumption") or 0) for entry in withdrawals), 2
    )


SENSE_SENSORS: tuple[GroheSensorEntityDescription, ...] = (
    GroheSensorEntityDescription(
        key="temperature",
        name="Temperature",
        device_class=SensorDeviceClass.TEMPERATURE,
        native_unit_of_measurement=UnitOfTemperature.CELSIUS,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("temperature"),
    ),
    GroheSensorEntityDescription(
        key="humidity",
        name="Humidity",
        device_class=SensorDeviceClass.HUMIDITY,
        native_unit_of_measurement=PERCENTAGE,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("humidity"),
    ),
    GroheSensorEntityDescription(
        key="battery",
        name="Battery",
        device_class=SensorDeviceClass.BATTERY,
        native_unit_of_measurement=PERCENTAGE,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("battery"),
    ),
)

SENSE_GUARD_SENSORS: tuple[GroheSensorEntityDescription, ...] = (
    GroheSensorEntityDescription(
        key="flow_rate",
        name="Flow rate",
        native_unit_of_measurement="l/h",
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("flowrate"),
    ),
    GroheSensorEntityDescription(
        key="pressure",
        name="Pressure",
        device_class=SensorDeviceClass.PRESSURE,
        native_unit_of_measurement=UnitOfPressure.BAR,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("pressure"),
    ),
    GroheSensorEntityDescription(
        key="water_temperature",
        name="Water temperature",
        device_class=SensorDeviceClass.TEMPERATURE,
        native_unit_of_measurement=UnitOfTemperature.CELSIUS,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("temperature_guard"),
    ),
)

CONSUMPTION_SENSORS: tuple[GroheSensorEntityDescription, ...] = (
    GroheSensorEntityDescription(
        key="consumption_today",
        name="Water consumption today",
        device_class=SensorDeviceClass.WATER,
        native_unit_of_measurement=UnitOfVolume.LITERS,
        state_class=SensorStateClass.TOTAL_INCREASING,
        value_fn=lambda record: consumption_total(record.consumption_today),
    ),
)

BLUE_SENSORS: tuple[GroheSensorEntityDescription, ...] = (
    GroheSensorEntityDescription(
        key="remaining_co2",
        name="CO2 remaining",
        native_unit_of_measurement=PERCENTAGE,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("remaining_co2"),
    ),
    GroheSensorEntityDescription(
        key="remaining_filter",
        name="Filter remaining",
        native_unit_of_measurement=PERCENTAGE,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("remaining_filter"),
    ),
    GroheSensorEntityDescription(
        key="remaining_co2_liters",
        name="CO2 remaining volume",
        native_unit_of_measurement=UnitOfVolume.LITERS,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("remaining_co2_liters"),
    ),
    GroheSensorEntityDescription(
        key="remaining_filter_liters",
        name="Filter remaining volume",
        native_unit_of_measurement=UnitOfVolume.LITERS,
        state_class=SensorStateClass.MEASUREMENT,
        value_fn=_measurement("remaining_filter_liters"),
    ),
    GroheSensorEntityDescription(
        key="cleaning_count",
        name="Cleaning count",
        state_class=SensorStateClass.TOTAL_INCREASING,
        value_fn=_measurement("cleaning_count"),
    ),
    GroheSensorEntityDescription(
        key="pump_count",
        name="Pump count",
        state_class=SensorStateClass.TOTAL_INCREASING,
        value_fn=_measurement("pump_count"),
    ),
    GroheSensorEntityDescription(
        key="operating_time",
        name="Operating time",
        device_class=SensorDeviceClass.DURATION,
        native_unit_of_measurement=UnitOfTime.MINUTES,
        state_class=SensorStateClass.TOTAL_INCREASING,
        value_fn=_measurement("operating_time"),
    ),
)

SENSORS_BY_KIND: dict[DeviceKind, tuple[GroheSensorEntityDescription, ...]] = {
    DeviceKind.SENSE: SENSE_SENSORS,
    DeviceKind.SENSE_GUARD: SENSE_GUARD_SENSORS + CONSUMPTION_SENSORS,
    DeviceKind.BLUE_HOME: BLUE_SENSORS + CONSUMPTION_SENSORS,
    DeviceKind.BLUE_PROFESSIONAL: BLUE_SENSORS + CONSUMPTION_SENSORS,
}


def build_sensors(
    coordinator: GroheDataCoordinator,
    appliance: GroheAppliance,
    emit_raw: bool,
) -> list[SensorEntity]:
    """Create the sensors of one appliance.

    Args:
        coordinator: Data coordinator.
        appliance: Appliance as found on the dashboard.
        emit_raw: Also expose every raw measurement field.

    Returns:
        List of sensor entities.

    """
    kind = appliance.device_kind
    if kind is None:
        _LOGGER.debug(
            "Unknown appliance type %s for %s", appliance.kind, appliance.appliance_id
        )
    descriptions = SENSORS_BY_KIND.get(kind, ()) if kind is not None else ()
    entities: list[SensorEntity] = [
        GroheSensor(coordinator, appliance, description) for description in descriptions
    ]
    if emit_raw:
        entities.extend(
            GroheRawMeasurementSensor(coordinator, appliance, field)
            for field in sorted(appliance.measurement)
        )
    return entities


async def async_setup_entry(
    hass: HomeAssistant,
    entry: ConfigEntry,
    async_add_entities: AddEntitiesCallback,
) -> None:
    """Set up sensor entities for Grohe appliances."""
    coordinator: GroheDataCoordinator = hass.data[DOMAIN][entry.entry_id]["coordinator"]
    emit_raw = bool(entry.data.get(CONF_EMIT_RAW_FIELDS, False))

    entities: list[SensorEntity] = []
    for record in coordinator.data.appliances.values():
        entities.extend(build_sensors(coordinator, record.appliance, emit_raw))
    async_add_entities(entities)


class GroheSensor(GroheEntity, SensorEntity):
    """A measurement of a Grohe appliance."""

    entity_description: GroheSensorEntityDescription

    def __init__(
        self,
        coordinator: GroheDataCoordinator,
        appliance: GroheAppliance,
        description: GroheSensorEntityDescription,
    ) -> None:
        super().__init__(coordinator, appliance, description.key)
        self.entity_description = description

    @property
    def native_value(self) -> Any:
        record = self.record
        if record is None:
            return None
        return self.entity_description.value_fn(record)


class GroheRawMeasurementSensor(GroheEntity, SensorEntity):
    """A measurement field exposed as reported by the cloud."""

    def __init__(
        self,
        coordinator: GroheDataCoordinator,
        appliance: GroheAppliance,
        field: str,
    ) -> None:
        super().__init__(coordinator, appliance, f"raw_{field}")
        self._field = field
        self._attr_name = f"Raw {field}"

    @property
    def native_value(self) -> Any:
        record = self.record
        if record is None:
            return None
        value = record.appliance.measurement.get(self._field)
        if isinstance(value, (dict, list)):
            return None
        return value
