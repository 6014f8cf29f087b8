"""Pytest configuration and fixtures for Grohe Smarthome tests."""

from typing import Any

import pytest

from custom_components.grohe_smarthome.models import GroheAppliance

SENSE_ID = "sense-1"
GUARD_ID = "guard-1"
BLUE_ID = "blue-1"


def create_login_page(action: str) -> str:
    """Create login page markup with a single form.

    Args:
        action: Value of the form's action attribute.

    Returns:
        HTML string as rendered by the identity provider.

    """
    return (
        "<html><body>"
        f'<form id="kc-form-login" method="post" action="{action}">'
        '<input name="username" type="text"/>'
        '<input name="password" type="password"/>'
        "</form></body></html>"
    )


def create_appliance(
    appliance_id: str,
    kind: int,
    measurement: dict[str, Any] | None = None,
    status: list[dict[str, Any]] | None = None,
) -> GroheAppliance:
    """Create a GroheAppliance for tests."""
    return GroheAppliance(
        appliance_id=appliance_id,
        kind=kind,
        name=f"Appliance {appliance_id}",
        location_id="loc-1",
        room_id="room-1",
        measurement=measurement or {},
        status=status or [],
    )


@pytest.fixture
def sample_token_response() -> dict:
    """Fixture providing a token exchange response."""
    return {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
        "token_type": "Bearer",
    }


@pytest.fixture
def sample_dashboard() -> dict:
    """Fixture providing a dashboard with one appliance of each family.

    Returns:
        A dictionary representing a dashboard API response.

    """
    return {
        "locations": [
            {
                "id": "loc-1",
                "rooms": [
                    {
                        "id": "room-1",
                        "appliances": [
                            {
                                "appliance_id": SENSE_ID,
                                "type": 101,
                                "name": "Cellar",
                                "registration_complete": True,
                                "data_latest": {
                                    "measurement": {
                                        "temperature": 18.5,
                                        "humidity": 61,
                                        "battery": 80,
                                    }
                                },
                                "status": [{"type": "battery", "value": "ok"}],
                            },
                            {
                                "appliance_id": GUARD_ID,
                                "type": 103,
                                "name": "Main line",
                                "registration_complete": True,
                                "data_latest": {
                                    "measurement": {
                                        "flowrate": 0.0,
                                        "pressure": 3.2,
                                        "temperature_guard": 14.1,
                                    }
                                },
                            },
                            {
                                "appliance_id": "pending-1",
                                "type": 101,
                                "name": "Not yet paired",
                                "registration_complete": False,
                            },
                        ],
                    },
                    {
                        "id": "room-2",
                        "appliances": [
                            {
                                "appliance_id": BLUE_ID,
                                "type": 104,
                                "name": "Kitchen",
                                "data_latest": {
                                    "measurement": {
                                        "remaining_co2": 40,
                                        "remaining_filter": 75,
                                    }
                                },
                            }
                        ],
                    },
                ],
            }
        ]
    }
