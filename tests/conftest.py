"""Pytest configuration and fixtures for Overkiz TaHoma tests."""

from typing import Any

import pytest

SAMPLE_DEVICE_URL = "io://1234-5678-9012/16784412"


@pytest.fixture
def sample_login_response() -> dict[str, Any]:
    """Fixture providing a successful login API response."""
    return {"success": True, "roles": [{"name": "ENDUSER"}]}


@pytest.fixture
def sample_devices_response() -> list[dict[str, Any]]:
    """Fixture providing a sample /setup/devices API response.

    Returns:
        A list representing two devices with their states.

    """
    return [
        {
            "deviceURL": SAMPLE_DEVICE_URL,
            "label": "Living room shutter",
            "states": [
                {"name": "core:ClosureState", "type": 1, "value": 100},
                {"name": "core:OpenClosedState", "type": 3, "value": "closed"},
            ],
        },
        {
            "deviceURL": "rts://1234-5678-9012/16711234",
            "label": "Garage door",
            "states": [],
        },
    ]


@pytest.fixture
def sample_execution_response() -> dict[str, Any]:
    """Fixture providing a sample /exec/apply API response."""
    return {"execId": "abc"}


@pytest.fixture
def sample_completed_event() -> dict[str, Any]:
    """Fixture providing an ExecutionStateChangedEvent with no further state."""
    return {
        "name": "ExecutionStateChangedEvent",
        "execId": "abc",
        "newState": "COMPLETED",
        "oldState": "IN_PROGRESS",
        "timeToNextState": -1,
    }


@pytest.fixture
def sample_state_changed_event() -> dict[str, Any]:
    """Fixture providing a DeviceStateChangedEvent."""
    return {
        "name": "DeviceStateChangedEvent",
        "deviceURL": SAMPLE_DEVICE_URL,
        "deviceStates": [
            {"name": "core:ClosureState", "type": 1, "value": 0},
        ],
    }
