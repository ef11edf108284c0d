"""Data models for Overkiz TaHoma integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .const import NO_FURTHER_STATE

COMMAND_TYPE_ACTUATOR = 1


def _as_parameters(parameters: Any) -> tuple[Any, ...]:
    if parameters is None:
        return ()
    if isinstance(parameters, (list, tuple)):
        return tuple(parameters)
    return (parameters,)


@dataclass(frozen=True)
class OverkizCommand:
    """A single device command, a name plus its ordered parameters."""

    name: str
    parameters: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", _as_parameters(self.parameters))

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON shape expected by the exec endpoints."""
        return {
            "type": COMMAND_TYPE_ACTUATOR,
            "name": self.name,
            "parameters": list(self.parameters),
        }


@dataclass(frozen=True)
class OverkizAction:
    """Commands targeting one device."""

    device_url: str
    commands: tuple[OverkizCommand, ...]

    def to_payload(self) -> dict[str, Any]:
        return {
            "deviceURL": self.device_url,
            "commands": [command.to_payload() for command in self.commands],
        }


@dataclass(frozen=True)
class OverkizExecution:
    """An execution request submitted to the server.

    Attributes:
        label: Free text shown in the vendor app history.
        actions: Ordered device actions.
        metadata: Always None for executions built by this integration.

    """

    label: str
    actions: tuple[OverkizAction, ...]
    metadata: Any = None

    @classmethod
    def for_device(
        cls,
        label: str,
        device_url: str,
        commands: list[OverkizCommand] | tuple[OverkizCommand, ...],
    ) -> OverkizExecution:
        """Build an execution with a single action on one device."""
        return cls(
            label=label,
            actions=(OverkizAction(device_url=device_url, commands=tuple(commands)),),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "metadata": self.metadata,
            "actions": [action.to_payload() for action in self.actions],
        }


@dataclass(frozen=True)
class DeviceState:
    """One named state value of a device."""

    name: str
    value: Any
    type: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceState:
        return cls(name=data["name"], value=data.get("value"), type=data.get("type"))


@dataclass
class OverkizDevice:
    """Snapshot of a device as returned by /setup/devices."""

    device_url: str
    label: str | None = None
    states: list[DeviceState] = field(default_factory=list)

    def state_value(self, name: str) -> Any:
        """Return the value of a state by name, or None if unknown."""
        for state in self.states:
            if state.name == name:
                return state.value
        return None


@dataclass(frozen=True)
class DeviceStateChangedEvent:
    """Pushed when one or more states of a device changed."""

    device_url: str
    states: tuple[DeviceState, ...]


@dataclass(frozen=True)
class ExecutionStateChangedEvent:
    """Pushed when an execution moved to a new state."""

    exec_id: str
    new_state: str
    failure_type: str | None = None
    time_to_next_state: int | None = None

    @property
    def no_further_state(self) -> bool:
        """Return True if the server announced this is the last state."""
        return self.time_to_next_state == NO_FURTHER_STATE


OverkizEvent = DeviceStateChangedEvent | ExecutionStateChangedEvent
