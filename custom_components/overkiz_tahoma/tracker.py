"""Routing of Overkiz events to execution callbacks and the state observer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from .const import TERMINAL_EXECUTION_STATES

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from .models import DeviceState, DeviceStateChangedEvent, ExecutionStateChangedEvent

_LOGGER = logging.getLogger(__name__)

# callback(state, error=None, body=None)
ExecutionCallback = Callable[..., Any]


class DeviceStatesObserver(Protocol):
    """Receives the states of a device whenever they are reported."""

    def on_states_change(self, device_url: str, states: Sequence[DeviceState]) -> None:
        """Handle new state values for a device."""


class ExecutionTracker:
    """Maps in-flight execution ids to their completion callbacks.

    Entries are removed once the server reports a terminal state, or
    announces that no further state is expected. When the last entry goes
    away, the ``on_idle`` hook runs.
    """

    def __init__(self, on_idle: Callable[[], Awaitable[None]] | None = None) -> None:
        self._callbacks: dict[str, ExecutionCallback] = {}
        self._on_idle = on_idle

    def __len__(self) -> int:
        return len(self._callbacks)

    def __contains__(self, exec_id: object) -> bool:
        return exec_id in self._callbacks

    @property
    def exec_ids(self) -> list[str]:
        return list(self._callbacks)

    def track(self, exec_id: str, callback: ExecutionCallback) -> None:
        """Start tracking an execution."""
        _LOGGER.debug("Tracking execution %s", exec_id)
        self._callbacks[exec_id] = callback

    async def async_handle_event(self, event: ExecutionStateChangedEvent) -> None:
        """Invoke the callback of an execution and drop it when it is done."""
        callback = self._callbacks.get(event.exec_id)
        if callback is None:
            _LOGGER.debug(
                "Ignoring state %s of unknown execution %s",
                event.new_state,
                event.exec_id,
            )
            return

        _LOGGER.debug("Execution %s is now %s", event.exec_id, event.new_state)
        try:
            callback(event.new_state, event.failure_type)
        except Exception:
            _LOGGER.exception("Error in execution callback for %s", event.exec_id)

        if not event.no_further_state and event.new_state not in TERMINAL_EXECUTION_STATES:
            return

        if self._callbacks.pop(event.exec_id, None) is None:
            return
        _LOGGER.debug(
            "Execution %s finished, %d still running",
            event.exec_id,
            len(self._callbacks),
        )

        if not self._callbacks and self._on_idle is not None:
            await self._on_idle()


class StateChangeDispatcher:
    """Forwards device states to the single registered observer."""

    def __init__(self) -> None:
        self._observer: DeviceStatesObserver | None = None

    @property
    def observer(self) -> DeviceStatesObserver | None:
        return self._observer

    def set_observer(self, observer: DeviceStatesObserver | None) -> None:
        """Register the observer, replacing any previous one."""
        self._observer = observer

    def dispatch(self, device_url: str, states: Sequence[DeviceState]) -> None:
        if self._observer is None:
            return
        try:
            self._observer.on_states_change(device_url, states)
        except Exception:
            _LOGGER.exception("Error in states observer for %s", device_url)

    async def async_handle_event(self, event: DeviceStateChangedEvent) -> None:
        self.dispatch(event.device_url, event.states)
