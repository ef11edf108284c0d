"""Event listener and long-polling loop for Overkiz real-time updates.

The Overkiz server buffers events (device state changes, execution progress)
for a registered listener. This module manages that listener subscription and
runs the loop that fetches its events and hands them to registered callbacks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from . import api
from .const import DEFAULT_POLLING_INTERVAL, MAX_UNREGISTER_ATTEMPTS, ListenerState
from .models import DeviceStateChangedEvent, ExecutionStateChangedEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .models import OverkizEvent

_LOGGER = logging.getLogger(__name__)


class OverkizEventListener:
    """Lifecycle of the server-side event listener subscription.

    The subscription moves UNREGISTERED -> PENDING -> ACTIVE. Only one
    registration can be outstanding at a time, guarded by the PENDING state.
    """

    def __init__(
        self,
        session: api.OverkizSession,
        *,
        max_unregister_attempts: int = MAX_UNREGISTER_ATTEMPTS,
    ) -> None:
        self._session = session
        self._state = ListenerState.UNREGISTERED
        self._listener_id: str | None = None
        self._failed_unregisters = 0
        self._max_unregister_attempts = max_unregister_attempts

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def listener_id(self) -> str | None:
        """Return the server listener id, None unless ACTIVE."""
        return self._listener_id

    @property
    def active(self) -> bool:
        return self._state is ListenerState.ACTIVE

    def reset(self) -> None:
        """Forget an active listener without telling the server."""
        if self._state is not ListenerState.ACTIVE:
            return
        _LOGGER.debug("Resetting listener %s", self._listener_id)
        self._state = ListenerState.UNREGISTERED
        self._listener_id = None
        self._failed_unregisters = 0

    async def async_register(self) -> None:
        """Register a listener unless one is registered or being registered."""
        if self._state is not ListenerState.UNREGISTERED:
            return

        self._state = ListenerState.PENDING
        _LOGGER.debug("Registering listener")
        try:
            listener_id = await api.async_register_listener(self._session)
        except asyncio.CancelledError:
            self._state = ListenerState.UNREGISTERED
            raise
        except api.OverkizApiClientError as err:
            self._state = ListenerState.UNREGISTERED
            _LOGGER.error("Error while registering listener: %s", err)
            return

        self._listener_id = listener_id
        self._state = ListenerState.ACTIVE
        self._failed_unregisters = 0
        _LOGGER.debug("Listener registered %s", listener_id)

    async def async_unregister(self) -> bool:
        """Unregister the active listener.

        Returns:
            True if no listener is registered anymore, False if the listener
            is still registered or a registration is in progress.

        """
        if self._state is ListenerState.UNREGISTERED:
            return True
        if self._state is ListenerState.PENDING:
            _LOGGER.debug("Listener registration in progress, not unregistering")
            return False

        listener_id = self._listener_id
        _LOGGER.debug("Unregistering listener %s", listener_id)
        try:
            await api.async_unregister_listener(self._session, listener_id)
        except api.OverkizApiClientError as err:
            self._failed_unregisters += 1
            _LOGGER.warning(
                "Error while unregistering listener %s (attempt %d/%d): %s",
                listener_id,
                self._failed_unregisters,
                self._max_unregister_attempts,
                err,
            )
            if self._failed_unregisters >= self._max_unregister_attempts:
                _LOGGER.warning(
                    "Abandoning listener %s, the server will expire it", listener_id
                )
                self.reset()
                return True
            return False

        if self._listener_id == listener_id:
            self.reset()
        return True


class OverkizEventPoller:
    """Long-polling loop fetching the events of the active listener.

    Each tick fetches the pending events (only while the listener is ACTIVE)
    and dispatches them, in arrival order, to the callbacks registered for
    their kind. A failing tick never ends the loop.
    """

    def __init__(
        self,
        session: api.OverkizSession,
        listener: OverkizEventListener,
        *,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        needs_listener: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            session: Session used for the fetch requests.
            listener: Listener whose events are fetched.
            polling_interval: Seconds between the end of a tick and the next.
            needs_listener: Returns True while events are wanted. A tick
                registers a missing listener when it returns True, and
                retries unregistering an active one instead of fetching
                when it returns False.

        """
        self._session = session
        self._listener = listener
        self._polling_interval = polling_interval
        self._needs_listener = needs_listener
        self._task: asyncio.Task[None] | None = None

        self._execution_callbacks: list[
            Callable[[ExecutionStateChangedEvent], Awaitable[None]]
        ] = []
        self._device_state_callbacks: list[
            Callable[[DeviceStateChangedEvent], Awaitable[None]]
        ] = []

    @property
    def running(self) -> bool:
        """Return True while the polling task is alive."""
        return self._task is not None and not self._task.done()

    def register_execution_callback(
        self,
        callback: Callable[[ExecutionStateChangedEvent], Awaitable[None]],
    ) -> Callable[[], None]:
        """Register a callback for execution state changes.

        Returns:
            A function to unregister the callback.

        """
        self._execution_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._execution_callbacks:
                self._execution_callbacks.remove(callback)

        return unregister

    def register_device_state_callback(
        self,
        callback: Callable[[DeviceStateChangedEvent], Awaitable[None]],
    ) -> Callable[[], None]:
        """Register a callback for device state changes.

        Returns:
            A function to unregister the callback.

        """
        self._device_state_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._device_state_callbacks:
                self._device_state_callbacks.remove(callback)

        return unregister

    async def async_fetch(self) -> list[OverkizEvent]:
        """Fetch pending events, or nothing if no listener is active.

        A failed fetch drops the listener, unless it was replaced by a newer
        one meanwhile. The next tick registers a new one if it is needed.
        """
        listener_id = self._listener.listener_id
        if not self._listener.active or listener_id is None:
            return []

        try:
            events = await api.async_fetch_events(self._session, listener_id)
        except api.OverkizApiClientError as err:
            _LOGGER.error("Error with listener %s => %s", listener_id, err)
            if self._listener.listener_id == listener_id:
                self._listener.reset()
            return []

        if events:
            _LOGGER.debug("Fetched %d events from listener %s", len(events), listener_id)
        return events

    async def async_dispatch(self, events: list[OverkizEvent]) -> None:
        """Hand each event to the callbacks of its kind, in order."""
        for event in events:
            if isinstance(event, ExecutionStateChangedEvent):
                callbacks = list(self._execution_callbacks)
            else:
                callbacks = list(self._device_state_callbacks)

            for callback in callbacks:
                try:
                    await callback(event)
                except Exception:
                    _LOGGER.exception("Error in %s callback", type(event).__name__)

    async def async_poll_once(self) -> list[OverkizEvent]:
        """Run one tick of the loop and return the dispatched events."""
        if self._needs_listener is not None:
            needed = self._needs_listener()
            if self._listener.active and not needed:
                await self._listener.async_unregister()
                return []
            if self._listener.state is ListenerState.UNREGISTERED and needed:
                await self._listener.async_register()

        events = await self.async_fetch()
        await self.async_dispatch(events)
        return events

    async def _async_run(self) -> None:
        _LOGGER.debug("Event polling started (every %ss)", self._polling_interval)
        while True:
            try:
                await self.async_poll_once()
            except Exception:
                _LOGGER.exception("Unexpected error while polling events")
            await asyncio.sleep(self._polling_interval)

    def start(self) -> None:
        """Start the polling task if it is not running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._async_run())

    async def async_stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        _LOGGER.debug("Event polling stopped")
