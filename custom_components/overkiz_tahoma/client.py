"""Overkiz client tying the session, event loop and executions together."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from . import api
from .const import (
    DEFAULT_MAX_AUTH_RETRIES,
    DEFAULT_POLLING_INTERVAL,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_SERVICE,
    REFRESH_DEVICES_DELAY,
    RELOGIN_JITTER,
    ListenerState,
)
from .events import OverkizEventListener, OverkizEventPoller
from .executor import CommandExecutor
from .refresher import OverkizStateRefresher
from .tracker import ExecutionTracker, StateChangeDispatcher

if TYPE_CHECKING:
    from collections.abc import Coroutine

    import httpx

    from .models import OverkizDevice, OverkizExecution
    from .tracker import DeviceStatesObserver, ExecutionCallback

_LOGGER = logging.getLogger(__name__)


class OverkizClient:
    """Client for one Overkiz account.

    Owns the authenticated session, the event listener and its polling loop,
    the execution tracker and the periodic state refresh. The listener is
    only kept registered while executions are running, unless
    ``always_poll`` is set.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        username: str,
        password: str,
        *,
        service: str = DEFAULT_SERVICE,
        base_url: str | None = None,
        always_poll: bool = False,
        polling_interval: float = DEFAULT_POLLING_INTERVAL,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        devices_delay: float = REFRESH_DEVICES_DELAY,
        max_auth_retries: int = DEFAULT_MAX_AUTH_RETRIES,
        relogin_jitter: tuple[float, float] = RELOGIN_JITTER,
    ) -> None:
        """Initialize the client.

        Raises:
            ValueError: If credentials are missing or the service is unknown.

        """
        self._always_poll = always_poll
        self._session = api.OverkizSession(
            http_client,
            username,
            password,
            service=service,
            base_url=base_url,
            max_auth_retries=max_auth_retries,
            relogin_jitter=relogin_jitter,
        )
        self._listener = OverkizEventListener(self._session)
        self._dispatcher = StateChangeDispatcher()
        self._tracker = ExecutionTracker(on_idle=self._async_on_idle)
        self._poller = OverkizEventPoller(
            self._session,
            self._listener,
            polling_interval=polling_interval,
            needs_listener=self._listener_needed,
        )
        self._poller.register_execution_callback(self._tracker.async_handle_event)
        self._poller.register_device_state_callback(self._dispatcher.async_handle_event)
        self._refresher = OverkizStateRefresher(
            self._session,
            self._dispatcher,
            refresh_interval=refresh_interval,
            devices_delay=devices_delay,
        )
        self._executor = CommandExecutor(
            self._session,
            self._tracker,
            self._listener,
            always_poll=always_poll,
        )
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._started = False
        self._session.register_login_callback(self._on_login)

    @property
    def session(self) -> api.OverkizSession:
        return self._session

    @property
    def authenticated(self) -> bool:
        return self._session.authenticated

    @property
    def always_poll(self) -> bool:
        return self._always_poll

    @property
    def listener_state(self) -> ListenerState:
        return self._listener.state

    @property
    def pending_executions(self) -> list[str]:
        """Return the ids of executions still waiting for a final state."""
        return self._tracker.exec_ids

    def set_state_observer(self, observer: DeviceStatesObserver | None) -> None:
        """Set the observer receiving device states, replacing the previous one."""
        self._dispatcher.set_observer(observer)

    def _on_login(self) -> None:
        # A new login invalidates the listener of the previous session
        self._listener.reset()
        if self._always_poll and self._started:
            self._create_background_task(self._listener.async_register())

    def _listener_needed(self) -> bool:
        return self._always_poll or len(self._tracker) > 0

    async def _async_on_idle(self) -> None:
        if self._always_poll:
            return
        await self._listener.async_unregister()
        # Executions submitted while unregistering need a listener again
        if self._listener_needed():
            await self._listener.async_register()

    def _create_background_task(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def async_start(self) -> None:
        """Log in and start the event polling and state refresh loops.

        Raises:
            OverkizLoginRejected: If the credentials are refused.
            OverkizTransportError: If the server cannot be reached.

        """
        await self._session.async_login()
        if self._always_poll:
            await self._listener.async_register()
        self._poller.start()
        self._refresher.start()
        self._started = True
        _LOGGER.info("Overkiz client started for %s", self._session.service)

    async def async_stop(self) -> None:
        """Stop both loops and release the listener if one is registered."""
        self._started = False
        await self._poller.async_stop()
        await self._refresher.async_stop()

        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()

        if self._listener.active:
            await self._listener.async_unregister()
        _LOGGER.info("Overkiz client stopped for %s", self._session.service)

    async def async_execute(
        self,
        oid: str,
        execution: OverkizExecution,
        callback: ExecutionCallback,
    ) -> str | None:
        """Submit an execution to /exec/{oid}, see CommandExecutor."""
        return await self._executor.async_execute(oid, execution, callback)

    async def async_execute_command(
        self,
        execution: OverkizExecution,
        callback: ExecutionCallback,
        high_priority: bool = False,
    ) -> str | None:
        """Submit an execution, optionally on the high priority endpoint."""
        return await self._executor.async_execute_command(
            execution, callback, high_priority
        )

    async def async_cancel_execution(self, exec_id: str) -> None:
        await api.async_cancel_execution(self._session, exec_id)

    async def async_get_devices(self) -> list[OverkizDevice]:
        return await api.async_get_devices(self._session)

    async def async_get_setup(self) -> dict[str, Any]:
        return await api.async_get_setup(self._session)

    async def async_get_action_groups(self) -> list[dict[str, Any]]:
        return await api.async_get_action_groups(self._session)

    async def async_refresh_states(self) -> None:
        await api.async_refresh_states(self._session)

    async def async_get_state(self, device_url: str, state: str) -> Any:
        """Return the current value of one state of a device."""
        return await api.async_get_state(self._session, device_url, state)
