"""Periodic full refresh of Overkiz device states."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from . import api
from .const import DEFAULT_REFRESH_INTERVAL, REFRESH_DEVICES_DELAY

if TYPE_CHECKING:
    from .tracker import StateChangeDispatcher

_LOGGER = logging.getLogger(__name__)


class OverkizStateRefresher:
    """Asks the gateway to refresh every state, then republishes all devices.

    Events only carry what changed, so this loop periodically forces the
    gateway to poll its devices and forwards the full device list to the
    state dispatcher. It runs independently of the event poller.
    """

    def __init__(
        self,
        session: api.OverkizSession,
        dispatcher: StateChangeDispatcher,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        devices_delay: float = REFRESH_DEVICES_DELAY,
    ) -> None:
        self._session = session
        self._dispatcher = dispatcher
        self._refresh_interval = refresh_interval
        self._devices_delay = devices_delay
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def async_refresh_once(self) -> None:
        """Run one refresh cycle; skipped while the session is logged out."""
        if not self._session.authenticated:
            _LOGGER.debug("Not logged in, skipping state refresh")
            return

        try:
            await api.async_refresh_states(self._session)
        except api.OverkizApiClientError as err:
            _LOGGER.error("Error while refreshing states: %s", err)

        # The gateway needs some time to collect the new values
        await asyncio.sleep(self._devices_delay)

        try:
            devices = await api.async_get_devices(self._session)
        except api.OverkizApiClientError as err:
            _LOGGER.error("Error while reading devices after refresh: %s", err)
            return

        for device in devices:
            self._dispatcher.dispatch(device.device_url, device.states)

    async def _async_run(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                await self.async_refresh_once()
            except Exception:
                _LOGGER.exception("Unexpected error while refreshing states")

    def start(self) -> None:
        """Start the refresh task if it is not running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._async_run())

    async def async_stop(self) -> None:
        """Cancel the refresh task and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
