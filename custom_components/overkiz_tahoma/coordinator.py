"""Coordinator for Overkiz TaHoma integration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from homeassistant.core import callback
from homeassistant.helpers.update_coordinator import DataUpdateCoordinator, UpdateFailed

from . import api
from .const import DOMAIN
from .models import OverkizDevice

if TYPE_CHECKING:
    from collections.abc import Sequence

    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant

    from .client import OverkizClient
    from .models import DeviceState

_LOGGER = logging.getLogger(__name__)


class OverkizDeviceCoordinator(DataUpdateCoordinator[dict[str, OverkizDevice]]):
    """Holds the latest known state of every device, keyed by device URL.

    The coordinator does not poll on its own: the Overkiz client pushes
    states to it through ``on_states_change``, from the event listener and
    from the periodic state refresh.
    """

    def __init__(
        self,
        hass: HomeAssistant,
        client: OverkizClient,
        config_entry: ConfigEntry | None = None,
    ) -> None:
        """Initialize the coordinator."""
        super().__init__(
            hass,
            _LOGGER,
            name=DOMAIN,
            update_interval=None,
        )
        self.client = client
        self.config_entry = config_entry
        self.data = {}

    async def _async_update_data(self) -> dict[str, OverkizDevice]:
        """Fetch the full device list."""
        try:
            devices = await self.client.async_get_devices()
        except api.OverkizApiAuthError as err:
            error_msg = f"Authentication error while fetching devices: {err}"
            raise UpdateFailed(error_msg) from err
        except api.OverkizApiClientError as err:
            error_msg = f"API error while fetching devices: {err}"
            raise UpdateFailed(error_msg) from err

        _LOGGER.debug("Fetched %d devices", len(devices))
        return {device.device_url: device for device in devices}

    @callback
    def async_set_devices(self, devices: list[OverkizDevice]) -> None:
        """Replace the cached devices with a freshly fetched list."""
        self.async_set_updated_data({device.device_url: device for device in devices})

    @callback
    def on_states_change(self, device_url: str, states: Sequence[DeviceState]) -> None:
        """Merge new state values into the cached device, last value wins."""
        devices = dict(self.data or {})
        previous = devices.get(device_url)

        merged = {state.name: state for state in previous.states} if previous else {}
        for state in states:
            merged[state.name] = state

        devices[device_url] = OverkizDevice(
            device_url=device_url,
            label=previous.label if previous else None,
            states=list(merged.values()),
        )
        _LOGGER.debug("States changed for %s: %s", device_url, [s.name for s in states])
        self.async_set_updated_data(devices)
