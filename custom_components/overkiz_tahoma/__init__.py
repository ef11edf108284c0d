from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import homeassistant.helpers.config_validation as cv
import voluptuous as vol
from homeassistant.const import CONF_PASSWORD, CONF_USERNAME
from homeassistant.exceptions import HomeAssistantError

from . import api
from .api import create_session_client
from .client import OverkizClient
from .const import (
    ATTR_COMMAND,
    ATTR_DEVICE_URL,
    ATTR_EXEC_ID,
    ATTR_FAILURE_TYPE,
    ATTR_HIGH_PRIORITY,
    ATTR_LABEL,
    ATTR_PARAMETERS,
    ATTR_STATE,
    CONF_ALWAYS_POLL,
    CONF_POLLING_INTERVAL,
    CONF_REFRESH_INTERVAL,
    CONF_SERVICE,
    DEFAULT_EXECUTION_LABEL,
    DEFAULT_POLLING_INTERVAL,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_SERVICE,
    DOMAIN,
    EVENT_EXECUTION_STATE,
    SERVICE_CANCEL_EXECUTION,
    SERVICE_EXECUTE_COMMAND,
)
from .coordinator import OverkizDeviceCoordinator
from .models import OverkizCommand, OverkizExecution

if TYPE_CHECKING:
    from homeassistant.config_entries import ConfigEntry
    from homeassistant.core import HomeAssistant, ServiceCall

_LOGGER = logging.getLogger(__name__)

EXECUTE_COMMAND_SCHEMA = vol.Schema(
    {
        vol.Required(ATTR_DEVICE_URL): cv.string,
        vol.Required(ATTR_COMMAND): cv.string,
        vol.Optional(ATTR_PARAMETERS, default=list): cv.ensure_list,
        vol.Optional(ATTR_LABEL, default=DEFAULT_EXECUTION_LABEL): cv.string,
        vol.Optional(ATTR_HIGH_PRIORITY, default=False): cv.boolean,
    }
)
CANCEL_EXECUTION_SCHEMA = vol.Schema({vol.Required(ATTR_EXEC_ID): cv.string})


async def async_setup_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Setting up Overkiz TaHoma integration for entry %s", entry.entry_id)

    config = {**entry.data, **entry.options}
    session = create_session_client(hass)

    try:
        client = OverkizClient(
            session,
            config[CONF_USERNAME],
            config[CONF_PASSWORD],
            service=config.get(CONF_SERVICE, DEFAULT_SERVICE),
            always_poll=config.get(CONF_ALWAYS_POLL, False),
            polling_interval=config.get(CONF_POLLING_INTERVAL, DEFAULT_POLLING_INTERVAL),
            refresh_interval=config.get(CONF_REFRESH_INTERVAL, DEFAULT_REFRESH_INTERVAL),
        )
    except (KeyError, ValueError) as err:
        _LOGGER.error("Invalid configuration for entry %s: %s", entry.entry_id, err)
        return False

    try:
        await client.async_start()
        devices = await client.async_get_devices()
        _LOGGER.info("Successfully retrieved %d devices from Overkiz API", len(devices))
    except api.OverkizApiAuthError as err:
        _LOGGER.warning("Authentication failed for entry %s: %s", entry.entry_id, err)
        await client.async_stop()
        return False
    except api.OverkizTransportError as err:
        _LOGGER.error("Connection error for entry %s: %s", entry.entry_id, err)
        await client.async_stop()
        return False
    except api.OverkizApiClientError as err:
        _LOGGER.error("API client error for entry %s: %s", entry.entry_id, err)
        await client.async_stop()
        return False

    coordinator = OverkizDeviceCoordinator(hass, client, entry)
    coordinator.async_set_devices(devices)
    client.set_state_observer(coordinator)

    hass.data.setdefault(DOMAIN, {})[entry.entry_id] = {
        "client": client,
        "coordinator": coordinator,
    }
    _async_register_services(hass)
    _LOGGER.info(
        "Successfully setup Overkiz TaHoma integration for entry %s", entry.entry_id
    )
    return True


async def async_unload_entry(hass: HomeAssistant, entry: ConfigEntry) -> bool:
    _LOGGER.info("Unloading Overkiz TaHoma integration for entry %s", entry.entry_id)

    entry_data = hass.data.get(DOMAIN, {}).pop(entry.entry_id, None)
    if entry_data is not None:
        await entry_data["client"].async_stop()
        _LOGGER.debug("Cleaned up data for entry %s", entry.entry_id)

    if not hass.data.get(DOMAIN):
        hass.services.async_remove(DOMAIN, SERVICE_EXECUTE_COMMAND)
        hass.services.async_remove(DOMAIN, SERVICE_CANCEL_EXECUTION)

    return True


def _client_for_device(hass: HomeAssistant, device_url: str) -> OverkizClient | None:
    entries = list(hass.data.get(DOMAIN, {}).values())
    for entry_data in entries:
        if device_url in entry_data["coordinator"].data:
            return entry_data["client"]
    if len(entries) == 1:
        return entries[0]["client"]
    return None


def _execution_state_publisher(hass: HomeAssistant, device_url: str) -> Any:
    """Return an execution callback firing execution states on the bus."""
    exec_ids: list[str] = []

    def publish(state: str, error: Any = None, body: Any = None) -> None:
        if isinstance(body, dict) and body.get("execId"):
            exec_ids.append(body["execId"])
        hass.bus.async_fire(
            EVENT_EXECUTION_STATE,
            {
                ATTR_EXEC_ID: exec_ids[0] if exec_ids else None,
                ATTR_DEVICE_URL: device_url,
                ATTR_STATE: str(state),
                ATTR_FAILURE_TYPE: None if error is None else str(error),
            },
        )

    return publish


def _async_register_services(hass: HomeAssistant) -> None:
    if hass.services.has_service(DOMAIN, SERVICE_EXECUTE_COMMAND):
        return

    async def async_execute_command(call: ServiceCall) -> None:
        device_url = call.data[ATTR_DEVICE_URL]
        client = _client_for_device(hass, device_url)
        if client is None:
            error_msg = f"No Overkiz setup knows device {device_url}"
            raise HomeAssistantError(error_msg)

        execution = OverkizExecution.for_device(
            call.data[ATTR_LABEL],
            device_url,
            [OverkizCommand(call.data[ATTR_COMMAND], call.data[ATTR_PARAMETERS])],
        )
        await client.async_execute_command(
            execution,
            _execution_state_publisher(hass, device_url),
            call.data[ATTR_HIGH_PRIORITY],
        )

    async def async_cancel_execution(call: ServiceCall) -> None:
        exec_id = call.data[ATTR_EXEC_ID]
        for entry_data in hass.data.get(DOMAIN, {}).values():
            client = entry_data["client"]
            if exec_id not in client.pending_executions:
                continue
            try:
                await client.async_cancel_execution(exec_id)
            except api.OverkizApiClientError as err:
                error_msg = f"Unable to cancel execution {exec_id}: {err}"
                raise HomeAssistantError(error_msg) from err
            return

        error_msg = f"Unknown execution {exec_id}"
        raise HomeAssistantError(error_msg)

    hass.services.async_register(
        DOMAIN,
        SERVICE_EXECUTE_COMMAND,
        async_execute_command,
        schema=EXECUTE_COMMAND_SCHEMA,
    )
    hass.services.async_register(
        DOMAIN,
        SERVICE_CANCEL_EXECUTION,
        async_cancel_execution,
        schema=CANCEL_EXECUTION_SCHEMA,
    )
