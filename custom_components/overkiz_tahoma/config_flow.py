"""
Configuration flow for Overkiz TaHoma integration.

This module handles the setup and configuration of the Overkiz TaHoma
integration through Home Assistant's config flow system.
"""

import logging
from typing import Any

import voluptuous as vol
from homeassistant.config_entries import ConfigFlow, ConfigFlowResult
from homeassistant.const import CONF_PASSWORD, CONF_USERNAME
from homeassistant.helpers.httpx_client import get_async_client

from . import api
from .const import (
    CONF_ALWAYS_POLL,
    CONF_POLLING_INTERVAL,
    CONF_REFRESH_INTERVAL,
    CONF_SERVICE,
    DEFAULT_POLLING_INTERVAL,
    DEFAULT_REFRESH_INTERVAL,
    DEFAULT_SERVICE,
    DOMAIN,
    ERROR_API_ERROR,
    ERROR_CANNOT_CONNECT,
    ERROR_INVALID_AUTH,
    ERROR_UNKNOWN,
    SERVERS,
)

_LOGGER = logging.getLogger(__name__)

USER_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_USERNAME): str,
        vol.Required(CONF_PASSWORD): str,
        vol.Required(CONF_SERVICE, default=DEFAULT_SERVICE): vol.In(list(SERVERS)),
        vol.Optional(CONF_ALWAYS_POLL, default=False): bool,
        vol.Optional(CONF_POLLING_INTERVAL, default=DEFAULT_POLLING_INTERVAL): vol.All(
            vol.Coerce(int), vol.Range(min=1)
        ),
        vol.Optional(CONF_REFRESH_INTERVAL, default=DEFAULT_REFRESH_INTERVAL): vol.All(
            vol.Coerce(int), vol.Range(min=60)
        ),
    }
)


class OverkizConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle configuration flow for Overkiz TaHoma integration."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """
        Handle the initial step of the config flow.

        Args:
            user_input: User input data containing credentials, service and
                polling options.

        Returns:
            ConfigFlowResult indicating the next step or errors.

        """
        errors: dict[str, str] = {}

        if user_input is not None:
            username = user_input[CONF_USERNAME]
            service = user_input.get(CONF_SERVICE, DEFAULT_SERVICE)

            try:
                session = api.OverkizSession(
                    get_async_client(self.hass),
                    username,
                    user_input[CONF_PASSWORD],
                    service=service,
                )
                await session.async_login()
                _LOGGER.info("Successfully authenticated with %s server", service)

            except api.OverkizApiAuthError as err:
                _LOGGER.warning(
                    "Authentication failed (%s): %s", ERROR_INVALID_AUTH, err
                )
                errors["base"] = ERROR_INVALID_AUTH
            except api.OverkizTransportError:
                _LOGGER.exception("Connection error (%s)", ERROR_CANNOT_CONNECT)
                errors["base"] = ERROR_CANNOT_CONNECT
            except api.OverkizApiClientError:
                _LOGGER.exception("API client error (%s)", ERROR_API_ERROR)
                errors["base"] = ERROR_API_ERROR
            except Exception:
                _LOGGER.exception(
                    "Unexpected error during authentication (%s)",
                    ERROR_UNKNOWN,
                )
                errors["base"] = ERROR_UNKNOWN

            else:
                await self.async_set_unique_id(f"{service}_{username}".lower())
                self._abort_if_unique_id_configured()

                return self.async_create_entry(
                    title=f"{service} ({username})",
                    data=user_input,
                )

        return self.async_show_form(
            step_id="user",
            data_schema=USER_SCHEMA,
            errors=errors,
        )
