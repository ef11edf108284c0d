"""API client for Overkiz cloud gateways.

This module provides the authenticated session used to talk to the Overkiz
end-user API (TaHoma, Connexoon, Cozytouch), response validation, and
functions wrapping each endpoint the integration consumes.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx
from homeassistant.helpers.httpx_client import create_async_httpx_client
from httpx_retries import Retry, RetryTransport

from .const import (
    API_PATH,
    DEFAULT_MAX_AUTH_RETRIES,
    DEFAULT_SERVICE,
    EVENT_DEVICE_STATE_CHANGED,
    EVENT_EXECUTION_STATE_CHANGED,
    RELOGIN_JITTER,
    SERVERS,
)
from .models import (
    DeviceState,
    DeviceStateChangedEvent,
    ExecutionStateChangedEvent,
    OverkizDevice,
    OverkizEvent,
    OverkizExecution,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from homeassistant.core import HomeAssistant

_LOGGER = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_MULTIPLE_CHOICES = 300
HTTP_UNAUTHORIZED = 401


class OverkizApiClientError(Exception):
    """Base exception for Overkiz API client errors."""


class OverkizTransportError(OverkizApiClientError):
    """Exception raised when the server could not be reached."""


class OverkizHttpError(OverkizApiClientError):
    """Exception raised for non-2xx responses.

    Attributes:
        status: HTTP status code.
        message: Error message sent by the server, if any.
        error_code: Overkiz error code (e.g. RESOURCE_ACCESS_DENIED), if any.

    """

    def __init__(
        self,
        status: int,
        message: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.status = status
        self.message = message
        self.error_code = error_code
        text = f"Error {status}"
        if message is not None:
            text += f" {message}"
        if error_code is not None:
            text += f" ({error_code})"
        super().__init__(text)


class OverkizApiAuthError(OverkizApiClientError):
    """Exception raised for authentication errors."""


class OverkizLoginRejected(OverkizApiAuthError):
    """Exception raised when the server refused the credentials."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class OverkizUnretryableAuthError(OverkizApiAuthError):
    """Exception raised when a request stays unauthorized after relogin."""


class OverkizRegistrationFailed(OverkizApiClientError):
    """Exception raised when the event listener could not be registered."""


def build_base_url(server: str) -> str:
    """Return the end-user API base URL for a server host name."""
    return f"https://{server}{API_PATH}"


def is_http_error(status: int) -> bool:
    """Check if HTTP status code is outside the 2xx range.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is not 2xx, False otherwise.

    """
    return status < HTTP_OK or status >= HTTP_MULTIPLE_CHOICES


def is_auth_error(status: int) -> bool:
    """Check if HTTP status code indicates authentication error.

    Args:
        status: HTTP status code to check.

    Returns:
        True if status code is 401, False otherwise.

    """
    return status == HTTP_UNAUTHORIZED


def _safe_json(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def extract_error(data: Any) -> tuple[str | None, str | None]:
    """Extract the error message and error code from an error body.

    Args:
        data: Decoded response body, possibly None.

    Returns:
        Tuple of (message, error_code), each None when absent.

    """
    if not isinstance(data, dict):
        return None, None
    return data.get("error"), data.get("errorCode")


def validate_response(response: httpx.Response) -> Any:
    """Validate HTTP response and return the decoded body.

    Args:
        response: HTTP response object to validate.

    Returns:
        Parsed JSON data, the raw text for non-JSON bodies, or None when the
        body is empty.

    Raises:
        OverkizApiAuthError: If the response is a 401.
        OverkizHttpError: If the status code is not 2xx.

    """
    _validate_http_status(response)
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _validate_http_status(response: httpx.Response) -> None:
    if not is_http_error(response.status_code):
        return

    if is_auth_error(response.status_code):
        auth_error = "Authentication error"
        raise OverkizApiAuthError(auth_error)

    message, error_code = extract_error(_safe_json(response))
    raise OverkizHttpError(response.status_code, message, error_code)


def is_login_success(status: int, data: Any) -> bool:
    """Check whether a /login response means the session is authenticated.

    Depending on the server variant, success is a boolean ``success`` field or
    simply a 2xx status without any error field.
    """
    if isinstance(data, dict):
        if "success" in data:
            return bool(data["success"])
        if data.get("error"):
            return False
    return not is_http_error(status)


def parse_event(data: dict[str, Any]) -> OverkizEvent | None:
    """Parse one event from a fetch batch.

    Returns:
        The typed event, or None for event kinds this integration ignores
        and for malformed entries.

    """
    name = data.get("name")

    if name == EVENT_DEVICE_STATE_CHANGED:
        device_url = data.get("deviceURL")
        if not device_url:
            return None
        raw_states = data.get("deviceStates", data.get("states")) or []
        states = tuple(
            DeviceState.from_dict(state)
            for state in raw_states
            if isinstance(state, dict) and "name" in state
        )
        return DeviceStateChangedEvent(device_url=device_url, states=states)

    if name == EVENT_EXECUTION_STATE_CHANGED:
        exec_id = data.get("execId")
        new_state = data.get("newState")
        if not exec_id or new_state is None:
            return None
        return ExecutionStateChangedEvent(
            exec_id=exec_id,
            new_state=new_state,
            failure_type=data.get("failureType"),
            time_to_next_state=data.get("timeToNextState"),
        )

    return None


def extract_events(data: Any) -> list[OverkizEvent]:
    """Extract the typed events of a fetch response, keeping their order."""
    if not isinstance(data, list):
        return []

    events = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        event = parse_event(raw)
        if event is None:
            _LOGGER.debug("Ignoring event %s", raw.get("name"))
            continue
        events.append(event)
    return events


def extract_devices(data: Any) -> list[OverkizDevice]:
    """Extract device list from a /setup/devices (or /setup) response.

    Args:
        data: API response data.

    Returns:
        List of OverkizDevice objects.

    """
    if isinstance(data, dict):
        data = data.get("devices", [])
    if not isinstance(data, list):
        return []

    return [
        OverkizDevice(
            device_url=d["deviceURL"],
            label=d.get("label"),
            states=[
                DeviceState.from_dict(state)
                for state in d.get("states") or []
                if isinstance(state, dict) and "name" in state
            ],
        )
        for d in data
        if isinstance(d, dict) and d.get("deviceURL")
    ]


def extract_exec_id(data: Any) -> str:
    """Extract the execution identifier from an exec response.

    Raises:
        OverkizApiClientError: If the response carries no execId.

    """
    exec_id = data.get("execId") if isinstance(data, dict) else None
    if not exec_id:
        error_msg = f"No execId in execution response: {data}"
        raise OverkizApiClientError(error_msg)
    return exec_id


def create_session_client(hass: HomeAssistant) -> httpx.AsyncClient:
    """Create HTTP client with retry logic for the Overkiz API.

    Args:
        hass: Home Assistant instance.

    Returns:
        Configured httpx AsyncClient with retry transport.

    """
    base_client = create_async_httpx_client(hass, timeout=10.0)
    retry = Retry(total=3, backoff_factor=0.5)
    base_client._transport = RetryTransport(  # noqa: SLF001
        transport=base_client._transport,  # noqa: SLF001
        retry=retry,
    )
    return base_client


class OverkizSession:
    """Authenticated session against an Overkiz server.

    The session logs in lazily, keeps the login cookie in the underlying
    httpx client, and transparently logs in again when a request comes back
    unauthorized. Concurrent callers share a single in-flight login.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        username: str,
        password: str,
        *,
        service: str = DEFAULT_SERVICE,
        base_url: str | None = None,
        max_auth_retries: int = DEFAULT_MAX_AUTH_RETRIES,
        relogin_jitter: tuple[float, float] = RELOGIN_JITTER,
    ) -> None:
        """Initialize the session.

        Args:
            client: HTTP client used for every request.
            username: Account user id.
            password: Account password.
            service: Service name selecting the server, see SERVERS.
            base_url: Explicit API base URL, overriding the service mapping.
            max_auth_retries: Relogins allowed per request after a 401.
            relogin_jitter: Bounds of the random delay before a relogin.

        Raises:
            ValueError: If credentials are missing or the service is unknown.

        """
        if not username or not password:
            error_msg = "You must provide credentials (username/password)"
            raise ValueError(error_msg)
        if base_url is None:
            server = SERVERS.get(service)
            if server is None:
                error_msg = f"Invalid service name '{service}'"
                raise ValueError(error_msg)
            base_url = build_base_url(server)

        self._client = client
        self._username = username
        self._password = password
        self._service = service
        self._base_url = base_url.rstrip("/")
        self._max_auth_retries = max(0, max_auth_retries)
        self._relogin_jitter = relogin_jitter
        self._authenticated = False
        self._login_task: asyncio.Task[None] | None = None
        self._login_callbacks: list[Callable[[], None]] = []

    @property
    def authenticated(self) -> bool:
        """Return True if the last login succeeded and was not invalidated."""
        return self._authenticated

    @property
    def service(self) -> str:
        return self._service

    @property
    def base_url(self) -> str:
        return self._base_url

    def url_for(self, path: str) -> str:
        """Return the absolute URL of an API path."""
        return f"{self._base_url}{path}"

    def register_login_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback run after every successful login.

        Returns:
            A function to unregister the callback.

        """
        self._login_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._login_callbacks:
                self._login_callbacks.remove(callback)

        return unregister

    def invalidate(self) -> None:
        """Forget the login so the next request authenticates again."""
        self._authenticated = False

    async def async_login(self) -> None:
        """Log in, joining the login already in flight if there is one.

        Raises:
            OverkizLoginRejected: If the server refused the credentials.
            OverkizTransportError: If the server could not be reached.

        """
        if self._login_task is None or self._login_task.done():
            self._login_task = asyncio.create_task(self._async_do_login())
        else:
            _LOGGER.debug("Login already in progress, waiting for it")
        await asyncio.shield(self._login_task)

    async def _async_do_login(self) -> None:
        url = self.url_for("/login")
        form = {"userId": self._username, "userPassword": self._password}

        _LOGGER.debug("Logging in to %s server", self._service)
        try:
            response = await self._client.post(url, data=form)
        except httpx.RequestError as err:
            _LOGGER.warning("Unable to login: %s", err)
            error_msg = f"Unable to login: {err}"
            raise OverkizTransportError(error_msg) from err

        data = _safe_json(response)
        if not is_login_success(response.status_code, data):
            message, _ = extract_error(data)
            reason = message or f"Unable to login (status {response.status_code})"
            _LOGGER.warning("Login failed: %s", reason)
            raise OverkizLoginRejected(reason)

        self._authenticated = True
        _LOGGER.info("Logged in to %s server", self._service)

        for callback in list(self._login_callbacks):
            try:
                callback()
            except Exception:
                _LOGGER.exception("Error in login callback")

    async def async_request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
    ) -> Any:
        """Send a request, logging in first and again after a 401.

        Args:
            method: HTTP method.
            path: API path relative to the base URL.
            json: Optional JSON body.

        Returns:
            Decoded response body, see validate_response.

        Raises:
            OverkizLoginRejected: If logging in failed.
            OverkizUnretryableAuthError: If still unauthorized after relogin.
            OverkizTransportError: If the server could not be reached.
            OverkizHttpError: If the server answered with a non-2xx status.

        """
        url = self.url_for(path)

        for attempt in range(self._max_auth_retries + 1):
            if not self._authenticated:
                await self.async_login()

            _LOGGER.debug("HTTP %s %s", method, path)
            try:
                response = await self._client.request(method, url, json=json)
            except httpx.RequestError as err:
                _LOGGER.warning("Unable to request %s %s: %s", method, path, err)
                raise OverkizTransportError(str(err)) from err

            if not is_auth_error(response.status_code):
                return validate_response(response)

            _LOGGER.debug(
                "HTTP %s %s -> 401, session expired (attempt %d)",
                method,
                path,
                attempt + 1,
            )
            self._authenticated = False
            if attempt < self._max_auth_retries:
                await asyncio.sleep(random.uniform(*self._relogin_jitter))  # noqa: S311

        error_msg = (
            f"{method} {path} still unauthorized after "
            f"{self._max_auth_retries} relogin attempt(s)"
        )
        _LOGGER.warning(error_msg)
        raise OverkizUnretryableAuthError(error_msg)


async def async_get_devices(session: OverkizSession) -> list[OverkizDevice]:
    """Fetch the devices of the setup with their current states.

    Raises:
        OverkizApiClientError: If the request fails.

    """
    data = await session.async_request("GET", "/setup/devices")
    devices = extract_devices(data)
    _LOGGER.debug("Retrieved %d devices from Overkiz API", len(devices))
    return devices


async def async_get_setup(session: OverkizSession) -> dict[str, Any]:
    """Fetch the whole setup: gateways, devices with their states, places."""
    data = await session.async_request("GET", "/setup")
    return data if isinstance(data, dict) else {}


async def async_get_action_groups(session: OverkizSession) -> list[dict[str, Any]]:
    """Fetch the scenarios (action groups) defined on the setup."""
    data = await session.async_request("GET", "/actionGroups")
    return data if isinstance(data, list) else []


async def async_refresh_states(session: OverkizSession) -> None:
    """Ask the gateway to refresh the states of every device."""
    await session.async_request("PUT", "/setup/devices/states/refresh")


async def async_get_state(session: OverkizSession, device_url: str, state: str) -> Any:
    """Fetch the current value of one state of a device."""
    path = (
        f"/setup/devices/{quote(device_url, safe='')}"
        f"/states/{quote(state, safe='')}"
    )
    data = await session.async_request("GET", path)
    return data.get("value") if isinstance(data, dict) else None


async def async_apply(
    session: OverkizSession,
    oid: str,
    execution: OverkizExecution,
) -> dict[str, Any]:
    """Submit an execution to /exec/{oid}.

    Returns:
        The response body, carrying the execId.

    Raises:
        OverkizApiClientError: If the request fails or returns no execId.

    """
    _LOGGER.debug("Submitting execution '%s' to /exec/%s", execution.label, oid)
    data = await session.async_request("POST", f"/exec/{oid}", json=execution.to_payload())
    extract_exec_id(data)
    return data


async def async_cancel_execution(session: OverkizSession, exec_id: str) -> None:
    """Cancel a running execution."""
    await session.async_request("DELETE", f"/exec/current/setup/{exec_id}")


async def async_register_listener(session: OverkizSession) -> str:
    """Register a server-side event listener.

    Returns:
        The listener id.

    Raises:
        OverkizRegistrationFailed: If the response carries no id.
        OverkizApiClientError: If the request fails.

    """
    data = await session.async_request("POST", "/events/register")
    listener_id = data.get("id") if isinstance(data, dict) else None
    if not listener_id:
        error_msg = f"No listener id in register response: {data}"
        raise OverkizRegistrationFailed(error_msg)
    return listener_id


async def async_unregister_listener(session: OverkizSession, listener_id: str) -> None:
    """Unregister a server-side event listener."""
    await session.async_request("POST", f"/events/{listener_id}/unregister")


async def async_fetch_events(
    session: OverkizSession, listener_id: str
) -> list[OverkizEvent]:
    """Fetch the events buffered for a listener since the last fetch."""
    data = await session.async_request("POST", f"/events/{listener_id}/fetch")
    return extract_events(data)
