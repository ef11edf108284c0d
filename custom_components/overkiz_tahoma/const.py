"""Constants for the Overkiz TaHoma integration.

This module contains all the constants used throughout the integration,
including server mappings, API paths, configuration keys and engine defaults.
"""

from enum import StrEnum

DOMAIN = "overkiz_tahoma"

API_PATH = "/enduser-mobile-web/enduserAPI"

SERVICE_TAHOMA = "TaHoma"
SERVICE_CONNEXOON = "Connexoon"
SERVICE_CONNEXOON_RTS = "Connexoon RTS"
SERVICE_COZYTOUCH = "Cozytouch"

SERVERS = {
    SERVICE_TAHOMA: "tahomalink.com",
    SERVICE_CONNEXOON: "tahomalink.com",
    SERVICE_CONNEXOON_RTS: "ha201-1.overkiz.com",
    SERVICE_COZYTOUCH: "ha110-1.overkiz.com",
}
DEFAULT_SERVICE = SERVICE_TAHOMA

CONF_SERVICE = "service"
CONF_ALWAYS_POLL = "always_poll"
CONF_POLLING_INTERVAL = "polling_interval"
CONF_REFRESH_INTERVAL = "refresh_interval"

DEFAULT_POLLING_INTERVAL = 2  # Seconds between event fetches
DEFAULT_REFRESH_INTERVAL = 60 * 30  # Seconds between full state refreshes
REFRESH_DEVICES_DELAY = 10  # Seconds between a state refresh and the device read
RELOGIN_JITTER = (1.0, 2.0)  # Seconds to wait before logging in again after a 401
DEFAULT_MAX_AUTH_RETRIES = 1
MAX_UNREGISTER_ATTEMPTS = 3

# timeToNextState value meaning no further state is expected for an execution
NO_FURTHER_STATE = -1

EVENT_DEVICE_STATE_CHANGED = "DeviceStateChangedEvent"
EVENT_EXECUTION_STATE_CHANGED = "ExecutionStateChangedEvent"

EXEC_APPLY = "apply"
EXEC_APPLY_HIGH_PRIORITY = "apply/highPriority"

# Home Assistant bus event carrying execution progress
EVENT_EXECUTION_STATE = f"{DOMAIN}_execution_state"

SERVICE_EXECUTE_COMMAND = "execute_command"
SERVICE_CANCEL_EXECUTION = "cancel_execution"

ATTR_DEVICE_URL = "device_url"
ATTR_COMMAND = "command"
ATTR_PARAMETERS = "parameters"
ATTR_LABEL = "label"
ATTR_HIGH_PRIORITY = "high_priority"
ATTR_EXEC_ID = "exec_id"
ATTR_STATE = "state"
ATTR_FAILURE_TYPE = "failure_type"

DEFAULT_EXECUTION_LABEL = "Home Assistant"

ERROR_INVALID_AUTH = "invalid_auth"
ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_API_ERROR = "api_error"
ERROR_UNKNOWN = "unknown_error"


class ExecutionState(StrEnum):
    """Execution states reported by the Overkiz server."""

    INITIALIZED = "INITIALIZED"
    NOT_TRANSMITTED = "NOT_TRANSMITTED"
    TRANSMITTED = "TRANSMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_EXECUTION_STATES = frozenset(
    {ExecutionState.COMPLETED, ExecutionState.FAILED}
)


class ListenerState(StrEnum):
    """Lifecycle of the server-side event listener subscription."""

    UNREGISTERED = "unregistered"
    PENDING = "pending"
    ACTIVE = "active"
