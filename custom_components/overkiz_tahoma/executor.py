"""Submission of executions to the Overkiz server."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from . import api
from .const import EXEC_APPLY, EXEC_APPLY_HIGH_PRIORITY, ExecutionState

if TYPE_CHECKING:
    from .events import OverkizEventListener
    from .models import OverkizExecution
    from .tracker import ExecutionCallback, ExecutionTracker

_LOGGER = logging.getLogger(__name__)


class CommandExecutor:
    """Submits executions and hands their ids to the execution tracker."""

    def __init__(
        self,
        session: api.OverkizSession,
        tracker: ExecutionTracker,
        listener: OverkizEventListener,
        *,
        always_poll: bool = False,
    ) -> None:
        self._session = session
        self._tracker = tracker
        self._listener = listener
        self._always_poll = always_poll

    async def async_execute(
        self,
        oid: str,
        execution: OverkizExecution,
        callback: ExecutionCallback,
    ) -> str | None:
        """Submit an execution to /exec/{oid}.

        The callback is invoked once with INITIALIZED (or FAILED) when the
        submission completes, then with every state reported for the
        execution until it finishes.

        Args:
            oid: Submission endpoint, "apply" or "apply/highPriority".
            execution: Execution to submit.
            callback: Called as callback(state, error=None, body=None).

        Returns:
            The execution id, or None if the submission failed.

        """
        try:
            data = await api.async_apply(self._session, oid, execution)
        except api.OverkizApiClientError as err:
            _LOGGER.warning("Execution '%s' failed: %s", execution.label, err)
            callback(ExecutionState.FAILED, err)
            return None

        exec_id = api.extract_exec_id(data)
        self._tracker.track(exec_id, callback)
        try:
            callback(ExecutionState.INITIALIZED, None, data)
        except Exception:
            _LOGGER.exception("Error in execution callback for %s", exec_id)
        if not self._always_poll:
            await self._listener.async_register()
        return exec_id

    async def async_execute_command(
        self,
        execution: OverkizExecution,
        callback: ExecutionCallback,
        high_priority: bool = False,
    ) -> str | None:
        """Submit an execution to the normal or the high priority endpoint."""
        oid = EXEC_APPLY_HIGH_PRIORITY if high_priority else EXEC_APPLY
        return await self.async_execute(oid, execution, callback)
