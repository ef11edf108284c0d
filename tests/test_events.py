"""Tests for the Overkiz event listener and poller."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from custom_components.overkiz_tahoma.api import (
    OverkizHttpError,
    OverkizRegistrationFailed,
    OverkizSession,
    OverkizTransportError,
)
from custom_components.overkiz_tahoma.const import ListenerState
from custom_components.overkiz_tahoma.events import (
    OverkizEventListener,
    OverkizEventPoller,
)
from custom_components.overkiz_tahoma.models import (
    DeviceState,
    DeviceStateChangedEvent,
    ExecutionStateChangedEvent,
)

API = "custom_components.overkiz_tahoma.api"

COMPLETED = ExecutionStateChangedEvent("abc", "COMPLETED", None, -1)
STATES = DeviceStateChangedEvent(
    "io://1234-5678-9012/16784412", (DeviceState("core:ClosureState", 0, 1),)
)


@pytest.fixture
def mock_session() -> Mock:
    """Create a mock Overkiz session."""
    return Mock(spec=OverkizSession)


@pytest.fixture
def listener(mock_session: Mock) -> OverkizEventListener:
    """Create an event listener."""
    return OverkizEventListener(mock_session)


def _activate(listener: OverkizEventListener, listener_id: str = "l-1") -> None:
    listener._state = ListenerState.ACTIVE
    listener._listener_id = listener_id


class TestEventListener:
    """Tests for OverkizEventListener."""

    def test_init(self, listener: OverkizEventListener) -> None:
        """Test that a new listener is unregistered."""
        assert listener.state is ListenerState.UNREGISTERED
        assert listener.listener_id is None
        assert listener.active is False

    @pytest.mark.asyncio
    async def test_register(self, listener: OverkizEventListener) -> None:
        """Test that a successful registration activates the listener."""
        with patch(f"{API}.async_register_listener", AsyncMock(return_value="l-1")):
            await listener.async_register()

        assert listener.state is ListenerState.ACTIVE
        assert listener.listener_id == "l-1"
        assert listener.active is True

    @pytest.mark.asyncio
    async def test_register_when_active_is_a_no_op(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that an active listener is not registered again."""
        _activate(listener)
        register = AsyncMock(return_value="l-2")
        with patch(f"{API}.async_register_listener", register):
            await listener.async_register()

        register.assert_not_awaited()
        assert listener.listener_id == "l-1"

    @pytest.mark.asyncio
    async def test_concurrent_registers_send_one_request(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that a registration in flight blocks a second one."""
        release = asyncio.Event()

        async def register(_session: object) -> str:
            await release.wait()
            return "l-1"

        mock_register = AsyncMock(side_effect=register)
        with patch(f"{API}.async_register_listener", mock_register):
            first = asyncio.create_task(listener.async_register())
            await asyncio.sleep(0)
            assert listener.state is ListenerState.PENDING

            await listener.async_register()
            release.set()
            await first

        assert mock_register.await_count == 1
        assert listener.listener_id == "l-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            OverkizRegistrationFailed("no id"),
            OverkizTransportError("down"),
            OverkizHttpError(500),
        ],
    )
    async def test_register_failure_returns_to_unregistered(
        self, listener: OverkizEventListener, error: Exception
    ) -> None:
        """Test that a failed registration can be retried later."""
        with patch(f"{API}.async_register_listener", AsyncMock(side_effect=error)):
            await listener.async_register()

        assert listener.state is ListenerState.UNREGISTERED
        assert listener.listener_id is None

    def test_reset_active_listener(self, listener: OverkizEventListener) -> None:
        """Test that reset forgets an active listener."""
        _activate(listener)
        listener.reset()
        assert listener.state is ListenerState.UNREGISTERED
        assert listener.listener_id is None

    def test_reset_leaves_pending_registration(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that reset does not interfere with a registration in flight."""
        listener._state = ListenerState.PENDING
        listener.reset()
        assert listener.state is ListenerState.PENDING

    @pytest.mark.asyncio
    async def test_unregister(self, listener: OverkizEventListener) -> None:
        """Test that unregistering sends the request and resets."""
        _activate(listener)
        unregister = AsyncMock()
        with patch(f"{API}.async_unregister_listener", unregister):
            assert await listener.async_unregister() is True

        unregister.assert_awaited_once()
        assert unregister.await_args.args[1] == "l-1"
        assert listener.state is ListenerState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_unregister_when_unregistered(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that unregistering nothing sends no request."""
        unregister = AsyncMock()
        with patch(f"{API}.async_unregister_listener", unregister):
            assert await listener.async_unregister() is True
        unregister.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unregister_while_pending(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that a registration in flight is not unregistered."""
        listener._state = ListenerState.PENDING
        unregister = AsyncMock()
        with patch(f"{API}.async_unregister_listener", unregister):
            assert await listener.async_unregister() is False
        unregister.assert_not_awaited()
        assert listener.state is ListenerState.PENDING

    @pytest.mark.asyncio
    async def test_unregister_failure_keeps_listener(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that a failed unregister keeps the listener for a retry."""
        _activate(listener)
        error = OverkizTransportError("down")
        with patch(f"{API}.async_unregister_listener", AsyncMock(side_effect=error)):
            assert await listener.async_unregister() is False

        assert listener.state is ListenerState.ACTIVE
        assert listener.listener_id == "l-1"

    @pytest.mark.asyncio
    async def test_unregister_abandoned_after_max_attempts(
        self, mock_session: Mock
    ) -> None:
        """Test that the listener is dropped locally after repeated failures."""
        listener = OverkizEventListener(mock_session, max_unregister_attempts=2)
        _activate(listener)
        unregister = AsyncMock(side_effect=OverkizHttpError(500))
        with patch(f"{API}.async_unregister_listener", unregister):
            assert await listener.async_unregister() is False
            assert await listener.async_unregister() is True

        assert unregister.await_count == 2
        assert listener.state is ListenerState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_unregister_keeps_newer_listener(
        self, listener: OverkizEventListener
    ) -> None:
        """Test that a listener registered during unregistering survives."""
        _activate(listener, "l-1")

        async def unregister(_session: object, _listener_id: str) -> None:
            _activate(listener, "l-2")

        with patch(f"{API}.async_unregister_listener", AsyncMock(side_effect=unregister)):
            assert await listener.async_unregister() is True

        assert listener.state is ListenerState.ACTIVE
        assert listener.listener_id == "l-2"


class TestEventPoller:
    """Tests for OverkizEventPoller."""

    @pytest.fixture
    def poller(
        self, mock_session: Mock, listener: OverkizEventListener
    ) -> OverkizEventPoller:
        """Create a poller with a short interval."""
        return OverkizEventPoller(mock_session, listener, polling_interval=0.01)

    def test_register_callbacks(self, poller: OverkizEventPoller) -> None:
        """Test registering and unregistering callbacks."""
        execution_callback = AsyncMock()
        device_callback = AsyncMock()

        unregister_execution = poller.register_execution_callback(execution_callback)
        unregister_device = poller.register_device_state_callback(device_callback)
        assert execution_callback in poller._execution_callbacks
        assert device_callback in poller._device_state_callbacks

        unregister_execution()
        unregister_device()
        unregister_device()
        assert execution_callback not in poller._execution_callbacks
        assert device_callback not in poller._device_state_callbacks

    @pytest.mark.asyncio
    async def test_fetch_without_active_listener(
        self, poller: OverkizEventPoller
    ) -> None:
        """Test that nothing is fetched while no listener is active."""
        fetch = AsyncMock()
        with patch(f"{API}.async_fetch_events", fetch):
            assert await poller.async_fetch() == []
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fetch_returns_events(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test that events are fetched for the active listener."""
        _activate(listener)
        fetch = AsyncMock(return_value=[COMPLETED])
        with patch(f"{API}.async_fetch_events", fetch):
            assert await poller.async_fetch() == [COMPLETED]
        assert fetch.await_args.args[1] == "l-1"

    @pytest.mark.asyncio
    async def test_fetch_failure_resets_listener(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test that a failed fetch drops the listener."""
        _activate(listener)
        error = OverkizHttpError(400, "Unknown listener")
        with patch(f"{API}.async_fetch_events", AsyncMock(side_effect=error)):
            assert await poller.async_fetch() == []

        assert listener.state is ListenerState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_newer_listener(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test that a fetch failing after a relogin re-registered keeps the new one."""
        _activate(listener, "l-1")

        async def fetch(_session: object, _listener_id: str) -> list[object]:
            # Relogin inside the request replaced the listener
            _activate(listener, "l-2")
            raise OverkizTransportError("Connection reset")

        with patch(f"{API}.async_fetch_events", AsyncMock(side_effect=fetch)):
            assert await poller.async_fetch() == []

        assert listener.state is ListenerState.ACTIVE
        assert listener.listener_id == "l-2"

    @pytest.mark.asyncio
    async def test_dispatch_routes_events_in_order(
        self, poller: OverkizEventPoller
    ) -> None:
        """Test that each event reaches the callbacks of its kind, in order."""
        calls: list[object] = []
        poller.register_execution_callback(AsyncMock(side_effect=calls.append))
        poller.register_device_state_callback(AsyncMock(side_effect=calls.append))

        await poller.async_dispatch([STATES, COMPLETED, STATES])

        assert calls == [STATES, COMPLETED, STATES]

    @pytest.mark.asyncio
    async def test_dispatch_survives_callback_error(
        self, poller: OverkizEventPoller
    ) -> None:
        """Test that a failing callback does not stop the others."""
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        working = AsyncMock()
        poller.register_execution_callback(failing)
        poller.register_execution_callback(working)

        await poller.async_dispatch([COMPLETED, COMPLETED])

        assert failing.await_count == 2
        assert working.await_count == 2

    @pytest.mark.asyncio
    async def test_poll_once_fetches_and_dispatches(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test one tick of the loop."""
        _activate(listener)
        callback = AsyncMock()
        poller.register_device_state_callback(callback)
        with patch(f"{API}.async_fetch_events", AsyncMock(return_value=[STATES])):
            assert await poller.async_poll_once() == [STATES]
        callback.assert_awaited_once_with(STATES)

    @pytest.mark.asyncio
    async def test_poll_once_releases_unneeded_listener(
        self, mock_session: Mock, listener: OverkizEventListener
    ) -> None:
        """Test that an unneeded listener is unregistered instead of fetched."""
        poller = OverkizEventPoller(
            mock_session, listener, needs_listener=MagicMock(return_value=False)
        )
        _activate(listener)
        fetch = AsyncMock()
        unregister = AsyncMock()
        with (
            patch(f"{API}.async_fetch_events", fetch),
            patch(f"{API}.async_unregister_listener", unregister),
        ):
            assert await poller.async_poll_once() == []

        fetch.assert_not_awaited()
        unregister.assert_awaited_once()
        assert listener.state is ListenerState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_poll_once_keeps_needed_listener(
        self, mock_session: Mock, listener: OverkizEventListener
    ) -> None:
        """Test that a needed listener keeps being fetched."""
        poller = OverkizEventPoller(
            mock_session, listener, needs_listener=MagicMock(return_value=True)
        )
        _activate(listener)
        fetch = AsyncMock(return_value=[])
        with patch(f"{API}.async_fetch_events", fetch):
            await poller.async_poll_once()
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_poll_once_registers_needed_listener(
        self, mock_session: Mock, listener: OverkizEventListener
    ) -> None:
        """Test that a tick registers a missing listener before fetching."""
        poller = OverkizEventPoller(
            mock_session, listener, needs_listener=MagicMock(return_value=True)
        )
        fetch = AsyncMock(return_value=[COMPLETED])
        with (
            patch(f"{API}.async_register_listener", AsyncMock(return_value="l-2")),
            patch(f"{API}.async_fetch_events", fetch),
        ):
            assert await poller.async_poll_once() == [COMPLETED]

        assert listener.listener_id == "l-2"
        assert fetch.await_args.args[1] == "l-2"

    @pytest.mark.asyncio
    async def test_poll_once_skips_unneeded_missing_listener(
        self, mock_session: Mock, listener: OverkizEventListener
    ) -> None:
        """Test that no listener is registered while none is needed."""
        poller = OverkizEventPoller(
            mock_session, listener, needs_listener=MagicMock(return_value=False)
        )
        register = AsyncMock()
        with patch(f"{API}.async_register_listener", register):
            assert await poller.async_poll_once() == []

        register.assert_not_awaited()
        assert listener.state is ListenerState.UNREGISTERED

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test that the loop keeps polling until stopped."""
        _activate(listener)
        fetch = AsyncMock(return_value=[])
        with patch(f"{API}.async_fetch_events", fetch):
            poller.start()
            poller.start()
            assert poller.running is True
            await asyncio.sleep(0.05)
            await poller.async_stop()

        assert poller.running is False
        assert fetch.await_count >= 2

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(
        self, poller: OverkizEventPoller, listener: OverkizEventListener
    ) -> None:
        """Test that an unexpected error in a tick does not end the loop."""
        _activate(listener)
        calls: list[str] = []

        async def fetch_events(_session: object, listener_id: str) -> list:
            calls.append(listener_id)
            if len(calls) == 1:
                error_msg = "boom"
                raise RuntimeError(error_msg)
            return []

        fetch = AsyncMock(side_effect=fetch_events)
        with patch(f"{API}.async_fetch_events", fetch):
            poller.start()
            await asyncio.sleep(0.05)
            await poller.async_stop()

        assert fetch.await_count >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_started(self, poller: OverkizEventPoller) -> None:
        """Test that stopping an idle poller is harmless."""
        await poller.async_stop()
        assert poller.running is False
