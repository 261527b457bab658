"""Tests for the connection state machine."""

import pytest

from powermon_bridge.connection import ConnectionState, ConnectionStateMachine
from powermon_bridge.errors import ConnectionStateError


@pytest.fixture
def machine():
    return ConnectionStateMachine()


@pytest.fixture
def transitions(machine):
    seen = []
    machine.add_listener(lambda state, reason: seen.append((state, reason)))
    return seen


class TestTransitions:
    """Tests for legal and illegal transitions."""

    def test_initial_state(self, machine):
        assert machine.state is ConnectionState.DISCONNECTED
        assert machine.reason is None
        assert machine.snapshot() == {"connected": False, "connecting": False}

    def test_full_cycle(self, machine, transitions):
        machine.begin_connect()
        assert machine.snapshot() == {"connected": False, "connecting": True}
        assert machine.on_connected()
        assert machine.snapshot() == {"connected": True, "connecting": False}
        assert machine.on_disconnected(6)
        assert machine.reason == 6

        assert transitions == [
            (ConnectionState.CONNECTING, None),
            (ConnectionState.CONNECTED, None),
            (ConnectionState.DISCONNECTED, 6),
        ]

    def test_double_connect_rejected(self, machine):
        """Never Connecting or Connected twice."""
        machine.begin_connect()
        with pytest.raises(ConnectionStateError, match="Already connected or connecting"):
            machine.begin_connect()
        machine.on_connected()
        with pytest.raises(ConnectionStateError):
            machine.begin_connect()

    def test_refused_connect(self, machine, transitions):
        """Connecting can end in Disconnected without ever connecting."""
        machine.begin_connect()
        assert machine.on_disconnected(1)
        assert machine.state is ConnectionState.DISCONNECTED
        assert transitions[-1] == (ConnectionState.DISCONNECTED, 1)

    def test_stray_notifications_ignored(self, machine, transitions):
        """Notifications that do not match the state change nothing."""
        assert not machine.on_connected()
        assert not machine.on_disconnected(0)
        assert transitions == []

    def test_abort_connect(self, machine, transitions):
        machine.begin_connect()
        machine.abort_connect()
        assert machine.state is ConnectionState.DISCONNECTED
        assert transitions[-1] == (ConnectionState.DISCONNECTED, None)

        machine.abort_connect()
        assert len(transitions) == 2

    def test_reason_cleared_on_reconnect(self, machine):
        machine.begin_connect()
        machine.on_disconnected(2)
        machine.begin_connect()
        assert machine.reason is None


class TestListeners:
    """Tests for transition listeners."""

    def test_unsubscribe(self, machine):
        seen = []
        unsubscribe = machine.add_listener(lambda *args: seen.append(args))
        unsubscribe()
        unsubscribe()
        machine.begin_connect()
        assert seen == []

    def test_failing_listener_does_not_block_others(self, machine):
        seen = []

        def broken(state, reason):
            raise RuntimeError("boom")

        machine.add_listener(broken)
        machine.add_listener(lambda *args: seen.append(args))
        machine.begin_connect()
        assert seen == [(ConnectionState.CONNECTING, None)]
        assert machine.is_connecting
