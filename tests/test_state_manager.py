"""Tests for core.state_manager."""

import pytest

from core.state_manager import ConnectionState, ConnectionStateMachine, InvalidTransitionError
from events import EventTypes


@pytest.fixture
def machine(bus):
    return ConnectionStateMachine(event_bus=bus, max_history=3)


class TestConnectionStateMachine:

    def test_starts_not_connected(self, machine) -> None:
        assert machine.state == ConnectionState.NOT_CONNECTED
        assert machine.transitions == []

    def test_full_lifecycle(self, machine) -> None:
        assert machine.transition_to(ConnectionState.CONNECTING, "connect", 1)
        assert machine.transition_to(ConnectionState.CONNECTED, "handshake", 1)
        assert machine.transition_to(ConnectionState.NOT_CONNECTED, "disconnect", 1)

        history = machine.get_transition_history()
        assert [(t["from"], t["to"]) for t in history] == [
            ("not_connected", "connecting"),
            ("connecting", "connected"),
            ("connected", "not_connected"),
        ]
        assert all(t["epoch"] == 1 for t in history)

    def test_disconnect_before_handshake(self, machine) -> None:
        machine.transition_to(ConnectionState.CONNECTING)

        assert machine.transition_to(ConnectionState.NOT_CONNECTED)

    def test_same_state_is_not_a_transition(self, machine) -> None:
        assert machine.transition_to(ConnectionState.NOT_CONNECTED) is False
        assert machine.transitions == []

    @pytest.mark.parametrize("start, target", [
        (None, ConnectionState.CONNECTED),
        (ConnectionState.CONNECTED, ConnectionState.CONNECTING),
    ])
    def test_invalid_transition_raises(self, machine, start, target) -> None:
        if start is ConnectionState.CONNECTED:
            machine.transition_to(ConnectionState.CONNECTING)
            machine.transition_to(ConnectionState.CONNECTED)

        with pytest.raises(InvalidTransitionError):
            machine.transition_to(target)

    def test_history_is_bounded(self, machine) -> None:
        for _ in range(3):
            machine.transition_to(ConnectionState.CONNECTING)
            machine.transition_to(ConnectionState.NOT_CONNECTED)

        assert len(machine.transitions) == 3
        assert machine.get_stats()["transition_count"] == 3

    def test_listeners_are_notified_and_isolated(self, machine) -> None:
        seen = []

        def broken(old, new):
            raise RuntimeError("listener bug")

        machine.add_listener(broken)
        machine.add_listener(lambda old, new: seen.append(new))
        machine.transition_to(ConnectionState.CONNECTING)

        assert seen == [ConnectionState.CONNECTING]

        machine.remove_listener(broken)
        machine.remove_listener(broken)
        assert len(machine.state_listeners) == 1

    def test_emits_state_changed(self, machine, bus) -> None:
        machine.transition_to(ConnectionState.CONNECTING, "connect to ws://host", 7)

        assert bus.wait_until_idle(timeout=2.0)
        events = bus.get_recent_events(event_type=EventTypes.CONNECTION_STATE_CHANGED)
        assert events[-1]["data"] == {
            "from_state": "not_connected",
            "to_state": "connecting",
            "reason": "connect to ws://host",
            "epoch": 7,
        }
        assert events[-1]["source"] == "ConnectionStateMachine"

    def test_stats(self, machine) -> None:
        machine.transition_to(ConnectionState.CONNECTING)

        stats = machine.get_stats()

        assert stats["current_state"] == "connecting"
        assert set(stats["state_durations"]) == {"not_connected", "connecting", "connected"}
        assert stats["state_duration"] >= 0
