"""
Connection state machine for tracking connection state and transitions
"""

import time
from enum import Enum
from typing import Dict, Any, Optional, Callable, List
from datetime import datetime

from events import event_bus as default_event_bus, EventBus, EventTypes
from .logging_config import get_logger


class ConnectionState(Enum):
    """Connection states"""
    NOT_CONNECTED = "not_connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class StateTransition:
    """Represents a state transition"""
    def __init__(self, from_state: ConnectionState, to_state: ConnectionState,
                 reason: str = "", epoch: int = 0):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        self.epoch = epoch
        self.timestamp = time.time()
        self.datetime = datetime.now()

    def __str__(self):
        return f"{self.from_state.value} → {self.to_state.value} ({self.reason})"


class InvalidTransitionError(Exception):
    """Raised when a transition outside the connection lifecycle is requested"""
    def __init__(self, from_state: ConnectionState, to_state: ConnectionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid state transition: {from_state.value} → {to_state.value}")


class ConnectionStateMachine:
    """
    Holds the connection state and enforces valid transitions.

    The only lifecycle is NOT_CONNECTED → CONNECTING → CONNECTED →
    NOT_CONNECTED, with CONNECTING → NOT_CONNECTED for a disconnect before
    the handshake completes. Not thread safe: the owning manager serializes
    every call onto its event loop.
    """

    VALID_TRANSITIONS = {
        ConnectionState.NOT_CONNECTED: [ConnectionState.CONNECTING],
        ConnectionState.CONNECTING: [ConnectionState.CONNECTED, ConnectionState.NOT_CONNECTED],
        ConnectionState.CONNECTED: [ConnectionState.NOT_CONNECTED],
    }

    def __init__(self, event_bus: Optional[EventBus] = None, max_history: int = 100):
        self.logger = get_logger(__name__)
        self.event_bus = event_bus or default_event_bus
        self.current_state = ConnectionState.NOT_CONNECTED

        # State history
        self.transitions: List[StateTransition] = []
        self.max_history = max_history

        # State listeners
        self.state_listeners: List[Callable[[ConnectionState, ConnectionState], None]] = []

        # State timing
        self.state_start_time = time.time()
        self.state_durations: Dict[ConnectionState, float] = {state: 0.0 for state in ConnectionState}

    @property
    def state(self) -> ConnectionState:
        return self.current_state

    def transition_to(self, new_state: ConnectionState, reason: str = "", epoch: int = 0) -> bool:
        """
        Transition to a new state

        Args:
            new_state: Target state
            reason: Reason for transition
            epoch: Connection epoch the transition belongs to

        Returns:
            True if the state changed, False if already in new_state

        Raises:
            InvalidTransitionError: if the lifecycle does not allow the move
        """
        if new_state == self.current_state:
            return False

        if not self._is_valid_transition(self.current_state, new_state):
            raise InvalidTransitionError(self.current_state, new_state)

        # Record state duration
        self.state_durations[self.current_state] += time.time() - self.state_start_time

        transition = StateTransition(self.current_state, new_state, reason, epoch)
        self.transitions.append(transition)
        if len(self.transitions) > self.max_history:
            self.transitions = self.transitions[-self.max_history:]

        old_state = self.current_state
        self.current_state = new_state
        self.state_start_time = time.time()

        self.logger.info(f"State transition: {transition}", extra={"extra_data": {
            "from_state": old_state.value,
            "to_state": new_state.value,
            "epoch": epoch,
        }})

        self.event_bus.emit(EventTypes.CONNECTION_STATE_CHANGED, {
            "from_state": old_state.value,
            "to_state": new_state.value,
            "reason": reason,
            "epoch": epoch
        }, source="ConnectionStateMachine")

        self._notify_listeners(old_state, new_state)
        return True

    def add_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]):
        """Add state change listener"""
        self.state_listeners.append(listener)

    def remove_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]):
        """Remove state change listener"""
        if listener in self.state_listeners:
            self.state_listeners.remove(listener)

    def _is_valid_transition(self, from_state: ConnectionState, to_state: ConnectionState) -> bool:
        return to_state in self.VALID_TRANSITIONS.get(from_state, [])

    def _notify_listeners(self, old_state: ConnectionState, new_state: ConnectionState):
        for listener in list(self.state_listeners):
            try:
                listener(old_state, new_state)
            except Exception as e:
                self.logger.error(f"Error in state listener: {e}", exc_info=True)

    def get_state_duration(self) -> float:
        """Get duration in current state (seconds)"""
        return time.time() - self.state_start_time

    def get_transition_history(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Get recent state transitions"""
        recent = self.transitions[-limit:] if self.transitions else []
        return [
            {
                "from": t.from_state.value,
                "to": t.to_state.value,
                "reason": t.reason,
                "epoch": t.epoch,
                "timestamp": t.timestamp,
                "datetime": t.datetime.isoformat()
            }
            for t in recent
        ]

    def get_stats(self) -> Dict[str, Any]:
        """Get state machine statistics"""
        durations = {}
        for state, duration in self.state_durations.items():
            if state == self.current_state:
                duration += self.get_state_duration()
            durations[state.value] = duration

        return {
            "current_state": self.current_state.value,
            "state_duration": self.get_state_duration(),
            "transition_count": len(self.transitions),
            "state_durations": durations
        }
