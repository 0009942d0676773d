"""
Core components for websocket connection and state management
"""

from .close_codes import CloseCode, describe_close_code
from .connection_manager import ConnectionManager
from .exceptions import (
    ConnectionManagerError,
    InvalidURLError,
    TaskUndefinedError,
    ConnectionClosedError,
    error_message,
    is_expected_disconnect,
)
from .state_manager import ConnectionStateMachine, ConnectionState

__all__ = [
    "CloseCode",
    "describe_close_code",
    "ConnectionManager",
    "ConnectionManagerError",
    "InvalidURLError",
    "TaskUndefinedError",
    "ConnectionClosedError",
    "error_message",
    "is_expected_disconnect",
    "ConnectionStateMachine",
    "ConnectionState",
]
