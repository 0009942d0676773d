"""
Error taxonomy for the connection manager
"""

import errno
from typing import Optional, Dict, Any, Union

from .close_codes import CloseCode, describe_close_code


class ConnectionManagerError(Exception):
    """Base exception for errors raised by the connection manager itself"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidURLError(ConnectionManagerError):
    """Raised when the endpoint url is malformed or not a ws/wss url"""
    def __init__(self, url: str, details: Optional[Dict[str, Any]] = None):
        self.url = url
        super().__init__("Invalid endpoint url", {"url": url, **(details or {})})


class TaskUndefinedError(ConnectionManagerError):
    """Raised when an operation needs a transport handle and there is none"""
    def __init__(self, operation: Optional[str] = None):
        self.operation = operation
        super().__init__("webSocket Task Undefined", {"operation": operation} if operation else None)


class ConnectionClosedError(ConnectionManagerError):
    """Recorded when the peer closes a connection the caller believed connected"""
    def __init__(self, code: Union[CloseCode, int, None], reason: str = ""):
        self.code = CloseCode.parse(code)
        self.reason = reason
        super().__init__(
            f"Connection Closed With Error. Code: {describe_close_code(self.code)}. Reason: {reason}",
            {"code": int(self.code) if self.code is not None else None, "reason": reason}
        )


def error_message(error: BaseException) -> str:
    """Human readable message for any error surfaced to the caller"""
    if isinstance(error, ConnectionManagerError):
        return error.message
    text = str(error)
    return text if text else type(error).__name__


def is_expected_disconnect(error: BaseException) -> bool:
    """
    Check if a transport error is the low-level 'not connected' failure.

    A receive that is pending when the peer closes fails with ENOTCONN at
    roughly the same time the close notification arrives. The close path
    carries the code and reason, so this failure is discarded.
    """
    return isinstance(error, OSError) and error.errno == errno.ENOTCONN
