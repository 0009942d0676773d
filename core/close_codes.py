"""
WebSocket close codes and their diagnostic display names
"""

from enum import IntEnum
from typing import Optional, Union


class CloseCode(IntEnum):
    """Close codes defined by RFC 6455"""
    INVALID = 0
    NORMAL_CLOSURE = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    UNSUPPORTED_DATA = 1003
    NO_STATUS_RECEIVED = 1005
    ABNORMAL_CLOSURE = 1006
    INVALID_FRAME_PAYLOAD_DATA = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    MANDATORY_EXTENSION_MISSING = 1010
    INTERNAL_SERVER_ERROR = 1011
    TLS_HANDSHAKE_FAILURE = 1015

    @property
    def display_name(self) -> str:
        """camelCase name, e.g. 'abnormalClosure'"""
        first, *rest = self.name.lower().split("_")
        return first + "".join(word.capitalize() for word in rest)

    @classmethod
    def parse(cls, value: Optional[int]) -> Union["CloseCode", int, None]:
        """Map a raw code to a member, keeping unrecognised values as plain ints"""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return value


UNKNOWN_CLOSE_CODE = "unknown close code"


def describe_close_code(code: Union[CloseCode, int, None]) -> str:
    """Stable display string for any close code, recognised or not"""
    if isinstance(code, CloseCode):
        return code.display_name
    parsed = CloseCode.parse(code)
    if isinstance(parsed, CloseCode):
        return parsed.display_name
    return UNKNOWN_CLOSE_CODE
