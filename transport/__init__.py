"""
Transports that carry the managed websocket connection
"""

from typing import Any, Dict, Optional

from .base import (
    Message,
    MessageChannel,
    Transport,
    TransportDelegate,
    TransportError,
    TransportNotConnectedError,
)
from .threaded_transport import ThreadedTransport
from .websockets_transport import WebSocketsTransport

TRANSPORTS = {
    "websockets": WebSocketsTransport,
    "threaded": ThreadedTransport,
}


def create_transport(backend: str = "websockets", options: Optional[Dict[str, Any]] = None) -> Transport:
    """Build a transport from a TRANSPORT_CONFIG style dict"""
    options = dict(options or {})
    options.pop("backend", None)
    try:
        transport_class = TRANSPORTS[backend]
    except KeyError:
        raise ValueError(f"Unknown transport backend '{backend}'. Must be one of: {', '.join(TRANSPORTS)}") from None
    return transport_class(**options)


__all__ = [
    "Message",
    "MessageChannel",
    "Transport",
    "TransportDelegate",
    "TransportError",
    "TransportNotConnectedError",
    "ThreadedTransport",
    "WebSocketsTransport",
    "TRANSPORTS",
    "create_transport",
]
