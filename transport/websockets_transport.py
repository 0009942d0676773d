"""
Asyncio transport built on the websockets client
"""

import asyncio
from typing import Any, Dict, Optional, Set

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from core.close_codes import CloseCode
from core.logging_config import get_logger
from .base import (
    Message,
    MessageChannel,
    Transport,
    TransportDelegate,
    TransportError,
    TransportNotConnectedError,
)


class WebSocketsHandle:
    """One connection attempt and its lifetime"""

    def __init__(self, url: str, method: str, delegate: TransportDelegate):
        self.url = url
        self.method = method
        self.delegate = delegate
        self.connection = None
        self.channel = MessageChannel()
        self.settled = asyncio.Event()  # handshake finished, either way
        self.cancelled = False
        self.task: Optional[asyncio.Task] = None

    def __repr__(self):
        return f"<WebSocketsHandle {self.url} cancelled={self.cancelled}>"


class WebSocketsTransport(Transport):
    """Drives each connection from a reader task on the running event loop"""

    def __init__(self,
                 open_timeout: float = 10.0,
                 close_timeout: float = 3.0,
                 ping_interval: float = 20.0,
                 max_message_size: int = 1024 * 1024,
                 headers: Optional[Dict[str, str]] = None):
        self.logger = get_logger(__name__)
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.ping_interval = ping_interval or None
        self.max_message_size = max_message_size
        self.headers = headers or {}
        self._closing: Set[asyncio.Task] = set()

    def open(self, url: str, method: str, delegate: TransportDelegate) -> WebSocketsHandle:
        if method.upper() != "GET":
            self.logger.warning(f"websockets only performs GET handshakes, ignoring method {method}")

        handle = WebSocketsHandle(url, method, delegate)
        handle.task = asyncio.get_running_loop().create_task(self._run(handle), name=f"ws-reader {url}")
        return handle

    async def _run(self, handle: WebSocketsHandle):
        try:
            connection = await connect(
                handle.url,
                additional_headers=self.headers or None,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                ping_interval=self.ping_interval,
                max_size=self.max_message_size,
            )
        except asyncio.CancelledError:
            handle.settled.set()
            handle.channel.finish(TransportNotConnectedError("Connection cancelled"))
            raise
        except Exception as e:
            error = TransportError(f"Could not connect to {handle.url}: {e}")
            error.__cause__ = e
            handle.settled.set()
            handle.channel.finish(error)
            if not handle.cancelled:
                self.logger.warning(f"Handshake failed for {handle.url}: {e}")
                handle.delegate.notify_failed(handle, error)
            return

        handle.connection = connection
        handle.settled.set()
        if handle.cancelled:
            await connection.close()
            return

        self.logger.debug(f"Handshake completed with {handle.url}",
                          extra={"extra_data": {"subprotocol": connection.subprotocol}})
        handle.delegate.notify_opened(handle, connection.subprotocol)

        try:
            while True:
                handle.channel.put(await connection.recv())
        except ConnectionClosed as e:
            if not handle.cancelled:
                if e.rcvd is not None:
                    reason = e.rcvd.reason.encode("utf-8") if e.rcvd.reason else None
                    handle.delegate.notify_closed(handle, CloseCode.parse(e.rcvd.code), reason)
                else:
                    handle.delegate.notify_closed(handle, CloseCode.ABNORMAL_CLOSURE, None)
            handle.channel.finish(TransportNotConnectedError())

    async def send(self, handle: WebSocketsHandle, message: Message) -> None:
        await handle.settled.wait()
        if handle.cancelled or handle.connection is None:
            raise TransportNotConnectedError()
        try:
            await handle.connection.send(message)
        except ConnectionClosed as e:
            raise TransportNotConnectedError() from e

    async def receive(self, handle: WebSocketsHandle) -> Message:
        return await handle.channel.get()

    def cancel(self, handle: WebSocketsHandle, code: CloseCode = CloseCode.GOING_AWAY,
               reason: Optional[str] = None) -> None:
        if handle.cancelled:
            return
        handle.cancelled = True
        handle.channel.finish(TransportNotConnectedError("Connection cancelled"))

        if handle.connection is None:
            if handle.task is not None:
                handle.task.cancel()
            return

        task = asyncio.get_running_loop().create_task(self._close(handle, code, reason))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close(self, handle: WebSocketsHandle, code: CloseCode, reason: Optional[str]):
        try:
            await handle.connection.close(code=int(code), reason=reason or "")
        except Exception as e:
            self.logger.debug(f"Error closing {handle.url}: {e}")
        self.logger.debug(f"Closed {handle.url} with {CloseCode.parse(int(code))!r}")
