"""
Threaded transport built on websocket-client's WebSocketApp.

Each connection runs ``run_forever`` on its own daemon thread. Socket
callbacks fire on that thread: messages and state are handed back to the
event loop with ``call_soon_threadsafe``, while delegate notifications are
passed straight through since the delegate is thread safe.
"""

import asyncio
import threading
from typing import Any, Dict, Optional

import websocket

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


class ThreadedHandle:
    """One WebSocketApp and the thread running it"""

    def __init__(self, url: str, method: str, delegate: TransportDelegate,
                 loop: asyncio.AbstractEventLoop):
        self.url = url
        self.method = method
        self.delegate = delegate
        self.loop = loop
        self.app: Optional[websocket.WebSocketApp] = None
        self.thread: Optional[threading.Thread] = None
        self.channel = MessageChannel()
        self.settled = asyncio.Event()
        self.lock = threading.Lock()
        self.opened = False
        self.failed = False
        self.cancelled = False
        self.error: Optional[BaseException] = None

    def __repr__(self):
        return f"<ThreadedHandle {self.url} opened={self.opened} cancelled={self.cancelled}>"


class ThreadedTransport(Transport):
    """Runs websocket-client connections on daemon threads"""

    def __init__(self,
                 open_timeout: float = 10.0,
                 close_timeout: float = 3.0,
                 ping_interval: float = 20.0,
                 max_message_size: int = 1024 * 1024,
                 headers: Optional[Dict[str, str]] = None):
        self.logger = get_logger(__name__)
        # WebSocketApp has no per-connection handshake timeout or frame size limit
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.ping_interval = ping_interval
        self.max_message_size = max_message_size
        self.headers = headers or {}

    def open(self, url: str, method: str, delegate: TransportDelegate) -> ThreadedHandle:
        if method.upper() != "GET":
            self.logger.warning(f"websocket-client only performs GET handshakes, ignoring method {method}")

        handle = ThreadedHandle(url, method, delegate, asyncio.get_running_loop())
        handle.app = websocket.WebSocketApp(
            url,
            header=self.headers,
            on_open=lambda ws: self._on_open(handle, ws),
            on_message=lambda ws, message: self._on_message(handle, message),
            on_error=lambda ws, error: self._on_error(handle, error),
            on_close=lambda ws, code, msg: self._on_close(handle, code, msg)
        )

        handle.thread = threading.Thread(target=self._run_websocket, args=(handle,),
                                         daemon=True, name="WebSocketThread")
        handle.thread.start()
        return handle

    def _run_websocket(self, handle: ThreadedHandle):
        """Run the WebSocketApp until the connection ends"""
        kwargs: Dict[str, Any] = {}
        if self.ping_interval:
            kwargs["ping_interval"] = self.ping_interval
            kwargs["ping_timeout"] = self.ping_interval / 2
        try:
            handle.app.run_forever(**kwargs)
        except Exception as e:
            self.logger.error(f"WebSocket thread for {handle.url} crashed: {e}", exc_info=True)
            self._on_error(handle, e)
            self._on_close(handle, None, None)

    def _call_in_loop(self, handle: ThreadedHandle, callback, *args):
        try:
            handle.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop already closed, nobody is left to receive
            self.logger.debug(f"Dropped callback for {handle.url}, event loop is closed")

    def _on_open(self, handle: ThreadedHandle, ws):
        with handle.lock:
            if handle.cancelled:
                return
            handle.opened = True

        self._call_in_loop(handle, handle.settled.set)
        protocol = ws.sock.getsubprotocol() if ws.sock else None
        self.logger.debug(f"Handshake completed with {handle.url}")
        handle.delegate.notify_opened(handle, protocol)

    def _on_message(self, handle: ThreadedHandle, message):
        self._call_in_loop(handle, handle.channel.put, message)

    def _on_error(self, handle: ThreadedHandle, error):
        with handle.lock:
            handle.error = error
            if handle.opened or handle.cancelled or handle.failed:
                self.logger.debug(f"Socket error on {handle.url}: {error}")
                return
            handle.failed = True

        failure = TransportError(f"Could not connect to {handle.url}: {error}")
        self.logger.warning(f"Handshake failed for {handle.url}: {error}")
        self._call_in_loop(handle, handle.settled.set)
        self._call_in_loop(handle, handle.channel.finish, failure)
        handle.delegate.notify_failed(handle, failure)

    def _on_close(self, handle: ThreadedHandle, code: Optional[int], msg: Optional[str]):
        with handle.lock:
            silent = handle.cancelled or handle.failed or not handle.opened
            # Only report once
            handle.failed = True

        if not silent:
            reason = msg.encode("utf-8") if msg else None
            close_code = CloseCode.parse(code) if code is not None else CloseCode.ABNORMAL_CLOSURE
            handle.delegate.notify_closed(handle, close_code, reason)

        self._call_in_loop(handle, handle.settled.set)
        self._call_in_loop(handle, handle.channel.finish, TransportNotConnectedError())

    async def send(self, handle: ThreadedHandle, message: Message) -> None:
        await handle.settled.wait()
        if handle.cancelled or not handle.opened or handle.channel.finished:
            raise TransportNotConnectedError()

        if isinstance(message, str):
            opcode = websocket.ABNF.OPCODE_TEXT
        else:
            opcode = websocket.ABNF.OPCODE_BINARY
        try:
            await asyncio.to_thread(handle.app.send, message, opcode)
        except websocket.WebSocketConnectionClosedException as e:
            raise TransportNotConnectedError() from e
        except websocket.WebSocketException as e:
            raise TransportError(str(e)) from e

    async def receive(self, handle: ThreadedHandle) -> Message:
        return await handle.channel.get()

    def cancel(self, handle: ThreadedHandle, code: CloseCode = CloseCode.GOING_AWAY,
               reason: Optional[str] = None) -> None:
        with handle.lock:
            if handle.cancelled:
                return
            handle.cancelled = True

        handle.settled.set()
        handle.channel.finish(TransportNotConnectedError("Connection cancelled"))
        threading.Thread(target=self._close_app, args=(handle, code, reason),
                         daemon=True, name="WebSocketClose").start()

    def _close_app(self, handle: ThreadedHandle, code: CloseCode, reason: Optional[str]):
        try:
            handle.app.close(status=int(code), reason=(reason or "").encode("utf-8"),
                             timeout=self.close_timeout)
        except (websocket.WebSocketException, OSError) as e:
            self.logger.debug(f"Error closing {handle.url}: {e}")
