"""
Connection manager owning a single client websocket connection.

All state lives on one asyncio event loop. Caller operations run on that
loop directly, the streaming receive loop is a task on it, and transport
notifications, which may arrive from any thread, are queued and applied in
order by a single notification pump task.

Every suspension (send, a single receive, each streaming iteration) can
resume after the world has moved on. Each connect takes a new epoch and each
streaming loop a new generation; code resuming after an await compares what
it captured with the current values and becomes a no-op when they differ.
"""

import asyncio
from typing import Any, Callable, Dict, NamedTuple, Optional, Union
from urllib.parse import urlsplit

from config import SUPPORTED_SCHEMES
from events import event_bus as default_event_bus, EventBus, EventTypes
from .close_codes import CloseCode, describe_close_code
from .exceptions import (
    ConnectionClosedError,
    InvalidURLError,
    TaskUndefinedError,
    error_message,
    is_expected_disconnect,
)
from .logging_config import get_logger, log_error_with_context
from .state_manager import ConnectionState, ConnectionStateMachine

Payload = Union[str, bytes]

PREVIEW_LENGTH = 80


class Notification(NamedTuple):
    """Transport notification waiting to be applied on the event loop"""
    kind: str
    handle: Any
    args: tuple


class ConnectionManager:
    """Manages the lifecycle of one websocket connection"""

    def __init__(self, transport=None, event_bus: Optional[EventBus] = None):
        """
        Initialize the connection manager

        Args:
            transport: Transport implementation, built from TRANSPORT_CONFIG if omitted
            event_bus: Bus for connection events, the global bus if omitted
        """
        self.logger = get_logger(__name__)

        if transport is None:
            from config import TRANSPORT_CONFIG
            from transport import create_transport
            transport = create_transport(TRANSPORT_CONFIG["backend"], TRANSPORT_CONFIG)
        self.transport = transport
        self.event_bus = event_bus or default_event_bus
        self.state_machine = ConnectionStateMachine(event_bus=self.event_bus)

        # Connection
        self.url: Optional[str] = None
        self._handle = None
        self._epoch = 0

        # Receiving
        self._streaming = False
        self._receiving_single = False
        self._receiving_task: Optional[asyncio.Task] = None
        self._stream_generation = 0

        # Observed by the presentation layer
        self._message: Optional[Payload] = None
        self._error: Optional[BaseException] = None

        # Notification pump
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._notifications: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        return self.state_machine.state

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def is_receiving_single(self) -> bool:
        return self._receiving_single

    @property
    def is_receiving(self) -> bool:
        """Whether some receiver still wants the next message"""
        return self._streaming or self._receiving_single

    @property
    def message(self) -> Optional[Payload]:
        """Most recently accepted message"""
        return self._message

    @property
    def error(self) -> Optional[BaseException]:
        """Most recent error surfaced to the caller"""
        return self._error

    @property
    def epoch(self) -> int:
        return self._epoch

    def acknowledge_error(self):
        """Clear the last error once it has been shown"""
        self._error = None

    def add_state_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]):
        self.state_machine.add_listener(listener)

    def remove_state_listener(self, listener: Callable[[ConnectionState, ConnectionState], None]):
        self.state_machine.remove_listener(listener)

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    def connect(self, url: str, method: str = "GET"):
        """
        Start connecting to a ws:// or wss:// endpoint.

        Returns as soon as the transport has a handle; the state moves to
        CONNECTED once the handshake notification arrives. Does nothing
        unless the manager is NOT_CONNECTED. Must be called from a running
        event loop, which becomes the loop owning this manager.

        Raises:
            InvalidURLError: if url is not a well formed ws/wss url
        """
        if self.connection_state != ConnectionState.NOT_CONNECTED:
            self.logger.debug(f"Ignoring connect, connection is {self.connection_state.value}")
            return

        if not self._is_valid_url(url):
            raise InvalidURLError(url)

        self._bind_loop()
        handle = self.transport.open(url, method, self)

        self._epoch += 1
        self._handle = handle
        self.url = url
        self.state_machine.transition_to(ConnectionState.CONNECTING, f"connect to {url}", self._epoch)
        self.logger.info(f"Connecting to {url}", extra={"extra_data": {
            "url": url, "method": method, "epoch": self._epoch
        }})

    def disconnect(self):
        """Tear the connection down from any state. Idempotent."""
        self.stop_receiving()
        self._receiving_single = False

        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                self.transport.cancel(handle, CloseCode.GOING_AWAY, None)
            except Exception as e:
                log_error_with_context(self.logger, e, "disconnect", url=self.url, epoch=self._epoch)
            self.logger.info(f"Disconnected from {self.url}", extra={"extra_data": {"epoch": self._epoch}})

        self._message = None
        self.state_machine.transition_to(ConnectionState.NOT_CONNECTED, "disconnect", self._epoch)

    async def close(self):
        """Disconnect and stop the notification pump"""
        self.disconnect()
        pump, self._pump_task = self._pump_task, None
        if pump is not None and not pump.done():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send(self, payload: Payload):
        """
        Send a text (str) or binary (bytes) message.

        Transport failures propagate to the caller and are not recorded
        as the last error.

        Raises:
            TaskUndefinedError: if there is no connection
        """
        handle = self._handle
        if handle is None:
            raise TaskUndefinedError("send")

        if isinstance(payload, str):
            kind = "text"
        elif isinstance(payload, (bytes, bytearray, memoryview)):
            payload = bytes(payload)
            kind = "binary"
        else:
            raise TypeError(f"Can only send str or bytes, not {type(payload).__name__}")

        await self.transport.send(handle, payload)

        size = len(payload)
        self.logger.debug(f"Sent {kind} message of length {size}")
        self.event_bus.emit(EventTypes.CONNECTION_MESSAGE_SENT, {
            "kind": kind,
            "size": size,
            "epoch": self._epoch
        }, source="ConnectionManager")

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    async def receive_single(self) -> Optional[Payload]:
        """
        Wait for one message and store it as the last message.

        Returns without effect if a single receive or the streaming loop
        is already active. There is no timeout: the wait ends when a
        message arrives or the connection ends.

        Returns:
            The accepted message, or None if it arrived too late to be wanted

        Raises:
            TaskUndefinedError: if there is no connection
        """
        handle = self._handle
        if handle is None:
            raise TaskUndefinedError("receive_single")

        if self._receiving_single or self._streaming:
            return None

        self._receiving_single = True
        epoch = self._epoch
        try:
            message = await self.transport.receive(handle)

            # Accept while any receiver is active: streaming may have
            # started while this call was waiting.
            if self._is_current(epoch, handle) and self.is_receiving:
                self._accept_message(message, "single")
                return message
            self.logger.debug("Discarding message that arrived after its receiver went away")
            return None
        finally:
            if self._epoch == epoch:
                self._receiving_single = False

    def start_receiving(self):
        """
        Start the background loop storing every incoming message.

        Does nothing if already streaming. Failures end the loop and are
        recorded as the last error, except the 'not connected' failure
        that races with a peer close.

        Raises:
            TaskUndefinedError: if there is no connection
        """
        handle = self._handle
        if handle is None:
            raise TaskUndefinedError("start_receiving")

        if self._streaming:
            return

        self._streaming = True
        self._stream_generation += 1
        generation = self._stream_generation

        self._receiving_task = asyncio.get_running_loop().create_task(
            self._receive_loop(handle, self._epoch, generation),
            name=f"receive-loop-{self._epoch}.{generation}"
        )
        self.logger.debug(f"Receive loop {generation} started")
        self.event_bus.emit(EventTypes.CONNECTION_RECEIVING_STARTED, {
            "epoch": self._epoch,
            "generation": generation
        }, source="ConnectionManager")

    def stop_receiving(self):
        """Stop the background receive loop. Idempotent."""
        task, self._receiving_task = self._receiving_task, None
        if task is not None:
            task.cancel()

        if not self._streaming:
            return

        self._streaming = False
        generation = self._stream_generation
        self._stream_generation += 1
        self.logger.debug(f"Receive loop {generation} stopped")
        self.event_bus.emit(EventTypes.CONNECTION_RECEIVING_STOPPED, {
            "epoch": self._epoch,
            "generation": generation
        }, source="ConnectionManager")

    async def _receive_loop(self, handle, epoch: int, generation: int):
        # A receive that outlived stop_receiving still resolves here; its
        # result is wanted while any receiver is active on this connection.
        # The generation only decides whether this loop keeps going.
        while self._stream_is_current(handle, epoch, generation):
            try:
                message = await self.transport.receive(handle)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if self._is_current(epoch, handle) and self.is_receiving:
                    if is_expected_disconnect(e):
                        self.logger.debug(f"Ignoring receive failure, peer close is reported separately: {e}")
                    else:
                        self._set_error(e)
                if self._stream_is_current(handle, epoch, generation):
                    # Finished on its own, so stop_receiving must not cancel this task
                    self._receiving_task = None
                    self.stop_receiving()
                break

            if self._is_current(epoch, handle) and self.is_receiving:
                self._accept_message(message, "stream")
            else:
                self.logger.debug("Discarding message that arrived after every receiver went away")

    # ------------------------------------------------------------------
    # Transport notifications (thread safe)
    # ------------------------------------------------------------------

    def notify_opened(self, handle, protocol: Optional[str] = None):
        """The transport completed the handshake for handle"""
        self._post(Notification("opened", handle, (protocol,)))

    def notify_closed(self, handle, code: Union[CloseCode, int], reason: Optional[bytes] = None):
        """The peer sent a close frame for handle, or the connection was lost"""
        self._post(Notification("closed", handle, (code, reason)))

    def notify_failed(self, handle, error: BaseException):
        """The transport gave up on handle without a close frame"""
        self._post(Notification("failed", handle, (error,)))

    async def drain_notifications(self):
        """Wait until every queued notification has been applied"""
        if self._notifications is not None:
            await self._notifications.join()

    def _post(self, notification: Notification):
        loop = self._loop
        if loop is None or loop.is_closed():
            self.logger.debug(f"Dropping {notification.kind} notification, no event loop bound")
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._notifications.put_nowait(notification)
            return
        try:
            loop.call_soon_threadsafe(self._notifications.put_nowait, notification)
        except RuntimeError:
            self.logger.debug(f"Dropping {notification.kind} notification, event loop is closed")

    def _bind_loop(self):
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._notifications = asyncio.Queue()
            self._pump_task = None

        if self._pump_task is None or self._pump_task.done():
            self._pump_task = loop.create_task(self._process_notifications(), name="connection-notifications")

    async def _process_notifications(self):
        while True:
            notification = await self._notifications.get()
            try:
                self._apply_notification(notification)
            except Exception as e:
                log_error_with_context(self.logger, e, f"{notification.kind} notification")
            finally:
                self._notifications.task_done()

    def _apply_notification(self, notification: Notification):
        is_current = notification.handle is not None and notification.handle is self._handle

        if notification.kind == "opened":
            if self.connection_state == ConnectionState.CONNECTING and is_current:
                self.state_machine.transition_to(ConnectionState.CONNECTED, "handshake completed", self._epoch)
                self.logger.info(f"Connected to {self.url}", extra={"extra_data": {
                    "protocol": notification.args[0], "epoch": self._epoch
                }})
            else:
                self.logger.debug("Ignoring handshake notification for a stale connection")

        elif notification.kind == "closed":
            code, reason = notification.args
            reason_text = self._decode_reason(reason)
            self.logger.info(f"Close code: {describe_close_code(code)}. Reason: {reason_text}")
            if self.connection_state == ConnectionState.CONNECTED and is_current:
                self.disconnect()
                self._set_error(ConnectionClosedError(code, reason_text))
            else:
                self.logger.debug("Ignoring close notification for a stale or locally closed connection")

        elif notification.kind == "failed":
            error = notification.args[0]
            if self.connection_state != ConnectionState.NOT_CONNECTED and is_current:
                self.disconnect()
                if not is_expected_disconnect(error):
                    self._set_error(error)
            else:
                self.logger.debug(f"Ignoring failure for a stale connection: {error}")

        else:
            raise ValueError(f"Unknown notification kind {notification.kind}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_current(self, epoch: int, handle) -> bool:
        return handle is not None and self._handle is handle and self._epoch == epoch

    def _stream_is_current(self, handle, epoch: int, generation: int) -> bool:
        return (self._is_current(epoch, handle)
                and self._streaming
                and self._stream_generation == generation)

    def _accept_message(self, message: Payload, source: str):
        self._message = message
        kind = "text" if isinstance(message, str) else "binary"
        self.logger.debug(f"Received {kind} message of length {len(message)} ({source})")
        self.event_bus.emit(EventTypes.CONNECTION_MESSAGE_RECEIVED, {
            "kind": kind,
            "size": len(message),
            "preview": message[:PREVIEW_LENGTH] if kind == "text" else None,
            "source": source,
            "epoch": self._epoch
        }, source="ConnectionManager")

    def _set_error(self, error: BaseException):
        self._error = error
        message = error_message(error)
        log_error_with_context(self.logger, error, "connection", url=self.url, epoch=self._epoch)
        self.event_bus.emit(EventTypes.CONNECTION_ERROR, {
            "error_type": type(error).__name__,
            "message": message,
            "epoch": self._epoch
        }, source="ConnectionManager")

    @staticmethod
    def _decode_reason(reason: Optional[bytes]) -> str:
        if not reason:
            return ""
        try:
            return reason.decode("utf-8")
        except UnicodeDecodeError:
            return "unknown"

    @staticmethod
    def _is_valid_url(url: str) -> bool:
        if not isinstance(url, str) or not url or any(ch.isspace() for ch in url):
            return False
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError:
            return False
        return parts.scheme.lower() in SUPPORTED_SCHEMES and bool(hostname)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection manager statistics"""
        return {
            "connection_state": self.connection_state.value,
            "url": self.url,
            "epoch": self._epoch,
            "is_streaming": self._streaming,
            "is_receiving_single": self._receiving_single,
            "has_message": self._message is not None,
            "last_error": error_message(self._error) if self._error is not None else None,
            "pending_notifications": self._notifications.qsize() if self._notifications else 0,
            "state_machine": self.state_machine.get_stats()
        }
