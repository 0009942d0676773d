"""
Transport capability consumed by the connection manager
"""

import asyncio
import errno
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, List, Optional, Protocol, Union

from core.close_codes import CloseCode

Message = Union[str, bytes]


class TransportError(Exception):
    """Base exception for failures coming from the underlying socket"""
    pass


class TransportNotConnectedError(TransportError, OSError):
    """The socket is not connected (ENOTCONN)"""
    def __init__(self, message: str = "Socket is not connected"):
        OSError.__init__(self, errno.ENOTCONN, message)

    def __str__(self):
        return self.strerror


class TransportDelegate(Protocol):
    """
    Receiver of out-of-band transport notifications.

    Transports may call these from any thread.
    """

    def notify_opened(self, handle: Any, protocol: Optional[str]) -> None: ...

    def notify_closed(self, handle: Any, code: Union[CloseCode, int], reason: Optional[bytes]) -> None: ...

    def notify_failed(self, handle: Any, error: BaseException) -> None: ...


class Transport(ABC):
    """Opens, drives and tears down websocket connections"""

    @abstractmethod
    def open(self, url: str, method: str, delegate: TransportDelegate) -> Any:
        """
        Start connecting to url and return a handle immediately.

        The handshake completes in the background and is reported through
        the delegate. Must be called from the event loop thread.
        """

    @abstractmethod
    async def send(self, handle: Any, message: Message) -> None:
        """Send a text (str) or binary (bytes) message"""

    @abstractmethod
    async def receive(self, handle: Any) -> Message:
        """Wait for the next message, or raise once the connection has ended"""

    @abstractmethod
    def cancel(self, handle: Any, code: CloseCode = CloseCode.GOING_AWAY,
               reason: Optional[str] = None) -> None:
        """Close the connection; nothing is notified to the delegate afterwards"""


class MessageChannel:
    """
    Buffer of incoming messages shared by any number of concurrent receivers.

    Each message goes to exactly one receiver in arrival order. Once the
    channel is finished, buffered messages are still handed out and then
    every receiver gets the terminal failure. Loop-affine: call put and
    finish on the event loop thread only.
    """

    def __init__(self):
        self._messages = deque()
        self._waiters: List[asyncio.Future] = []
        self._failure: Optional[BaseException] = None

    @property
    def finished(self) -> bool:
        return self._failure is not None

    def __len__(self):
        return len(self._messages)

    def put(self, message: Message) -> None:
        if self._failure is None:
            self._messages.append(message)
            self._wake_waiters()

    def finish(self, failure: BaseException) -> None:
        if self._failure is None:
            self._failure = failure
            self._wake_waiters()

    def _wake_waiters(self):
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    async def get(self) -> Message:
        # A message is only taken off the buffer in the same step that
        # returns it, so cancelling a waiting receiver never drops one.
        while True:
            if self._messages:
                return self._messages.popleft()
            if self._failure is not None:
                raise self._failure

            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
