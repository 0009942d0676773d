"""Tests for transport.websockets_transport against a local echo server."""

import asyncio

import pytest

from core import (
    CloseCode,
    ConnectionClosedError,
    ConnectionManager,
    ConnectionState,
    error_message,
    is_expected_disconnect,
)
from tests.fakes import RecordingDelegate, wait_until
from transport import TransportError, TransportNotConnectedError, WebSocketsTransport

REFUSED_URL = "ws://127.0.0.1:1/web_socket"


@pytest.fixture
def ws_transport():
    return WebSocketsTransport(open_timeout=2.0, close_timeout=1.0, ping_interval=0)


@pytest.fixture
def delegate():
    return RecordingDelegate()


class TestWebSocketsTransport:

    @pytest.mark.asyncio
    async def test_echo_text_and_binary(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)
        await wait_until(lambda: delegate.opened)
        assert delegate.opened == [(handle, None)]

        await ws_transport.send(handle, "hello")
        assert await ws_transport.receive(handle) == "hello"

        await ws_transport.send(handle, b"\x00\xff")
        assert await ws_transport.receive(handle) == b"\x00\xff"

        ws_transport.cancel(handle)

    @pytest.mark.asyncio
    async def test_send_waits_for_handshake(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)

        await ws_transport.send(handle, "early")

        assert await asyncio.wait_for(ws_transport.receive(handle), timeout=5.0) == "early"
        ws_transport.cancel(handle)

    @pytest.mark.asyncio
    async def test_peer_close_is_notified(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)
        await wait_until(lambda: delegate.opened)

        await ws_transport.send(handle, "close-me")
        await wait_until(lambda: delegate.closed)

        assert delegate.closed == [(handle, CloseCode.POLICY_VIOLATION, b"policy")]
        with pytest.raises(TransportNotConnectedError) as exc_info:
            await ws_transport.receive(handle)
        assert is_expected_disconnect(exc_info.value)

    @pytest.mark.asyncio
    async def test_lost_connection_is_abnormal_closure(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)
        await wait_until(lambda: delegate.opened)

        await ws_transport.send(handle, "drop-me")
        await wait_until(lambda: delegate.closed)

        assert delegate.closed == [(handle, CloseCode.ABNORMAL_CLOSURE, None)]

    @pytest.mark.asyncio
    async def test_cancel_is_silent(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)
        await wait_until(lambda: delegate.opened)

        ws_transport.cancel(handle)
        ws_transport.cancel(handle)

        with pytest.raises(TransportNotConnectedError):
            await ws_transport.receive(handle)
        with pytest.raises(TransportNotConnectedError):
            await ws_transport.send(handle, "too late")
        await asyncio.sleep(0.2)
        assert delegate.closed == []
        assert delegate.failed == []

    @pytest.mark.asyncio
    async def test_cancel_during_handshake(self, ws_transport, delegate, echo_url) -> None:
        handle = ws_transport.open(echo_url, "GET", delegate)
        ws_transport.cancel(handle)

        with pytest.raises(TransportNotConnectedError):
            await ws_transport.receive(handle)
        await asyncio.sleep(0.2)
        assert delegate.opened == []
        assert delegate.failed == []

    @pytest.mark.asyncio
    async def test_refused_connection_fails(self, ws_transport, delegate) -> None:
        handle = ws_transport.open(REFUSED_URL, "GET", delegate)

        await wait_until(lambda: delegate.failed)

        failed_handle, error = delegate.failed[0]
        assert failed_handle is handle
        assert isinstance(error, TransportError)
        assert not is_expected_disconnect(error)
        with pytest.raises(TransportError):
            await ws_transport.receive(handle)


class TestManagerOverWebSockets:
    """The manager driving a real connection end to end"""

    @pytest.mark.asyncio
    async def test_session(self, ws_transport, echo_url, bus) -> None:
        manager = ConnectionManager(transport=ws_transport, event_bus=bus)
        manager.connect(echo_url)
        await wait_until(lambda: manager.connection_state == ConnectionState.CONNECTED)

        await manager.send("ping")
        assert await asyncio.wait_for(manager.receive_single(), timeout=5.0) == "ping"

        manager.start_receiving()
        await manager.send(b"\x01")
        await wait_until(lambda: manager.message == b"\x01")

        await manager.send("close-me")
        await wait_until(lambda: manager.connection_state == ConnectionState.NOT_CONNECTED)

        assert isinstance(manager.error, ConnectionClosedError)
        assert error_message(manager.error) == (
            "Connection Closed With Error. Code: policyViolation. Reason: policy"
        )
        assert manager.is_streaming is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_refused_connection(self, ws_transport, bus) -> None:
        manager = ConnectionManager(transport=ws_transport, event_bus=bus)
        manager.connect(REFUSED_URL)
        assert manager.connection_state == ConnectionState.CONNECTING

        await wait_until(lambda: manager.connection_state == ConnectionState.NOT_CONNECTED)

        assert isinstance(manager.error, TransportError)
        await manager.close()
