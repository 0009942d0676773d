"""Shared fixtures: an in-memory transport, a private event bus and a local echo server."""

import os

# Keep test runs from writing ./logs
os.environ.setdefault("ENABLE_FILE_LOGGING", "false")

import pytest
import pytest_asyncio
from websockets.asyncio.server import serve

from core import ConnectionManager
from events import EventBus
from tests.fakes import FakeTransport


@pytest.fixture
def bus():
    bus = EventBus(max_history=100)
    yield bus
    bus.shutdown()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def manager(transport, bus):
    manager = ConnectionManager(transport=transport, event_bus=bus)
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def connected(manager, transport):
    """Manager whose handshake has completed"""
    manager.connect("ws://127.0.0.1:3000/web_socket", "GET")
    manager.notify_opened(transport.handle, None)
    await manager.drain_notifications()
    return manager


async def echo_handler(connection):
    """Echoes every message; 'close-me' closes with 1008, 'drop-me' drops the TCP connection"""
    async for message in connection:
        if message == "close-me":
            await connection.close(1008, "policy")
            return
        if message == "drop-me":
            connection.transport.abort()
            return
        await connection.send(message)


@pytest_asyncio.fixture
async def echo_url():
    async with serve(echo_handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        yield f"ws://127.0.0.1:{port}/web_socket"


@pytest_asyncio.fixture
async def uncancellable(bus):
    """Connected manager whose transport receives keep waiting through task cancellation"""
    transport = FakeTransport(ignore_cancellation=True)
    manager = ConnectionManager(transport=transport, event_bus=bus)
    manager.connect("ws://127.0.0.1:3000/web_socket", "GET")
    manager.notify_opened(transport.handle, None)
    await manager.drain_notifications()
    yield manager, transport
    for future in transport.pending():
        future.cancel()
    await manager.close()
