#!/usr/bin/env python3
"""
Console driver - connects to the configured endpoint, streams incoming
messages and sends every line typed on stdin
"""

import asyncio
import sys
import threading
from typing import Optional

from config import SERVER_CONFIG, TRANSPORT_CONFIG, LOGGING_CONFIG, get_endpoint_url
from core.logging_config import setup_logging, get_logger
from core.config_validator import validate_startup_config, ConfigValidationError
from core import ConnectionManager, ConnectionState, ConnectionManagerError, error_message
from events import event_bus, EventTypes, CONNECTION_EVENT_TYPES
from transport import create_transport, TransportError

COMMANDS = {
    "/recv": "receive a single message",
    "/stream": "start streaming messages",
    "/stop": "stop streaming messages",
    "/bytes <text>": "send text as a binary message",
    "/state": "show connection statistics",
    "/events": "show connection event counts",
    "/quit": "disconnect and exit",
}


class ConsoleClient:
    """Line-oriented front end for a ConnectionManager"""

    def __init__(self, url: str, method: str, transport=None, stdin=None, bus=None):
        self.logger = get_logger(__name__)
        self.url = url
        self.method = method
        self.stdin = stdin or sys.stdin
        self.bus = bus or event_bus
        self.manager = ConnectionManager(
            transport=transport or create_transport(TRANSPORT_CONFIG["backend"], TRANSPORT_CONFIG),
            event_bus=self.bus
        )
        self.closed = asyncio.Event()
        self._receives = set()

        self.bus.on(EventTypes.CONNECTION_MESSAGE_RECEIVED, self._print_message)
        self.bus.on(EventTypes.CONNECTION_ERROR, self._print_error)

    def _print_message(self, event):
        data = event.data
        if data["kind"] == "text":
            print(f"<<< {data['preview']}")
        else:
            print(f"<<< binary message of {data['size']} bytes")

    def _print_error(self, event):
        print(f"!!! {event.data['message']}")

    def _on_state_change(self, old_state: ConnectionState, new_state: ConnectionState):
        print(f"--- {old_state.value} -> {new_state.value}")
        if new_state == ConnectionState.NOT_CONNECTED:
            self.closed.set()

    def _read_lines(self, loop: asyncio.AbstractEventLoop, lines: asyncio.Queue):
        """Feed stdin lines to the event loop; None marks end of input"""
        for line in iter(self.stdin.readline, ""):
            try:
                loop.call_soon_threadsafe(lines.put_nowait, line)
            except RuntimeError:
                # Event loop already closed
                return
        try:
            loop.call_soon_threadsafe(lines.put_nowait, None)
        except RuntimeError:
            pass

    async def _next_line(self, lines: asyncio.Queue) -> Optional[str]:
        """Next input line, or None at end of input or once the connection is gone"""
        getter = asyncio.ensure_future(lines.get())
        closed = asyncio.ensure_future(self.closed.wait())
        done = set()
        try:
            done, _ = await asyncio.wait({getter, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (getter, closed):
                if waiter not in done:
                    waiter.cancel()
        return getter.result() if getter in done else None

    async def run(self):
        self.manager.add_state_listener(self._on_state_change)
        self.manager.connect(self.url, self.method)
        print(f"Connecting to {self.url}. Commands: " +
              ", ".join(f"{cmd} ({help_text})" for cmd, help_text in COMMANDS.items()))

        # Daemon thread: a readline still blocked at exit must not hold up shutdown
        lines = asyncio.Queue()
        threading.Thread(target=self._read_lines, args=(asyncio.get_running_loop(), lines),
                         daemon=True, name="StdinReader").start()

        try:
            while not self.closed.is_set():
                line = await self._next_line(lines)
                if line is None:
                    break
                if not await self.handle_line(line.rstrip("\n")):
                    break
        finally:
            await self.manager.close()
            self.bus.off(EventTypes.CONNECTION_MESSAGE_RECEIVED, self._print_message)
            self.bus.off(EventTypes.CONNECTION_ERROR, self._print_error)

    async def handle_line(self, line: str) -> bool:
        """Run one command; returns False when the client should exit"""
        try:
            if line == "/quit":
                return False
            elif line == "/recv":
                # Runs in the background so the prompt stays usable while waiting
                task = asyncio.create_task(self.manager.receive_single())
                self._receives.add(task)
                task.add_done_callback(self._receive_done)
            elif line == "/stream":
                self.manager.start_receiving()
            elif line == "/stop":
                self.manager.stop_receiving()
            elif line == "/state":
                print(self.manager.get_stats())
            elif line == "/events":
                counts = self.bus.get_stats()["event_counts"]
                for event_type in CONNECTION_EVENT_TYPES:
                    print(f"{event_type}: {counts.get(event_type, 0)}")
            elif line.startswith("/bytes "):
                await self.manager.send(line[len("/bytes "):].encode("utf-8"))
            elif line:
                await self.manager.send(line)
        except ConnectionManagerError as e:
            print(f"!!! {error_message(e)}")
        except (TransportError, OSError) as e:
            self.logger.error(f"Send failed: {error_message(e)}")
        return True

    def _receive_done(self, task: asyncio.Task):
        self._receives.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.warning(f"Single receive failed: {error_message(error)}")


def main():
    try:
        validate_startup_config()
    except ConfigValidationError as e:
        print(f"Configuration validation failed: {e}")
        sys.exit(1)

    setup_logging(LOGGING_CONFIG)
    logger = get_logger(__name__)

    url = sys.argv[1] if len(sys.argv) > 1 else get_endpoint_url()
    method = sys.argv[2] if len(sys.argv) > 2 else SERVER_CONFIG["http_method"]
    logger.info("Starting console client", extra={"extra_data": {
        "url": url, "transport": TRANSPORT_CONFIG["backend"]
    }})

    client = ConsoleClient(url, method)
    try:
        asyncio.run(client.run())
    except KeyboardInterrupt:
        print("\nShutting down...")
    except ConnectionManagerError as e:
        logger.error(f"Could not start: {error_message(e)}")
        sys.exit(1)
    finally:
        event_bus.shutdown()


if __name__ == "__main__":
    main()
