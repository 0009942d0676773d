"""
Central event bus for broadcasting connection events to observers
"""

import time
import threading
import logging
from typing import Dict, Any, List, Callable, Optional
from queue import Queue, Empty
from collections import defaultdict
from datetime import datetime
import uuid

from config import EVENT_BUS_CONFIG

logger = logging.getLogger(__name__)


class SystemEvent:
    """Represents a system event"""

    def __init__(self, event_type: str, data: Dict[str, Any], source: str = None):
        self.id = str(uuid.uuid4())
        self.type = event_type
        self.data = data
        self.source = source or "system"
        self.timestamp = time.time()
        self.datetime = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary"""
        return {
            "id": self.id,
            "type": self.type,
            "data": self.data,
            "source": self.source,
            "timestamp": self.timestamp,
            "datetime": self.datetime
        }


class EventBus:
    """Event bus that delivers events to listeners on its own thread"""

    def __init__(self, max_history: int = 1000):
        self.listeners: Dict[str, List[Callable]] = defaultdict(list)
        self.event_queue = Queue()
        self.event_history: List[SystemEvent] = []
        self.max_history = max_history
        self._running = True
        self._processor_thread = threading.Thread(target=self._process_events, daemon=True,
                                                  name="EventBusThread")
        self._processor_thread.start()

        # Performance metrics
        self.event_counts = defaultdict(int)
        self.processing_times = defaultdict(list)

    def emit(self, event_type: str, data: Dict[str, Any], source: str = None):
        """Emit an event to the bus"""
        event = SystemEvent(event_type, data, source)
        self.event_queue.put(event)

    def on(self, event_type: str, callback: Callable[[SystemEvent], None]):
        """Register a listener for specific event type"""
        self.listeners[event_type].append(callback)

    def on_all(self, callback: Callable[[SystemEvent], None]):
        """Register a listener for all events"""
        self.listeners["*"].append(callback)

    def off(self, event_type: str, callback: Callable[[SystemEvent], None]):
        """Remove a listener"""
        if callback in self.listeners[event_type]:
            self.listeners[event_type].remove(callback)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every emitted event has been dispatched"""
        deadline = None if timeout is None else time.time() + timeout
        while self.event_queue.unfinished_tasks:
            if deadline is not None and time.time() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def _process_events(self):
        """Process events from the queue"""
        while self._running:
            try:
                event = self.event_queue.get(timeout=0.1)
            except Empty:
                continue

            try:
                self._dispatch(event)
            except Exception as e:
                logger.error(f"Error processing event: {e}", exc_info=True)
            finally:
                self.event_queue.task_done()

    def _dispatch(self, event: SystemEvent):
        start_time = time.time()
        self.event_counts[event.type] += 1

        self.event_history.append(event)
        if len(self.event_history) > self.max_history:
            self.event_history.pop(0)

        # Notify specific listeners
        for listener in list(self.listeners.get(event.type, [])):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in event listener for {event.type}: {e}", exc_info=True)

        # Notify wildcard listeners
        for listener in list(self.listeners.get("*", [])):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in wildcard event listener: {e}", exc_info=True)

        processing_time = time.time() - start_time
        self.processing_times[event.type].append(processing_time)
        if len(self.processing_times[event.type]) > 100:
            self.processing_times[event.type].pop(0)

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics"""
        stats = {
            "total_events": sum(self.event_counts.values()),
            "event_counts": dict(self.event_counts),
            "queue_size": self.event_queue.qsize(),
            "history_size": len(self.event_history),
            "listener_counts": {
                event_type: len(listeners)
                for event_type, listeners in self.listeners.items()
            }
        }

        avg_times = {}
        for event_type, times in self.processing_times.items():
            if times:
                avg_times[event_type] = sum(times) / len(times)
        stats["avg_processing_times"] = avg_times

        return stats

    def get_recent_events(self, count: int = 50, event_type: str = None) -> List[Dict[str, Any]]:
        """Get recent events from history"""
        events = self.event_history[-count:]

        if event_type:
            events = [e for e in events if e.type == event_type]

        return [e.to_dict() for e in events]

    def shutdown(self):
        """Shutdown the event bus"""
        self._running = False
        if self._processor_thread.is_alive():
            self._processor_thread.join(timeout=2.0)


# Global event bus instance
event_bus = EventBus(max_history=EVENT_BUS_CONFIG["max_history"])


# Event type constants
class EventTypes:
    # Connection lifecycle
    CONNECTION_STATE_CHANGED = "connection.state_changed"
    CONNECTION_ERROR = "connection.error"

    # Message traffic
    CONNECTION_MESSAGE_RECEIVED = "connection.message_received"
    CONNECTION_MESSAGE_SENT = "connection.message_sent"

    # Streaming receive loop
    CONNECTION_RECEIVING_STARTED = "connection.receiving_started"
    CONNECTION_RECEIVING_STOPPED = "connection.receiving_stopped"
