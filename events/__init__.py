"""
Connection events published for observers.

The manager and its state machine emit on the global ``event_bus`` unless
given their own bus. Every event type lives under the ``connection.``
namespace, see ``EventTypes``.
"""

from .event_bus import EventBus, EventTypes, SystemEvent, event_bus

CONNECTION_EVENT_TYPES = tuple(
    value for name, value in vars(EventTypes).items() if name.startswith("CONNECTION_")
)

__all__ = ["EventBus", "EventTypes", "SystemEvent", "event_bus", "CONNECTION_EVENT_TYPES"]
