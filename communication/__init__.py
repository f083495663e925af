"""
Communication module for engine events.
"""
from .message import Event, EventType
from .message_bus import MessageBus, Subscription

__all__ = ["Event", "EventType", "MessageBus", "Subscription"]
