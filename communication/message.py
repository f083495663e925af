"""
Event protocol for the queue orchestration engine.
Defines the events published on the location-keyed event bus.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid


class EventType(Enum):
    """Named events emitted by the engine."""

    # Queue ledger
    QUEUE_ENTRY_ADDED = "queue.entry.added"
    QUEUE_ENTRY_UPDATED = "queue.entry.updated"
    QUEUE_ENTRY_REMOVED = "queue.entry.removed"
    QUEUE_REBALANCE_NEEDED = "queue.rebalance_needed"

    # Check-in manager
    CHECKIN_ADDED = "checkin.added"
    CHECKIN_UPDATED = "checkin.updated"
    CHECKIN_CONVERTED = "checkin.converted"   # Hand-off to the queue ledger

    # Employee directory
    EMPLOYEE_AVAILABILITY_CHANGED = "employee.availability.changed"

    # Alerts / emergency
    SYSTEM_ALERT = "system.alert"
    EMERGENCY_ACTIVATED = "emergency.activated"
    EMERGENCY_DEACTIVATED = "emergency.deactivated"


@dataclass
class Event:
    """
    An event published on the bus.

    Attributes:
        event_type: Type of the event
        sender: Name of the publishing service
        location_id: Location the event concerns (channel key)
        entity_id: Id of the affected entry/check-in/employee/alert
        payload: Event data (diff or full record)
        correlation_id: ID to track related events
        timestamp: When the event was created
    """
    event_type: EventType
    sender: str
    location_id: Optional[str]
    entity_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    timestamp: datetime = field(default_factory=datetime.now)

    def preview(self, limit: int = 120) -> str:
        text = str(self.payload)
        if len(text) > limit:
            text = text[:limit] + "..."
        return text

    def __str__(self) -> str:
        return (
            f"[{self.timestamp.strftime('%H:%M:%S')}] "
            f"{self.sender} → {self.location_id or 'ALL'} "
            f"({self.event_type.value}) {self.entity_id or ''}: {self.preview(100)}"
        )

    def to_dict(self) -> dict:
        """Convert event to dictionary for logging/serialization."""
        return {
            "event_type": self.event_type.value,
            "sender": self.sender,
            "location_id": self.location_id,
            "entity_id": self.entity_id,
            "payload": self.payload,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp.isoformat(),
        }
