"""
Queue entry models and the queue status state machine.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import uuid


class CustomerType(Enum):
    NEW = "new"
    REGULAR = "regular"
    VIP = "vip"
    APPOINTMENT = "appointment"

    @classmethod
    def from_string(cls, value: str) -> "CustomerType":
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            return cls.REGULAR


class AssignmentMethod(Enum):
    """How the assigned employee was chosen."""
    MANUAL = "manual"
    AUTO = "auto"
    PREFERRED = "preferred"
    LOAD_BALANCED = "load_balanced"


class Priority(Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    EMERGENCY = "emergency"

    @classmethod
    def from_string(cls, value: str) -> "Priority":
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            return cls.NORMAL


class QueueStatus(Enum):
    """Lifecycle of a queue entry."""
    WAITING = "waiting"
    CALLED = "called"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"
    TRANSFERRED = "transferred"

    @property
    def is_active(self) -> bool:
        """Active entries count towards employee workload."""
        return self in ACTIVE_STATUSES


# Statuses that count towards workload
ACTIVE_STATUSES: FrozenSet[QueueStatus] = frozenset({
    QueueStatus.WAITING,
    QueueStatus.CALLED,
    QueueStatus.IN_PROGRESS,
})

# Statuses purged by the retention sweep
FINISHED_STATUSES: FrozenSet[QueueStatus] = frozenset({
    QueueStatus.COMPLETED,
    QueueStatus.NO_SHOW,
    QueueStatus.CANCELLED,
})

# Allowed edges. TRANSFERRED is reachable from every state and handled separately.
ALLOWED_TRANSITIONS: Dict[QueueStatus, FrozenSet[QueueStatus]] = {
    QueueStatus.WAITING: frozenset({QueueStatus.CALLED, QueueStatus.NO_SHOW, QueueStatus.CANCELLED}),
    QueueStatus.CALLED: frozenset({QueueStatus.IN_PROGRESS, QueueStatus.NO_SHOW, QueueStatus.CANCELLED}),
    QueueStatus.IN_PROGRESS: frozenset({QueueStatus.COMPLETED}),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.NO_SHOW: frozenset(),
    QueueStatus.CANCELLED: frozenset(),
    QueueStatus.TRANSFERRED: frozenset(),
}


def is_allowed_transition(current: QueueStatus, new: QueueStatus) -> bool:
    """Check a status edge. Re-applying the current status is always allowed."""
    if current == new:
        return True
    if new == QueueStatus.TRANSFERRED:
        return True
    return new in ALLOWED_TRANSITIONS[current]


class NotificationType(Enum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"


class NotificationStatus(Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class QueueNotification:
    """A notification triggered for a queue entry (delivery happens elsewhere)."""
    type: NotificationType
    message: str
    status: NotificationStatus = NotificationStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: datetime = field(default_factory=datetime.now)
    sent_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "message": self.message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "error": self.error,
        }


@dataclass
class EnqueueRequest:
    """
    Request to add a customer to a location's queue.

    Attributes:
        location_id: Target location
        customer_name: Customer display name
        services: Requested service names
        service_ids: Stable ids of the requested services (resolved from names if empty)
        assigned_employee_id: Manual assignment; skips the assignment engine
        preferred_employee_id: Customer's preferred employee
    """
    location_id: str
    customer_name: str
    services: List[str] = field(default_factory=list)
    service_ids: List[str] = field(default_factory=list)
    customer_phone: str = ""
    customer_email: Optional[str] = None
    customer_type: CustomerType = CustomerType.REGULAR
    priority: Priority = Priority.NORMAL
    assigned_employee_id: Optional[str] = None
    preferred_employee_id: Optional[str] = None
    special_requests: Optional[str] = None
    notes: Optional[str] = None
    checkin_id: Optional[str] = None
    joined_at: Optional[datetime] = None


@dataclass
class QueueEntry:
    """
    One customer's place in a location's queue.

    ``position`` is only meaningful while the entry is WAITING; it is None in
    every other status.
    """
    id: str
    location_id: str
    customer_name: str
    services: List[str]
    service_ids: List[str]
    joined_at: datetime
    customer_phone: str = ""
    customer_email: Optional[str] = None
    customer_type: CustomerType = CustomerType.REGULAR
    assigned_employee_id: Optional[str] = None
    assigned_employee_name: Optional[str] = None
    preferred_employee_id: Optional[str] = None
    suggested_employee_id: Optional[str] = None
    assignment_method: AssignmentMethod = AssignmentMethod.AUTO
    priority: Priority = Priority.NORMAL
    status: QueueStatus = QueueStatus.WAITING
    position: Optional[int] = None
    estimated_wait_time: int = 0  # minutes
    actual_wait_time: Optional[int] = None
    called_at: Optional[datetime] = None
    service_start_time: Optional[datetime] = None
    service_end_time: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notifications: List[QueueNotification] = field(default_factory=list)
    special_requests: Optional[str] = None
    notes: Optional[str] = None
    checkin_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def add_note(self, note: str) -> None:
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    def to_row(self) -> Dict[str, Any]:
        """Row for the ``queue_entries`` table of the persistence collaborator."""
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "location_id": self.location_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "customer_type": self.customer_type.value,
            "services": list(self.services),
            "service_ids": list(self.service_ids),
            "assigned_employee_id": self.assigned_employee_id,
            "assigned_employee_name": self.assigned_employee_name,
            "preferred_employee_id": self.preferred_employee_id,
            "assignment_method": self.assignment_method.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "position": self.position,
            "estimated_wait_time": self.estimated_wait_time,
            "actual_wait_time": self.actual_wait_time,
            "joined_at": iso(self.joined_at),
            "called_at": iso(self.called_at),
            "service_start_time": iso(self.service_start_time),
            "service_end_time": iso(self.service_end_time),
            "completed_at": iso(self.completed_at),
            "notifications": [n.to_dict() for n in self.notifications],
            "special_requests": self.special_requests,
            "notes": self.notes,
        }

    def __str__(self) -> str:
        where = f"#{self.position}" if self.position else self.status.value
        who = self.assigned_employee_name or "unassigned"
        return f"{self.customer_name} [{where}] {', '.join(self.services)} -> {who}"
