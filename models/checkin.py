"""
Check-in models.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import math

from .queue_entry import CustomerType


EARTH_RADIUS_M = 6371e3


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair, optionally with a reported accuracy in meters."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None

    def distance_to(self, other: "Coordinates") -> float:
        """Great-circle (haversine) distance in meters."""
        phi1 = math.radians(self.latitude)
        phi2 = math.radians(other.latitude)
        d_phi = math.radians(other.latitude - self.latitude)
        d_lambda = math.radians(other.longitude - self.longitude)

        a = (math.sin(d_phi / 2) ** 2
             + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return EARTH_RADIUS_M * c

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


class CheckinType(Enum):
    REMOTE = "remote"
    IN_STORE = "in_store"


class CheckinStatus(Enum):
    EN_ROUTE = "en_route"
    PRESENT = "present"
    IN_QUEUE = "in_queue"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses whose records are purged after the retention window
TERMINAL_CHECKIN_STATUSES: FrozenSet[CheckinStatus] = frozenset({
    CheckinStatus.EXPIRED,
    CheckinStatus.CANCELLED,
    CheckinStatus.IN_QUEUE,
})


class VerificationMethod(Enum):
    GEOLOCATION = "geolocation"
    WIFI = "wifi"
    MANUAL = "manual"
    STAFF_CONFIRMED = "staff_confirmed"


@dataclass
class VerificationResult:
    """Outcome of a presence check, kept for audit."""
    verified: bool
    method: VerificationMethod
    distance_m: Optional[float] = None
    reason: str = ""
    attempts: List[str] = field(default_factory=list)


@dataclass
class CheckinEntry:
    """
    A pre-arrival (remote) or arrival (in-store) declaration.

    Attributes:
        checkin_code: 6-character token, unique among active check-ins
        estimated_arrival_time: Expected arrival of a remote check-in
        actual_arrival_time: Stamped when the customer is marked present
    """
    id: str
    location_id: str
    customer_name: str
    services: List[str]
    checkin_type: CheckinType
    checkin_code: str
    checkin_time: datetime
    status: CheckinStatus = CheckinStatus.EN_ROUTE
    service_ids: List[str] = field(default_factory=list)
    customer_phone: str = ""
    customer_email: Optional[str] = None
    customer_type: CustomerType = CustomerType.REGULAR
    preferred_employee_id: Optional[str] = None
    estimated_arrival_time: Optional[datetime] = None
    actual_arrival_time: Optional[datetime] = None
    verification_method: Optional[VerificationMethod] = None
    coordinates: Optional[Coordinates] = None
    special_requests: Optional[str] = None
    notes: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CHECKIN_STATUSES

    def to_row(self) -> Dict[str, Any]:
        """Row for the ``checkin_entries`` table of the persistence collaborator."""
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
            "preferred_employee_id": self.preferred_employee_id,
            "checkin_type": self.checkin_type.value,
            "status": self.status.value,
            "checkin_code": self.checkin_code,
            "checkin_time": iso(self.checkin_time),
            "estimated_arrival_time": iso(self.estimated_arrival_time),
            "actual_arrival_time": iso(self.actual_arrival_time),
            "verification_method": self.verification_method.value if self.verification_method else None,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "special_requests": self.special_requests,
            "notes": self.notes,
        }

    def __str__(self) -> str:
        return f"{self.checkin_code} {self.customer_name} ({self.checkin_type.value}, {self.status.value})"
