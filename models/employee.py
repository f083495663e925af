"""
Employee data model.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, List, Optional


WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


def weekday_key(target_date: date) -> str:
    """Locale-independent weekday name used as the schedule key."""
    return WEEKDAYS[target_date.weekday()]


class SkillLevel(Enum):
    """Per-service competency of an employee."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        """Ordering used for skill requirements: beginner < intermediate < expert."""
        return {
            SkillLevel.BEGINNER: 1,
            SkillLevel.INTERMEDIATE: 2,
            SkillLevel.EXPERT: 3,
        }[self]

    @classmethod
    def from_string(cls, value: str) -> "SkillLevel":
        """Convert string to SkillLevel enum (unknown values read as beginner)."""
        mapping = {
            "beginner": cls.BEGINNER,
            "junior": cls.BEGINNER,
            "intermediate": cls.INTERMEDIATE,
            "expert": cls.EXPERT,
            "senior": cls.EXPERT,
        }
        return mapping.get(str(value).lower().strip(), cls.BEGINNER)


class AvailabilityStatus(Enum):
    """Live availability of an employee."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    BREAK = "break"
    BUSY = "busy"


class PriorityHandling(Enum):
    """How strictly an employee follows queue priority."""
    STRICT = "strict"
    FLEXIBLE = "flexible"


@dataclass
class BreakWindow:
    """
    A break inside a working day.

    Attributes:
        start_time: Break start
        end_time: Break end
        kind: break, lunch or meeting
        is_recurring: Whether it repeats every working day
    """
    start_time: time
    end_time: time
    kind: str = "break"
    is_recurring: bool = True

    def contains(self, t: time) -> bool:
        """Check if a time of day falls inside the break."""
        return self.start_time <= t < self.end_time


@dataclass
class DaySchedule:
    """Working hours for one weekday."""
    is_working: bool = True
    start_time: time = time(9, 0)
    end_time: time = time(17, 0)
    break_times: List[BreakWindow] = field(default_factory=list)

    def is_on_break(self, t: time) -> bool:
        return any(b.contains(t) for b in self.break_times)


@dataclass
class EmployeePerformance:
    """
    Performance counters of an employee.

    ``current_workload`` is owned by the EmployeeDirectory and is always
    recomputed from the live queue entries.
    """
    average_service_time: float = 30.0  # minutes
    customers_served: int = 0
    customer_rating: float = 0.0
    current_workload: int = 0
    efficiency: float = 100.0  # percentage of on-time completions
    last_updated: datetime = field(default_factory=datetime.now)


@dataclass
class EmployeeAvailability:
    """Availability status with the time of the last change."""
    status: AvailabilityStatus = AvailabilityStatus.ACTIVE
    last_status_change: datetime = field(default_factory=datetime.now)
    current_customer_id: Optional[str] = None
    estimated_available_time: Optional[datetime] = None
    notes: str = ""


@dataclass
class QueueSettings:
    """Per-employee queue preferences."""
    max_queue_size: int = 5
    accept_new_customers: bool = True
    turn_sharing_enabled: bool = False
    turn_sharing_partners: List[str] = field(default_factory=list)
    priority_handling: PriorityHandling = PriorityHandling.FLEXIBLE
    break_schedule: List[BreakWindow] = field(default_factory=list)


def normalize_tag(value: str) -> str:
    """Lowercase, spaces to underscores, ampersands removed."""
    return value.lower().strip().replace(" ", "_").replace("&", "")


@dataclass
class Employee:
    """
    Employee model representing a staff member at a location.

    Attributes:
        id: Unique employee identifier
        location_id: Location the employee works at
        first_name: Given name
        last_name: Family name
        specialties: Free-text specialty tags (e.g. "haircut", "beard_trim")
        service_ids: Services the employee can perform
        skill_level: Map of service id to SkillLevel
        schedule: Map of weekday name to DaySchedule
        performance: Performance counters including current workload
        availability: Live availability status
        queue_settings: Queue preferences
        is_active: Whether the employee is employed and enabled
    """
    id: str
    location_id: str
    first_name: str
    last_name: str = ""
    email: str = ""
    phone: str = ""
    specialties: List[str] = field(default_factory=list)
    service_ids: List[str] = field(default_factory=list)
    skill_level: Dict[str, SkillLevel] = field(default_factory=dict)
    schedule: Dict[str, DaySchedule] = field(default_factory=dict)
    performance: EmployeePerformance = field(default_factory=EmployeePerformance)
    availability: EmployeeAvailability = field(default_factory=EmployeeAvailability)
    queue_settings: QueueSettings = field(default_factory=QueueSettings)
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        """Normalize loosely typed inputs."""
        self.skill_level = {
            service_id: level if isinstance(level, SkillLevel) else SkillLevel.from_string(level)
            for service_id, level in self.skill_level.items()
        }

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def workload(self) -> int:
        return self.performance.current_workload

    def skill_for(self, service_id: str) -> Optional[SkillLevel]:
        """Get the employee's skill level for a service, if any."""
        return self.skill_level.get(service_id)

    def meets_skill(self, service_id: str, required: SkillLevel) -> bool:
        """Check the employee's skill for a service meets or exceeds the requirement."""
        level = self.skill_for(service_id)
        return level is not None and level.rank >= required.rank

    def is_scheduled(self, target_date: date) -> bool:
        """Check if the employee works on a given day."""
        day = self.schedule.get(weekday_key(target_date))
        return day is not None and day.is_working

    def is_on_break(self, at: datetime) -> bool:
        """
        Check if a moment falls inside a scheduled break.

        Both the day's break times and the recurring queue break schedule count.
        """
        t = at.time()
        day = self.schedule.get(weekday_key(at.date()))
        if day is not None and day.is_on_break(t):
            return True
        return any(b.contains(t) for b in self.queue_settings.break_schedule if b.is_recurring)

    def has_capacity(self) -> bool:
        """Check if the employee's queue is below its maximum size."""
        max_size = self.queue_settings.max_queue_size
        return max_size <= 0 or self.workload < max_size

    def can_take_customers(self, at: datetime) -> bool:
        """
        Check if the employee may receive a new customer right now.

        Requires: active record, not on break or inactive, accepting customers,
        scheduled today, outside break windows and below max queue size.
        """
        if not self.is_active:
            return False
        if self.availability.status in (AvailabilityStatus.INACTIVE, AvailabilityStatus.BREAK):
            return False
        if not self.queue_settings.accept_new_customers:
            return False
        if not self.is_scheduled(at.date()):
            return False
        if self.is_on_break(at):
            return False
        return self.has_capacity()

    def matches_specialty(self, service_name: str) -> bool:
        """
        Loose match of a service name against the specialty tags.

        The service name is lowercased, spaces become underscores and ``&`` is
        stripped; a match is a substring in either direction.
        """
        wanted = normalize_tag(service_name)
        if not wanted:
            return False
        for specialty in self.specialties:
            tag = specialty.lower().strip()
            if tag and (tag in wanted or wanted in tag):
                return True
        return False

    def __str__(self) -> str:
        return (
            f"{self.full_name} ({self.availability.status.value}, "
            f"workload {self.workload}, rating {self.performance.customer_rating:.1f})"
        )

    def __hash__(self):
        return hash(self.id)

    def __eq__(self, other):
        if isinstance(other, Employee):
            return self.id == other.id
        return False


def full_week(start: time = time(9, 0), end: time = time(17, 0),
              days_off: Optional[List[str]] = None) -> Dict[str, DaySchedule]:
    """Build a weekly schedule working every day except ``days_off``."""
    days_off = [d.lower() for d in (days_off or [])]
    return {
        day: DaySchedule(is_working=day not in days_off, start_time=start, end_time=end)
        for day in WEEKDAYS
    }
