"""
Data models for the queue orchestration engine.
"""
from .employee import (
    Employee,
    SkillLevel,
    AvailabilityStatus,
    PriorityHandling,
    BreakWindow,
    DaySchedule,
    EmployeePerformance,
    EmployeeAvailability,
    QueueSettings,
    full_week,
)
from .service import Service, AutoAssignmentRules
from .location import Location, LocationSettings, create_demo_location
from .queue_entry import (
    QueueEntry,
    QueueStatus,
    CustomerType,
    Priority,
    AssignmentMethod,
    QueueNotification,
    NotificationType,
    NotificationStatus,
    EnqueueRequest,
    ACTIVE_STATUSES,
)
from .checkin import (
    CheckinEntry,
    CheckinType,
    CheckinStatus,
    Coordinates,
    VerificationMethod,
    VerificationResult,
)
from .rules import (
    QueueControlRule,
    RuleType,
    RuleCondition,
    RuleAction,
    ConditionOperator,
    ActionType,
    SystemAlert,
    AlertType,
    AlertSeverity,
)
from .stats import QueueStats, EmployeeUtilization

__all__ = [
    "Employee", "SkillLevel", "AvailabilityStatus", "PriorityHandling",
    "BreakWindow", "DaySchedule", "EmployeePerformance", "EmployeeAvailability",
    "QueueSettings", "full_week",
    "Service", "AutoAssignmentRules",
    "Location", "LocationSettings", "create_demo_location",
    "QueueEntry", "QueueStatus", "CustomerType", "Priority", "AssignmentMethod",
    "QueueNotification", "NotificationType", "NotificationStatus",
    "EnqueueRequest", "ACTIVE_STATUSES",
    "CheckinEntry", "CheckinType", "CheckinStatus", "Coordinates",
    "VerificationMethod", "VerificationResult",
    "QueueControlRule", "RuleType", "RuleCondition", "RuleAction",
    "ConditionOperator", "ActionType", "SystemAlert", "AlertType", "AlertSeverity",
    "QueueStats", "EmployeeUtilization",
]
