"""
Queue control rules and system alerts.

Rules are pure data: AND-combined conditions over a small set of typed
context fields, and a list of actions. Combinations that cannot be evaluated
are rejected when the rule is built, so evaluation itself never raises.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import uuid

from errors import RuleDefinitionError


class RuleType(Enum):
    """Categories of queue control rules."""
    LOAD_BALANCING = "load_balancing"
    PRIORITY_OVERRIDE = "priority_override"
    SERVICE_LIMIT = "service_limit"
    EMERGENCY_PROTOCOL = "emergency_protocol"

    @classmethod
    def from_string(cls, value: str) -> "RuleType":
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise RuleDefinitionError(f"Unknown rule type '{value}'", {"type": value})


class ConditionOperator(Enum):
    EQUALS = "equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN_RANGE = "in_range"

    @classmethod
    def from_string(cls, value: str) -> "ConditionOperator":
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise RuleDefinitionError(f"Unknown operator '{value}'", {"operator": value})


class ActionType(Enum):
    REASSIGN_EMPLOYEE = "reassign_employee"
    ADJUST_PRIORITY = "adjust_priority"
    SEND_NOTIFICATION = "send_notification"
    LIMIT_SERVICE = "limit_service"
    EMERGENCY_OVERRIDE = "emergency_override"

    @classmethod
    def from_string(cls, value: str) -> "ActionType":
        try:
            return cls(str(value).lower().strip())
        except ValueError:
            raise RuleDefinitionError(f"Unknown action type '{value}'", {"action": value})


# Context field kinds
NUMBER = "number"
TEXT = "text"
LIST = "list"
FLAG = "flag"

KNOWN_CONTEXT_FIELDS: Dict[str, str] = {
    "queue_length": NUMBER,
    "queue_imbalance": NUMBER,
    "max_workload": NUMBER,
    "min_workload": NUMBER,
    "available_employees": NUMBER,
    "wait_time": NUMBER,
    "average_wait_time": NUMBER,
    "service_count": NUMBER,
    "hour_of_day": NUMBER,
    "customer_type": TEXT,
    "priority": TEXT,
    "day_of_week": TEXT,
    "service_type": LIST,
    "emergency_mode": FLAG,
}

OPERATORS_BY_KIND: Dict[str, frozenset] = {
    NUMBER: frozenset({
        ConditionOperator.EQUALS,
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.IN_RANGE,
    }),
    TEXT: frozenset({ConditionOperator.EQUALS}),
    LIST: frozenset({ConditionOperator.CONTAINS}),
    FLAG: frozenset({ConditionOperator.EQUALS}),
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True)
class RuleCondition:
    """
    One ``field operator value`` test against the evaluation context.

    Raises:
        RuleDefinitionError: If the field is unknown, the operator does not
            apply to the field's kind, or the value has the wrong shape
    """
    field: str
    operator: ConditionOperator
    value: Any

    def __post_init__(self):
        if not isinstance(self.operator, ConditionOperator):
            object.__setattr__(self, "operator", ConditionOperator.from_string(self.operator))
        self._validate()

    def _validate(self) -> None:
        kind = KNOWN_CONTEXT_FIELDS.get(self.field)
        if kind is None:
            raise RuleDefinitionError(
                f"Unknown context field '{self.field}'",
                {"field": self.field, "known": sorted(KNOWN_CONTEXT_FIELDS)},
            )
        if self.operator not in OPERATORS_BY_KIND[kind]:
            raise RuleDefinitionError(
                f"Operator '{self.operator.value}' does not apply to {kind} field '{self.field}'",
                {"field": self.field, "operator": self.operator.value},
            )

        if self.operator == ConditionOperator.IN_RANGE:
            if (not isinstance(self.value, (list, tuple)) or len(self.value) != 2
                    or not all(_is_number(v) for v in self.value)
                    or self.value[0] > self.value[1]):
                raise RuleDefinitionError(
                    f"in_range on '{self.field}' needs [min, max]",
                    {"field": self.field, "value": self.value},
                )
        elif kind == NUMBER and not _is_number(self.value):
            raise RuleDefinitionError(
                f"Field '{self.field}' compares against a number",
                {"field": self.field, "value": self.value},
            )
        elif kind == FLAG and not isinstance(self.value, bool):
            raise RuleDefinitionError(
                f"Field '{self.field}' compares against true/false",
                {"field": self.field, "value": self.value},
            )

    def evaluate(self, context: Dict[str, Any]) -> bool:
        """
        Test the condition. A missing or mistyped context value fails the
        condition instead of raising.
        """
        if self.field not in context:
            return False
        actual = context[self.field]

        try:
            if self.operator == ConditionOperator.EQUALS:
                return actual == self.value
            if self.operator == ConditionOperator.GREATER_THAN:
                return _is_number(actual) and actual > self.value
            if self.operator == ConditionOperator.LESS_THAN:
                return _is_number(actual) and actual < self.value
            if self.operator == ConditionOperator.CONTAINS:
                return isinstance(actual, (list, tuple, set, frozenset)) and self.value in actual
            if self.operator == ConditionOperator.IN_RANGE:
                low, high = self.value
                return _is_number(actual) and low <= actual <= high
        except TypeError:
            return False
        return False

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator.value, "value": self.value}


# Required parameter names per action type
_ACTION_REQUIRED_PARAMS: Dict[ActionType, Sequence[str]] = {
    ActionType.REASSIGN_EMPLOYEE: (),
    ActionType.ADJUST_PRIORITY: ("priority",),
    ActionType.SEND_NOTIFICATION: (),
    ActionType.LIMIT_SERVICE: ("max_services",),
    ActionType.EMERGENCY_OVERRIDE: (),
}

_PRIORITY_VALUES = frozenset({"low", "normal", "high", "urgent", "emergency"})


@dataclass(frozen=True)
class RuleAction:
    """An action contributed by a matching rule."""
    type: ActionType
    parameters: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.type, ActionType):
            object.__setattr__(self, "type", ActionType.from_string(self.type))

        missing = [p for p in _ACTION_REQUIRED_PARAMS[self.type] if p not in self.parameters]
        if missing:
            raise RuleDefinitionError(
                f"Action '{self.type.value}' is missing parameters: {', '.join(missing)}",
                {"action": self.type.value, "missing": missing},
            )
        if self.type == ActionType.ADJUST_PRIORITY:
            if str(self.parameters["priority"]).lower() not in _PRIORITY_VALUES:
                raise RuleDefinitionError(
                    f"Unknown priority '{self.parameters['priority']}'",
                    {"action": self.type.value},
                )
        if self.type == ActionType.LIMIT_SERVICE:
            limit = self.parameters["max_services"]
            if not _is_number(limit) or limit < 1:
                raise RuleDefinitionError(
                    "max_services must be a positive number",
                    {"action": self.type.value, "max_services": limit},
                )

    def to_dict(self) -> dict:
        return {"type": self.type.value, "parameters": dict(self.parameters)}


@dataclass
class QueueControlRule:
    """
    A declarative queue automation rule.

    Attributes:
        id: Rule identifier
        location_id: Location the rule applies to
        name: Display name
        type: Rule category
        conditions: AND-combined conditions (an empty list always matches)
        actions: Actions contributed when all conditions pass
        priority: Evaluation order, lower runs first
        is_active: Inactive rules are never evaluated
    """
    id: str
    location_id: str
    name: str
    type: RuleType
    conditions: List[RuleCondition] = field(default_factory=list)
    actions: List[RuleAction] = field(default_factory=list)
    priority: int = 1
    is_active: bool = True
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.type, RuleType):
            self.type = RuleType.from_string(self.type)
        if not self.actions:
            raise RuleDefinitionError(f"Rule '{self.name}' has no actions", {"rule_id": self.id})

    def matches(self, context: Dict[str, Any]) -> bool:
        return all(c.evaluate(context) for c in self.conditions)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueControlRule":
        """
        Build a rule from loosely typed data (e.g. a stored row).

        Raises:
            RuleDefinitionError: On any unknown field/operator/action
        """
        conditions = [
            RuleCondition(field=c["field"], operator=c["operator"], value=c.get("value"))
            for c in data.get("conditions", [])
        ]
        actions = [
            RuleAction(type=a["type"], parameters=dict(a.get("parameters", {})))
            for a in data.get("actions", [])
        ]
        return cls(
            id=str(data.get("id") or str(uuid.uuid4())[:8]),
            location_id=str(data["location_id"]),
            name=data.get("name", ""),
            type=data.get("type", RuleType.LOAD_BALANCING.value),
            conditions=conditions,
            actions=actions,
            priority=int(data.get("priority", 1)),
            is_active=bool(data.get("is_active", True)),
            description=data.get("description", ""),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "name": self.name,
            "type": self.type.value,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority,
            "is_active": self.is_active,
        }

    def __str__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"[P{self.priority}] {self.name} ({self.type.value}, {state})"


# ============================================================================
# ALERTS
# ============================================================================

class AlertType(Enum):
    QUEUE_OVERFLOW = "queue_overflow"
    EMPLOYEE_UNAVAILABLE = "employee_unavailable"
    LONG_WAIT = "long_wait"
    SYSTEM_ERROR = "system_error"
    EMERGENCY = "emergency"


class AlertSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class SystemAlert:
    """
    An observational alert. Append-only until resolved.
    """
    location_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    created_at: datetime = field(default_factory=datetime.now)
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def resolve(self, at: datetime, by: Optional[str] = None) -> None:
        """Mark resolved. Resolving twice keeps the first timestamp."""
        if self.is_resolved:
            return
        self.is_resolved = True
        self.resolved_at = at
        self.resolved_by = by

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "location_id": self.location_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
            "is_resolved": self.is_resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "metadata": dict(self.metadata),
        }

    def __str__(self) -> str:
        severity_emoji = {
            AlertSeverity.CRITICAL: "🔴",
            AlertSeverity.HIGH: "🟠",
            AlertSeverity.MEDIUM: "🟡",
            AlertSeverity.LOW: "🟢",
        }[self.severity]
        return f"{severity_emoji} [{self.type.value.upper()}] {self.title}: {self.message}"
