"""
Rule Engine - Load balancing, priority overrides and emergency protocol.

Rules are data. For a location, active rules run in ascending priority and
every rule whose conditions all pass contributes its actions, so callers get
the combined actions in order. A standing load-balance check runs alongside
the rule table.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from communication.message import EventType
from communication.message_bus import MessageBus
from engine.alerts import AlertCenter
from engine.base_service import BaseService
from engine.employee_directory import EmployeeDirectory
from errors import NotFoundError
from models.employee import WEEKDAYS
from models.rules import AlertSeverity, AlertType, QueueControlRule, RuleAction, SystemAlert


class RuleEngine(BaseService):
    """
    Evaluates queue control rules and owns the emergency override.

    Responsibilities:
    1. Register rules (invalid rules are rejected here, not at evaluation)
    2. Evaluate rules against a context snapshot
    3. Periodic workload-spread check
    4. Emergency override activation and deactivation
    """

    def __init__(self, message_bus: MessageBus, directory: EmployeeDirectory,
                 alerts: AlertCenter, imbalance_threshold: int = 3,
                 clock=None, verbose: bool = True):
        super().__init__("RuleEngine", message_bus, clock=clock, verbose=verbose)
        self.directory = directory
        self.alerts = alerts
        self.imbalance_threshold = imbalance_threshold
        self.rules: Dict[str, QueueControlRule] = {}

    # ==================== Rule registry ====================

    def add_rule(self, rule: Union[QueueControlRule, Dict[str, Any]]) -> QueueControlRule:
        """
        Register a rule.

        Raises:
            RuleDefinitionError: Unknown field/operator/action combination
        """
        if isinstance(rule, dict):
            rule = QueueControlRule.from_dict(rule)
        self.rules[rule.id] = rule
        self.log(f"Rule registered: {rule}", "debug")
        return rule

    def remove_rule(self, rule_id: str) -> None:
        if self.rules.pop(rule_id, None) is None:
            raise NotFoundError("Rule", rule_id)

    def set_rule_active(self, rule_id: str, active: bool) -> QueueControlRule:
        rule = self.rules.get(rule_id)
        if rule is None:
            raise NotFoundError("Rule", rule_id)
        rule.is_active = active
        return rule

    def rules_for(self, location_id: str) -> List[QueueControlRule]:
        """Active rules of a location, lowest priority number first."""
        active = [r for r in self.rules.values() if r.location_id == location_id and r.is_active]
        return sorted(active, key=lambda r: r.priority)

    # ==================== Evaluation ====================

    def matching_rules(self, location_id: str, context: Dict[str, Any]) -> List[QueueControlRule]:
        return [r for r in self.rules_for(location_id) if r.matches(context)]

    def evaluate(self, location_id: str, context: Dict[str, Any]) -> List[RuleAction]:
        """
        Combined actions of every matching rule, in rule priority order.

        Unknown or missing context values make a condition fail; evaluation
        never raises.
        """
        actions: List[RuleAction] = []
        for rule in self.matching_rules(location_id, context):
            self.log(f"Rule fired: {rule.name}", "debug")
            actions.extend(rule.actions)
        return actions

    def location_context(self, location_id: str, queue_length: int = 0,
                         average_wait_time: float = 0.0,
                         now: Optional[datetime] = None) -> Dict[str, Any]:
        """Context signals derived from directory state and queue metrics."""
        at = self.now(now)
        workloads = list(self.directory.workloads_for_location(location_id).values())
        return {
            "queue_length": queue_length,
            "queue_imbalance": (max(workloads) - min(workloads)) if workloads else 0,
            "max_workload": max(workloads) if workloads else 0,
            "min_workload": min(workloads) if workloads else 0,
            "available_employees": len(self.directory.available_employees(location_id, at)),
            "average_wait_time": average_wait_time,
            "hour_of_day": at.hour,
            "day_of_week": WEEKDAYS[at.weekday()],
            "emergency_mode": self.is_emergency(location_id),
        }

    # ==================== Load balance check ====================

    def threshold_for(self, location_id: str) -> int:
        """The location's load balancing threshold, else the engine default."""
        location = self.directory.locations.get(location_id)
        if location is not None and location.settings.load_balancing_threshold > 0:
            return location.settings.load_balancing_threshold
        return self.imbalance_threshold

    async def check_load_balance(self, location_id: str) -> Optional[SystemAlert]:
        """
        Raise a queue_overflow alert and request rebalancing when the
        workload spread at a location reaches the threshold.

        Returns:
            The alert raised by this call, if any
        """
        workloads = self.directory.workloads_for_location(location_id)
        if len(workloads) < 2:
            return None

        threshold = self.threshold_for(location_id)
        spread = max(workloads.values()) - min(workloads.values())
        if spread < threshold:
            self.alerts.resolve_matching(location_id, AlertType.QUEUE_OVERFLOW, by="system")
            return None

        alert = None
        if not self.alerts.active_alerts(location_id, AlertType.QUEUE_OVERFLOW):
            alert = await self.alerts.raise_alert(
                location_id,
                AlertType.QUEUE_OVERFLOW,
                AlertSeverity.MEDIUM,
                "Queue imbalance detected",
                f"Workload spread is {spread} (threshold {threshold})",
                metadata={"workloads": dict(workloads), "spread": spread},
            )
        await self.publish(
            EventType.QUEUE_REBALANCE_NEEDED,
            location_id,
            payload={"workloads": dict(workloads), "spread": spread},
        )
        return alert

    # ==================== Emergency override ====================

    def is_emergency(self, location_id: str) -> bool:
        location = self.directory.locations.get(location_id)
        return bool(location and location.settings.emergency_override)

    async def activate_emergency_override(self, location_id: str, reason: str) -> SystemAlert:
        """
        Put a location under manual control and raise a critical alert.

        While active, rule actions and auto-assignment are advisory only.
        """
        location = self.directory.get_location(location_id)
        location.settings.emergency_override = True
        self.log(f"🚨 Emergency override at {location.name}: {reason}", "error")

        alert = await self.alerts.raise_alert(
            location_id,
            AlertType.EMERGENCY,
            AlertSeverity.CRITICAL,
            "Emergency override activated",
            reason,
        )
        await self.publish(EventType.EMERGENCY_ACTIVATED, location_id,
                           entity_id=alert.id, payload={"reason": reason})
        return alert

    async def deactivate_emergency_override(self, location_id: str,
                                            by: Optional[str] = None) -> List[SystemAlert]:
        """Return the location to automatic control and resolve its emergency alerts."""
        location = self.directory.get_location(location_id)
        location.settings.emergency_override = False
        resolved = self.alerts.resolve_matching(location_id, AlertType.EMERGENCY, by=by)
        self.log(f"Emergency override lifted at {location.name} ({len(resolved)} alert(s) resolved)", "success")

        await self.publish(EventType.EMERGENCY_DEACTIVATED, location_id,
                           payload={"resolved_alerts": [a.id for a in resolved]})
        return resolved
