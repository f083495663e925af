"""
System alerts.

Alerts are observational only: nothing in the engine reads them to make a
decision.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from communication.message import EventType
from communication.message_bus import MessageBus
from engine.base_service import BaseService
from errors import NotFoundError
from models.rules import AlertSeverity, AlertType, SystemAlert


class AlertCenter(BaseService):
    """Append-only alert log with resolution."""

    def __init__(self, message_bus: MessageBus, clock=None, verbose: bool = True):
        super().__init__("AlertCenter", message_bus, clock=clock, verbose=verbose)
        self.alerts: List[SystemAlert] = []

    async def raise_alert(self, location_id: str, alert_type: AlertType, severity: AlertSeverity,
                          title: str, message: str,
                          metadata: Optional[Dict[str, Any]] = None) -> SystemAlert:
        """Append an alert and publish it."""
        alert = SystemAlert(
            location_id=location_id,
            type=alert_type,
            severity=severity,
            title=title,
            message=message,
            created_at=self.clock(),
            metadata=metadata or {},
        )
        self.alerts.append(alert)

        level = "error" if severity in (AlertSeverity.HIGH, AlertSeverity.CRITICAL) else "warning"
        self.log(str(alert), level)
        await self.publish(EventType.SYSTEM_ALERT, location_id, entity_id=alert.id, payload=alert.to_dict())
        return alert

    def get_alert(self, alert_id: str) -> SystemAlert:
        for alert in self.alerts:
            if alert.id == alert_id:
                return alert
        raise NotFoundError("Alert", alert_id)

    def resolve_alert(self, alert_id: str, by: Optional[str] = None,
                      now: Optional[datetime] = None) -> SystemAlert:
        alert = self.get_alert(alert_id)
        alert.resolve(self.now(now), by)
        self.log(f"Alert resolved: {alert.title}", "success")
        return alert

    def resolve_matching(self, location_id: str, alert_type: AlertType, by: Optional[str] = None,
                         now: Optional[datetime] = None) -> List[SystemAlert]:
        """Resolve every unresolved alert of a type at a location."""
        resolved = []
        for alert in self.active_alerts(location_id, alert_type):
            alert.resolve(self.now(now), by)
            resolved.append(alert)
        return resolved

    def active_alerts(self, location_id: Optional[str] = None,
                      alert_type: Optional[AlertType] = None) -> List[SystemAlert]:
        alerts = [a for a in self.alerts if not a.is_resolved]
        if location_id:
            alerts = [a for a in alerts if a.location_id == location_id]
        if alert_type:
            alerts = [a for a in alerts if a.type == alert_type]
        return alerts
