"""
Queue statistics models.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List


@dataclass
class EmployeeUtilization:
    """Live load of one employee."""
    employee_id: str
    employee_name: str
    workload: int
    max_queue_size: int
    status: str

    @property
    def utilization(self) -> float:
        """Workload as a fraction of the employee's max queue size."""
        if self.max_queue_size <= 0:
            return 0.0
        return self.workload / self.max_queue_size


@dataclass
class QueueStats:
    """
    Snapshot of one location's queue.

    Attributes:
        total_waiting: Entries currently waiting
        currently_serving: Entries called or in progress
        served_today: Entries completed since midnight
        average_wait_time: Mean estimated wait of waiting entries (minutes)
        remote_checkins: Remote check-ins still en route or present
        in_store_checkins: In-store check-ins still present
    """
    location_id: str
    total_waiting: int = 0
    currently_serving: int = 0
    served_today: int = 0
    no_shows_today: int = 0
    cancelled_today: int = 0
    average_wait_time: float = 0.0
    remote_checkins: int = 0
    in_store_checkins: int = 0
    employee_utilization: List[EmployeeUtilization] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)

    @property
    def workload_spread(self) -> int:
        """max(workload) - min(workload) across the location's employees."""
        if not self.employee_utilization:
            return 0
        loads = [u.workload for u in self.employee_utilization]
        return max(loads) - min(loads)

    def to_dict(self) -> Dict:
        return {
            "location_id": self.location_id,
            "total_waiting": self.total_waiting,
            "currently_serving": self.currently_serving,
            "served_today": self.served_today,
            "no_shows_today": self.no_shows_today,
            "cancelled_today": self.cancelled_today,
            "average_wait_time": round(self.average_wait_time, 1),
            "remote_checkins": self.remote_checkins,
            "in_store_checkins": self.in_store_checkins,
            "employee_utilization": {
                u.employee_id: round(u.utilization, 2) for u in self.employee_utilization
            },
        }
