"""
Queue Ledger - Owns queue entries, the status state machine and positions.

Every mutation updates local state synchronously (entry, positions,
workloads), then writes through the SyncWriter and publishes an event. A
store outage never blocks the queue: the write is parked for resync.
"""
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Dict, List, Optional, Union
import statistics
import uuid

from benchmark import profile_function
from communication.message import Event, EventType
from communication.message_bus import MessageBus
from config import QueueConfig
from engine.assignment_engine import AssignmentEngine
from engine.base_service import BaseService
from engine.employee_directory import EmployeeDirectory
from engine.position_manager import ahead_of, recompute_positions, workload_counts
from engine.rule_engine import RuleEngine
from errors import InvalidTransitionError, NotFoundError, ValidationError
from models.employee import Employee
from models.queue_entry import (
    FINISHED_STATUSES,
    AssignmentMethod,
    CustomerType,
    EnqueueRequest,
    NotificationType,
    Priority,
    QueueEntry,
    QueueNotification,
    QueueStatus,
    is_allowed_transition,
)
from models.rules import ActionType, RuleAction
from models.stats import EmployeeUtilization, QueueStats
from persistence.sync import SyncWriter, WriteOutcome


# Fields a caller may set through ``transition(..., extra=...)``
TRANSITION_EXTRA_FIELDS = ("notes", "special_requests", "assigned_employee_id")


class QueueService(BaseService):
    """
    The queue ledger.

    Responsibilities:
    1. Enqueue customers with auto, preferred or manual assignment
    2. Enforce the queue status state machine
    3. Keep positions dense and workloads consistent after every mutation
    4. Apply rule actions, rebalance and retention
    """

    def __init__(self, message_bus: MessageBus, directory: EmployeeDirectory,
                 assignment: AssignmentEngine, rules: RuleEngine, sync: SyncWriter,
                 queue_config: Optional[QueueConfig] = None,
                 clock=None, verbose: bool = True):
        super().__init__("QueueService", message_bus, clock=clock, verbose=verbose)
        self.directory = directory
        self.assignment = assignment
        self.rules = rules
        self.sync = sync
        self.config = queue_config or QueueConfig()
        self.entries: Dict[str, QueueEntry] = {}
        self.checkins = None  # CheckinManager, attached by the coordinator for stats

        self.subscribe(EventType.CHECKIN_CONVERTED, self._on_checkin_converted)
        self.subscribe(EventType.QUEUE_REBALANCE_NEEDED, self._on_rebalance_needed)

    # ==================== Queries ====================

    def get_entry(self, entry_id: str) -> QueueEntry:
        entry = self.entries.get(entry_id)
        if entry is None:
            raise NotFoundError("QueueEntry", entry_id)
        return entry

    def entries_for_location(self, location_id: str,
                             statuses: Optional[List[QueueStatus]] = None) -> List[QueueEntry]:
        """Entries of a location: waiting ones by position, then the rest by join time."""
        entries = [e for e in self.entries.values() if e.location_id == location_id]
        if statuses is not None:
            entries = [e for e in entries if e.status in statuses]
        return sorted(entries, key=lambda e: (e.position is None, e.position or 0, e.joined_at, e.id))

    def waiting_entries(self, location_id: str) -> List[QueueEntry]:
        return self.entries_for_location(location_id, [QueueStatus.WAITING])

    def find_by_checkin(self, checkin_id: str) -> Optional[QueueEntry]:
        for entry in self.entries.values():
            if entry.checkin_id == checkin_id:
                return entry
        return None

    def check_capacity(self, location_id: str) -> None:
        """
        Raises:
            ValidationError: The location's waiting queue is at its size limit
        """
        location = self.directory.get_location(location_id)
        limit = location.settings.max_queue_size
        if limit > 0 and len(self.waiting_entries(location.id)) >= limit:
            raise ValidationError(
                f"Queue at {location.name} is full",
                {"location_id": location.id, "max_queue_size": limit},
            )

    def location_ids(self) -> List[str]:
        ids = set(self.directory.locations) | {e.location_id for e in self.entries.values()}
        return sorted(ids)

    def sync_state(self, entry_id: str) -> Optional[WriteOutcome]:
        return self.sync.outcome_for(f"queue_entries:{entry_id}")

    # ==================== Bookkeeping ====================

    def recalculate(self, location_id: str) -> List[QueueEntry]:
        """
        Recompute positions and employee workloads of a location from the
        entry set.

        Returns:
            The waiting entries in position order
        """
        entries = self.entries.values()
        waiting = recompute_positions(entries, location_id)
        self.directory.set_workloads(location_id, workload_counts(entries, location_id))
        return waiting

    def refresh_wait_estimates(self, location_id: str) -> List[QueueEntry]:
        """
        Refresh ``estimated_wait_time`` of the waiting entries.

        Returns:
            Entries whose estimate changed
        """
        changed = []
        entries = list(self.entries.values())
        for entry in self.waiting_entries(location_id):
            employee = self.directory.employees.get(entry.assigned_employee_id or "")
            if employee is not None:
                ahead = len(ahead_of(entries, entry))
                estimate = int(round(ahead * employee.performance.average_service_time))
            else:
                estimate = self.assignment.estimate_unassigned_wait(
                    (entry.position or 1) - 1, entry.service_ids, len(entry.services)
                )
            if estimate != entry.estimated_wait_time:
                entry.estimated_wait_time = estimate
                changed.append(entry)
        return changed

    async def persist(self, entry: QueueEntry) -> WriteOutcome:
        """Write an entry through to the store."""
        return await self.sync.write(
            f"queue_entries:{entry.id}",
            partial(self.sync.repository.save_queue_entry, entry.to_row()),
        )

    async def _persist_location(self, location_id: str, skip: Optional[str] = None) -> None:
        for other in self.entries_for_location(location_id):
            if other.id != skip:
                await self.persist(other)

    # ==================== Enqueue ====================

    @profile_function
    def _build_entry(self, request: EnqueueRequest, now: datetime) -> QueueEntry:
        services = [s.strip() for s in request.services if s and s.strip()]
        if not services:
            raise ValidationError(
                "At least one service is required",
                {"customer_name": request.customer_name},
            )
        if not request.customer_name or not request.customer_name.strip():
            raise ValidationError("Customer name is required")

        location = self.directory.get_location(request.location_id)
        self.check_capacity(location.id)
        waiting = self.waiting_entries(location.id)

        service_ids = list(request.service_ids) or self.directory.resolve_service_ids(location.id, services)
        customer_type = request.customer_type
        if not isinstance(customer_type, CustomerType):
            customer_type = CustomerType.from_string(customer_type)
        priority = request.priority
        if not isinstance(priority, Priority):
            priority = Priority.from_string(priority)

        entry = QueueEntry(
            id=str(uuid.uuid4()),
            location_id=location.id,
            customer_name=request.customer_name.strip(),
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            customer_type=customer_type,
            services=services,
            service_ids=service_ids,
            joined_at=request.joined_at or now,
            preferred_employee_id=request.preferred_employee_id,
            priority=priority,
            special_requests=request.special_requests,
            notes=request.notes,
            checkin_id=request.checkin_id,
        )

        if request.assigned_employee_id:
            employee = self.directory.get_employee(request.assigned_employee_id)
            self._check_same_location(entry, employee)
            self._assign(entry, employee, AssignmentMethod.MANUAL)
        elif location.settings.auto_assign_employees:
            employee, method = self.assignment.select_for_request(
                location.id, service_ids, services, request.preferred_employee_id, now
            )
            if employee is not None:
                if self.rules.is_emergency(location.id):
                    entry.suggested_employee_id = employee.id
                    entry.add_note(f"Suggested: {employee.full_name} (emergency override active)")
                else:
                    self._assign(entry, employee, method)

        if entry.assigned_employee_id:
            employee = self.directory.get_employee(entry.assigned_employee_id)
            entry.estimated_wait_time = self.assignment.estimate_wait_minutes(employee)
        else:
            entry.estimated_wait_time = self.assignment.estimate_unassigned_wait(
                len(waiting), service_ids, len(services)
            )
        return entry

    async def enqueue(self, request: EnqueueRequest, now: Optional[datetime] = None) -> QueueEntry:
        """
        Add a customer to a location's queue.

        Raises:
            ValidationError: Empty services, missing name or full queue
            NotFoundError: Unknown location or manual employee
        """
        at = self.now(now)
        entry = self._build_entry(request, at)

        actions = self.rules.evaluate(entry.location_id, self.entry_context(entry, at))
        deferred = self._apply_actions(entry, actions)

        self.entries[entry.id] = entry
        self.recalculate(entry.location_id)

        self.log(f"➕ {entry}")
        await self.persist(entry)
        await self._persist_location(entry.location_id, skip=entry.id)
        # Converted check-ins were counted as a visit when they were created
        if entry.customer_phone and not entry.checkin_id:
            await self._record_customer(entry)

        await self.publish(EventType.QUEUE_ENTRY_ADDED, entry.location_id,
                           entity_id=entry.id, payload=entry.to_row())

        for action in deferred:
            await self._run_deferred_action(entry, action)
        return entry

    def entry_context(self, entry: QueueEntry, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Rule context for an entry on top of the location context."""
        waiting = self.waiting_entries(entry.location_id)
        context = self.rules.location_context(
            entry.location_id,
            queue_length=len(waiting),
            average_wait_time=self._average_wait(waiting),
            now=now,
        )
        context.update({
            "customer_type": entry.customer_type.value,
            "priority": entry.priority.value,
            "service_type": [s.lower() for s in entry.services],
            "service_count": len(entry.services),
            "wait_time": entry.estimated_wait_time,
        })
        return context

    def _apply_actions(self, entry: QueueEntry, actions: List[RuleAction]) -> List[RuleAction]:
        """
        Apply entry-level actions. Location-level actions are returned to run
        after the entry is committed.

        While the emergency override is active every action is advisory only.
        """
        if not actions:
            return []
        if self.rules.is_emergency(entry.location_id):
            for action in actions:
                self.log(f"Advisory (emergency override): {action.type.value} {action.parameters}", "warning")
            return []

        deferred = []
        for action in actions:
            params = action.parameters
            if action.type == ActionType.ADJUST_PRIORITY:
                entry.priority = Priority.from_string(params["priority"])
            elif action.type == ActionType.SEND_NOTIFICATION:
                entry.notifications.append(QueueNotification(
                    type=NotificationType(params.get("type", self._channel(entry).value)),
                    message=params.get("message", f"Hi {entry.customer_name}, you're in the queue."),
                    created_at=self.clock(),
                ))
            elif action.type == ActionType.LIMIT_SERVICE:
                if len(entry.services) > params["max_services"]:
                    entry.add_note(
                        f"Service limit: {len(entry.services)} requested, max {params['max_services']}"
                    )
            else:
                deferred.append(action)
        return deferred

    async def _run_deferred_action(self, entry: QueueEntry, action: RuleAction) -> None:
        if action.type == ActionType.REASSIGN_EMPLOYEE:
            await self.rebalance(entry.location_id)
        elif action.type == ActionType.EMERGENCY_OVERRIDE:
            if not self.rules.is_emergency(entry.location_id):
                reason = action.parameters.get("reason", "Triggered by queue rule")
                await self.rules.activate_emergency_override(entry.location_id, reason)

    async def _record_customer(self, entry: QueueEntry) -> WriteOutcome:
        data = {
            "name": entry.customer_name,
            "email": entry.customer_email,
            "preferred_services": list(entry.services),
        }
        return await self.sync.write(
            f"customers:{entry.customer_phone}:{entry.id}",
            partial(self.sync.repository.upsert_customer, entry.customer_phone, data),
        )

    # ==================== Transitions ====================

    async def transition(self, entry_id: str, new_status: Union[QueueStatus, str],
                         extra: Optional[Dict[str, Any]] = None,
                         now: Optional[datetime] = None) -> QueueEntry:
        """
        Move an entry to a new status.

        Re-applying the current status is a no-op.

        Raises:
            NotFoundError: Unknown entry
            InvalidTransitionError: Edge not allowed
            ValidationError: Unknown status or extra field
        """
        entry = self.get_entry(entry_id)
        if not isinstance(new_status, QueueStatus):
            try:
                new_status = QueueStatus(str(new_status).lower())
            except ValueError:
                raise ValidationError(f"Unknown queue status '{new_status}'", {"entry_id": entry_id})

        if entry.status == new_status:
            return entry
        if not is_allowed_transition(entry.status, new_status):
            raise InvalidTransitionError(entry_id, entry.status.value, new_status.value)

        at = self.now(now)
        if extra:
            self._apply_extra(entry, extra)

        previous = entry.status
        entry.status = new_status
        self._stamp(entry, new_status, at)
        self.recalculate(entry.location_id)

        self.log(f"{entry.customer_name}: {previous.value} → {new_status.value}")
        await self.persist(entry)
        await self._persist_location(entry.location_id, skip=entry.id)
        await self.publish(
            EventType.QUEUE_ENTRY_UPDATED,
            entry.location_id,
            entity_id=entry.id,
            payload={"from": previous.value, "to": new_status.value, "position": entry.position},
        )
        return entry

    def _apply_extra(self, entry: QueueEntry, extra: Dict[str, Any]) -> None:
        unknown = sorted(set(extra) - set(TRANSITION_EXTRA_FIELDS))
        if unknown:
            raise ValidationError(
                f"Cannot set {', '.join(unknown)} on transition",
                {"entry_id": entry.id, "fields": unknown},
            )
        if "assigned_employee_id" in extra:
            employee = self.directory.get_employee(extra["assigned_employee_id"])
            self._check_same_location(entry, employee)
            if employee.id != entry.assigned_employee_id:
                self._assign(entry, employee, AssignmentMethod.MANUAL)
        if extra.get("notes"):
            entry.add_note(extra["notes"])
        if "special_requests" in extra:
            entry.special_requests = extra["special_requests"]

    def _stamp(self, entry: QueueEntry, status: QueueStatus, at: datetime) -> None:
        if status == QueueStatus.CALLED:
            entry.called_at = at
            entry.actual_wait_time = max(0, int((at - entry.joined_at).total_seconds() // 60))
            entry.notifications.append(QueueNotification(
                type=self._channel(entry),
                message=f"{entry.customer_name}, it's your turn! Please come to the front desk.",
                created_at=at,
            ))
        elif status == QueueStatus.IN_PROGRESS:
            entry.service_start_time = at
        elif status == QueueStatus.COMPLETED:
            if entry.completed_at is None:
                entry.completed_at = at
            entry.service_end_time = at
            if entry.assigned_employee_id:
                minutes = None
                if entry.service_start_time:
                    minutes = (at - entry.service_start_time).total_seconds() / 60
                self.directory.record_service_completed(entry.assigned_employee_id, minutes)

    @staticmethod
    def _channel(entry: QueueEntry) -> NotificationType:
        """SMS when a phone number is known, email otherwise."""
        return NotificationType.SMS if entry.customer_phone else NotificationType.EMAIL

    async def call_next(self, location_id: str, employee_id: Optional[str] = None,
                        now: Optional[datetime] = None) -> Optional[QueueEntry]:
        """
        Call the lowest-position waiting entry of a location.

        Args:
            location_id: Location of the queue
            employee_id: Employee taking the customer (overrides the assignment)

        Returns:
            The called entry, or None if nobody is waiting
        """
        waiting = self.waiting_entries(location_id)
        if not waiting:
            return None
        entry = waiting[0]
        extra = {"assigned_employee_id": employee_id} if employee_id else None
        return await self.transition(entry.id, QueueStatus.CALLED, extra=extra, now=now)

    # ==================== Reassignment ====================

    @staticmethod
    def _check_same_location(entry: QueueEntry, employee: Employee) -> None:
        if employee.location_id != entry.location_id:
            raise ValidationError(
                f"{employee.full_name} works at another location",
                {"entry_id": entry.id, "employee_id": employee.id},
            )

    def _assign(self, entry: QueueEntry, employee: Employee, method: AssignmentMethod) -> None:
        entry.assigned_employee_id = employee.id
        entry.assigned_employee_name = employee.full_name
        entry.assignment_method = method
        entry.suggested_employee_id = None

    async def reassign(self, entry_id: str, employee_id: str,
                       now: Optional[datetime] = None) -> QueueEntry:
        """
        Manually move an active entry to another employee.

        Raises:
            NotFoundError: Unknown entry or employee
            ValidationError: Entry not active or employee at another location
        """
        entry = self.get_entry(entry_id)
        employee = self.directory.get_employee(employee_id)
        if not entry.is_active:
            raise ValidationError(
                f"Cannot reassign a {entry.status.value} entry",
                {"entry_id": entry_id},
            )
        self._check_same_location(entry, employee)

        previous = entry.assigned_employee_id
        self._assign(entry, employee, AssignmentMethod.MANUAL)
        self.recalculate(entry.location_id)
        self.refresh_wait_estimates(entry.location_id)

        self.log(f"↔️ {entry.customer_name}: {previous or 'unassigned'} → {employee.full_name}")
        await self.persist(entry)
        await self.publish(
            EventType.QUEUE_ENTRY_UPDATED,
            entry.location_id,
            entity_id=entry.id,
            payload={"assigned_employee_id": employee.id, "previous_employee_id": previous,
                     "assignment_method": AssignmentMethod.MANUAL.value},
        )
        return entry

    async def rebalance(self, location_id: str, now: Optional[datetime] = None) -> List[QueueEntry]:
        """
        Move waiting entries from the most to the least loaded qualified
        employee until the workload spread is below the threshold.

        Manual and preferred assignments are never moved. Does nothing while
        the emergency override is active.

        Returns:
            Entries moved, each marked load_balanced
        """
        if self.rules.is_emergency(location_id):
            self.log(f"Rebalance at {location_id} skipped (emergency override)", "warning")
            return []

        at = self.now(now)
        threshold = self.rules.threshold_for(location_id)
        moved: List[QueueEntry] = []

        # Each move strictly narrows the spread, the cap is a safety net
        for _ in range(len(self.entries) + 1):
            workloads = self.directory.workloads_for_location(location_id)
            if len(workloads) < 2:
                break
            if max(workloads.values()) - min(workloads.values()) < threshold:
                break
            move = self._find_move(location_id, workloads, at)
            if move is None:
                break
            entry, target = move
            self._assign(entry, target, AssignmentMethod.LOAD_BALANCED)
            self.recalculate(location_id)
            moved.append(entry)

        if moved:
            self.refresh_wait_estimates(location_id)
            self.log(f"⚖️ Rebalanced {len(moved)} entr{'y' if len(moved) == 1 else 'ies'} at {location_id}", "success")
            for entry in moved:
                await self.persist(entry)
                await self.publish(
                    EventType.QUEUE_ENTRY_UPDATED,
                    location_id,
                    entity_id=entry.id,
                    payload={"assigned_employee_id": entry.assigned_employee_id,
                             "assignment_method": AssignmentMethod.LOAD_BALANCED.value},
                )
        return moved

    def _find_move(self, location_id: str, workloads: Dict[str, int], at: datetime):
        available = {e.id: e for e in self.directory.available_employees(location_id, at)}
        donors = sorted(workloads, key=lambda eid: (-workloads[eid], eid))

        for donor_id in donors:
            movable = [
                e for e in self.waiting_entries(location_id)
                if e.assigned_employee_id == donor_id
                and e.assignment_method not in (AssignmentMethod.MANUAL, AssignmentMethod.PREFERRED)
            ]
            # Back of the donor's queue moves first
            for entry in reversed(movable):
                targets = sorted(
                    (e for e in available.values()
                     if e.id != donor_id and workloads.get(e.id, 0) + 1 < workloads[donor_id]
                     and self._can_serve(e, entry)),
                    key=lambda e: (e.workload, e.id),
                )
                if targets:
                    return entry, targets[0]
        return None

    def _can_serve(self, employee: Employee, entry: QueueEntry) -> bool:
        if entry.service_ids:
            return self.assignment.is_qualified(employee, entry.service_ids)
        return any(employee.matches_specialty(name) for name in entry.services)

    # ==================== Removal & retention ====================

    async def remove(self, entry_id: str) -> QueueEntry:
        """
        Delete an entry outright.

        Raises:
            NotFoundError: Unknown entry
        """
        entry = self.get_entry(entry_id)
        del self.entries[entry_id]
        self.recalculate(entry.location_id)

        self.log(f"➖ Removed {entry.customer_name}")
        await self.sync.write(
            f"queue_entries:{entry.id}",
            partial(self.sync.repository.delete_queue_entry, entry.id),
            delete=True,
        )
        await self._persist_location(entry.location_id)
        await self.publish(EventType.QUEUE_ENTRY_REMOVED, entry.location_id,
                           entity_id=entry.id, payload={"status": entry.status.value})
        return entry

    async def cleanup_completed_entries(self, now: Optional[datetime] = None) -> int:
        """
        Drop completed, no-show and cancelled entries older than the
        retention window.

        Returns:
            Number of entries removed
        """
        cutoff = self.now(now) - timedelta(hours=self.config.terminal_retention_hours)
        stale = [
            e for e in self.entries.values()
            if e.status in FINISHED_STATUSES and (e.completed_at or e.joined_at) < cutoff
        ]
        for entry in stale:
            await self.remove(entry.id)
        if stale:
            self.log(f"🧹 Purged {len(stale)} finished entr{'y' if len(stale) == 1 else 'ies'}")
        return len(stale)

    # ==================== Statistics ====================

    @staticmethod
    def _average_wait(waiting: List[QueueEntry]) -> float:
        if not waiting:
            return 0.0
        return statistics.mean(e.estimated_wait_time for e in waiting)

    def stats(self, location_id: str, now: Optional[datetime] = None) -> QueueStats:
        """Snapshot of a location's queue."""
        at = self.now(now)
        today = at.date()
        entries = self.entries_for_location(location_id)
        waiting = [e for e in entries if e.status == QueueStatus.WAITING]

        stats = QueueStats(
            location_id=location_id,
            total_waiting=len(waiting),
            currently_serving=sum(1 for e in entries if e.status in (QueueStatus.CALLED, QueueStatus.IN_PROGRESS)),
            served_today=sum(1 for e in entries
                             if e.status == QueueStatus.COMPLETED and e.completed_at
                             and e.completed_at.date() == today),
            no_shows_today=sum(1 for e in entries
                               if e.status == QueueStatus.NO_SHOW and e.joined_at.date() == today),
            cancelled_today=sum(1 for e in entries
                                if e.status == QueueStatus.CANCELLED and e.joined_at.date() == today),
            average_wait_time=self._average_wait(waiting),
            generated_at=at,
        )
        if self.checkins is not None:
            stats.remote_checkins, stats.in_store_checkins = self.checkins.active_counts(location_id)

        for employee in self.directory.employees_at(location_id):
            if not employee.is_active:
                continue
            stats.employee_utilization.append(EmployeeUtilization(
                employee_id=employee.id,
                employee_name=employee.full_name,
                workload=employee.workload,
                max_queue_size=employee.queue_settings.max_queue_size,
                status=employee.availability.status.value,
            ))
        return stats

    # ==================== Event handlers ====================

    async def _on_checkin_converted(self, event: Event) -> None:
        """Enqueue the customer carried by a converted check-in."""
        payload = event.payload
        request = EnqueueRequest(
            location_id=payload["location_id"],
            customer_name=payload["customer_name"],
            services=list(payload.get("services", [])),
            service_ids=list(payload.get("service_ids", [])),
            customer_phone=payload.get("customer_phone", ""),
            customer_email=payload.get("customer_email"),
            customer_type=CustomerType.from_string(payload.get("customer_type", "regular")),
            preferred_employee_id=payload.get("preferred_employee_id"),
            special_requests=payload.get("special_requests"),
            notes=payload.get("notes"),
            checkin_id=payload.get("id"),
        )
        await self.enqueue(request, now=event.timestamp)

    async def _on_rebalance_needed(self, event: Event) -> None:
        await self.rebalance(event.location_id)
