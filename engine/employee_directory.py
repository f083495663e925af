"""
Employee Directory & Workload Tracker.

Owns the location, employee and service catalogs. Workload counts are only
ever written through ``set_workloads`` with counts derived from the live
queue entries.
"""
from dataclasses import fields
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from communication.message import EventType
from communication.message_bus import MessageBus
from engine.base_service import BaseService
from errors import NotFoundError, ValidationError
from models.employee import AvailabilityStatus, Employee, QueueSettings, SkillLevel, normalize_tag
from models.location import Location
from models.service import Service


class EmployeeDirectory(BaseService):
    """
    Holds locations, employees and services, and exposes workload per employee.

    Responsibilities:
    1. Register and look up locations, employees and services
    2. Keep service eligibility and employee skills consistent
    3. Answer availability queries for the assignment engine
    4. Track current workload (recomputed by the queue ledger)
    """

    def __init__(self, message_bus: MessageBus, clock=None, verbose: bool = True):
        super().__init__("EmployeeDirectory", message_bus, clock=clock, verbose=verbose)
        self.locations: Dict[str, Location] = {}
        self.employees: Dict[str, Employee] = {}
        self.services: Dict[str, Service] = {}

    # ==================== Locations ====================

    def add_location(self, location: Location) -> Location:
        self.locations[location.id] = location
        self.log(f"Location registered: {location}", "debug")
        return location

    def get_location(self, location_id: str) -> Location:
        location = self.locations.get(location_id)
        if location is None:
            raise NotFoundError("Location", location_id)
        return location

    # ==================== Employees ====================

    def add_employee(self, employee: Employee) -> Employee:
        """Register an employee. Re-adding an id replaces the record."""
        self.employees[employee.id] = employee
        self.log(f"Employee registered: {employee.full_name} @ location {employee.location_id}", "debug")
        return employee

    def get_employee(self, employee_id: str) -> Employee:
        employee = self.employees.get(employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    def employees_at(self, location_id: str) -> List[Employee]:
        return [e for e in self.employees.values() if e.location_id == location_id]

    def available_employees(self, location_id: str, now: Optional[datetime] = None) -> List[Employee]:
        """
        Employees at a location who may receive a new customer right now.

        Active record, status active or busy, accepting customers, scheduled
        today, outside break windows and below their max queue size.
        """
        at = self.now(now)
        return [e for e in self.employees_at(location_id) if e.can_take_customers(at)]

    async def update_availability(self, employee_id: str, status: AvailabilityStatus,
                                  notes: str = "", now: Optional[datetime] = None) -> Employee:
        """
        Change an employee's availability status and broadcast it.

        Raises:
            NotFoundError: Unknown employee
        """
        employee = self.get_employee(employee_id)
        if not isinstance(status, AvailabilityStatus):
            status = AvailabilityStatus(str(status).lower())

        previous = employee.availability.status
        employee.availability.status = status
        employee.availability.last_status_change = self.now(now)
        employee.availability.notes = notes

        self.log(f"{employee.full_name}: {previous.value} → {status.value}")
        await self.publish(
            EventType.EMPLOYEE_AVAILABILITY_CHANGED,
            employee.location_id,
            entity_id=employee.id,
            payload={"from": previous.value, "to": status.value, "notes": notes},
        )
        return employee

    def update_queue_settings(self, employee_id: str, **changes) -> QueueSettings:
        """
        Update queue settings fields by name.

        Raises:
            NotFoundError: Unknown employee
            ValidationError: Unknown settings field
        """
        employee = self.get_employee(employee_id)
        allowed = {f.name for f in fields(QueueSettings)}
        unknown = sorted(set(changes) - allowed)
        if unknown:
            raise ValidationError(
                f"Unknown queue settings: {', '.join(unknown)}",
                {"employee_id": employee_id, "fields": unknown},
            )
        for key, value in changes.items():
            setattr(employee.queue_settings, key, value)
        return employee.queue_settings

    def record_service_completed(self, employee_id: str, minutes: Optional[float]) -> None:
        """Update served count and running average service time."""
        employee = self.employees.get(employee_id)
        if employee is None:
            return
        perf = employee.performance
        if minutes is not None and minutes > 0:
            total = perf.average_service_time * perf.customers_served + minutes
            perf.average_service_time = total / (perf.customers_served + 1)
        perf.customers_served += 1
        perf.last_updated = self.clock()

    # ==================== Services ====================

    def add_service(self, service: Service) -> Service:
        self.services[service.id] = service
        # Keep employee records in step with the eligibility set
        for employee_id in service.assigned_employee_ids:
            employee = self.employees.get(employee_id)
            if employee is not None and service.id not in employee.service_ids:
                employee.service_ids.append(service.id)
        return service

    def get_service(self, service_id: str) -> Service:
        service = self.services.get(service_id)
        if service is None:
            raise NotFoundError("Service", service_id)
        return service

    def services_for_location(self, location_id: str) -> List[Service]:
        return [s for s in self.services.values() if s.location_id == location_id and s.is_active]

    def find_services_by_name(self, location_id: str, names: Iterable[str]) -> List[Service]:
        """
        Resolve service names to catalog entries.

        An exact case-insensitive name match wins; otherwise the normalized
        name is matched as a substring in either direction. Names that match
        nothing are skipped.
        """
        catalog = self.services_for_location(location_id)
        found: List[Service] = []
        for name in names:
            wanted = str(name).strip().lower()
            match = next((s for s in catalog if s.name.lower() == wanted), None)
            if match is None:
                tag = normalize_tag(wanted)
                match = next(
                    (s for s in catalog
                     if tag and (tag in normalize_tag(s.name) or normalize_tag(s.name) in tag)),
                    None,
                )
            if match is not None and match not in found:
                found.append(match)
        return found

    def resolve_service_ids(self, location_id: str, names: Iterable[str]) -> List[str]:
        return [s.id for s in self.find_services_by_name(location_id, names)]

    def assign_employee_to_service(self, employee_id: str, service_id: str,
                                   skill_level="intermediate") -> None:
        """
        Make an employee eligible for a service at a skill level.

        Keeps ``service.assigned_employee_ids``, ``employee.service_ids`` and
        ``employee.skill_level`` consistent.
        """
        employee = self.get_employee(employee_id)
        service = self.get_service(service_id)
        if not isinstance(skill_level, SkillLevel):
            skill_level = SkillLevel.from_string(skill_level)

        if employee_id not in service.assigned_employee_ids:
            service.assigned_employee_ids.append(employee_id)
        if service_id not in employee.service_ids:
            employee.service_ids.append(service_id)
        employee.skill_level[service_id] = skill_level

    def employees_for_service(self, service_id: str) -> List[Employee]:
        service = self.get_service(service_id)
        return [self.employees[eid] for eid in service.assigned_employee_ids if eid in self.employees]

    # ==================== Workload ====================

    def set_workloads(self, location_id: str, counts: Dict[str, int]) -> None:
        """
        Overwrite the workload of every employee at a location.

        Employees missing from ``counts`` have no active entries.
        """
        stamp = self.clock()
        for employee in self.employees_at(location_id):
            workload = counts.get(employee.id, 0)
            if employee.performance.current_workload != workload:
                employee.performance.current_workload = workload
                employee.performance.last_updated = stamp

    def get_workload(self, employee_id: str) -> int:
        return self.get_employee(employee_id).workload

    def workloads_for_location(self, location_id: str) -> Dict[str, int]:
        return {e.id: e.workload for e in self.employees_at(location_id) if e.is_active}
