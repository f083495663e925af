"""
Directory Loader - Loads employees and services from CSV files.

Also provides the demo salon seed used by examples and benchmarks.
"""
import pandas as pd
from datetime import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from communication.message_bus import MessageBus
from engine.base_service import BaseService
from engine.employee_directory import EmployeeDirectory
from engine.rule_engine import RuleEngine
from models.employee import (
    AvailabilityStatus,
    Employee,
    EmployeePerformance,
    QueueSettings,
    SkillLevel,
    full_week,
)
from models.location import Location, create_demo_location
from models.rules import (
    ActionType,
    ConditionOperator,
    QueueControlRule,
    RuleAction,
    RuleCondition,
    RuleType,
)
from models.service import AutoAssignmentRules, Service


LIST_SEPARATOR = ";"


def _split(value: Any) -> List[str]:
    """Split a semicolon-separated cell into stripped, non-empty items."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return []
    return [part.strip() for part in str(value).split(LIST_SEPARATOR) if part.strip()]


def _parse_time(value: Any, default: time) -> time:
    if value is None or (not isinstance(value, str) and pd.isna(value)) or not str(value).strip():
        return default
    hours, minutes = str(value).strip().split(":")[:2]
    return time(int(hours), int(minutes))


def _parse_skills(value: Any) -> Dict[str, SkillLevel]:
    """Parse ``service:level`` pairs, e.g. ``1:expert;2:intermediate``."""
    skills = {}
    for pair in _split(value):
        if ":" not in pair:
            raise ValueError(f"Skill entry '{pair}' is not service:level")
        service_id, level = pair.split(":", 1)
        skills[service_id.strip()] = SkillLevel.from_string(level)
    return skills


class DirectoryLoader(BaseService):
    """
    Loads the employee and service catalogs into an EmployeeDirectory.

    Employee columns:
        id, location_id, first_name, last_name, email, phone, specialties,
        skills, rating, average_service_time, max_queue_size, days_off,
        start_time, end_time, status

    Service columns:
        id, location_id, name, duration, skill_level_required,
        assigned_employee_ids, preferred_employee_ids, category, price

    List columns are semicolon-separated. Malformed rows are skipped with a
    warning.
    """

    def __init__(self, message_bus: MessageBus, directory: EmployeeDirectory,
                 data_dir: str = "data", clock=None, verbose: bool = True):
        super().__init__("DirectoryLoader", message_bus, clock=clock, verbose=verbose)
        self.directory = directory
        self.data_dir = Path(data_dir)
        self.skipped: List[Dict[str, Any]] = []

    def load_all(self) -> Dict[str, int]:
        """
        Load ``employees.csv`` and ``services.csv`` from the data directory.

        Returns:
            Counts of loaded and skipped rows
        """
        self.log("Starting directory loading...")
        employees = services = 0

        employee_file = self.data_dir / "employees.csv"
        if employee_file.exists():
            employees = len(self.load_employees(employee_file))
        else:
            self.log(f"Employee file not found: {employee_file}", "warning")

        service_file = self.data_dir / "services.csv"
        if service_file.exists():
            services = len(self.load_services(service_file))
        else:
            self.log(f"Service file not found: {service_file}", "warning")

        self.log(f"Directory loaded: {employees} employees, {services} services", "success")
        return {"employees": employees, "services": services, "skipped": len(self.skipped)}

    def load_employees(self, source: Union[str, Path, Any]) -> List[Employee]:
        """Load employees from a CSV path or file-like object."""
        df = pd.read_csv(source, dtype=str)
        df.columns = df.columns.str.strip()

        loaded = []
        for idx, row in df.iterrows():
            try:
                employee = self._employee_from_row(row)
            except (KeyError, ValueError, TypeError) as e:
                self._skip("employee", idx, e)
                continue
            self.directory.add_employee(employee)
            loaded.append(employee)
        return loaded

    def load_services(self, source: Union[str, Path, Any]) -> List[Service]:
        """Load services from a CSV path or file-like object."""
        df = pd.read_csv(source, dtype=str)
        df.columns = df.columns.str.strip()

        loaded = []
        for idx, row in df.iterrows():
            try:
                service = self._service_from_row(row)
            except (KeyError, ValueError, TypeError) as e:
                self._skip("service", idx, e)
                continue
            self.directory.add_service(service)
            loaded.append(service)
        return loaded

    def _skip(self, kind: str, idx: int, error: Exception) -> None:
        self.skipped.append({"kind": kind, "row": int(idx), "error": str(error)})
        self.log(f"Skipping {kind} row {idx}: {error}", "warning")

    @staticmethod
    def _text(row: pd.Series, column: str, default: str = "") -> str:
        value = row.get(column)
        if value is None or pd.isna(value):
            return default
        return str(value).strip()

    def _employee_from_row(self, row: pd.Series) -> Employee:
        emp_id = self._text(row, "id")
        location_id = self._text(row, "location_id")
        first_name = self._text(row, "first_name")
        if not emp_id or not location_id or not first_name:
            raise ValueError("id, location_id and first_name are required")

        skills = _parse_skills(row.get("skills"))
        schedule = full_week(
            start=_parse_time(row.get("start_time"), time(9, 0)),
            end=_parse_time(row.get("end_time"), time(17, 0)),
            days_off=_split(row.get("days_off")),
        )
        status = self._text(row, "status", "active").lower()

        return Employee(
            id=emp_id,
            location_id=location_id,
            first_name=first_name,
            last_name=self._text(row, "last_name"),
            email=self._text(row, "email"),
            phone=self._text(row, "phone"),
            specialties=[s.lower() for s in _split(row.get("specialties"))],
            service_ids=list(skills),
            skill_level=skills,
            schedule=schedule,
            performance=EmployeePerformance(
                average_service_time=float(self._text(row, "average_service_time", "30")),
                customer_rating=float(self._text(row, "rating", "0")),
            ),
            queue_settings=QueueSettings(max_queue_size=int(self._text(row, "max_queue_size", "5"))),
            is_active=status != "inactive",
        )

    def _service_from_row(self, row: pd.Series) -> Service:
        service_id = self._text(row, "id")
        location_id = self._text(row, "location_id")
        name = self._text(row, "name")
        if not service_id or not location_id or not name:
            raise ValueError("id, location_id and name are required")

        price = self._text(row, "price")
        return Service(
            id=service_id,
            location_id=location_id,
            name=name,
            estimated_duration=int(self._text(row, "duration", "30")),
            skill_level_required=SkillLevel.from_string(self._text(row, "skill_level_required", "beginner")),
            assigned_employee_ids=_split(row.get("assigned_employee_ids")),
            auto_assignment_rules=AutoAssignmentRules(
                preferred_employee_ids=_split(row.get("preferred_employee_ids")),
            ),
            category=self._text(row, "category"),
            price=float(price) if price else None,
        )


# ============================================================================
# DEMO SEED
# ============================================================================

def seed_demo_directory(directory: EmployeeDirectory,
                        location: Optional[Location] = None) -> Location:
    """
    Register the downtown salon with its three employees and five services.

    Returns:
        The demo location
    """
    location = location or create_demo_location()
    directory.add_location(location)
    loc = location.id

    directory.add_employee(Employee(
        id="1", location_id=loc, first_name="Sarah", last_name="Johnson",
        email="sarah@salon.example", phone="555-0101",
        specialties=["haircut", "styling", "coloring"],
        service_ids=["1", "2"],
        skill_level={"1": SkillLevel.EXPERT, "2": SkillLevel.INTERMEDIATE},
        schedule=full_week(time(9, 0), time(18, 0)),
        performance=EmployeePerformance(average_service_time=45, customers_served=156, customer_rating=4.8),
    ))
    directory.add_employee(Employee(
        id="2", location_id=loc, first_name="Mike", last_name="Chen",
        email="mike@salon.example", phone="555-0102",
        specialties=["haircut", "beard_trim", "styling"],
        service_ids=["1", "3"],
        skill_level={"1": SkillLevel.EXPERT, "3": SkillLevel.EXPERT},
        schedule=full_week(time(9, 0), time(18, 0), days_off=["monday"]),
        performance=EmployeePerformance(average_service_time=35, customers_served=203, customer_rating=4.6),
    ))
    directory.add_employee(Employee(
        id="3", location_id=loc, first_name="Emma", last_name="Davis",
        email="emma@salon.example", phone="555-0103",
        specialties=["manicure", "pedicure", "nail_art"],
        service_ids=["4", "5"],
        skill_level={"4": SkillLevel.EXPERT, "5": SkillLevel.INTERMEDIATE},
        schedule=full_week(time(9, 0), time(18, 0), days_off=["saturday", "sunday"]),
        performance=EmployeePerformance(average_service_time=60, customers_served=98, customer_rating=4.9),
    ))

    services = [
        ("1", "Haircut & Style", 45, SkillLevel.INTERMEDIATE, ["1", "2"], ["1", "2"], "hair", 65.0),
        ("2", "Hair Coloring", 120, SkillLevel.EXPERT, ["1"], [], "hair", 150.0),
        ("3", "Beard Trim", 20, SkillLevel.BEGINNER, ["2"], [], "grooming", 25.0),
        ("4", "Manicure", 45, SkillLevel.INTERMEDIATE, ["3"], [], "nails", 40.0),
        ("5", "Pedicure", 60, SkillLevel.INTERMEDIATE, ["3"], [], "nails", 55.0),
    ]
    for service_id, name, minutes, level, assigned, preferred, category, price in services:
        directory.add_service(Service(
            id=service_id, location_id=loc, name=name,
            estimated_duration=minutes, skill_level_required=level,
            assigned_employee_ids=list(assigned),
            auto_assignment_rules=AutoAssignmentRules(preferred_employee_ids=list(preferred)),
            category=category, price=price,
        ))

    for employee in directory.employees_at(loc):
        employee.availability.status = AvailabilityStatus.ACTIVE
    return location


def seed_demo_rules(rule_engine: RuleEngine, location_id: str = "1") -> List[QueueControlRule]:
    """Register the demo load-balancing and VIP priority rules."""
    rules = [
        QueueControlRule(
            id="1",
            location_id=location_id,
            name="Auto Load Balance",
            type=RuleType.LOAD_BALANCING,
            conditions=[RuleCondition("queue_imbalance", ConditionOperator.GREATER_THAN, 3)],
            actions=[RuleAction(ActionType.REASSIGN_EMPLOYEE, {"strategy": "least_busy"})],
            priority=1,
            description="Redistribute customers when workloads drift apart",
        ),
        QueueControlRule(
            id="2",
            location_id=location_id,
            name="VIP Priority",
            type=RuleType.PRIORITY_OVERRIDE,
            conditions=[RuleCondition("customer_type", ConditionOperator.EQUALS, "vip")],
            actions=[RuleAction(ActionType.ADJUST_PRIORITY, {"priority": "high"})],
            priority=2,
            description="VIP customers get high priority",
        ),
    ]
    return [rule_engine.add_rule(rule) for rule in rules]
