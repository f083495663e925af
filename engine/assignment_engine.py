"""
Assignment Engine - Picks the best available employee for a service set.

Two tiers:
1. Qualified set: assigned to every requested service with enough skill,
   ranked by preference score, then rating, then workload.
2. Specialty fallback: loose specialty-tag match on the service names,
   ranked by rating, then workload.

Services and specialties are maintained by different people, so the fallback
keeps the queue usable with incomplete catalog data.
"""
from dataclasses import dataclass
from datetime import datetime
from functools import cmp_to_key
from typing import List, Optional, Sequence, Tuple

from benchmark import profile_function
from communication.message_bus import MessageBus
from engine.base_service import BaseService
from engine.employee_directory import EmployeeDirectory
from models.employee import Employee
from models.queue_entry import AssignmentMethod
from models.service import Service


# Ratings closer than this are a tie
RATING_TIE_TOLERANCE = 0.1

QUALIFIED = "qualified"
SPECIALTY = "specialty"
ANY_AVAILABLE = "any_available"


@dataclass
class CandidateScore:
    """
    Ranking signals of one candidate employee.

    Attributes:
        preference_score: Sum of ``10 - index`` over the services' preferred lists
        rating: Customer rating
        workload: Active entries currently assigned
        tier: Which selection tier admitted the candidate
    """
    employee_id: str
    employee_name: str
    preference_score: int
    rating: float
    workload: int
    tier: str

    def __str__(self) -> str:
        return (
            f"Candidate({self.employee_name}: pref {self.preference_score}, "
            f"rating {self.rating:.1f}, workload {self.workload}, {self.tier})"
        )


class AssignmentEngine(BaseService):
    """
    Selects employees for queue entries.

    Reads employees and services through the EmployeeDirectory accessors only.
    Selection is deterministic for a fixed directory snapshot.
    """

    def __init__(self, message_bus: MessageBus, directory: EmployeeDirectory,
                 default_service_minutes: int = 30, clock=None, verbose: bool = True):
        super().__init__("AssignmentEngine", message_bus, clock=clock, verbose=verbose)
        self.directory = directory
        self.default_service_minutes = default_service_minutes

    # ==================== Selection ====================

    @profile_function
    def select_employee(self, location_id: str, service_ids: Sequence[str],
                        service_names: Sequence[str] = (),
                        now: Optional[datetime] = None) -> Optional[Employee]:
        """
        Return the single best available employee, or None.

        Args:
            location_id: Location of the queue
            service_ids: Requested service ids
            service_names: Requested service names (used by the specialty fallback)
            now: Evaluation time
        """
        ranked = self.rank_candidates(location_id, service_ids, service_names, now)
        if not ranked:
            self.log(f"No employee available for {list(service_names) or list(service_ids)}", "warning")
            return None
        best = ranked[0]
        self.log(f"Selected {best}", "debug")
        return self.directory.get_employee(best.employee_id)

    def rank_candidates(self, location_id: str, service_ids: Sequence[str],
                        service_names: Sequence[str] = (),
                        now: Optional[datetime] = None) -> List[CandidateScore]:
        """
        Rank the candidates of the first tier that admits anyone.

        Returns:
            Candidates best-first (empty if nobody qualifies)
        """
        available = self.directory.available_employees(location_id, now)
        if not available:
            return []

        services = self._services(service_ids)
        names = list(service_names) or [s.name for s in services]
        consider_rating = all(s.auto_assignment_rules.consider_rating for s in services)
        consider_workload = all(s.auto_assignment_rules.consider_workload for s in services)

        if services:
            qualified = [e for e in available if self._is_qualified(e, services)]
            if qualified:
                scored = [self._score(e, services, QUALIFIED) for e in qualified]
                return self._sort(scored, consider_rating, consider_workload)

        specialists = [e for e in available if any(e.matches_specialty(n) for n in names)]
        if specialists:
            scored = [self._score(e, [], SPECIALTY) for e in specialists]
            return self._sort(scored, True, True)

        if any(s.auto_assignment_rules.fallback_to_any_employee for s in services):
            scored = [self._score(e, [], ANY_AVAILABLE) for e in available]
            return self._sort(scored, True, True)

        return []

    def select_for_request(self, location_id: str, service_ids: Sequence[str],
                           service_names: Sequence[str] = (),
                           preferred_employee_id: Optional[str] = None,
                           now: Optional[datetime] = None) -> Tuple[Optional[Employee], AssignmentMethod]:
        """
        Honour a preferred employee when possible, else run the selection.

        The preferred employee must be available and qualified for every
        requested service (or match a requested specialty when no service
        ids are known).

        Returns:
            (employee or None, assignment method)
        """
        if preferred_employee_id:
            preferred = self.directory.employees.get(preferred_employee_id)
            available_ids = {e.id for e in self.directory.available_employees(location_id, now)}
            if preferred is not None and preferred.id in available_ids:
                services = self._services(service_ids)
                if services:
                    ok = self._is_qualified(preferred, services)
                else:
                    ok = any(preferred.matches_specialty(n) for n in service_names)
                if ok:
                    self.log(f"Preferred employee {preferred.full_name} honoured", "debug")
                    return preferred, AssignmentMethod.PREFERRED
            self.log(f"Preferred employee {preferred_employee_id} not available/qualified", "debug")

        employee = self.select_employee(location_id, service_ids, service_names, now)
        return employee, AssignmentMethod.AUTO

    def is_qualified(self, employee: Employee, service_ids: Sequence[str]) -> bool:
        """Assigned to every service with a sufficient skill level."""
        services = self._services(service_ids)
        return bool(services) and self._is_qualified(employee, services)

    # ==================== Wait estimation ====================

    def estimate_wait_minutes(self, employee: Employee) -> int:
        """Customers already assigned × the employee's average service time."""
        return int(round(employee.workload * employee.performance.average_service_time))

    def estimate_unassigned_wait(self, ahead: int, service_ids: Sequence[str],
                                 service_count: int = 1) -> int:
        """
        Wait estimate for an entry without an employee.

        Entries ahead × mean estimated duration of the requested services
        (default minutes per service when unknown).
        """
        services = self._services(service_ids)
        if services:
            mean = sum(s.estimated_duration for s in services) / len(services)
        else:
            mean = self.default_service_minutes * max(service_count, 1)
        return int(round(ahead * mean))

    # ==================== Internals ====================

    def _services(self, service_ids: Sequence[str]) -> List[Service]:
        return [self.directory.services[sid] for sid in service_ids if sid in self.directory.services]

    def _is_qualified(self, employee: Employee, services: List[Service]) -> bool:
        for service in services:
            if not service.is_assigned(employee.id):
                return False
            if not employee.meets_skill(service.id, service.skill_level_required):
                return False
            if service.auto_assignment_rules.require_specialty and not employee.matches_specialty(service.name):
                return False
        return True

    def _score(self, employee: Employee, services: List[Service], tier: str) -> CandidateScore:
        preference = sum(s.auto_assignment_rules.preference_score(employee.id) for s in services)
        return CandidateScore(
            employee_id=employee.id,
            employee_name=employee.full_name,
            preference_score=preference,
            rating=employee.performance.customer_rating,
            workload=employee.workload,
            tier=tier,
        )

    def _sort(self, scored: List[CandidateScore], consider_rating: bool,
              consider_workload: bool) -> List[CandidateScore]:
        def compare(a: CandidateScore, b: CandidateScore) -> int:
            if a.preference_score != b.preference_score:
                return b.preference_score - a.preference_score
            if consider_rating and abs(a.rating - b.rating) > RATING_TIE_TOLERANCE:
                return -1 if a.rating > b.rating else 1
            if consider_workload and a.workload != b.workload:
                return a.workload - b.workload
            # Stable final order keeps selection deterministic
            return (a.employee_id > b.employee_id) - (a.employee_id < b.employee_id)

        return sorted(scored, key=cmp_to_key(compare))
