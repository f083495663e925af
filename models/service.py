"""
Service catalog models.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .employee import SkillLevel


@dataclass
class AutoAssignmentRules:
    """
    Per-service auto-assignment preferences.

    Attributes:
        preferred_employee_ids: Priority order for assignment (first = strongest)
        require_specialty: Must have matching specialty
        consider_workload: Factor in current workload
        consider_rating: Factor in customer rating
        fallback_to_any_employee: Assign to any available employee if no match
    """
    preferred_employee_ids: List[str] = field(default_factory=list)
    require_specialty: bool = False
    consider_workload: bool = True
    consider_rating: bool = True
    fallback_to_any_employee: bool = False

    def preference_score(self, employee_id: str) -> int:
        """``10 - index`` in the preferred list, 0 if the employee is absent."""
        if employee_id not in self.preferred_employee_ids:
            return 0
        return 10 - self.preferred_employee_ids.index(employee_id)


@dataclass
class Service:
    """
    A service offered at a location.

    Attributes:
        id: Stable service identifier
        location_id: Location offering the service
        name: Display name (e.g. "Haircut & Style")
        estimated_duration: Minutes
        skill_level_required: Minimum skill level to perform it
        assigned_employee_ids: Eligibility set
        auto_assignment_rules: Assignment preferences
    """
    id: str
    location_id: str
    name: str
    estimated_duration: int = 30
    skill_level_required: SkillLevel = SkillLevel.BEGINNER
    assigned_employee_ids: List[str] = field(default_factory=list)
    auto_assignment_rules: AutoAssignmentRules = field(default_factory=AutoAssignmentRules)
    category: str = ""
    description: str = ""
    price: Optional[float] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.skill_level_required, SkillLevel):
            self.skill_level_required = SkillLevel.from_string(self.skill_level_required)

    def is_assigned(self, employee_id: str) -> bool:
        return employee_id in self.assigned_employee_ids

    def __str__(self) -> str:
        return f"{self.name} ({self.estimated_duration} min, {self.skill_level_required.value})"
