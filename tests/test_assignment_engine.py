"""
Tests for employee selection.
"""
import pytest

from models.employee import AvailabilityStatus, Employee, EmployeePerformance, SkillLevel, full_week
from models.queue_entry import AssignmentMethod
from models.service import AutoAssignmentRules, Service


@pytest.fixture
def engine(coordinator):
    return coordinator.assignment


@pytest.fixture
def directory(coordinator):
    return coordinator.directory


def test_selection_is_deterministic(engine):
    first = engine.select_employee("1", ["1"])
    second = engine.select_employee("1", ["1"])
    assert first.id == second.id == "1"


def test_preference_score_beats_rating(engine, directory):
    # Mike listed first now; Sarah has the better rating
    directory.get_service("1").auto_assignment_rules.preferred_employee_ids = ["2", "1"]

    ranked = engine.rank_candidates("1", ["1"])

    assert [c.employee_id for c in ranked] == ["2", "1"]
    assert ranked[0].preference_score == 10
    assert ranked[1].preference_score == 9


def test_rating_then_workload_without_preferences(engine, directory):
    directory.get_service("1").auto_assignment_rules.preferred_employee_ids = []

    # 4.8 vs 4.6 is outside the tie tolerance
    assert engine.select_employee("1", ["1"]).id == "1"

    # A 0.1 gap is a tie, so the lighter workload wins
    directory.get_employee("2").performance.customer_rating = 4.7
    directory.set_workloads("1", {"1": 2, "2": 0})
    assert engine.select_employee("1", ["1"]).id == "2"


def test_skill_requirement_leaves_only_specialty_match(engine, directory):
    # Sarah is only intermediate at coloring, an expert service
    assert directory.get_service("2").skill_level_required == SkillLevel.EXPERT

    ranked = engine.rank_candidates("1", ["2"])

    assert [c.employee_id for c in ranked] == ["1"]
    assert ranked[0].tier == "specialty"


def test_unavailable_employees_are_skipped(engine, directory):
    directory.get_employee("1").availability.status = AvailabilityStatus.BREAK
    assert engine.select_employee("1", ["1"]).id == "2"

    directory.get_employee("2").availability.status = AvailabilityStatus.INACTIVE
    assert engine.select_employee("1", ["1"]) is None


def test_busy_employee_still_takes_customers(engine, directory):
    directory.get_employee("3").availability.status = AvailabilityStatus.BUSY
    assert engine.select_employee("1", ["4"]).id == "3"


def test_day_off_excludes_employee(engine, directory, clock):
    # 2025-01-13 is a Monday, Mike's day off
    monday = clock().replace(day=13)
    directory.get_service("1").auto_assignment_rules.preferred_employee_ids = ["2"]

    assert engine.select_employee("1", ["1"], now=monday).id == "1"


def test_full_queue_excludes_employee(engine, directory):
    directory.get_employee("3").queue_settings.max_queue_size = 2
    directory.set_workloads("1", {"3": 2})

    assert engine.select_employee("1", ["4"]) is None


def test_specialty_fallback_when_nobody_is_qualified(engine, directory):
    # Nobody is assigned to this service, Emma's specialty still matches
    directory.add_service(Service(id="6", location_id="1", name="Nail Art", estimated_duration=30))

    ranked = engine.rank_candidates("1", ["6"])

    assert [c.employee_id for c in ranked] == ["3"]
    assert ranked[0].tier == "specialty"


def test_specialty_fallback_for_unknown_service_names(engine):
    employee = engine.select_employee("1", [], ["Beard Trim"])
    assert employee.id == "2"


def test_no_match_returns_none(engine):
    assert engine.select_employee("1", [], ["Massage"]) is None


def test_fallback_to_any_employee(engine, directory):
    directory.add_service(Service(
        id="7", location_id="1", name="Consultation",
        auto_assignment_rules=AutoAssignmentRules(fallback_to_any_employee=True),
    ))

    directory.get_employee("3").performance.customer_rating = 5.0

    ranked = engine.rank_candidates("1", ["7"])

    # Rating order: Emma, Sarah, Mike
    assert [c.employee_id for c in ranked] == ["3", "1", "2"]
    assert {c.tier for c in ranked} == {"any_available"}


def test_require_specialty_filters_qualified_set(engine, directory):
    directory.add_employee(Employee(
        id="4", location_id="1", first_name="Leo",
        specialties=["massage"],
        schedule=full_week(),
        performance=EmployeePerformance(customer_rating=5.0),
    ))
    directory.assign_employee_to_service("4", "3", "expert")
    directory.get_service("3").auto_assignment_rules.require_specialty = True

    assert engine.select_employee("1", ["3"]).id == "2"


def test_preferred_employee_for_request(engine):
    employee, method = engine.select_for_request("1", ["1"], preferred_employee_id="2")
    assert employee.id == "2"
    assert method == AssignmentMethod.PREFERRED

    employee, method = engine.select_for_request("1", ["4"], preferred_employee_id="2")
    assert employee.id == "3"
    assert method == AssignmentMethod.AUTO


def test_wait_estimates(engine, directory):
    sarah = directory.get_employee("1")
    directory.set_workloads("1", {"1": 3})
    assert engine.estimate_wait_minutes(sarah) == 135

    # Two entries ahead, mean of manicure (45) and pedicure (60)
    assert engine.estimate_unassigned_wait(2, ["4", "5"]) == 105
    assert engine.estimate_unassigned_wait(2, [], service_count=2) == 120
