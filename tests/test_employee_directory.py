"""
Tests for the employee directory and service catalog.
"""
from datetime import time

import pytest

from communication.message import EventType
from errors import NotFoundError, ValidationError
from models.employee import AvailabilityStatus, BreakWindow, SkillLevel


@pytest.fixture
def directory(coordinator):
    return coordinator.directory


def ids(employees):
    return sorted(e.id for e in employees)


def test_demo_staff_available_on_wednesday(directory, clock):
    assert ids(directory.available_employees("1")) == ["1", "2", "3"]


def test_lookups_raise_not_found(directory):
    with pytest.raises(NotFoundError):
        directory.get_employee("99")
    with pytest.raises(NotFoundError):
        directory.get_service("99")
    with pytest.raises(NotFoundError):
        directory.get_location("99")


@pytest.mark.asyncio
async def test_update_availability_publishes_change(coordinator, directory, clock):
    clock.advance(minutes=15)

    await directory.update_availability("2", "break", notes="Lunch")

    mike = directory.get_employee("2")
    assert mike.availability.status == AvailabilityStatus.BREAK
    assert mike.availability.last_status_change == clock()
    assert ids(directory.available_employees("1")) == ["1", "3"]

    event = coordinator.message_bus.get_history(event_type=EventType.EMPLOYEE_AVAILABILITY_CHANGED)[-1]
    assert event.payload == {"from": "active", "to": "break", "notes": "Lunch"}


def test_queue_settings_updates(directory):
    settings = directory.update_queue_settings("3", accept_new_customers=False)

    assert settings.accept_new_customers is False
    assert "3" not in ids(directory.available_employees("1"))
    with pytest.raises(ValidationError):
        directory.update_queue_settings("3", favourite_colour="blue")


def test_break_window_blocks_assignment(directory, clock):
    directory.update_queue_settings("1", break_schedule=[BreakWindow(time(10, 0), time(10, 30), "lunch")])

    assert "1" not in ids(directory.available_employees("1"))
    assert "1" in ids(directory.available_employees("1", now=clock().replace(hour=10, minute=30)))


def test_assign_employee_to_service_keeps_both_sides(directory):
    directory.assign_employee_to_service("3", "3", "beginner")

    assert "3" in directory.get_service("3").assigned_employee_ids
    assert "3" in directory.get_employee("3").service_ids
    assert directory.get_employee("3").skill_level["3"] == SkillLevel.BEGINNER
    assert ids(directory.employees_for_service("3")) == ["2", "3"]


def test_find_services_by_name(directory):
    found = directory.find_services_by_name("1", ["manicure", "Haircut", "Massage", "MANICURE"])

    assert [s.id for s in found] == ["4", "1"]


def test_workloads_follow_recomputation(directory):
    directory.set_workloads("1", {"1": 2})

    assert directory.get_workload("1") == 2
    assert directory.workloads_for_location("1") == {"1": 2, "2": 0, "3": 0}

    directory.set_workloads("1", {})
    assert directory.get_workload("1") == 0


def test_completed_service_updates_running_average(directory):
    emma = directory.get_employee("3")
    served = emma.performance.customers_served

    directory.record_service_completed("3", 50)

    assert emma.performance.customers_served == served + 1
    assert emma.performance.average_service_time == pytest.approx((60 * served + 50) / (served + 1))
