"""
Tests for loading the employee and service catalogs from CSV.
"""
import io
from datetime import time

import pytest

from engine.data_loader import DirectoryLoader
from models.employee import SkillLevel


EMPLOYEES_CSV = """id,location_id,first_name,last_name,email,phone,specialties,skills,rating,average_service_time,max_queue_size,days_off,start_time,end_time,status
10,1,Nina,Park,nina@salon.example,555-0110,Manicure; Nail_Art,4:expert;5:intermediate,4.7,40,3,sunday;monday,10:00,19:00,active
11,1,,Nobody,,,,,,,,,,,
12,1,Omar,Reyes,,,,4:expert,five stars,,,,,,
13,1,Pia,Lund,,,styling,1:senior,4.1,,,,,,inactive
14,1,Quinn,,,,,4-expert,4.0,,,,,,
"""

SERVICES_CSV = """id,location_id,name,duration,skill_level_required,assigned_employee_ids,preferred_employee_ids,category,price
6,1,Gel Polish,50,expert,3;10,10,nails,45
7,1,Broken Duration,about an hour,,,,,
8,1,Brow Shaping,,,,,,
"""


@pytest.fixture
def loader(coordinator):
    return coordinator.loader


def test_load_employees(loader, coordinator):
    loaded = loader.load_employees(io.StringIO(EMPLOYEES_CSV))

    assert [e.id for e in loaded] == ["10", "13"]
    nina = coordinator.directory.get_employee("10")
    assert nina.full_name == "Nina Park"
    assert nina.specialties == ["manicure", "nail_art"]
    assert nina.service_ids == ["4", "5"]
    assert nina.skill_level == {"4": SkillLevel.EXPERT, "5": SkillLevel.INTERMEDIATE}
    assert nina.performance.customer_rating == 4.7
    assert nina.performance.average_service_time == 40
    assert nina.queue_settings.max_queue_size == 3
    assert not nina.schedule["sunday"].is_working
    assert not nina.schedule["monday"].is_working
    assert nina.schedule["wednesday"].start_time == time(10, 0)
    assert nina.schedule["wednesday"].end_time == time(19, 0)

    pia = coordinator.directory.get_employee("13")
    assert pia.is_active is False
    assert pia.skill_level == {"1": SkillLevel.EXPERT}


def test_malformed_employee_rows_are_skipped(loader):
    loader.load_employees(io.StringIO(EMPLOYEES_CSV))

    assert [(s["kind"], s["row"]) for s in loader.skipped] == [
        ("employee", 1),
        ("employee", 2),
        ("employee", 4),
    ]
    assert "service:level" in loader.skipped[2]["error"]


def test_load_services(loader, coordinator):
    loaded = loader.load_services(io.StringIO(SERVICES_CSV))

    assert [s.id for s in loaded] == ["6", "8"]
    gel = coordinator.directory.get_service("6")
    assert gel.estimated_duration == 50
    assert gel.skill_level_required == SkillLevel.EXPERT
    assert gel.assigned_employee_ids == ["3", "10"]
    assert gel.auto_assignment_rules.preferred_employee_ids == ["10"]
    assert gel.price == 45.0

    brows = coordinator.directory.get_service("8")
    assert brows.estimated_duration == 30
    assert brows.skill_level_required == SkillLevel.BEGINNER
    assert brows.price is None
    assert loader.skipped == [{"kind": "service", "row": 1, "error": loader.skipped[0]["error"]}]


def test_load_all_from_data_dir(coordinator, tmp_path):
    (tmp_path / "employees.csv").write_text(EMPLOYEES_CSV)
    (tmp_path / "services.csv").write_text(SERVICES_CSV)
    loader = DirectoryLoader(coordinator.message_bus, coordinator.directory,
                             data_dir=str(tmp_path), verbose=False)

    assert loader.load_all() == {"employees": 2, "services": 2, "skipped": 4}


def test_load_all_tolerates_missing_files(coordinator, tmp_path):
    loader = DirectoryLoader(coordinator.message_bus, coordinator.directory,
                             data_dir=str(tmp_path / "nowhere"), verbose=False)

    assert loader.load_all() == {"employees": 0, "services": 0, "skipped": 0}
