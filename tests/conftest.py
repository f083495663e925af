from datetime import datetime, timedelta

import pytest

from config import AppConfig, PersistenceConfig, QueueConfig
from engine.coordinator import QueueCoordinator
from engine.data_loader import seed_demo_directory
from errors import PersistenceError
from models.queue_entry import EnqueueRequest
from persistence.repository import InMemoryRepository


# A Wednesday: Sarah, Mike and Emma are all scheduled
START = datetime(2025, 1, 15, 10, 0)


class FrozenClock:
    """Manually advanced time source shared by every service."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class FlakyRepository(InMemoryRepository):
    """In-memory store that fails every write while ``down`` is set."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.down = False
        self.failed_writes = 0

    def _check(self):
        if self.down:
            self.failed_writes += 1
            raise PersistenceError("store unreachable")

    async def save_queue_entry(self, row):
        self._check()
        return await super().save_queue_entry(row)

    async def delete_queue_entry(self, entry_id):
        self._check()
        return await super().delete_queue_entry(entry_id)

    async def save_checkin(self, row):
        self._check()
        return await super().save_checkin(row)

    async def delete_checkin(self, checkin_id):
        self._check()
        return await super().delete_checkin(checkin_id)

    async def upsert_customer(self, phone, data):
        self._check()
        return await super().upsert_customer(phone, data)

    async def ping(self):
        return not self.down


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        queue=QueueConfig(geolocation_timeout_seconds=0.05),
        persistence=PersistenceConfig(max_retries=1, base_delay=0, max_delay=0),
        log_dir=str(tmp_path),
        verbose=False,
    )


@pytest.fixture
def repository(clock):
    return FlakyRepository(clock)


@pytest.fixture
def coordinator(repository, app_config, clock):
    coordinator = QueueCoordinator(
        repository=repository,
        app_config=app_config,
        clock=clock,
        verbose=False,
    )
    seed_demo_directory(coordinator.directory)
    return coordinator


@pytest.fixture
def queue(coordinator):
    return coordinator.queue


@pytest.fixture
def walk_in():
    def _request(name, *services, **kwargs):
        return EnqueueRequest(
            location_id=kwargs.pop("location_id", "1"),
            customer_name=name,
            services=list(services),
            **kwargs,
        )

    return _request


def assert_workloads_consistent(coordinator, location_id="1"):
    """Every employee's workload equals their count of active entries."""
    for employee in coordinator.directory.employees_at(location_id):
        expected = sum(
            1 for e in coordinator.queue.entries.values()
            if e.assigned_employee_id == employee.id and e.is_active
        )
        assert employee.workload == expected, employee.full_name


@pytest.fixture
def check_workloads(coordinator):
    return lambda location_id="1": assert_workloads_consistent(coordinator, location_id)
