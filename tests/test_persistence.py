"""
Tests for the dual-write path: degraded mode, resync and the in-memory store.
"""
import pytest

from errors import PersistenceError
from persistence.repository import InMemoryRepository, QueueRepository
from persistence.sync import MAX_ERROR_LOG, SyncWriter, WriteOutcome
from config import PersistenceConfig


# ============================================================================
# Degraded mode
# ============================================================================

@pytest.mark.asyncio
async def test_unreachable_store_keeps_local_state(coordinator, repository, queue, walk_in):
    repository.down = True

    entry = await queue.enqueue(walk_in("Ana", "Manicure"))

    assert queue.entries[entry.id].position == 1
    assert queue.sync_state(entry.id) == WriteOutcome.PENDING_RETRY
    assert repository.queue_entries == {}
    assert coordinator.sync.pending_count() >= 1
    assert coordinator.sync.errors[0]["error"].startswith("PersistenceError")


@pytest.mark.asyncio
async def test_health_reports_degraded_while_writes_pending(coordinator, repository, queue, walk_in):
    assert coordinator.health()["status"] == "healthy"

    repository.down = True
    await queue.enqueue(walk_in("Ana", "Manicure"))

    report = coordinator.health()
    assert report["status"] == "degraded"
    persistence = next(c for c in report["checks"] if c["name"] == "persistence")
    assert not persistence["healthy"]


@pytest.mark.asyncio
async def test_resync_commits_after_recovery(coordinator, repository, queue, walk_in):
    repository.down = True
    entry = await queue.enqueue(walk_in("Ana", "Manicure"))

    # Still down: nothing committed, retries counted
    assert await coordinator.sync.flush_pending() == 0
    assert coordinator.sync.pending_count() >= 1

    repository.down = False
    assert await coordinator.sync.flush_pending() >= 1

    assert coordinator.sync.pending_count() == 0
    assert queue.sync_state(entry.id) == WriteOutcome.COMMITTED
    assert repository.queue_entries[entry.id]["customer_name"] == "Ana"
    assert coordinator.health()["status"] == "healthy"


@pytest.mark.asyncio
async def test_latest_write_for_a_row_wins(coordinator, repository, queue, walk_in):
    repository.down = True
    entry = await queue.enqueue(walk_in("Ana", "Manicure"))
    await queue.transition(entry.id, "called")

    pending = coordinator.sync.pending[f"queue_entries:{entry.id}"]
    assert pending.attempts == 2

    repository.down = False
    await coordinator.sync.flush_pending()

    assert repository.queue_entries[entry.id]["status"] == "called"


@pytest.mark.asyncio
async def test_committed_write_clears_older_pending_one(clock):
    repository = InMemoryRepository(clock=clock)
    sync = SyncWriter(repository, PersistenceConfig(max_retries=0, base_delay=0, max_delay=0), clock=clock)

    async def fails():
        raise ConnectionError("reset by peer")

    async def succeeds():
        return await repository.upsert_customer("555-0100", {"name": "Ana"})

    assert await sync.write("customers:555-0100", fails) == WriteOutcome.PENDING_RETRY
    assert await sync.write("customers:555-0100", succeeds) == WriteOutcome.COMMITTED

    assert sync.pending_count() == 0
    assert sync.outcome_for("customers:555-0100") == WriteOutcome.COMMITTED


@pytest.mark.asyncio
async def test_programming_errors_are_not_swallowed(clock):
    sync = SyncWriter(InMemoryRepository(clock=clock), clock=clock)

    async def broken():
        raise KeyError("id")

    with pytest.raises(KeyError):
        await sync.write("queue_entries:x", broken)
    assert sync.pending_count() == 0


@pytest.mark.asyncio
async def test_committed_delete_forgets_the_row(coordinator, repository, queue, walk_in):
    entry = await queue.enqueue(walk_in("Ana", "Manicure"))
    repository.down = True
    await queue.remove(entry.id)
    assert queue.sync_state(entry.id) == WriteOutcome.PENDING_RETRY

    repository.down = False
    await coordinator.sync.flush_pending()

    assert queue.sync_state(entry.id) is None
    assert entry.id not in repository.queue_entries


@pytest.mark.asyncio
async def test_error_log_keeps_the_latest_failures(clock):
    sync = SyncWriter(InMemoryRepository(clock=clock), clock=clock)

    async def fails():
        raise ConnectionError("reset by peer")

    for n in range(MAX_ERROR_LOG + 5):
        await sync.write(f"customers:{n}", fails)

    assert len(sync.errors) == MAX_ERROR_LOG
    assert sync.errors[0]["key"] == "customers:5"


# ============================================================================
# In-memory store
# ============================================================================

def test_in_memory_repository_satisfies_contract():
    assert isinstance(InMemoryRepository(), QueueRepository)


@pytest.mark.asyncio
async def test_store_assigns_position_on_insert(clock):
    repository = InMemoryRepository(clock=clock)

    first = await repository.save_queue_entry({"id": "a", "location_id": "1", "status": "waiting"})
    second = await repository.save_queue_entry({"id": "b", "location_id": "1", "status": "waiting"})
    other = await repository.save_queue_entry({"id": "c", "location_id": "2", "status": "waiting"})

    assert (first["position"], second["position"], other["position"]) == (1, 2, 1)
    assert first["updated_at"] == clock().isoformat()


@pytest.mark.asyncio
async def test_store_rejects_duplicate_active_code(clock):
    repository = InMemoryRepository(clock=clock)
    await repository.save_checkin({"id": "a", "checkin_code": "AB12CD", "status": "en_route"})

    with pytest.raises(PersistenceError):
        await repository.save_checkin({"id": "b", "checkin_code": "ab12cd", "status": "present"})

    # Terminal rows release their code
    await repository.save_checkin({"id": "a", "checkin_code": "AB12CD", "status": "expired"})
    await repository.save_checkin({"id": "b", "checkin_code": "AB12CD", "status": "present"})
    assert set(repository.checkin_entries) == {"a", "b"}


@pytest.mark.asyncio
async def test_customer_upsert_merges_history(clock):
    repository = InMemoryRepository(clock=clock)

    await repository.upsert_customer("555-0100", {"name": "Ana", "preferred_services": ["Haircut"]})
    clock.advance(days=7)
    record = await repository.upsert_customer(
        "555-0100", {"name": "", "email": "ana@example.com", "preferred_services": ["Manicure", "Haircut"]}
    )

    assert record["name"] == "Ana"
    assert record["email"] == "ana@example.com"
    assert record["preferred_services"] == ["Haircut", "Manicure"]
    assert record["visit_count"] == 2
    assert record["last_visit"] > record["first_visit"]

    with pytest.raises(PersistenceError):
        await repository.upsert_customer("", {"name": "Nobody"})


@pytest.mark.asyncio
async def test_stored_rows_are_copies(clock):
    repository = InMemoryRepository(clock=clock)
    row = {"id": "a", "location_id": "1", "status": "waiting", "services": ["Haircut"]}

    await repository.save_queue_entry(row)
    row["services"].append("Shave")

    assert repository.queue_rows("1")[0]["services"] == ["Haircut"]
