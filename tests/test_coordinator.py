"""
Tests for the reconciliation pass and the coordinator lifecycle.
"""
import pytest

from models.queue_entry import QueueStatus
from models.rules import AlertType


@pytest.mark.asyncio
async def test_reconcile_on_idle_engine(coordinator):
    summary = await coordinator.reconcile()

    assert summary["checkins_expired"] == 0
    assert summary["entries_purged"] == 0
    assert summary["pending_writes"] == 0
    assert coordinator.reconcile_count == 1
    assert coordinator.last_reconcile is summary


@pytest.mark.asyncio
async def test_reconcile_expires_late_checkins(coordinator, clock):
    checkin = await coordinator.checkins.add_checkin("1", "Ana", ["Manicure"])
    clock.advance(hours=4, minutes=30)

    summary = await coordinator.reconcile()

    assert summary["checkins_expired"] == 1
    assert coordinator.checkins.get_checkin(checkin.id).status.value == "expired"


@pytest.mark.asyncio
async def test_reconcile_purges_finished_entries(coordinator, queue, walk_in, clock):
    entry = await queue.enqueue(walk_in("Ana", "Manicure"))
    await queue.transition(entry.id, QueueStatus.CALLED)
    await queue.transition(entry.id, QueueStatus.IN_PROGRESS)
    await queue.transition(entry.id, QueueStatus.COMPLETED)

    clock.advance(hours=25)
    summary = await coordinator.reconcile()

    assert summary["entries_purged"] == 1
    assert entry.id not in queue.entries


@pytest.mark.asyncio
async def test_reconcile_raises_overflow_alert(coordinator, queue, walk_in, check_workloads):
    for name in ("Ana", "Ben", "Cal"):
        await queue.enqueue(walk_in(name, "Haircut & Style", assigned_employee_id="1"))

    summary = await coordinator.reconcile()

    assert summary["alerts_raised"] == 1
    assert len(coordinator.alerts.active_alerts("1", AlertType.QUEUE_OVERFLOW)) == 1
    check_workloads()

    # Already alerted: the next pass stays quiet
    assert (await coordinator.reconcile())["alerts_raised"] == 0


@pytest.mark.asyncio
async def test_reconcile_flushes_pending_writes(coordinator, repository, queue, walk_in):
    repository.down = True
    entry = await queue.enqueue(walk_in("Ana", "Manicure"))

    summary = await coordinator.reconcile()
    assert summary["writes_flushed"] == 0
    assert summary["pending_writes"] >= 1

    repository.down = False
    summary = await coordinator.reconcile()

    assert summary["writes_flushed"] >= 1
    assert summary["pending_writes"] == 0
    assert entry.id in repository.queue_entries


@pytest.mark.asyncio
async def test_start_and_stop(coordinator):
    await coordinator.start()
    assert len(coordinator._tasks) == 2
    assert coordinator.health()["status"] == "healthy"

    await coordinator.stop()

    assert coordinator._tasks == []
    assert all(not service.is_active for service in coordinator.services)
    assert coordinator.health()["status"] == "unhealthy"


@pytest.mark.asyncio
async def test_queue_board_and_summary(coordinator, queue, walk_in):
    await queue.enqueue(walk_in("Ana", "Manicure"))

    coordinator.print_queue_board()
    summary = coordinator.shutdown_summary()

    assert set(summary) == {service.name for service in coordinator.services}
    assert coordinator.get_metrics()["entries"] == 1
