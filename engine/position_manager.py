"""
Position Manager - Derives queue positions and workloads from the entry set.

Nothing here patches counters in place. Positions and workloads are always
recomputed from the authoritative entries, so two writers that raced converge
once both writes are visible.
"""
from collections import Counter
from typing import Dict, Iterable, List

from models.queue_entry import ACTIVE_STATUSES, QueueEntry, QueueStatus


def ordering_key(entry: QueueEntry):
    """Join time, then id for entries that joined at the same instant."""
    return (entry.joined_at, entry.id)


def recompute_positions(entries: Iterable[QueueEntry], location_id: str) -> List[QueueEntry]:
    """
    Assign dense 1-based positions to the waiting entries of a location.

    Every non-waiting entry of the location loses its position.

    Returns:
        The waiting entries in position order
    """
    waiting = []
    for entry in entries:
        if entry.location_id != location_id:
            continue
        if entry.status == QueueStatus.WAITING:
            waiting.append(entry)
        else:
            entry.position = None

    waiting.sort(key=ordering_key)
    for index, entry in enumerate(waiting):
        entry.position = index + 1
    return waiting


def workload_counts(entries: Iterable[QueueEntry], location_id: str) -> Dict[str, int]:
    """Active entries per assigned employee at a location."""
    counts = Counter(
        entry.assigned_employee_id
        for entry in entries
        if entry.location_id == location_id
        and entry.assigned_employee_id
        and entry.status in ACTIVE_STATUSES
    )
    return dict(counts)


def ahead_of(entries: Iterable[QueueEntry], target: QueueEntry) -> List[QueueEntry]:
    """
    Active entries of the same employee that are ahead of ``target``.

    Called and in-progress entries are always ahead of a waiting one.
    """
    if not target.assigned_employee_id:
        return []
    ahead = []
    for entry in entries:
        if (entry.id == target.id
                or entry.location_id != target.location_id
                or entry.assigned_employee_id != target.assigned_employee_id
                or entry.status not in ACTIVE_STATUSES):
            continue
        if entry.status != QueueStatus.WAITING or ordering_key(entry) < ordering_key(target):
            ahead.append(entry)
    return ahead


def check_positions(entries: Iterable[QueueEntry], location_id: str) -> bool:
    """True if waiting positions are exactly 1..n in join order."""
    waiting = sorted(
        (e for e in entries if e.location_id == location_id and e.status == QueueStatus.WAITING),
        key=ordering_key,
    )
    return [e.position for e in waiting] == list(range(1, len(waiting) + 1))
