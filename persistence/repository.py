"""
Persistence collaborator contract and an in-memory implementation.

The engine never depends on a particular backing store. Anything that offers
the async methods of ``QueueRepository`` can be plugged in.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
import copy

from errors import PersistenceError


TERMINAL_CHECKIN_STATUSES = ("expired", "cancelled", "in_queue")


@runtime_checkable
class QueueRepository(Protocol):
    """
    Schema-level contract the engine requires.

    Tables:
        queue_entries: one row per QueueEntry, server-assigned ``updated_at``
        checkin_entries: one row per CheckinEntry, ``checkin_code`` unique
            among non-terminal rows
        customers: customer history keyed on phone number
    """

    async def save_queue_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_queue_entry(self, entry_id: str) -> None:
        ...

    async def save_checkin(self, row: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def delete_checkin(self, checkin_id: str) -> None:
        ...

    async def upsert_customer(self, phone: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def ping(self) -> bool:
        ...


class InMemoryRepository:
    """
    Dictionary-backed repository.

    Used by tests and by single-process deployments without a hosted store.
    Rows are deep-copied in and out so callers cannot mutate stored state.
    """

    def __init__(self, clock=datetime.now):
        self.clock = clock
        self.queue_entries: Dict[str, Dict[str, Any]] = {}
        self.checkin_entries: Dict[str, Dict[str, Any]] = {}
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.write_count = 0

    # ==================== Queue entries ====================

    async def save_queue_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        stored = copy.deepcopy(row)
        if stored.get("position") is None and stored.get("status") == "waiting":
            # Server-assigned position on insert
            stored["position"] = 1 + sum(
                1 for r in self.queue_entries.values()
                if r["location_id"] == stored["location_id"]
                and r.get("status") == "waiting"
                and r["id"] != stored["id"]
            )
        stored["updated_at"] = self.clock().isoformat()
        self.queue_entries[stored["id"]] = stored
        self.write_count += 1
        return copy.deepcopy(stored)

    async def delete_queue_entry(self, entry_id: str) -> None:
        self.queue_entries.pop(entry_id, None)
        self.write_count += 1

    def queue_rows(self, location_id: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = self.queue_entries.values()
        if location_id:
            rows = [r for r in rows if r["location_id"] == location_id]
        return [copy.deepcopy(r) for r in rows]

    # ==================== Check-ins ====================

    async def save_checkin(self, row: Dict[str, Any]) -> Dict[str, Any]:
        if row.get("status") not in TERMINAL_CHECKIN_STATUSES:
            code = str(row.get("checkin_code", "")).upper()
            for other in self.checkin_entries.values():
                if (other["id"] != row["id"]
                        and other.get("status") not in TERMINAL_CHECKIN_STATUSES
                        and str(other.get("checkin_code", "")).upper() == code):
                    raise PersistenceError(
                        f"Check-in code '{code}' already in use",
                        {"checkin_code": code, "conflicting_id": other["id"]},
                    )
        stored = copy.deepcopy(row)
        stored["updated_at"] = self.clock().isoformat()
        self.checkin_entries[stored["id"]] = stored
        self.write_count += 1
        return copy.deepcopy(stored)

    async def delete_checkin(self, checkin_id: str) -> None:
        self.checkin_entries.pop(checkin_id, None)
        self.write_count += 1

    # ==================== Customers ====================

    async def upsert_customer(self, phone: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert or update the customer keyed on phone number.

        ``visit_count`` increments on every upsert; preferred services are
        merged, keeping first-seen order.
        """
        if not phone:
            raise PersistenceError("Customer history requires a phone number")

        now = self.clock().isoformat()
        existing = self.customers.get(phone)
        if existing is None:
            record = {
                "phone": phone,
                "name": data.get("name", ""),
                "email": data.get("email"),
                "preferred_services": list(data.get("preferred_services", [])),
                "visit_count": 1,
                "first_visit": now,
                "last_visit": now,
            }
        else:
            record = existing
            record["name"] = data.get("name") or record["name"]
            record["email"] = data.get("email") or record.get("email")
            for service in data.get("preferred_services", []):
                if service not in record["preferred_services"]:
                    record["preferred_services"].append(service)
            record["visit_count"] += 1
            record["last_visit"] = now

        self.customers[phone] = record
        self.write_count += 1
        return copy.deepcopy(record)

    def get_customer(self, phone: str) -> Optional[Dict[str, Any]]:
        record = self.customers.get(phone)
        return copy.deepcopy(record) if record else None

    async def ping(self) -> bool:
        return True
