"""
Check-in Manager - Remote and in-store check-ins.

Owns check-in records, presence verification, the expiry and retention
sweeps, and the hand-off of a check-in to the queue ledger (published as a
``checkin.converted`` event).
"""
from dataclasses import fields
from datetime import datetime, timedelta
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
import asyncio
import secrets
import string
import uuid

from communication.message import EventType
from communication.message_bus import MessageBus
from config import QueueConfig
from engine.base_service import BaseService
from engine.employee_directory import EmployeeDirectory
from errors import NotFoundError, ValidationError, VerificationError
from models.checkin import (
    CheckinEntry,
    CheckinStatus,
    CheckinType,
    Coordinates,
    VerificationMethod,
    VerificationResult,
)
from models.queue_entry import CustomerType
from persistence.sync import SyncWriter


CODE_ALPHABET = string.ascii_uppercase + string.digits

# Fields update_checkin may change
UPDATABLE_FIELDS = frozenset({
    "customer_name", "customer_phone", "customer_email", "services",
    "preferred_employee_id", "estimated_arrival_time", "special_requests",
    "notes", "coordinates",
})

GeolocationProvider = Callable[[], Awaitable[Coordinates]]


class CheckinManager(BaseService):
    """
    Manages check-ins.

    Responsibilities:
    1. Create check-ins with a unique human-readable code
    2. Verify presence (geolocation, then network, then staff)
    3. Expire late remote check-ins and purge old terminal records
    4. Convert check-ins into queue entries
    """

    def __init__(self, message_bus: MessageBus, directory: EmployeeDirectory, sync: SyncWriter,
                 queue_config: Optional[QueueConfig] = None, clock=None, verbose: bool = True):
        super().__init__("CheckinManager", message_bus, clock=clock, verbose=verbose)
        self.directory = directory
        self.sync = sync
        self.config = queue_config or QueueConfig()
        self.checkins: Dict[str, CheckinEntry] = {}
        self.queue = None  # QueueService, attached by the coordinator

    # ==================== Codes ====================

    def active_codes(self) -> set:
        return {c.checkin_code for c in self.checkins.values() if not c.is_terminal}

    def generate_code(self) -> str:
        """Random code over A-Z0-9, unique among active check-ins."""
        taken = self.active_codes()
        length = self.config.checkin_code_length
        while True:
            code = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
            if code not in taken:
                return code

    # ==================== CRUD ====================

    async def add_checkin(self, location_id: str, customer_name: str, services: List[str],
                          checkin_type: CheckinType = CheckinType.REMOTE,
                          customer_phone: str = "",
                          customer_email: Optional[str] = None,
                          customer_type: CustomerType = CustomerType.REGULAR,
                          preferred_employee_id: Optional[str] = None,
                          estimated_arrival_time: Optional[datetime] = None,
                          coordinates: Optional[Coordinates] = None,
                          special_requests: Optional[str] = None,
                          notes: Optional[str] = None,
                          code: Optional[str] = None,
                          now: Optional[datetime] = None) -> CheckinEntry:
        """
        Create a check-in.

        Remote check-ins start en route; in-store check-ins are present on
        creation.

        Raises:
            ValidationError: Empty services, check-in type disabled at the
                location, or code already in use
            NotFoundError: Unknown location
        """
        services = [s.strip() for s in services if s and s.strip()]
        if not services:
            raise ValidationError("At least one service is required", {"customer_name": customer_name})
        if not customer_name or not customer_name.strip():
            raise ValidationError("Customer name is required")

        location = self.directory.get_location(location_id)
        if not isinstance(checkin_type, CheckinType):
            checkin_type = CheckinType(str(checkin_type).lower())
        if checkin_type == CheckinType.REMOTE and not location.settings.allow_remote_checkin:
            raise ValidationError(f"{location.name} does not accept remote check-ins")
        if checkin_type == CheckinType.IN_STORE and not location.settings.allow_walk_ins:
            raise ValidationError(f"{location.name} does not accept walk-ins")

        if code is not None:
            code = code.strip().upper()
            if code in self.active_codes():
                raise ValidationError(f"Check-in code '{code}' already in use", {"checkin_code": code})
        else:
            code = self.generate_code()

        at = self.now(now)
        checkin = CheckinEntry(
            id=str(uuid.uuid4()),
            location_id=location.id,
            customer_name=customer_name.strip(),
            customer_phone=customer_phone,
            customer_email=customer_email,
            customer_type=customer_type,
            services=services,
            service_ids=self.directory.resolve_service_ids(location.id, services),
            checkin_type=checkin_type,
            checkin_code=code,
            checkin_time=at,
            preferred_employee_id=preferred_employee_id,
            estimated_arrival_time=estimated_arrival_time,
            coordinates=coordinates,
            special_requests=special_requests,
            notes=notes,
        )
        if checkin_type == CheckinType.IN_STORE:
            checkin.status = CheckinStatus.PRESENT
            checkin.actual_arrival_time = at
            checkin.verification_method = VerificationMethod.STAFF_CONFIRMED

        self.checkins[checkin.id] = checkin
        self.log(f"📍 Check-in {checkin}")

        await self.persist(checkin)
        if customer_phone:
            await self.sync.write(
                f"customers:{customer_phone}:{checkin.id}",
                partial(self.sync.repository.upsert_customer, customer_phone, {
                    "name": checkin.customer_name,
                    "email": customer_email,
                    "preferred_services": list(services),
                }),
            )
        await self.publish(EventType.CHECKIN_ADDED, location.id,
                           entity_id=checkin.id, payload=checkin.to_row())
        return checkin

    def get_checkin(self, checkin_id: str) -> CheckinEntry:
        checkin = self.checkins.get(checkin_id)
        if checkin is None:
            raise NotFoundError("Check-in", checkin_id)
        return checkin

    def find_by_code(self, code: str) -> Optional[CheckinEntry]:
        """Case-insensitive lookup. Active check-ins win over terminal ones."""
        wanted = code.strip().upper()
        matches = [c for c in self.checkins.values() if c.checkin_code.upper() == wanted]
        if not matches:
            return None
        matches.sort(key=lambda c: (c.is_terminal, -c.checkin_time.timestamp()))
        return matches[0]

    def checkins_for_location(self, location_id: str,
                              statuses: Optional[List[CheckinStatus]] = None) -> List[CheckinEntry]:
        """Check-ins of a location, newest first."""
        result = [c for c in self.checkins.values() if c.location_id == location_id]
        if statuses is not None:
            result = [c for c in result if c.status in statuses]
        return sorted(result, key=lambda c: c.checkin_time, reverse=True)

    def active_counts(self, location_id: str) -> Tuple[int, int]:
        """(remote, in-store) check-ins still en route or present."""
        live = self.checkins_for_location(location_id, [CheckinStatus.EN_ROUTE, CheckinStatus.PRESENT])
        remote = sum(1 for c in live if c.checkin_type == CheckinType.REMOTE)
        return remote, len(live) - remote

    async def update_checkin(self, checkin_id: str, **changes) -> CheckinEntry:
        """
        Update editable fields of a check-in.

        Raises:
            NotFoundError: Unknown check-in
            ValidationError: Field not editable or services emptied
        """
        checkin = self.get_checkin(checkin_id)
        known = {f.name for f in fields(CheckinEntry)}
        bad = sorted(k for k in changes if k not in UPDATABLE_FIELDS or k not in known)
        if bad:
            raise ValidationError(f"Cannot update {', '.join(bad)}", {"checkin_id": checkin_id})
        if "services" in changes:
            services = [s.strip() for s in changes["services"] if s and s.strip()]
            if not services:
                raise ValidationError("At least one service is required", {"checkin_id": checkin_id})
            changes["services"] = services
            checkin.service_ids = self.directory.resolve_service_ids(checkin.location_id, services)

        for key, value in changes.items():
            setattr(checkin, key, value)

        await self.persist(checkin)
        await self.publish(EventType.CHECKIN_UPDATED, checkin.location_id,
                           entity_id=checkin.id, payload={k: str(v) for k, v in changes.items()})
        return checkin

    async def _set_status(self, checkin: CheckinEntry, status: CheckinStatus, **payload) -> CheckinEntry:
        previous = checkin.status
        checkin.status = status
        await self.persist(checkin)
        await self.publish(
            EventType.CHECKIN_UPDATED,
            checkin.location_id,
            entity_id=checkin.id,
            payload={"from": previous.value, "to": status.value, **payload},
        )
        return checkin

    async def mark_present(self, checkin_id: str,
                           method: VerificationMethod = VerificationMethod.STAFF_CONFIRMED,
                           now: Optional[datetime] = None) -> CheckinEntry:
        """
        Record the customer's arrival.

        Raises:
            ValidationError: Check-in already expired, cancelled or queued
        """
        checkin = self.get_checkin(checkin_id)
        if checkin.is_terminal:
            raise ValidationError(
                f"Check-in {checkin.checkin_code} is {checkin.status.value}",
                {"checkin_id": checkin_id},
            )
        if checkin.status == CheckinStatus.PRESENT:
            return checkin
        checkin.actual_arrival_time = self.now(now)
        checkin.verification_method = method
        self.log(f"✅ {checkin.customer_name} arrived ({method.value})", "success")
        return await self._set_status(checkin, CheckinStatus.PRESENT, verification_method=method.value)

    async def cancel_checkin(self, checkin_id: str) -> CheckinEntry:
        """Cancel a check-in. Cancelling twice is a no-op."""
        checkin = self.get_checkin(checkin_id)
        if checkin.status == CheckinStatus.CANCELLED:
            return checkin
        if checkin.status == CheckinStatus.IN_QUEUE:
            raise ValidationError(
                f"Check-in {checkin.checkin_code} is already in the queue",
                {"checkin_id": checkin_id},
            )
        return await self._set_status(checkin, CheckinStatus.CANCELLED)

    async def remove_checkin(self, checkin_id: str) -> CheckinEntry:
        checkin = self.get_checkin(checkin_id)
        del self.checkins[checkin_id]
        await self.sync.write(
            f"checkin_entries:{checkin.id}",
            partial(self.sync.repository.delete_checkin, checkin.id),
            delete=True,
        )
        return checkin

    async def persist(self, checkin: CheckinEntry):
        return await self.sync.write(
            f"checkin_entries:{checkin.id}",
            partial(self.sync.repository.save_checkin, checkin.to_row()),
        )

    # ==================== Verification ====================

    def verify_location(self, location_id: str, coordinates: Coordinates) -> bool:
        """
        Geofence check of device coordinates against the location.

        Raises:
            VerificationError: Location has no registered coordinates
        """
        location = self.directory.get_location(location_id)
        if location.coordinates is None:
            raise VerificationError(
                f"{location.name} has no registered coordinates",
                {"location_id": location_id},
            )
        radius = location.settings.checkin_radius or self.config.default_checkin_radius_m
        distance = location.coordinates.distance_to(coordinates)
        return distance <= radius

    async def verify_presence(self, checkin_id: str,
                              geolocation: Optional[GeolocationProvider] = None,
                              network_ssid: Optional[str] = None,
                              now: Optional[datetime] = None) -> VerificationResult:
        """
        Establish that a customer is at the location.

        Tries, in order: device geolocation (bounded by the geolocation
        timeout), the device's network name against the location's SSID,
        then falls back to manual staff confirmation. A verified check-in is
        marked present with the method that succeeded.
        """
        checkin = self.get_checkin(checkin_id)
        location = self.directory.get_location(checkin.location_id)
        attempts: List[str] = []

        coordinates = None
        if geolocation is not None:
            try:
                coordinates = await asyncio.wait_for(
                    geolocation(), timeout=self.config.geolocation_timeout_seconds
                )
            except asyncio.TimeoutError:
                attempts.append("geolocation: timed out")
                self.log(f"Geolocation timed out for {checkin.checkin_code}", "warning")
            except Exception as e:
                # Denied permission or device error: fall through to the network check
                attempts.append(f"geolocation: {type(e).__name__}: {e}")
                self.log(f"Geolocation failed for {checkin.checkin_code}: {e}", "warning")

        if coordinates is not None:
            checkin.coordinates = coordinates
            try:
                inside = self.verify_location(location.id, coordinates)
            except VerificationError as e:
                attempts.append(f"geolocation: {e.message}")
            else:
                distance = location.coordinates.distance_to(coordinates)
                if inside:
                    await self.mark_present(checkin_id, VerificationMethod.GEOLOCATION, now)
                    return VerificationResult(True, VerificationMethod.GEOLOCATION, distance_m=distance,
                                              reason="Within geofence", attempts=attempts + ["geolocation"])
                attempts.append(f"geolocation: {distance:.0f}m away")
            await self.persist(checkin)

        if network_ssid and location.settings.wifi_ssid:
            if network_ssid.strip() == location.settings.wifi_ssid:
                await self.mark_present(checkin_id, VerificationMethod.WIFI, now)
                return VerificationResult(True, VerificationMethod.WIFI,
                                          reason=f"On network {location.settings.wifi_ssid}",
                                          attempts=attempts + ["wifi"])
            attempts.append(f"wifi: unknown network {network_ssid!r}")
        else:
            attempts.append("wifi: no network information")

        self.log(f"Check-in {checkin.checkin_code} needs staff confirmation", "warning")
        return VerificationResult(False, VerificationMethod.MANUAL,
                                  reason="Awaiting staff confirmation", attempts=attempts)

    # ==================== Sweeps ====================

    async def expire_old_checkins(self, now: Optional[datetime] = None) -> List[CheckinEntry]:
        """
        Expire en-route check-ins whose expected arrival is more than the
        expiry window in the past (check-in time when no arrival was given).
        """
        cutoff = self.now(now) - timedelta(hours=self.config.checkin_expiry_hours)
        expired = []
        for checkin in list(self.checkins.values()):
            if checkin.status != CheckinStatus.EN_ROUTE:
                continue
            reference = checkin.estimated_arrival_time or checkin.checkin_time
            if reference < cutoff:
                await self._set_status(checkin, CheckinStatus.EXPIRED)
                expired.append(checkin)
        if expired:
            self.log(f"⌛ Expired {len(expired)} check-in(s)")
        return expired

    async def cleanup_old_checkins(self, now: Optional[datetime] = None) -> int:
        """Purge expired, cancelled and queued check-ins older than the retention window."""
        cutoff = self.now(now) - timedelta(hours=self.config.terminal_retention_hours)
        stale = [c for c in self.checkins.values() if c.is_terminal and c.checkin_time < cutoff]
        for checkin in stale:
            await self.remove_checkin(checkin.id)
        if stale:
            self.log(f"🧹 Purged {len(stale)} old check-in(s)")
        return len(stale)

    # ==================== Conversion ====================

    async def convert_to_queue(self, checkin_id: str, now: Optional[datetime] = None) -> CheckinEntry:
        """
        Hand a check-in over to the queue ledger.

        Sets the status to in_queue and publishes ``checkin.converted`` with
        the full check-in payload. The record is kept for audit. Converting
        an already queued check-in is a no-op.

        If the ledger does not enqueue the customer, the check-in is put back
        to its previous status so it can be converted again.

        Raises:
            ValidationError: Check-in expired or cancelled, queue full, or
                the ledger rejected the entry
        """
        checkin = self.get_checkin(checkin_id)
        if checkin.status == CheckinStatus.IN_QUEUE:
            return checkin
        if checkin.status in (CheckinStatus.EXPIRED, CheckinStatus.CANCELLED):
            raise ValidationError(
                f"Check-in {checkin.checkin_code} is {checkin.status.value}",
                {"checkin_id": checkin_id},
            )
        if self.queue is not None:
            self.queue.check_capacity(checkin.location_id)

        previous_status = checkin.status
        previous_arrival = checkin.actual_arrival_time
        at = self.now(now)
        if checkin.actual_arrival_time is None:
            checkin.actual_arrival_time = at
        await self._set_status(checkin, CheckinStatus.IN_QUEUE)

        event = await self.publish(EventType.CHECKIN_CONVERTED, checkin.location_id,
                                   entity_id=checkin.id, payload=checkin.to_row())

        if self.queue is not None and self.queue.find_by_checkin(checkin.id) is None:
            failure = next((f for f in reversed(self.message_bus.failures)
                            if f["correlation_id"] == event.correlation_id), None)
            checkin.actual_arrival_time = previous_arrival
            await self._set_status(checkin, previous_status)
            self.log(f"Check-in {checkin.checkin_code} was not queued", "error")
            raise ValidationError(
                f"Check-in {checkin.checkin_code} could not be queued",
                {"checkin_id": checkin_id, "error": failure["error"] if failure else None},
            )

        self.log(f"➡️ {checkin.customer_name} ({checkin.checkin_code}) moved to queue", "success")
        return checkin
