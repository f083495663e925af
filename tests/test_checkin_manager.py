"""
Tests for check-ins: codes, presence verification, expiry and conversion.
"""
import asyncio
import math
from datetime import timedelta

import pytest

from communication.message import EventType
from errors import ValidationError, VerificationError
from models.checkin import (
    EARTH_RADIUS_M,
    CheckinStatus,
    CheckinType,
    Coordinates,
    VerificationMethod,
)
from models.location import Location
from models.queue_entry import CustomerType


SALON = Coordinates(latitude=40.7128, longitude=-74.0060)


def north_of(origin, meters):
    """Point ``meters`` due north (haversine distance is exact along a meridian)."""
    return Coordinates(origin.latitude + math.degrees(meters / EARTH_RADIUS_M), origin.longitude)


def located_at(coordinates):
    async def provider():
        return coordinates

    return provider


@pytest.fixture
def checkins(coordinator):
    return coordinator.checkins


# ============================================================================
# Creation and codes
# ============================================================================

@pytest.mark.asyncio
async def test_remote_checkin_starts_en_route(checkins, clock):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    assert checkin.status == CheckinStatus.EN_ROUTE
    assert checkin.checkin_time == clock()
    assert checkin.service_ids == ["4"]
    assert len(checkin.checkin_code) == 6
    assert checkin.checkin_code.isalnum() and checkin.checkin_code.upper() == checkin.checkin_code


@pytest.mark.asyncio
async def test_in_store_checkin_is_present(checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"], checkin_type=CheckinType.IN_STORE)

    assert checkin.status == CheckinStatus.PRESENT
    assert checkin.verification_method == VerificationMethod.STAFF_CONFIRMED
    assert checkins.active_counts("1") == (0, 1)


@pytest.mark.asyncio
async def test_checkin_requires_services(checkins):
    with pytest.raises(ValidationError):
        await checkins.add_checkin("1", "Ana", [])
    assert checkins.checkins == {}


@pytest.mark.asyncio
async def test_remote_checkin_can_be_disabled(coordinator, checkins):
    coordinator.directory.get_location("1").settings.allow_remote_checkin = False

    with pytest.raises(ValidationError):
        await checkins.add_checkin("1", "Ana", ["Manicure"])


@pytest.mark.asyncio
async def test_active_codes_are_unique(checkins):
    codes = set()
    for i in range(30):
        checkin = await checkins.add_checkin("1", f"Guest {i}", ["Manicure"])
        codes.add(checkin.checkin_code)
    assert len(codes) == 30


@pytest.mark.asyncio
async def test_duplicate_code_rejected_until_released(checkins):
    first = await checkins.add_checkin("1", "Ana", ["Manicure"], code="ab12cd")
    assert first.checkin_code == "AB12CD"

    with pytest.raises(ValidationError):
        await checkins.add_checkin("1", "Ben", ["Manicure"], code="AB12CD")

    await checkins.cancel_checkin(first.id)
    second = await checkins.add_checkin("1", "Ben", ["Manicure"], code="AB12CD")
    assert checkins.find_by_code("ab12cd").id == second.id


@pytest.mark.asyncio
async def test_update_checkin(checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    await checkins.update_checkin(checkin.id, services=["Pedicure"], notes="Running late")

    assert checkin.services == ["Pedicure"]
    assert checkin.service_ids == ["5"]
    with pytest.raises(ValidationError):
        await checkins.update_checkin(checkin.id, status="present")
    with pytest.raises(ValidationError):
        await checkins.update_checkin(checkin.id, services=[])


# ============================================================================
# Verification
# ============================================================================

def test_geofence_boundary(checkins):
    assert checkins.verify_location("1", north_of(SALON, 99))
    assert not checkins.verify_location("1", north_of(SALON, 101))


def test_geofence_needs_location_coordinates(coordinator, checkins):
    coordinator.directory.add_location(Location(id="2", name="Uptown Salon"))

    with pytest.raises(VerificationError):
        checkins.verify_location("2", SALON)


@pytest.mark.asyncio
async def test_geolocation_inside_geofence_marks_present(checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    result = await checkins.verify_presence(checkin.id, geolocation=located_at(north_of(SALON, 40)))

    assert result.verified
    assert result.method == VerificationMethod.GEOLOCATION
    assert result.distance_m == pytest.approx(40, abs=0.5)
    assert checkin.status == CheckinStatus.PRESENT
    assert checkin.verification_method == VerificationMethod.GEOLOCATION


@pytest.mark.asyncio
async def test_geolocation_timeout_falls_back_to_network(checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    async def hangs():
        await asyncio.sleep(5)
        return SALON

    result = await checkins.verify_presence(checkin.id, geolocation=hangs,
                                            network_ssid="DowntownSalon-Guest")

    assert result.verified
    assert result.method == VerificationMethod.WIFI
    assert "geolocation: timed out" in result.attempts
    assert checkin.status == CheckinStatus.PRESENT


@pytest.mark.asyncio
async def test_failing_geolocation_falls_back_to_network(checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    async def denied():
        raise PermissionError("User denied Geolocation")

    result = await checkins.verify_presence(checkin.id, geolocation=denied,
                                            network_ssid="DowntownSalon-Guest")

    assert result.verified
    assert result.method == VerificationMethod.WIFI
    assert result.attempts[0] == "geolocation: PermissionError: User denied Geolocation"
    assert checkin.status == CheckinStatus.PRESENT


@pytest.mark.asyncio
async def test_unverified_presence_defers_to_staff(repository, checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    result = await checkins.verify_presence(checkin.id,
                                            geolocation=located_at(north_of(SALON, 500)),
                                            network_ssid="CoffeeShop")

    assert not result.verified
    assert result.method == VerificationMethod.MANUAL
    assert checkin.status == CheckinStatus.EN_ROUTE
    assert repository.checkin_entries[checkin.id]["coordinates"] == north_of(SALON, 500).to_dict()

    await checkins.mark_present(checkin.id)
    assert checkin.status == CheckinStatus.PRESENT
    assert checkin.verification_method == VerificationMethod.STAFF_CONFIRMED


# ============================================================================
# Expiry and retention
# ============================================================================

@pytest.mark.asyncio
async def test_expiry_window(checkins, clock):
    now = clock()
    late = await checkins.add_checkin("1", "Ana", ["Manicure"],
                                      estimated_arrival_time=now - timedelta(hours=4, minutes=1))
    recent = await checkins.add_checkin("1", "Ben", ["Manicure"],
                                        estimated_arrival_time=now - timedelta(hours=3, minutes=59))

    expired = await checkins.expire_old_checkins()

    assert expired == [late]
    assert late.status == CheckinStatus.EXPIRED
    assert recent.status == CheckinStatus.EN_ROUTE


@pytest.mark.asyncio
async def test_present_checkins_never_expire(checkins, clock):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"], checkin_type=CheckinType.IN_STORE)
    clock.advance(hours=10)

    assert await checkins.expire_old_checkins() == []
    assert checkin.status == CheckinStatus.PRESENT


@pytest.mark.asyncio
async def test_terminal_checkins_purged_after_retention(repository, checkins, clock):
    cancelled = await checkins.add_checkin("1", "Ana", ["Manicure"])
    await checkins.cancel_checkin(cancelled.id)
    live = await checkins.add_checkin("1", "Ben", ["Manicure"], checkin_type=CheckinType.IN_STORE)

    clock.advance(hours=25)
    assert await checkins.cleanup_old_checkins() == 1

    assert cancelled.id not in checkins.checkins
    assert cancelled.id not in repository.checkin_entries
    assert live.id in checkins.checkins


# ============================================================================
# Conversion
# ============================================================================

@pytest.mark.asyncio
async def test_conversion_creates_queue_entry(coordinator, repository, checkins, clock):
    checkin = await checkins.add_checkin(
        "1", "Ana", ["Manicure", "Pedicure"],
        customer_phone="555-2000",
        customer_type=CustomerType.VIP,
        estimated_arrival_time=clock() + timedelta(minutes=30),
        notes="Allergic to acetone",
        code="AB12CD",
    )
    assert checkin.status == CheckinStatus.EN_ROUTE

    await checkins.convert_to_queue(checkin.id)

    assert checkin.status == CheckinStatus.IN_QUEUE
    entry = coordinator.queue.find_by_checkin(checkin.id)
    assert entry is not None
    assert entry.customer_name == "Ana"
    assert entry.customer_phone == "555-2000"
    assert entry.customer_type == CustomerType.VIP
    assert entry.services == ["Manicure", "Pedicure"]
    assert entry.notes == "Allergic to acetone"
    assert entry.position == 1
    assert coordinator.message_bus.get_history(event_type=EventType.CHECKIN_CONVERTED, entity_id=checkin.id)
    # One remote visit counts once in the customer history
    assert repository.get_customer("555-2000")["visit_count"] == 1


@pytest.mark.asyncio
async def test_converting_twice_enqueues_once(coordinator, checkins):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    await checkins.convert_to_queue(checkin.id)
    await checkins.convert_to_queue(checkin.id)

    assert len(coordinator.queue.entries) == 1


@pytest.mark.asyncio
async def test_conversion_into_full_queue_raises_and_stays_convertible(coordinator, checkins, walk_in):
    coordinator.directory.get_location("1").settings.max_queue_size = 1
    await coordinator.queue.enqueue(walk_in("Ben", "Manicure"))
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"])

    with pytest.raises(ValidationError):
        await checkins.convert_to_queue(checkin.id)

    assert checkin.status == CheckinStatus.EN_ROUTE
    assert checkin.actual_arrival_time is None
    assert coordinator.queue.find_by_checkin(checkin.id) is None

    coordinator.directory.get_location("1").settings.max_queue_size = 2
    await checkins.convert_to_queue(checkin.id)
    assert checkin.status == CheckinStatus.IN_QUEUE
    assert coordinator.queue.find_by_checkin(checkin.id).position == 2


@pytest.mark.asyncio
async def test_rejected_hand_off_rolls_back_status(coordinator, checkins, monkeypatch):
    checkin = await checkins.add_checkin("1", "Ana", ["Manicure"], checkin_type=CheckinType.IN_STORE)

    async def rejects(request, now=None):
        raise ValidationError("Unknown service")

    monkeypatch.setattr(coordinator.queue, "enqueue", rejects)

    with pytest.raises(ValidationError) as excinfo:
        await checkins.convert_to_queue(checkin.id)

    assert excinfo.value.details["error"].endswith("Unknown service")
    assert checkin.status == CheckinStatus.PRESENT
    assert coordinator.queue.entries == {}


@pytest.mark.asyncio
async def test_expired_or_queued_checkins_cannot_move(checkins, clock):
    stale = await checkins.add_checkin("1", "Ana", ["Manicure"])
    clock.advance(hours=5)
    await checkins.expire_old_checkins()

    with pytest.raises(ValidationError):
        await checkins.convert_to_queue(stale.id)

    queued = await checkins.add_checkin("1", "Ben", ["Manicure"])
    await checkins.convert_to_queue(queued.id)
    with pytest.raises(ValidationError):
        await checkins.cancel_checkin(queued.id)


@pytest.mark.asyncio
async def test_stats_count_live_checkins(coordinator, checkins):
    await checkins.add_checkin("1", "Ana", ["Manicure"])
    await checkins.add_checkin("1", "Ben", ["Manicure"], checkin_type=CheckinType.IN_STORE)
    converted = await checkins.add_checkin("1", "Cal", ["Manicure"])
    await checkins.convert_to_queue(converted.id)

    stats = coordinator.queue.stats("1")

    assert stats.remote_checkins == 1
    assert stats.in_store_checkins == 1
    assert stats.total_waiting == 1
