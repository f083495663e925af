"""
Location configuration models.
"""
from dataclasses import dataclass, field
from typing import Optional

from .checkin import Coordinates


@dataclass
class LocationSettings:
    """
    Queue-related settings of a location.

    Attributes:
        max_queue_size: Maximum number of waiting customers
        allow_walk_ins: Whether in-store walk-ins are accepted
        allow_remote_checkin: Whether remote check-ins are accepted
        checkin_radius: Geofence radius in meters
        wifi_ssid: Network name used for network-presence verification
        auto_assign_employees: Whether enqueue auto-assigns employees
        load_balancing_threshold: Workload spread that triggers rebalancing
        emergency_override: Whether the location is under manual control
    """
    max_queue_size: int = 50
    allow_walk_ins: bool = True
    allow_remote_checkin: bool = True
    checkin_radius: float = 100.0
    wifi_ssid: Optional[str] = None
    auto_assign_employees: bool = True
    max_queue_per_employee: int = 5
    load_balancing_threshold: int = 3
    emergency_override: bool = False


@dataclass
class Location:
    """
    A physical business location with its own queue.

    Attributes:
        id: Location identifier
        name: Display name
        coordinates: Registered position for geofence checks
        settings: Queue settings
    """
    id: str
    name: str
    address: str = ""
    timezone: str = "UTC"
    coordinates: Optional[Coordinates] = None
    settings: LocationSettings = field(default_factory=LocationSettings)
    is_active: bool = True

    def __str__(self) -> str:
        where = (
            f"{self.coordinates.latitude:.4f},{self.coordinates.longitude:.4f}"
            if self.coordinates else "no coordinates"
        )
        return f"{self.name} ({self.id}) | {where} | radius {self.settings.checkin_radius:.0f}m"


def create_demo_location() -> Location:
    """Create the downtown salon used by the demo seed."""
    return Location(
        id="1",
        name="Downtown Salon",
        address="123 Main St, New York, NY",
        timezone="America/New_York",
        coordinates=Coordinates(latitude=40.7128, longitude=-74.0060),
        settings=LocationSettings(
            max_queue_size=50,
            checkin_radius=100.0,
            wifi_ssid="DowntownSalon-Guest",
            max_queue_per_employee=5,
            load_balancing_threshold=3,
        ),
    )
