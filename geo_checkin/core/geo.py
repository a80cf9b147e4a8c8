from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum

from .errors import InvalidCoordinates, InvalidVenueParameters

EARTH_RADIUS_M = 6_371_000.0

MIN_RADIUS_M = 10.0
MAX_RADIUS_M = 500.0
MAX_CAPACITY_MULTIPLIER = 2.5


class VenueType(str, Enum):
    INDOOR = "indoor"
    OUTDOOR = "outdoor"
    MIXED = "mixed"


class VenueSize(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    MASSIVE = "massive"


VENUE_TYPE_MULTIPLIERS: dict[VenueType, float] = {
    VenueType.INDOOR: 0.8,
    VenueType.OUTDOOR: 1.2,
    VenueType.MIXED: 1.0,
}

VENUE_SIZE_MULTIPLIERS: dict[VenueSize, float] = {
    VenueSize.SMALL: 0.7,
    VenueSize.MEDIUM: 1.0,
    VenueSize.LARGE: 1.5,
    VenueSize.MASSIVE: 2.0,
}


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    def validate(self) -> "Coordinates":
        lat, lon = self.latitude, self.longitude
        # real numbers only: "1.0" or True would slip through float()
        for value in (lat, lon):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidCoordinates(f"coordinates must be numbers: ({lat!r}, {lon!r})")
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidCoordinates(f"coordinates must be finite: ({lat}, {lon})")
        if not -90.0 <= lat <= 90.0:
            raise InvalidCoordinates(f"latitude out of range [-90, 90]: {lat}")
        if not -180.0 <= lon <= 180.0:
            raise InvalidCoordinates(f"longitude out of range [-180, 180]: {lon}")
        return self


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points (Haversine)."""
    a.validate()
    b.validate()
    if a == b:
        return 0.0
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # rounding can push h a hair outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def _venue_type(value: VenueType | str) -> VenueType:
    try:
        return VenueType(value)
    except ValueError:
        raise InvalidVenueParameters(f"unknown venue type: {value!r}")


def _venue_size(value: VenueSize | str) -> VenueSize:
    try:
        return VenueSize(value)
    except ValueError:
        raise InvalidVenueParameters(f"unknown venue size: {value!r}")


def capacity_multiplier(capacity: int) -> float:
    return min(1 + capacity / 1000, MAX_CAPACITY_MULTIPLIER)


def unclamped_radius(
    base: float,
    capacity: int,
    venue_type: VenueType | str,
    venue_size: VenueSize | str = VenueSize.MEDIUM,
) -> float:
    if not base > 0:
        raise InvalidVenueParameters(f"base radius must be positive: {base}")
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
        raise InvalidVenueParameters(f"capacity must be a positive integer: {capacity!r}")
    return (
        base
        * capacity_multiplier(capacity)
        * VENUE_TYPE_MULTIPLIERS[_venue_type(venue_type)]
        * VENUE_SIZE_MULTIPLIERS[_venue_size(venue_size)]
    )


def compute_radius(
    base: float,
    capacity: int,
    venue_type: VenueType | str,
    venue_size: VenueSize | str = VenueSize.MEDIUM,
) -> float:
    """Geofence radius in meters, adjusted for crowd size and venue, kept within [10, 500]."""
    raw = unclamped_radius(base, capacity, venue_type, venue_size)
    return max(MIN_RADIUS_M, min(raw, MAX_RADIUS_M))


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
