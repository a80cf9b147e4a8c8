from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime

from .geo import Coordinates, VenueSize, VenueType, compute_radius, distance_meters, format_distance
from .timeutil import ensure_utc


@dataclass(frozen=True)
class Event:
    id: str
    venue: Coordinates
    base_radius_m: float
    venue_type: VenueType
    capacity: int
    security_level: str
    starts_at: datetime
    ends_at: datetime
    venue_size: VenueSize = VenueSize.MEDIUM
    venue_name: str | None = None

    def is_active(self, now: datetime) -> bool:
        return ensure_utc(self.starts_at) <= ensure_utc(now) <= ensure_utc(self.ends_at)


@dataclass(frozen=True)
class ProximityCheckInput:
    coordinates: Coordinates
    sampled_at: datetime | None = None


@dataclass(frozen=True)
class ProximityResult:
    within_range: bool
    distance_m: float
    radius_m: float

    @property
    def shortfall_m(self) -> float:
        return max(0.0, self.distance_m - self.radius_m)

    @property
    def message(self) -> str:
        if self.within_range:
            return f"You are {format_distance(self.distance_m)} from the event location. Check-in available!"
        return f"You are {format_distance(self.shortfall_m)} too far from the event. Move closer to check in."


class ProximityEngine:
    def check(self, reporter: Coordinates, venue: Coordinates, radius: float) -> ProximityResult:
        distance = distance_meters(reporter, venue)
        # standing on the line counts as inside
        return ProximityResult(within_range=distance <= radius, distance_m=distance, radius_m=radius)

    def derive_radius(self, event: Event) -> float:
        return compute_radius(event.base_radius_m, event.capacity, event.venue_type, event.venue_size)
