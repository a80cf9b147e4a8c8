from __future__ import annotations
from typing import Annotated, Literal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, Field, model_validator

from .core.geo import Coordinates, VenueSize, VenueType
from .core.proximity import Event

Latitude  = Annotated[float, Field(ge=-90, le=90)]
Longitude = Annotated[float, Field(ge=-180, le=180)]

# ---- Events (as served by the event-management service) ----
class EventRead(BaseModel):
    id: str
    latitude: Latitude
    longitude: Longitude
    check_in_radius: float = Field(gt=0)
    venue_type: VenueType
    venue_size: VenueSize = VenueSize.MEDIUM
    max_attendees: int = Field(gt=0)
    security_level: str  # kept raw; unknown tiers are rejected at validation time
    start_time: datetime
    end_time: datetime
    venue_name: str | None = None

    @model_validator(mode="after")
    def _check_times(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

    def to_event(self) -> Event:
        return Event(
            id=self.id,
            venue=Coordinates(self.latitude, self.longitude),
            base_radius_m=self.check_in_radius,
            venue_type=self.venue_type,
            venue_size=self.venue_size,
            capacity=self.max_attendees,
            security_level=self.security_level,
            starts_at=self.start_time,
            ends_at=self.end_time,
            venue_name=self.venue_name,
        )

# ---- QR issuance ----
class QRCreateResponse(BaseModel):
    payload: str  # bare JSON carried in the QR
    uri: str      # eviden://checkin?data=... form; frontends just encode this
    token: str
    security_level: str
    issued_at: datetime
    expires_at: datetime
    ttl_seconds: float
    description: str

# ---- Check-in ----
class CheckinCreate(BaseModel):
    event_id: str = Field(min_length=1)
    payload: str = Field(min_length=1, max_length=4096)  # decoded QR string; QR capacity is under 3KB
    latitude: Latitude
    longitude: Longitude
    sampled_at: datetime | None = None

class CheckinResult(BaseModel):
    status: Literal["checked_in", "rejected"]
    reason: str | None = None
    message: str
    distance_meters: float | None = None
    radius_meters: float | None = None

class CheckinRead(BaseModel):
    id: UUID
    event_id: str
    user_id: str
    method: str
    checked_in_at: datetime
    latitude: float
    longitude: float
    distance_meters: float
