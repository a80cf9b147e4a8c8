from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Dict, Literal, TypeVar

from ..core.errors import REASON_MESSAGES, RejectionReason, StoreUnavailable
from ..core.geo import Coordinates, format_distance
from ..core.proximity import ProximityCheckInput, ProximityEngine
from ..core.qr import TokenCodec
from ..core.security_levels import SecurityLevelPolicy
from ..core.timeutil import ensure_utc
from ..core.validator import TokenValidator
from .stores import AttendanceRecord, AttendanceStore, EventDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CheckedIn:
    distance_m: float
    radius_m: float
    record: AttendanceRecord
    status: Literal["checked_in"] = "checked_in"

    @property
    def message(self) -> str:
        return f"Checked in, {format_distance(self.distance_m)} from the event location."

    def as_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "distanceMeters": self.distance_m}


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    distance_m: float | None = None
    radius_m: float | None = None
    status: Literal["rejected"] = "rejected"

    @property
    def shortfall_m(self) -> float | None:
        if self.distance_m is None or self.radius_m is None:
            return None
        return max(0.0, self.distance_m - self.radius_m)

    @property
    def message(self) -> str:
        text = REASON_MESSAGES[self.reason]
        if self.reason is RejectionReason.PROXIMITY_VIOLATION and self.shortfall_m is not None:
            # "move 42m closer", never "move 0m closer"
            return text.format(shortfall=format_distance(max(self.shortfall_m, 1.0)))
        return text

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status, "reason": self.reason.value}
        if self.reason is RejectionReason.PROXIMITY_VIOLATION:
            out["distance"] = self.distance_m
            out["radius"] = self.radius_m
        return out


CheckInDecision = CheckedIn | Rejected


class CheckInCoordinator:
    """Runs one check-in attempt end to end and returns a single typed decision.

    Expected failures come back as ``Rejected``; only malformed input such as
    out-of-range coordinates raises. Nothing is retried here.
    """

    def __init__(
        self,
        *,
        events: EventDirectory,
        store: AttendanceStore,
        validator: TokenValidator,
        proximity: ProximityEngine | None = None,
        max_location_age: timedelta | None = None,
        store_timeout: float | None = 5.0,
    ):
        self.events = events
        self.store = store
        self.validator = validator
        self.proximity = proximity or ProximityEngine()
        self.max_location_age = max_location_age
        self.store_timeout = store_timeout

    async def attempt_check_in(
        self,
        event_id: str,
        user_id: str,
        token_payload: str,
        reporter: Coordinates | ProximityCheckInput,
        now: datetime,
    ) -> CheckInDecision:
        now = ensure_utc(now)
        sample = reporter if isinstance(reporter, ProximityCheckInput) else ProximityCheckInput(reporter)
        sample.coordinates.validate()

        # 1) event preconditions
        try:
            event = await self._call(self.events.get_event(event_id))
        except StoreUnavailable as e:
            return self._unavailable(event_id, user_id, e)
        if event is None:
            return self._reject(RejectionReason.EVENT_NOT_FOUND, event_id, user_id)
        if not event.is_active(now):
            return self._reject(RejectionReason.EVENT_NOT_ACTIVE, event_id, user_id)

        # 2) token freshness + binding
        verdict = self.validator.validate(token_payload, event.id, now, expected_level=event.security_level)
        if not verdict.valid:
            if verdict.reason is RejectionReason.UNKNOWN_SECURITY_LEVEL:
                logger.error(f"Event {event_id} has unusable security level: {verdict.detail}")
            return self._reject(verdict.reason, event_id, user_id)

        # 3) location sample age
        if self.max_location_age is not None and sample.sampled_at is not None:
            sampled_at = ensure_utc(sample.sampled_at)
            if sampled_at > now or now - sampled_at > self.max_location_age:
                return self._reject(RejectionReason.STALE_LOCATION, event_id, user_id)

        # 4) proximity gate
        radius = self.proximity.derive_radius(event)
        result = self.proximity.check(sample.coordinates, event.venue, radius)
        if not result.within_range:
            logger.info(
                f"Check-in rejected for {user_id} at {event_id}: "
                f"{result.distance_m:.1f}m from venue, radius {radius:.1f}m"
            )
            return Rejected(RejectionReason.PROXIMITY_VIOLATION, distance_m=result.distance_m, radius_m=radius)

        # 5) one record per (event, user), as a single conditional insert
        record = AttendanceRecord(
            event_id=event.id,
            user_id=user_id,
            checked_in_at=now,
            coordinates=sample.coordinates,
            distance_m=result.distance_m,
        )
        try:
            created = await self._call(self.store.insert_if_absent(record))
        except StoreUnavailable as e:
            return self._unavailable(event_id, user_id, e)
        if not created:
            return self._reject(RejectionReason.DUPLICATE_CHECK_IN, event_id, user_id)

        logger.info(f"Checked in {user_id} at {event_id} ({result.distance_m:.1f}m / {radius:.1f}m)")
        return CheckedIn(distance_m=result.distance_m, radius_m=radius, record=record)

    async def _call(self, aw: Awaitable[T]) -> T:
        if self.store_timeout is None:
            return await aw
        try:
            return await asyncio.wait_for(aw, timeout=self.store_timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable(f"timed out after {self.store_timeout}s") from e

    def _reject(self, reason: RejectionReason, event_id: str, user_id: str) -> Rejected:
        logger.info(f"Check-in rejected for {user_id} at {event_id}: {reason.value}")
        return Rejected(reason)

    def _unavailable(self, event_id: str, user_id: str, err: Exception) -> Rejected:
        logger.warning(f"Check-in for {user_id} at {event_id} hit an unavailable store: {err}")
        return Rejected(RejectionReason.STORE_UNAVAILABLE)


def build_coordinator(
    *,
    events: EventDirectory,
    store: AttendanceStore,
    secret: str,
    ttl_overrides: Dict[str, float] | None = None,
    max_location_age_seconds: float | None = None,
    store_timeout_seconds: float | None = 5.0,
    uri_scheme: str | None = None,
) -> CheckInCoordinator:
    codec = TokenCodec(uri_scheme) if uri_scheme else TokenCodec()
    validator = TokenValidator(policy=SecurityLevelPolicy(ttl_overrides), secret=secret, codec=codec)
    max_age = None if max_location_age_seconds is None else timedelta(seconds=max_location_age_seconds)
    return CheckInCoordinator(
        events=events,
        store=store,
        validator=validator,
        max_location_age=max_age,
        store_timeout=store_timeout_seconds,
    )
