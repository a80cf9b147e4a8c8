from __future__ import annotations
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StoreUnavailable
from ..core.geo import Coordinates
from ..core.proximity import Event
from ..models import Attendance
from ..schemas import EventRead

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceRecord:
    event_id: str
    user_id: str
    checked_in_at: datetime
    coordinates: Coordinates
    distance_m: float
    method: str = "qr"
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class AttendanceStore(Protocol):
    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        """Store the record unless one exists for (event_id, user_id). True if stored."""
        ...

    async def get(self, event_id: str, user_id: str) -> AttendanceRecord | None: ...

    async def list_for_event(self, event_id: str) -> list[AttendanceRecord]: ...

    async def list_for_user(self, user_id: str) -> list[AttendanceRecord]: ...


class EventDirectory(Protocol):
    async def get_event(self, event_id: str) -> Event | None: ...


# --- attendance ---

class InMemoryAttendanceStore:
    def __init__(self):
        self._records: dict[tuple[str, str], AttendanceRecord] = {}
        self._lock = asyncio.Lock()

    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        key = (record.event_id, record.user_id)
        async with self._lock:
            if key in self._records:
                return False
            self._records[key] = record
            return True

    async def get(self, event_id: str, user_id: str) -> AttendanceRecord | None:
        return self._records.get((event_id, user_id))

    async def list_for_event(self, event_id: str) -> list[AttendanceRecord]:
        rows = [r for r in self._records.values() if r.event_id == event_id]
        return sorted(rows, key=lambda r: r.checked_in_at)

    async def list_for_user(self, user_id: str) -> list[AttendanceRecord]:
        rows = [r for r in self._records.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.checked_in_at, reverse=True)


def _to_record(row: Attendance) -> AttendanceRecord:
    return AttendanceRecord(
        id=row.id,
        event_id=row.event_id,
        user_id=row.user_id,
        checked_in_at=row.checked_in_at,
        coordinates=Coordinates(row.latitude, row.longitude),
        distance_m=row.distance_m,
        method=row.method,
    )


class SqlAttendanceStore:
    """Attendance records in SQL; uniqueness comes from uq_attendance_per_user_per_event."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def insert_if_absent(self, record: AttendanceRecord) -> bool:
        row = Attendance(
            id=record.id,
            event_id=record.event_id,
            user_id=record.user_id,
            method=record.method,
            checked_in_at=record.checked_in_at,
            latitude=record.coordinates.latitude,
            longitude=record.coordinates.longitude,
            distance_m=record.distance_m,
        )
        try:
            async with self._session_maker() as db:
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    return False
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"attendance store error: {e}") from e
        return True

    async def get(self, event_id: str, user_id: str) -> AttendanceRecord | None:
        q = select(Attendance).where(Attendance.event_id == event_id, Attendance.user_id == user_id)
        rows = await self._fetch(q)
        return rows[0] if rows else None

    async def list_for_event(self, event_id: str) -> list[AttendanceRecord]:
        q = select(Attendance).where(Attendance.event_id == event_id).order_by(Attendance.checked_in_at.asc())
        return await self._fetch(q)

    async def list_for_user(self, user_id: str) -> list[AttendanceRecord]:
        q = select(Attendance).where(Attendance.user_id == user_id).order_by(Attendance.checked_in_at.desc())
        return await self._fetch(q)

    async def _fetch(self, q) -> list[AttendanceRecord]:
        try:
            async with self._session_maker() as db:
                rows = (await db.execute(q)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"attendance store error: {e}") from e
        return [_to_record(r) for r in rows]


# --- events ---

class InMemoryEventDirectory:
    def __init__(self, events: list[Event] | None = None):
        self._events = {e.id: e for e in events or []}

    def add(self, event: Event) -> None:
        self._events[event.id] = event

    async def get_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)


class HttpEventDirectory:
    """Reads events from the event-management service."""

    def __init__(self, base_url: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def get_event(self, event_id: str) -> Event | None:
        url = f"{self.base_url}/events/{quote(event_id, safe='')}"
        try:
            if self._client is not None:
                r = await self._client.get(url, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    r = await client.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise StoreUnavailable(f"event lookup failed: {e}") from e

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise StoreUnavailable(f"event lookup returned {r.status_code}")
        try:
            body = r.json()
            # some deployments wrap the event as {"success": true, "data": {...}}
            if isinstance(body, dict) and isinstance(body.get("data"), dict):
                body = body["data"]
            return EventRead.model_validate(body).to_event()
        except (ValueError, ValidationError) as e:
            logger.warning(f"Unreadable event {event_id} from {url}: {e}")
            raise StoreUnavailable(f"event {event_id} could not be parsed") from e
