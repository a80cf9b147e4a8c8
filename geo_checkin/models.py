from __future__ import annotations
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.types import DateTime, Float, String

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

class Attendance(Base):
    __tablename__ = "attendance_records"
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    method: Mapped[str] = mapped_column(String(16), default="qr", nullable=False)
    checked_in_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    distance_m: Mapped[float] = mapped_column(Float, nullable=False)

    __table_args__ = (
        # the check-in gate relies on this constraint for its insert-if-absent
        UniqueConstraint("event_id", "user_id", name="uq_attendance_per_user_per_event"),
        Index("ix_attendance_event_user", "event_id", "user_id"),
    )
