"""
Shared fixtures for the check-in tests.

Settings are read at import time, so the environment is pinned here before
any geo_checkin module is imported.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("QR_SECRET", "test-qr-secret-please-change-0123456789")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("PUBLISH_CHECKINS", "false")

from datetime import datetime, timedelta, timezone

import pytest

from geo_checkin.core.geo import Coordinates, VenueType
from geo_checkin.core.proximity import Event
from geo_checkin.core.qr import TokenCodec, TokenIssuer
from geo_checkin.core.security_levels import SecurityLevelPolicy
from geo_checkin.core.validator import TokenValidator
from geo_checkin.services.coordinator import CheckInCoordinator
from geo_checkin.services.stores import InMemoryAttendanceStore, InMemoryEventDirectory

SECRET = "unit-test-secret-0123456789abcdef"
NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
VENUE = Coordinates(1.2966, 103.7764)


def make_event(**overrides) -> Event:
    fields = dict(
        id="evt-1",
        venue=VENUE,
        base_radius_m=100.0,
        venue_type=VenueType.INDOOR,
        capacity=150,
        security_level="standard",
        starts_at=NOW - timedelta(hours=1),
        ends_at=NOW + timedelta(hours=1),
    )
    fields.update(overrides)
    return Event(**fields)


@pytest.fixture
def policy() -> SecurityLevelPolicy:
    return SecurityLevelPolicy()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec()


@pytest.fixture
def issuer(policy) -> TokenIssuer:
    return TokenIssuer(secret=SECRET, policy=policy)


@pytest.fixture
def validator(policy, codec) -> TokenValidator:
    return TokenValidator(policy=policy, secret=SECRET, codec=codec)


@pytest.fixture
def event() -> Event:
    return make_event()


@pytest.fixture
def events(event) -> InMemoryEventDirectory:
    return InMemoryEventDirectory([event])


@pytest.fixture
def store() -> InMemoryAttendanceStore:
    return InMemoryAttendanceStore()


@pytest.fixture
def coordinator(events, store, validator) -> CheckInCoordinator:
    return CheckInCoordinator(
        events=events,
        store=store,
        validator=validator,
        max_location_age=timedelta(seconds=60),
        store_timeout=1.0,
    )
