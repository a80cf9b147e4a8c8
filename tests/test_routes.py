from datetime import datetime, timedelta, timezone

import httpx
import pytest

from geo_checkin.core.geo import Coordinates
from geo_checkin.core.qr import TokenIssuer
from geo_checkin.deps import (
    get_attendance_store, get_claims, get_codec, get_coordinator, get_event_directory, get_issuer, get_policy,
)
from geo_checkin.main import app
from geo_checkin.services.coordinator import CheckInCoordinator
from geo_checkin.services.stores import InMemoryAttendanceStore, InMemoryEventDirectory

from conftest import SECRET, VENUE, make_event

ORGANISER = {"sub": "org-1", "role": "organiser"}
ATTENDEE = {"sub": "user-1", "role": "attendee"}


@pytest.fixture
def live_events():
    now = datetime.now(timezone.utc)
    return InMemoryEventDirectory([
        make_event(starts_at=now - timedelta(hours=1), ends_at=now + timedelta(hours=1)),
        make_event(id="evt-old", starts_at=now - timedelta(hours=3), ends_at=now - timedelta(hours=2)),
        make_event(id="evt-odd", security_level="ultra",
                   starts_at=now - timedelta(hours=1), ends_at=now + timedelta(hours=1)),
    ])


@pytest.fixture
def client_for(live_events, policy, codec, validator):
    store = InMemoryAttendanceStore()
    coordinator = CheckInCoordinator(events=live_events, store=store, validator=validator)
    app.dependency_overrides.update({
        get_event_directory: lambda: live_events,
        get_attendance_store: lambda: store,
        get_coordinator: lambda: coordinator,
        get_issuer: lambda: TokenIssuer(secret=SECRET, policy=policy),
        get_codec: lambda: codec,
        get_policy: lambda: policy,
    })

    def make(claims):
        app.dependency_overrides[get_claims] = lambda: claims
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    yield make
    app.dependency_overrides.clear()


async def _issue(client_for, event_id="evt-1") -> dict:
    async with client_for(ORGANISER) as c:
        r = await c.post(f"/checkin/events/{event_id}/qr")
    assert r.status_code == 201, r.text
    return r.json()


def _scan_body(qr: dict, coords: Coordinates = VENUE, **extra) -> dict:
    return {"event_id": "evt-1", "payload": qr["uri"], "latitude": coords.latitude,
            "longitude": coords.longitude, **extra}


class TestIssueQr:
    async def test_organiser_gets_rotating_code(self, client_for):
        body = await _issue(client_for)
        assert body["security_level"] == "standard"
        assert body["ttl_seconds"] == 300
        assert body["description"] == "Rotating QR codes (5min intervals)"
        assert body["uri"].startswith("eviden://checkin?data=")
        issued = datetime.fromisoformat(body["issued_at"].replace("Z", "+00:00"))
        expires = datetime.fromisoformat(body["expires_at"].replace("Z", "+00:00"))
        assert expires - issued == timedelta(minutes=5)

    async def test_attendee_cannot_issue(self, client_for):
        async with client_for(ATTENDEE) as c:
            r = await c.post("/checkin/events/evt-1/qr")
        assert r.status_code == 403

    async def test_unknown_event(self, client_for):
        async with client_for(ORGANISER) as c:
            r = await c.post("/checkin/events/nope/qr")
        assert r.status_code == 404

    async def test_misconfigured_level(self, client_for):
        async with client_for(ORGANISER) as c:
            r = await c.post("/checkin/events/evt-odd/qr")
        assert r.status_code == 500


class TestScan:
    async def test_check_in_then_duplicate(self, client_for):
        qr = await _issue(client_for)
        async with client_for(ATTENDEE) as c:
            first = await c.post("/checkin/scan", json=_scan_body(qr))
            second = await c.post("/checkin/scan", json=_scan_body(qr))
        assert first.status_code == 201
        assert first.json()["status"] == "checked_in"
        assert first.json()["radius_meters"] == pytest.approx(92.0)
        assert second.status_code == 200
        assert second.json()["reason"] == "duplicate_check_in"

    async def test_too_far(self, client_for):
        qr = await _issue(client_for)
        far = Coordinates(VENUE.latitude + 0.01, VENUE.longitude)
        async with client_for(ATTENDEE) as c:
            r = await c.post("/checkin/scan", json=_scan_body(qr, far))
        assert r.status_code == 403
        detail = r.json()["detail"]
        assert detail["reason"] == "proximity_violation"
        assert detail["distance_meters"] > detail["radius_meters"]

    async def test_deeply_nested_code(self, client_for):
        body = {"event_id": "evt-1", "latitude": VENUE.latitude, "longitude": VENUE.longitude}
        async with client_for(ATTENDEE) as c:
            nested = await c.post("/checkin/scan", json={**body, "payload": "[" * 4000})
            oversized = await c.post("/checkin/scan", json={**body, "payload": "[" * 5000})
        assert nested.status_code == 400
        assert nested.json()["detail"]["reason"] == "malformed_payload"
        assert oversized.status_code == 422

    async def test_damaged_code(self, client_for):
        async with client_for(ATTENDEE) as c:
            r = await c.post("/checkin/scan", json={"event_id": "evt-1", "payload": "{oops",
                                                    "latitude": VENUE.latitude, "longitude": VENUE.longitude})
        assert r.status_code == 400
        assert r.json()["detail"]["reason"] == "malformed_payload"
        assert r.json()["detail"]["message"] == "Invalid or damaged QR code."

    async def test_ended_event(self, client_for):
        qr = await _issue(client_for)
        async with client_for(ATTENDEE) as c:
            r = await c.post("/checkin/scan", json={**_scan_body(qr), "event_id": "evt-old"})
        assert r.status_code == 409
        assert r.json()["detail"]["reason"] == "event_not_active"

    async def test_out_of_range_coordinates(self, client_for):
        qr = await _issue(client_for)
        async with client_for(ATTENDEE) as c:
            r = await c.post("/checkin/scan", json={**_scan_body(qr), "latitude": 123.0})
        assert r.status_code == 422


class TestListings:
    async def test_roster_and_history(self, client_for):
        qr = await _issue(client_for)
        async with client_for(ATTENDEE) as c:
            await c.post("/checkin/scan", json=_scan_body(qr))
            mine = await c.get("/checkin/users/me")
            denied = await c.get("/checkin/events/evt-1/roster")
        async with client_for(ORGANISER) as c:
            roster = await c.get("/checkin/events/evt-1/roster")
        assert [r["event_id"] for r in mine.json()] == ["evt-1"]
        assert denied.status_code == 403
        assert [r["user_id"] for r in roster.json()] == ["user-1"]


async def test_health(client_for):
    async with client_for(ATTENDEE) as c:
        r = await c.get("/health")
    assert r.json() == {"status": "ok", "service": "geo-checkin-svc"}
