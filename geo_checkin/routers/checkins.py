from __future__ import annotations
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, status, Response, Request

from ..deps import (
    get_attendance_store, get_claims, get_codec, get_coordinator, get_event_directory, get_issuer, get_policy,
)
from ..core.errors import InvalidCoordinates, RejectionReason, StoreUnavailable, UnknownSecurityLevel
from ..core.geo import Coordinates
from ..core.proximity import Event, ProximityCheckInput
from ..core.qr import TokenCodec, TokenIssuer, render_png
from ..core.security_levels import SecurityLevelPolicy
from ..schemas import QRCreateResponse, CheckinCreate, CheckinResult, CheckinRead
from ..services.coordinator import CheckedIn, CheckInCoordinator, Rejected
from ..services.stores import AttendanceRecord, AttendanceStore, EventDirectory
from ..core.redis import allow_request
from ..core.nats import publish_checkin
from ..core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/checkin", tags=["checkin"])

REJECTION_STATUS: dict[RejectionReason, int] = {
    RejectionReason.MALFORMED_PAYLOAD: status.HTTP_400_BAD_REQUEST,
    RejectionReason.MISSING_FIELD: status.HTTP_400_BAD_REQUEST,
    RejectionReason.WRONG_EVENT: status.HTTP_400_BAD_REQUEST,
    RejectionReason.SECURITY_LEVEL_MISMATCH: status.HTTP_400_BAD_REQUEST,
    RejectionReason.INVALID_SIGNATURE: status.HTTP_400_BAD_REQUEST,
    RejectionReason.EXPIRED: status.HTTP_410_GONE,
    RejectionReason.FUTURE_ISSUED: status.HTTP_410_GONE,
    RejectionReason.PROXIMITY_VIOLATION: status.HTTP_403_FORBIDDEN,
    RejectionReason.STALE_LOCATION: status.HTTP_403_FORBIDDEN,
    RejectionReason.EVENT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.EVENT_NOT_ACTIVE: status.HTTP_409_CONFLICT,
    RejectionReason.DUPLICATE_CHECK_IN: status.HTTP_200_OK,
    RejectionReason.UNKNOWN_SECURITY_LEVEL: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RejectionReason.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}

def _now() -> datetime:
    return datetime.now(timezone.utc)

def _require_organiser(claims: dict):
    if claims.get("role") != "organiser":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organiser role required")

async def _load_event(events: EventDirectory, event_id: str) -> Event:
    try:
        event = await events.get_event(event_id)
    except StoreUnavailable:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event service unavailable")
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event

def _read(r: AttendanceRecord) -> CheckinRead:
    return CheckinRead(
        id=r.id, event_id=r.event_id, user_id=r.user_id, method=r.method, checked_in_at=r.checked_in_at,
        latitude=r.coordinates.latitude, longitude=r.coordinates.longitude, distance_meters=r.distance_m,
    )

# --- 1) Organiser generates a rotating QR token for an event
@router.post("/events/{event_id}/qr", response_model=QRCreateResponse, status_code=201)
async def create_qr_for_event(
    event_id: str,
    claims: dict = Depends(get_claims),
    events: EventDirectory = Depends(get_event_directory),
    issuer: TokenIssuer = Depends(get_issuer),
    codec: TokenCodec = Depends(get_codec),
    policy: SecurityLevelPolicy = Depends(get_policy),
):
    _require_organiser(claims)
    event = await _load_event(events, event_id)
    try:
        token = issuer.issue(event.id, event.security_level, _now())
    except UnknownSecurityLevel as e:
        logger.error(f"Refusing to issue QR for {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Event security level is misconfigured")
    ttl = policy.ttl(token.security_level)
    return QRCreateResponse(
        payload=codec.encode(token),
        uri=codec.encode_uri(token),
        token=token.token,
        security_level=token.security_level,
        issued_at=token.issued_at,
        expires_at=issuer.expires_at(token),
        ttl_seconds=ttl.total_seconds(),
        description=policy.describe(token.security_level),
    )

# PNG for kiosk display; clients re-fetch once the TTL runs out
@router.get("/events/{event_id}/qr.png")
async def create_qr_png(
    event_id: str,
    claims: dict = Depends(get_claims),
    events: EventDirectory = Depends(get_event_directory),
    issuer: TokenIssuer = Depends(get_issuer),
    codec: TokenCodec = Depends(get_codec),
):
    _require_organiser(claims)
    event = await _load_event(events, event_id)
    try:
        token = issuer.issue(event.id, event.security_level, _now())
    except UnknownSecurityLevel as e:
        logger.error(f"Refusing to issue QR for {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Event security level is misconfigured")
    return Response(content=render_png(codec.encode_uri(token)), media_type="image/png")

# --- 2) Attendee scans QR and reports location: one authoritative decision
@router.post("/scan", response_model=CheckinResult, status_code=201)
async def scan_and_checkin(
    payload: CheckinCreate,
    request: Request,
    response: Response,
    claims: dict = Depends(get_claims),
    coordinator: CheckInCoordinator = Depends(get_coordinator),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.scan"):
        raise HTTPException(status_code=429, detail="Too many requests")

    # identity comes from the session, never from the QR
    user_id = str(claims["sub"])
    reporter = ProximityCheckInput(Coordinates(payload.latitude, payload.longitude), payload.sampled_at)
    try:
        decision = await coordinator.attempt_check_in(payload.event_id, user_id, payload.payload, reporter, _now())
    except InvalidCoordinates as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    if isinstance(decision, CheckedIn):
        if settings.publish_checkins:
            try:
                await publish_checkin({
                    "event_id": decision.record.event_id,
                    "user_id": user_id,
                    "checked_in_at": decision.record.checked_in_at.isoformat().replace("+00:00", "Z"),
                    "distance_m": decision.distance_m,
                    "idempotency_key": f"{decision.record.event_id}:{user_id}",
                })
            except Exception as e:
                # the record is committed; consumers can reconcile from the roster
                logger.warning(f"Could not publish check-in for {user_id} at {payload.event_id}: {e}")
        return CheckinResult(
            status="checked_in", message=decision.message,
            distance_meters=decision.distance_m, radius_meters=decision.radius_m,
        )

    return _rejection(decision, response)

def _rejection(decision: Rejected, response: Response) -> CheckinResult:
    body = CheckinResult(
        status="rejected", reason=decision.reason.value, message=decision.message,
        distance_meters=decision.distance_m, radius_meters=decision.radius_m,
    )
    code = REJECTION_STATUS[decision.reason]
    if code >= 400:
        raise HTTPException(status_code=code, detail=body.model_dump())
    response.status_code = code
    return body

# --- 3) Organiser roster
@router.get("/events/{event_id}/roster", response_model=list[CheckinRead])
async def roster(event_id: str, claims: dict = Depends(get_claims), store: AttendanceStore = Depends(get_attendance_store)):
    _require_organiser(claims)
    try:
        rows = await store.list_for_event(event_id)
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Attendance store unavailable")
    return [_read(r) for r in rows]

# --- 4) Attendee history
@router.get("/users/me", response_model=list[CheckinRead])
async def my_checkins(claims: dict = Depends(get_claims), store: AttendanceStore = Depends(get_attendance_store)):
    try:
        rows = await store.list_for_user(str(claims["sub"]))
    except StoreUnavailable:
        raise HTTPException(status_code=503, detail="Attendance store unavailable")
    return [_read(r) for r in rows]
