from __future__ import annotations
from typing import Any, Dict
from fastapi import Header, HTTPException, status
import time
import httpx
import jwt

from .core.config import get_settings
from .core.qr import TokenCodec, TokenIssuer
from .core.security_levels import SecurityLevelPolicy
from .db import async_session_maker
from .services.coordinator import CheckInCoordinator, build_coordinator
from .services.stores import AttendanceStore, EventDirectory, HttpEventDirectory, SqlAttendanceStore

settings = get_settings()

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key():
    from jwt.algorithms import RSAAlgorithm
    jwks = await fetch_jwks()
    key = jwks["keys"][0]
    return RSAAlgorithm.from_jwk(key)

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        key = await get_signing_key()
    except httpx.HTTPError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth keys unavailable")
    try:
        payload = jwt.decode(
            token, key=key, algorithms=["RS256"], issuer=settings.token_issuer, options={"verify_aud": False}
        )
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if "sub" not in payload or "role" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    return payload

# --- check-in components (stateless, built once) ---

_policy: SecurityLevelPolicy | None = None
_events: EventDirectory | None = None
_store: AttendanceStore | None = None
_coordinator: CheckInCoordinator | None = None

def get_policy() -> SecurityLevelPolicy:
    global _policy
    if _policy is None:
        _policy = SecurityLevelPolicy(settings.security_level_ttls)
    return _policy

def get_codec() -> TokenCodec:
    return TokenCodec(settings.qr_uri_scheme)

def get_issuer() -> TokenIssuer:
    return TokenIssuer(secret=settings.qr_secret_effective, policy=get_policy())

def get_event_directory() -> EventDirectory:
    global _events
    if _events is None:
        _events = HttpEventDirectory(settings.events_base_url, timeout=settings.store_timeout_seconds)
    return _events

def get_attendance_store() -> AttendanceStore:
    global _store
    if _store is None:
        _store = SqlAttendanceStore(async_session_maker)
    return _store

def get_coordinator() -> CheckInCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = build_coordinator(
            events=get_event_directory(),
            store=get_attendance_store(),
            secret=settings.qr_secret_effective,
            ttl_overrides=settings.security_level_ttls,
            max_location_age_seconds=settings.max_location_age_seconds,
            store_timeout_seconds=settings.store_timeout_seconds,
            uri_scheme=settings.qr_uri_scheme,
        )
    return _coordinator
