from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Any, Dict
from urllib.parse import quote, unquote, urlsplit
import json
import secrets

import jwt

from .errors import MalformedPayload, MissingField
from .security_levels import SecurityLevel, SecurityLevelPolicy, parse_level
from .timeutil import from_epoch_ms, to_epoch_ms

QR_AUD = "event-checkin"
QR_ISS = "geo-checkin-svc"
DEFAULT_URI_SCHEME = "eviden://checkin"


@dataclass(frozen=True)
class CheckInToken:
    event_id: str
    issued_at_ms: int
    security_level: str
    token: str = ""  # opaque integrity value (HS256 JWT)

    @property
    def issued_at(self) -> datetime:
        return from_epoch_ms(self.issued_at_ms)


class TokenCodec:
    """Serialises check-in tokens to the string carried in the QR code.

    Two shapes are accepted on decode: the bare JSON object, and the same JSON
    url-encoded into ``<scheme>?data=...``.
    """

    def __init__(self, uri_scheme: str = DEFAULT_URI_SCHEME):
        self.uri_scheme = uri_scheme

    def encode(self, token: CheckInToken) -> str:
        body = {
            "eventId": token.event_id,
            "token": token.token,
            "timestamp": token.issued_at_ms,
            "securityLevel": token.security_level,
        }
        return json.dumps(body, separators=(",", ":"), sort_keys=True)

    def encode_uri(self, token: CheckInToken) -> str:
        return f"{self.uri_scheme}?data={quote(self.encode(token), safe='')}"

    def decode(self, payload: str) -> CheckInToken:
        if not isinstance(payload, str):
            raise MalformedPayload("payload must be a string")
        text = payload.strip()
        if not text:
            raise MalformedPayload("empty payload")
        if not text.startswith(("{", "[")) and "://" in text:
            text = self._unwrap_uri(text)

        try:
            obj = json.loads(text)
        except (ValueError, RecursionError):
            raise MalformedPayload("payload is not valid JSON")
        if not isinstance(obj, dict):
            raise MalformedPayload("payload must be a JSON object")

        event_id = self._required_str(obj, "eventId")
        issued_at_ms = self._required_timestamp(obj)
        level = self._required_str(obj, "securityLevel")
        integrity = obj.get("token")
        if integrity is None:
            integrity = ""
        if not isinstance(integrity, str):
            raise MalformedPayload("token must be a string")
        return CheckInToken(event_id=event_id, issued_at_ms=issued_at_ms, security_level=level, token=integrity)

    def _unwrap_uri(self, text: str) -> str:
        parts = urlsplit(text)
        if f"{parts.scheme}://{parts.netloc}{parts.path}" != self.uri_scheme:
            raise MalformedPayload("unrecognised QR code URI")
        for pair in parts.query.split("&"):
            key, sep, value = pair.partition("=")
            if key == "data" and sep:
                return unquote(value)
        raise MalformedPayload("QR code URI has no data parameter")

    @staticmethod
    def _required_str(obj: Dict[str, Any], key: str) -> str:
        value = obj.get(key)
        if value is None or value == "":
            raise MissingField(key)
        if not isinstance(value, str):
            raise MalformedPayload(f"{key} must be a string")
        return value

    @staticmethod
    def _required_timestamp(obj: Dict[str, Any]) -> int:
        value = obj.get("timestamp")
        if value is None:
            raise MissingField("timestamp")
        if isinstance(value, bool):
            raise MalformedPayload("timestamp must be an integer")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if not isinstance(value, int):
            raise MalformedPayload("timestamp must be an integer")
        return value


def sign_integrity(*, event_id: str, issued_at_ms: int, security_level: str, secret: str) -> str:
    payload: Dict[str, Any] = {
        "aud": QR_AUD,
        "iss": QR_ISS,
        "jti": secrets.token_urlsafe(16),
        "scope": "checkin",
        "event_id": event_id,
        "issued_at_ms": issued_at_ms,
        "security_level": security_level,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_integrity(token: CheckInToken, secret: str) -> bool:
    """True when the token's integrity value was signed by us over exactly its own fields."""
    if not token.token:
        return False
    try:
        claims = jwt.decode(
            token.token,
            secret,
            algorithms=["HS256"],
            audience=QR_AUD,
            issuer=QR_ISS,
            options={"require": ["aud", "iss", "jti"]},
        )
    except jwt.InvalidTokenError:
        return False
    return (
        claims.get("scope") == "checkin"
        and claims.get("event_id") == token.event_id
        and claims.get("issued_at_ms") == token.issued_at_ms
        and claims.get("security_level") == token.security_level
    )


class TokenIssuer:
    def __init__(self, *, secret: str, policy: SecurityLevelPolicy):
        self._secret = secret
        self._policy = policy

    def issue(self, event_id: str, security_level: SecurityLevel | str, now: datetime) -> CheckInToken:
        level = parse_level(security_level)
        issued_at_ms = to_epoch_ms(now)
        integrity = sign_integrity(
            event_id=event_id, issued_at_ms=issued_at_ms, security_level=level.value, secret=self._secret
        )
        return CheckInToken(event_id=event_id, issued_at_ms=issued_at_ms, security_level=level.value, token=integrity)

    def expires_at(self, token: CheckInToken) -> datetime:
        return token.issued_at + self._policy.ttl(token.security_level)


def render_png(data: str) -> bytes:
    import qrcode
    img = qrcode.make(data)
    b = BytesIO()
    img.save(b, format="PNG")
    return b.getvalue()
