from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta

from .errors import PayloadError, RejectionReason, UnknownSecurityLevel
from .qr import CheckInToken, TokenCodec, verify_integrity
from .security_levels import SecurityLevel, SecurityLevelPolicy
from .timeutil import ONE_MS, to_epoch_ms


@dataclass(frozen=True)
class TokenVerdict:
    valid: bool
    reason: RejectionReason | None = None
    token: CheckInToken | None = None
    age_ms: int | None = None
    ttl: timedelta | None = None
    detail: str | None = None

    @classmethod
    def reject(cls, reason: RejectionReason, token: CheckInToken | None = None, **kw) -> "TokenVerdict":
        return cls(valid=False, reason=reason, token=token, **kw)


class TokenValidator:
    """Decides whether a scanned token is fresh, bound to the event, and ours.

    Terminal in one step: the first failing check names the rejection.
    Age equal to the TTL is still fresh.
    """

    def __init__(self, *, policy: SecurityLevelPolicy, secret: str, codec: TokenCodec | None = None):
        self.policy = policy
        self.codec = codec or TokenCodec()
        self._secret = secret

    def validate(
        self,
        payload: str,
        expected_event_id: str,
        now: datetime,
        expected_level: SecurityLevel | str | None = None,
    ) -> TokenVerdict:
        try:
            token = self.codec.decode(payload)
        except PayloadError as e:
            return TokenVerdict.reject(e.reason, detail=str(e))
        return self.validate_token(token, expected_event_id, now, expected_level)

    def validate_token(
        self,
        token: CheckInToken,
        expected_event_id: str,
        now: datetime,
        expected_level: SecurityLevel | str | None = None,
    ) -> TokenVerdict:
        if token.event_id != expected_event_id:
            return TokenVerdict.reject(RejectionReason.WRONG_EVENT, token)

        if expected_level is not None:
            wanted = expected_level.value if isinstance(expected_level, SecurityLevel) else expected_level
            if token.security_level != wanted:
                return TokenVerdict.reject(
                    RejectionReason.SECURITY_LEVEL_MISMATCH, token,
                    detail=f"token level {token.security_level!r}, event level {wanted!r}",
                )

        try:
            ttl = self.policy.ttl(token.security_level)
        except UnknownSecurityLevel as e:
            return TokenVerdict.reject(RejectionReason.UNKNOWN_SECURITY_LEVEL, token, detail=str(e))

        if not verify_integrity(token, self._secret):
            return TokenVerdict.reject(RejectionReason.INVALID_SIGNATURE, token, ttl=ttl)

        age_ms = to_epoch_ms(now) - token.issued_at_ms
        if age_ms < 0:
            return TokenVerdict.reject(RejectionReason.FUTURE_ISSUED, token, age_ms=age_ms, ttl=ttl)
        if age_ms > ttl // ONE_MS:
            return TokenVerdict.reject(RejectionReason.EXPIRED, token, age_ms=age_ms, ttl=ttl)
        return TokenVerdict(valid=True, token=token, age_ms=age_ms, ttl=ttl)
