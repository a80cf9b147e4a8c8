from __future__ import annotations
from enum import Enum


class RejectionReason(str, Enum):
    MALFORMED_PAYLOAD = "malformed_payload"
    MISSING_FIELD = "missing_field"
    EXPIRED = "expired"
    FUTURE_ISSUED = "future_issued"
    WRONG_EVENT = "wrong_event"
    SECURITY_LEVEL_MISMATCH = "security_level_mismatch"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_SECURITY_LEVEL = "unknown_security_level"
    EVENT_NOT_FOUND = "event_not_found"
    EVENT_NOT_ACTIVE = "event_not_active"
    STALE_LOCATION = "stale_location"
    PROXIMITY_VIOLATION = "proximity_violation"
    DUPLICATE_CHECK_IN = "duplicate_check_in"
    STORE_UNAVAILABLE = "store_unavailable"


# user-facing text; proximity_violation is formatted with the shortfall
REASON_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.MALFORMED_PAYLOAD: "Invalid or damaged QR code.",
    RejectionReason.MISSING_FIELD: "Invalid or damaged QR code.",
    RejectionReason.INVALID_SIGNATURE: "Invalid or damaged QR code.",
    RejectionReason.EXPIRED: "QR code expired, please refresh and rescan.",
    RejectionReason.FUTURE_ISSUED: "QR code expired, please refresh and rescan.",
    RejectionReason.SECURITY_LEVEL_MISMATCH: (
        "This code does not match the event's security settings. Please scan the code on display."
    ),
    RejectionReason.WRONG_EVENT: "This code is for a different event.",
    RejectionReason.UNKNOWN_SECURITY_LEVEL: "Check-in is misconfigured for this event. Please contact the organiser.",
    RejectionReason.EVENT_NOT_FOUND: "Event not found.",
    RejectionReason.EVENT_NOT_ACTIVE: "Event has not started or has ended.",
    RejectionReason.STALE_LOCATION: "Your location is out of date, please refresh it and try again.",
    RejectionReason.PROXIMITY_VIOLATION: "Move {shortfall} closer to check in.",
    RejectionReason.DUPLICATE_CHECK_IN: "You are already checked in.",
    RejectionReason.STORE_UNAVAILABLE: "Check-in is temporarily unavailable, please try again.",
}


class CheckinError(Exception):
    """Base for errors raised by the check-in core."""


class InvalidCoordinates(CheckinError, ValueError):
    pass


class InvalidVenueParameters(CheckinError, ValueError):
    pass


class UnknownSecurityLevel(CheckinError, LookupError):
    def __init__(self, level: object):
        super().__init__(f"unknown security level: {level!r}")
        self.level = level


class PayloadError(CheckinError, ValueError):
    reason: RejectionReason = RejectionReason.MALFORMED_PAYLOAD


class MalformedPayload(PayloadError):
    reason = RejectionReason.MALFORMED_PAYLOAD


class MissingField(PayloadError):
    reason = RejectionReason.MISSING_FIELD

    def __init__(self, field: str):
        super().__init__("missing field: " + field)
        self.field = field


class StoreUnavailable(CheckinError):
    """An external collaborator (event lookup, attendance store) failed or timed out."""
