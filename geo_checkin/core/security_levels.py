from __future__ import annotations
from datetime import timedelta
from enum import Enum
from typing import Mapping

from .errors import UnknownSecurityLevel


class SecurityLevel(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    HIGH = "high"
    MAXIMUM = "maximum"


DEFAULT_TTLS: dict[SecurityLevel, timedelta] = {
    SecurityLevel.BASIC: timedelta(hours=24),
    SecurityLevel.STANDARD: timedelta(minutes=5),
    SecurityLevel.HIGH: timedelta(minutes=1),
    SecurityLevel.MAXIMUM: timedelta(seconds=30),
}


def parse_level(level: SecurityLevel | str) -> SecurityLevel:
    # never default: an unrecognised tier must not fall back to the 24h window
    try:
        return SecurityLevel(level)
    except ValueError:
        raise UnknownSecurityLevel(level)


def _human_interval(ttl: timedelta) -> str:
    seconds = int(ttl.total_seconds())
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}min"
    return f"{seconds}sec"


class SecurityLevelPolicy:
    """Maps a security tier to how long a check-in token stays fresh.

    ``overrides`` replaces entries of the default table (level -> seconds or
    timedelta), e.g. to compress TTLs in tests.
    """

    def __init__(self, overrides: Mapping[str, int | float | timedelta] | None = None):
        ttls = dict(DEFAULT_TTLS)
        for key, value in (overrides or {}).items():
            level = parse_level(key)
            ttl = value if isinstance(value, timedelta) else timedelta(seconds=value)
            if ttl <= timedelta(0):
                raise ValueError(f"ttl for {level.value} must be positive")
            ttls[level] = ttl
        self._ttls = ttls

    def ttl(self, level: SecurityLevel | str) -> timedelta:
        return self._ttls[parse_level(level)]

    def is_known(self, level: SecurityLevel | str) -> bool:
        try:
            parse_level(level)
        except UnknownSecurityLevel:
            return False
        return True

    def describe(self, level: SecurityLevel | str) -> str:
        lvl = parse_level(level)
        interval = _human_interval(self._ttls[lvl])
        if lvl is SecurityLevel.BASIC:
            return f"Standard QR codes ({interval} validity)"
        if lvl is SecurityLevel.STANDARD:
            return f"Rotating QR codes ({interval} intervals)"
        if lvl is SecurityLevel.HIGH:
            return f"High security ({interval} intervals)"
        return f"Maximum security ({interval} intervals)"

    def as_seconds(self) -> dict[str, int]:
        return {lvl.value: int(ttl.total_seconds()) for lvl, ttl in self._ttls.items()}
