"""
UTC timestamp and identifier helpers (stdlib-only).

Every record timestamp in regops is timezone-aware UTC. Wire encoding is
ISO-8601 with a ``Z`` suffix, the shape a cluster API emits.

Tags:
    timestamps, utc, ulid, regops-core, stdlib-only
"""

import random
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def epoch_seconds(dt: datetime) -> int:
    """Whole seconds since the Unix epoch."""
    return int(ensure_utc(dt).timestamp())


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to an ISO 8601 ``...Z`` string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(s))


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, Crockford base32, time-sortable. Used for
    record ``uid`` values.
    """
    timestamp_chars = _encode_base32(int(time.time() * 1000), 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % len(_ENCODING)])
        value //= len(_ENCODING)
    return "".join(reversed(result))
