"""
Time parsing helpers shared by the epoch oracle and the query API.

Durations follow Go's ``time.ParseDuration`` syntax (``"86400s"``,
``"1h30m"``, ``"1.5h"``) because both the chain REST API and existing API
consumers speak it.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_COMPONENT = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")

_RFC3339 = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def parse_duration(text: str) -> timedelta:
    """
    Parse a Go duration string.

    Raises:
        ValueError: if the string is not a valid duration
    """
    s = (text or "").strip()
    if not s:
        raise ValueError("empty duration")

    sign = 1
    if s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]

    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    pos = 0
    while pos < len(s):
        match = _DURATION_COMPONENT.match(s, pos)
        if not match:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    return timedelta(seconds=sign * total)


def parse_rfc3339(text: str) -> datetime:
    """
    Parse an RFC3339 timestamp into an aware UTC datetime.

    Sub-microsecond precision (the chain emits nanoseconds) is truncated.

    Raises:
        ValueError: if the string is not RFC3339
    """
    match = _RFC3339.match((text or "").strip())
    if not match:
        raise ValueError(f"invalid RFC3339 timestamp {text!r}")

    date_part, time_part, fraction, offset = match.groups()
    fraction = (fraction or "")[:6].ljust(6, "0")
    if offset in ("Z", "z"):
        offset = "+00:00"

    parsed = datetime.fromisoformat(f"{date_part}T{time_part}.{fraction}{offset}")
    return parsed.astimezone(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_rfc3339(value: Optional[datetime]) -> Optional[str]:
    """Format as second-precision RFC3339 with a ``Z`` suffix."""
    value = ensure_utc(value)
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")
