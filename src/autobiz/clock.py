"""UTC timestamp helpers for row stamping."""

from __future__ import annotations

import re
from datetime import datetime, timezone

# Postgres trims trailing zeros from fractional seconds (e.g. ".12345")
_FRACTION = re.compile(r"\.(\d+)(?=[+-]\d{2}:?\d{2}$|$)")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utcnow().isoformat()


def _normalize_fraction(match: re.Match[str]) -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """
    Parse a stored timestamp.

    Accepts ISO-8601 strings (with ``Z`` or an offset, any number of
    fractional-second digits) and datetimes. Naive values are treated as UTC.

    Raises:
        ValueError: If the string is not an ISO-8601 timestamp.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION.sub(_normalize_fraction, text, count=1)
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
