from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional, Union

TimeLike = Union[float, int, datetime]


def to_epoch(value: TimeLike) -> float:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    return float(value)


def iso_at(value: TimeLike) -> str:
    """ISO-8601 UTC string for an epoch second or datetime."""
    return datetime.fromtimestamp(to_epoch(value), tz=timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[float]:
    """Parse an ISO-8601 string into epoch seconds. Returns None if unparsable."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))
