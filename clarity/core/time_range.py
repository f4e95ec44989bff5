"""
Named time ranges and analysis windows.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from clarity.errors import UnsupportedRangeError, ValidationError

RANGE_DURATIONS: Dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "last_hour": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "last_24h": timedelta(hours=24),
    "today": timedelta(hours=24),
    "7d": timedelta(days=7),
    "last_7d": timedelta(days=7),
    "week": timedelta(days=7),
    "30d": timedelta(days=30),
    "last_30d": timedelta(days=30),
    "month": timedelta(days=30),
    "90d": timedelta(days=90),
    "last_90d": timedelta(days=90),
}


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval [start, end)."""
    start: datetime
    end: datetime
    label: str = ""

    def __post_init__(self):
        """Validate the window is not inverted."""
        if self.start > self.end:
            raise ValidationError("window start must not be after window end", field="start_time")

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def days(self) -> float:
        return self.duration.total_seconds() / 86400.0

    def previous(self) -> "TimeWindow":
        """The equal-length window immediately before this one."""
        return TimeWindow(start=self.start - self.duration, end=self.start, label=f"previous {self.label}".strip())


def resolve_time_range(token: str, now: Optional[datetime] = None) -> TimeWindow:
    """Map a range token such as '24h' or 'week' to a window ending now.

    Args:
        token: Range token
        now: Reference time, defaults to the current UTC time

    Returns:
        TimeWindow of (now - duration, now)

    Raises:
        UnsupportedRangeError: If the token is not recognised
    """
    duration = RANGE_DURATIONS.get((token or "").strip().lower())
    if duration is None:
        raise UnsupportedRangeError(token)
    end = now or datetime.now(timezone.utc)
    return TimeWindow(start=end - duration, end=end, label=token)
