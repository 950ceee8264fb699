"""Business-day calendar.

A business day starts in the morning and runs past midnight, so events
shortly after midnight UTC belong to the previous day's report.  Only UTC
components are read: the host timezone never changes bucketing.

Rule (as observed in production data): take the UTC calendar date of the
timestamp; if the UTC hour is before ``business_day_rollover_hour`` (1),
use the previous date.  Events between the rollover hour and the 08:00
anchor are *not* rolled back.
"""

import time
from datetime import date, datetime, timedelta, timezone
from typing import Tuple

from app.core.config import settings
from app.core.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_utc(timestamp_ms: int) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


def to_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def business_date_of(timestamp_ms: int) -> date:
    """Calendar date of the business day that ``timestamp_ms`` belongs to."""
    moment = to_utc(timestamp_ms)
    day = moment.date()
    if moment.hour < settings.business_day_rollover_hour:
        day -= timedelta(days=1)
    return day


def business_day_of(timestamp_ms: int) -> datetime:
    """Representative instant (08:00 UTC) of the business day."""
    day = business_date_of(timestamp_ms)
    return datetime(
        day.year, day.month, day.day, settings.business_day_anchor_hour, tzinfo=timezone.utc
    )


def business_day_key(timestamp_ms: int) -> str:
    """Canonical ``YYYY-MM-DD`` bucket key."""
    return business_date_of(timestamp_ms).strftime(DATE_FORMAT)


def parse_business_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` string, raising ValidationError if malformed."""
    try:
        if len(value) != 10:
            raise ValueError(value)
        return datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date format '{value}', expected YYYY-MM-DD")


def anchor_ms(day: date) -> int:
    """Epoch ms of the 08:00 UTC anchor for ``day``."""
    return to_ms(datetime(day.year, day.month, day.day, settings.business_day_anchor_hour))


def business_day_bounds(day: date) -> Tuple[int, int]:
    """Half-open ``[start, end)`` epoch-ms range of every event bucketed into ``day``."""
    start = datetime(day.year, day.month, day.day, settings.business_day_rollover_hour)
    end = start + timedelta(days=1)
    return to_ms(start), to_ms(end)
