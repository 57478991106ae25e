"""
Clock helpers
Civil-time conversions for dose scheduling. Doses are stored as naive
datetimes in the configured deployment time zone.
"""

from datetime import datetime, date, time
from typing import Optional, Union
from zoneinfo import ZoneInfo

from config import settings
from services.exceptions import ValidationError


def _zone() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def local_now() -> datetime:
    """Current wall-clock time in the deployment zone, without tzinfo"""
    return datetime.now(_zone()).replace(tzinfo=None, microsecond=0)


def local_today() -> date:
    """Current civil date in the deployment zone"""
    return datetime.now(_zone()).date()


def to_local(value: Optional[datetime]) -> datetime:
    """
    Normalize a timestamp to naive local time.
    Naive values are assumed to already be local; None means now.
    """
    if value is None:
        return local_now()
    if value.tzinfo is not None:
        return value.astimezone(_zone()).replace(tzinfo=None)
    return value


def parse_hhmm(value: Union[str, time, None]) -> Optional[time]:
    """Parse 'HH:MM' (or 'HH:MM:SS') into a time"""
    if value is None:
        return None
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        for fmt in ("%H:%M", "%H:%M:%S"):
            try:
                return datetime.strptime(value.strip(), fmt).time()
            except ValueError:
                continue
    raise ValidationError(f"Invalid time of day: {value!r}, expected HH:MM")

