# wellen/timeline.py
import math
from datetime import date, datetime, time
from typing import Optional
from zoneinfo import ZoneInfo

from .config import TIMEZONE
from .models import Wave, WaveStatus, as_utc


def local_now(tz: ZoneInfo = TIMEZONE) -> datetime:
    return datetime.now(tz)


def to_local(moment: datetime, tz: ZoneInfo = TIMEZONE) -> datetime:
    return as_utc(moment).astimezone(tz)


def day_key(moment: datetime, tz: ZoneInfo = TIMEZONE) -> str:
    """
    Calendar day of `moment` in the regional timezone, as YYYY-MM-DD.

    Field activity is bounded by local business days, so two entries a few
    minutes apart around local midnight land on different days.
    """
    return to_local(moment, tz).date().isoformat()


def local_today(now: Optional[datetime] = None, tz: ZoneInfo = TIMEZONE) -> date:
    return to_local(now, tz).date() if now is not None else local_now(tz).date()


def wave_status(wave: Wave, now: Optional[datetime] = None, tz: ZoneInfo = TIMEZONE) -> WaveStatus:
    today = local_today(now, tz)
    if today < wave.start_date:
        return WaveStatus.UPCOMING
    if today > wave.end_date:
        return WaveStatus.PAST
    return WaveStatus.ACTIVE


def days_remaining(wave: Wave, now: Optional[datetime] = None, tz: ZoneInfo = TIMEZONE) -> int:
    """
    Whole days, rounded up, until local midnight at the start of the end date.

    The last day of a wave therefore reads 0 even though the wave is still
    active until that day is over.
    """
    current = to_local(now, tz) if now is not None else local_now(tz)
    end = datetime.combine(wave.end_date, time.min, tzinfo=tz)
    return max(0, math.ceil((end - current).total_seconds() / 86400))
