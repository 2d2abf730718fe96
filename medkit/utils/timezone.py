# FILE: medkit/utils/timezone.py
from __future__ import annotations

import calendar
from datetime import datetime, time
from zoneinfo import ZoneInfo

from medkit.core.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    """
    Returns a *naive* datetime representing local (TIMEZONE) time.
    DateTime columns are naive, so everything compared against them is too.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def start_of_today() -> datetime:
    return start_of_day(now_local())


def build_expiration_date(year: int, month: int) -> datetime:
    """
    Expiration entered as year+month means "usable until the end of that
    month": start of the month's last day.
    """
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day)
