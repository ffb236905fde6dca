from __future__ import annotations

from datetime import datetime, date
from zoneinfo import ZoneInfo

from app.core.config import settings

APP_TZ = ZoneInfo(settings.APP_TIMEZONE)  # Asia/Kolkata unless overridden


def now_local() -> datetime:
    """
    Returns a *naive* datetime in the clinic's timezone.
    DateTime columns are naive, and day/month revenue keys follow the clinic's calendar.
    """
    return datetime.now(APP_TZ).replace(tzinfo=None)


def today_local() -> date:
    return now_local().date()


def day_key(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def month_key(d: date) -> str:
    return d.strftime("%Y-%m")
