import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import get_settings

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def today_in(timezone: Optional[str] = None) -> date:
    name = timezone or get_settings().timezone
    try:
        tz = ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"unknown_timezone: tz={name!r}, using default")
        tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def add_months(base: date, months: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def most_recent_weekday(reference: date, target_weekday: int) -> date:
    """Most recent ``target_weekday`` (Monday=0) strictly before ``reference``."""
    days_back = reference.weekday() - target_weekday
    if days_back <= 0:
        days_back += 7
    return reference - timedelta(days=days_back)


class DateResolver:
    def __init__(self, reference_date: date) -> None:
        self.reference_date = reference_date

    @classmethod
    def for_timezone(cls, timezone: Optional[str] = None) -> "DateResolver":
        return cls(today_in(timezone))

    def resolve(self, token: Optional[str]) -> date:
        value = (token or "").strip()
        if value.lower() == "today":
            return self.reference_date
        if value.lower() == "yesterday":
            return self.reference_date - timedelta(days=1)
        try:
            return date.fromisoformat(value)
        except ValueError:
            logger.warning(f"date_resolve: invalid={token!r}, using today")
            return self.reference_date

    def resolve_and_validate(self, token: Optional[str], original_text: str) -> date:
        """Accept an ISO date inside [reference - 1y, reference + 1d].

        Anything else (unparseable or implausible) is re-derived from the
        wording of ``original_text``.
        """
        try:
            parsed = date.fromisoformat((token or "").strip())
        except ValueError:
            logger.warning(f"date_validate: unparseable={token!r}")
            return self.relative_date_from_text(original_text)

        if parsed > self.reference_date + timedelta(days=1):
            logger.warning(f"date_validate: future={parsed}")
            return self.relative_date_from_text(original_text)
        if parsed < add_months(self.reference_date, -12):
            logger.warning(f"date_validate: too_old={parsed}")
            return self.relative_date_from_text(original_text)
        return parsed

    def relative_date_from_text(self, text: Optional[str]) -> date:
        today = self.reference_date
        lowered = (text or "").lower()

        if "yesterday" in lowered:
            return today - timedelta(days=1)
        if "today" in lowered or "now" in lowered:
            return today
        if "last week" in lowered:
            return today - timedelta(days=7)
        if "last month" in lowered:
            return add_months(today, -1)
        # Fixed offsets, not calendar boundaries.
        if "this week" in lowered:
            return today - timedelta(days=3)
        if "this month" in lowered:
            return today - timedelta(days=10)

        for weekday, name in enumerate(WEEKDAY_NAMES):
            if name in lowered:
                return most_recent_weekday(today, weekday)

        return today
