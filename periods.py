import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from errors import ValidationError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")
MONTH_FORMAT_ERROR = "Invalid month format. Expected format: YYYY-MM (e.g., 2025-08)"


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def parse_month(month: Optional[str]) -> Period:
    """Turn a ``YYYY-MM`` string into the inclusive date range it covers."""
    match = MONTH_PATTERN.match((month or "").strip())
    if not match:
        raise ValidationError(MONTH_FORMAT_ERROR)
    year, month_num = int(match.group(1)), int(match.group(2))
    if not 1 <= month_num <= 12:
        raise ValidationError(MONTH_FORMAT_ERROR)
    return Period(
        f"{year:04d}-{month_num:02d}",
        date(year, month_num, 1),
        month_end(year, month_num),
    )


def resolve_range(start: Optional[str], end: Optional[str]) -> Period:
    if not start or not end:
        raise ValidationError("Date range requires start and end dates")
    try:
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
    except ValueError as exc:
        raise ValidationError("Dates must be in YYYY-MM-DD format") from exc
    if start_date > end_date:
        raise ValidationError("Start date must be before end date")
    return Period("custom", start_date, end_date)
