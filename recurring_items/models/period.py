"""
Period Keys

A period is one calendar month, written as "YYYY-MM". The key is used
both as a document key and for date arithmetic.
"""

import calendar
import re
from datetime import date, datetime, timezone
from typing import Annotated, Union

from pydantic import AfterValidator


PERIOD_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def utc_now() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def validate_period_key(value: str) -> str:
    """Return the key unchanged if it is a valid YYYY-MM string."""
    if not isinstance(value, str) or not PERIOD_PATTERN.match(value):
        raise ValueError(f"Invalid period key: {value!r} (expected YYYY-MM)")
    return value


PeriodKey = Annotated[str, AfterValidator(validate_period_key)]


def _split(period: str) -> tuple[int, int]:
    validate_period_key(period)
    year, month = period.split("-")
    return int(year), int(month)


def period_of(value: Union[date, datetime]) -> str:
    """Natural period of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def shift_period(period: str, months: int) -> str:
    """Move a period forward (or backward, with negative months)."""
    year, month = _split(period)
    index = year * 12 + (month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def next_period(period: str) -> str:
    return shift_period(period, 1)


def previous_period(period: str) -> str:
    return shift_period(period, -1)


def period_bounds(period: str) -> tuple[date, date]:
    """First and last day of the period."""
    year, month = _split(period)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
