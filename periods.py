from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional


@dataclass(frozen=True)
class MonthPeriod:
    """Half-open calendar month: ``start <= t < end``."""

    year: int
    month: int
    start: datetime
    end: datetime


def month_period(year: int, month: int) -> MonthPeriod:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if not 1 <= year <= 9999:
        raise ValueError("Year must be between 1 and 9999")
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1) if year < 9999 else datetime.max
    else:
        end = datetime(year, month + 1, 1)
    return MonthPeriod(year=year, month=month, start=start, end=end)


def is_current_month(period: MonthPeriod, *, today: Optional[date] = None) -> bool:
    today = today or date.today()
    return today.year == period.year and today.month == period.month
