"""
Quarter calendar arithmetic.

Periods follow the calendar-year convention:
    Q1 = Jan-Mar, Q2 = Apr-Jun, Q3 = Jul-Sep, Q4 = Oct-Dec
and are tokenized as "Q<n>-<year>" (e.g. "Q3-2025").

Everything here is pure: no I/O, and the only wall-clock dependency is
current_period(), which accepts an explicit `today` for tests.
"""
import re
from datetime import date, timedelta
from typing import List, NamedTuple, Optional, Union

from valuewatch.config import ANNOUNCEMENT_OFFSET_DAYS

# Year 0000 is rejected; date() has no year 0
_TOKEN_RE = re.compile(r"^[Qq]([1-4])-(?!0000)(\d{4})$")

# Last day of each quarter as (month, day)
_QUARTER_END = {1: (3, 31), 2: (6, 30), 3: (9, 30), 4: (12, 31)}


class MalformedPeriodError(ValueError):
    """Raised when a period token does not match Q<1-4>-<year>."""

    def __init__(self, token: object):
        super().__init__(f"Malformed quarter token {token!r}; expected e.g. 'Q3-2025'")
        self.token = token


class Period(NamedTuple):
    """
    A reporting quarter.

    Field order (year, quarter) makes tuple comparison chronological, so
    max()/sorted() on periods give the most recent quarter correctly where
    plain token strings would not ("Q4-2024" > "Q1-2025").
    """
    year: int
    quarter: int

    @classmethod
    def parse(cls, token: Union[str, "Period"]) -> "Period":
        if isinstance(token, Period):
            return token
        if not isinstance(token, str):
            raise MalformedPeriodError(token)
        match = _TOKEN_RE.match(token.strip())
        if not match:
            raise MalformedPeriodError(token)
        return cls(year=int(match.group(2)), quarter=int(match.group(1)))

    def __str__(self) -> str:
        return f"Q{self.quarter}-{self.year}"


PeriodLike = Union[str, Period]


def period_for_date(day: date) -> Period:
    """Quarter containing the given date."""
    return Period(year=day.year, quarter=(day.month - 1) // 3 + 1)


def current_period(today: Optional[date] = None) -> Period:
    """Quarter of today's date (or the supplied date)."""
    return period_for_date(today or date.today())


def previous_period(period: PeriodLike) -> Period:
    p = Period.parse(period)
    if p.quarter == 1:
        return Period(year=p.year - 1, quarter=4)
    return Period(year=p.year, quarter=p.quarter - 1)


def next_period(period: PeriodLike) -> Period:
    p = Period.parse(period)
    if p.quarter == 4:
        return Period(year=p.year + 1, quarter=1)
    return Period(year=p.year, quarter=p.quarter + 1)


def period_end_date(period: PeriodLike) -> date:
    """Last calendar day of the quarter, within the quarter's own year."""
    p = Period.parse(period)
    month, day = _QUARTER_END[p.quarter]
    return date(p.year, month, day)


def expected_announcement_date(quarter_end: date) -> date:
    """
    Deadline for announcing results of the quarter ending on `quarter_end`.

    Listed companies must publish quarterly results within 45 days of the
    quarter end. The offset is fixed.
    """
    return quarter_end + timedelta(days=ANNOUNCEMENT_OFFSET_DAYS)


def upcoming_periods(count: int = 2, today: Optional[date] = None) -> List[Period]:
    """Current quarter followed by the next `count - 1` quarters."""
    periods: List[Period] = []
    period = current_period(today)
    for _ in range(count):
        periods.append(period)
        period = next_period(period)
    return periods
