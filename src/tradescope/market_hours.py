"""US equity market calendar: sessions, trading days and exchange holidays.

All session boundaries are evaluated in US/Eastern time. Holidays follow
the NYSE full-day closure rules (fixed-date holidays observed on the
nearest weekday, plus the floating Monday/Thursday holidays and Good Friday).
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from tradescope.models import MarketSession

EASTERN = ZoneInfo("America/New_York")

PRE_MARKET_OPEN = time(4, 0)
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)
AFTER_HOURS_CLOSE = time(20, 0)


@dataclass(frozen=True)
class MarketHours:
    """Session boundaries for a single calendar date (Eastern time)."""

    date: date
    pre_market_open: datetime
    market_open: datetime
    market_close: datetime
    after_hours_close: datetime
    is_holiday: bool
    holiday_name: str | None = None


def to_eastern(moment: datetime) -> datetime:
    """Convert a datetime to Eastern time. Naive values are taken as Eastern."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=EASTERN)
    return moment.astimezone(EASTERN)


def at_eastern(day: date, clock: time) -> datetime:
    return datetime.combine(day, clock, tzinfo=EASTERN)


def _nth_weekday(year: int, month: int, weekday: int, n: int) -> date:
    first = date(year, month, 1)
    offset = (weekday - first.weekday()) % 7
    return first + timedelta(days=offset + 7 * (n - 1))


def _last_weekday(year: int, month: int, weekday: int) -> date:
    if month == 12:
        last = date(year, 12, 31)
    else:
        last = date(year, month + 1, 1) - timedelta(days=1)
    return last - timedelta(days=(last.weekday() - weekday) % 7)


def _easter(year: int) -> date:
    # Anonymous Gregorian algorithm
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


def _observed(day: date) -> date:
    if day.weekday() == 5:
        return day - timedelta(days=1)
    if day.weekday() == 6:
        return day + timedelta(days=1)
    return day


def _holidays(year: int) -> dict[date, str]:
    holidays = {
        _nth_weekday(year, 1, 0, 3): "Martin Luther King Jr. Day",
        _nth_weekday(year, 2, 0, 3): "Presidents' Day",
        _easter(year) - timedelta(days=2): "Good Friday",
        _last_weekday(year, 5, 0): "Memorial Day",
        _nth_weekday(year, 9, 0, 1): "Labor Day",
        _nth_weekday(year, 11, 3, 4): "Thanksgiving Day",
        _observed(date(year, 7, 4)): "Independence Day",
        _observed(date(year, 12, 25)): "Christmas Day",
    }
    # New Year's Day falling on a Saturday is not observed on Dec 31.
    new_year = date(year, 1, 1)
    if new_year.weekday() != 5:
        holidays[_observed(new_year)] = "New Year's Day"
    if year >= 2022:
        holidays[_observed(date(year, 6, 19))] = "Juneteenth"
    return holidays


def holiday_name(day: date) -> str | None:
    """Return the exchange holiday name for a date, or None."""
    return _holidays(day.year).get(day)


def is_holiday(day: date) -> bool:
    return holiday_name(day) is not None


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_trading_day(day: date) -> bool:
    return not is_weekend(day) and not is_holiday(day)


def next_trading_day(day: date, skip_weekends: bool = True, skip_holidays: bool = True) -> date:
    """Return the first date strictly after ``day`` allowed by the skip flags."""
    candidate = day + timedelta(days=1)
    while (skip_weekends and is_weekend(candidate)) or (
        skip_holidays and is_holiday(candidate)
    ):
        candidate += timedelta(days=1)
    return candidate


def market_hours_for(day: date) -> MarketHours:
    """Build the session boundaries for a calendar date."""
    name = holiday_name(day)
    return MarketHours(
        date=day,
        pre_market_open=at_eastern(day, PRE_MARKET_OPEN),
        market_open=at_eastern(day, MARKET_OPEN),
        market_close=at_eastern(day, MARKET_CLOSE),
        after_hours_close=at_eastern(day, AFTER_HOURS_CLOSE),
        is_holiday=name is not None,
        holiday_name=name,
    )


def market_session(moment: datetime) -> MarketSession:
    """Classify a moment into a trading session.

    Weekends and holidays are CLOSED all day. The regular session is
    [09:30, 16:00) Eastern.
    """
    eastern = to_eastern(moment)
    if not is_trading_day(eastern.date()):
        return MarketSession.CLOSED

    clock = eastern.time()
    if clock < PRE_MARKET_OPEN:
        return MarketSession.CLOSED
    if clock < MARKET_OPEN:
        return MarketSession.PRE_MARKET
    if clock < MARKET_CLOSE:
        return MarketSession.OPEN
    if clock < AFTER_HOURS_CLOSE:
        return MarketSession.AFTER_HOURS
    return MarketSession.CLOSED


def is_pre_market(moment: datetime) -> bool:
    return market_session(moment) == MarketSession.PRE_MARKET


def is_market_hours(moment: datetime) -> bool:
    return market_session(moment) == MarketSession.OPEN


def next_market_open(moment: datetime) -> datetime:
    """Return the next regular-session open at or after ``moment``."""
    eastern = to_eastern(moment)
    day = eastern.date()
    if is_trading_day(day) and eastern < at_eastern(day, MARKET_OPEN):
        return at_eastern(day, MARKET_OPEN)
    return at_eastern(next_trading_day(day), MARKET_OPEN)


def next_market_close(moment: datetime) -> datetime:
    """Return the next regular-session close at or after ``moment``."""
    eastern = to_eastern(moment)
    day = eastern.date()
    if is_trading_day(day) and eastern < at_eastern(day, MARKET_CLOSE):
        return at_eastern(day, MARKET_CLOSE)
    return at_eastern(next_trading_day(day), MARKET_CLOSE)
