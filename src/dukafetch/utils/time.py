from collections.abc import Iterator
from datetime import date, datetime, timedelta, timezone

from loguru import logger


def utc_today() -> date:
    """Returns the current calendar date in UTC."""
    return datetime.now(timezone.utc).date()


def to_utc_date(value: date | datetime) -> date:
    """Reduces a date or datetime to a UTC calendar date.

    Naive datetimes are assumed to be UTC, as per project convention.
    Aware datetimes are converted to UTC before the date is taken.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yields every calendar day in the half-open range [start, end)."""
    current = start
    while current < end:
        yield current
        current += timedelta(days=1)


def from_epoch_millis(millis: int | str) -> datetime:
    """Converts epoch milliseconds (int or numeric string) to an aware datetime.

    Raises:
        ValueError: If the value is not numeric or is out of range.
    """
    try:
        ms = int(millis)
    except (TypeError, ValueError) as e:
        err_msg = f"Invalid epoch milliseconds: {millis!r}"
        raise ValueError(err_msg) from e
    try:
        return datetime(1970, 1, 1, tzinfo=timezone.utc) + timedelta(milliseconds=ms)
    except OverflowError as e:
        err_msg = f"Epoch milliseconds '{millis}' is out of range."
        raise ValueError(err_msg) from e


def format_rfc3339_millis(dt_obj: datetime) -> str:
    """Formats a datetime as an RFC3339 string with millisecond precision.

    Example: "2003-01-05T00:00:00.123Z"
    """
    if dt_obj.tzinfo is None:
        dt_obj = dt_obj.replace(tzinfo=timezone.utc)
    else:
        dt_obj = dt_obj.astimezone(timezone.utc)
    return dt_obj.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_date(value: str) -> date:
    """Parses a YYYY-MM-DD string into a date.

    Raises:
        ValueError: If the string is not an ISO calendar date.
    """
    try:
        return date.fromisoformat(value.strip())
    except ValueError as e:
        logger.warning(f"Could not parse date string '{value}': {e}")
        err_msg = f"Invalid date, expected YYYY-MM-DD: {value}"
        raise ValueError(err_msg) from e
