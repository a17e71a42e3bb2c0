"""Per-hour resource descriptors and the URLs they map to.

The provider lays its tick files out as::

    {base}/{SYMBOL}/{YYYY}/{MM}/{DD}/{HH}h_ticks.bi5

where ``MM`` is the zero-based month (January is ``00``), and ``DD`` and
``HH`` are the one-based day and the zero-based hour. The month shift is part
of the wire format and must not be "fixed".
"""

import re
from datetime import date, datetime
from typing import Final

from dukafetch.models import ResourceDescriptor
from dukafetch.utils.time import iter_days, to_utc_date

# --- Constants ---

DEFAULT_BASE_URL: Final[str] = "https://datafeed.dukascopy.com/datafeed"

HOURS_PER_DAY: Final[int] = 24

_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?:^|/)(?P<symbol>[^/]+)/(?P<year>\d{4})/(?P<month>\d{2})/(?P<day>\d{2})"
    r"/(?P<hour>\d{2})h_ticks(?:\.bi5)?$"
)


def build_day(symbol: str, day: date) -> list[ResourceDescriptor]:
    """Returns the 24 descriptors of one UTC calendar day, hour 0 first."""
    return [
        ResourceDescriptor(symbol, day.year, day.month, day.day, hour)
        for hour in range(HOURS_PER_DAY)
    ]


def build_range(
    symbol: str, start: date | datetime, end: date | datetime
) -> list[ResourceDescriptor]:
    """Builds the descriptors for every hour of every day in [start, end).

    Args:
        symbol: The instrument symbol. It is uppercased.
        start: First day to include (UTC).
        end: First day to exclude (UTC).

    Returns:
        Descriptors in chronological order, 24 per day. Empty when
        ``end`` is not after ``start``.
    """
    descriptors: list[ResourceDescriptor] = []
    for day in iter_days(to_utc_date(start), to_utc_date(end)):
        descriptors.extend(build_day(symbol, day))
    return descriptors


def resource_key(descriptor: ResourceDescriptor) -> str:
    """Returns the provider-relative path of a descriptor's tick file."""
    return (
        f"{descriptor.symbol}/{descriptor.year:04d}/{descriptor.month - 1:02d}/"
        f"{descriptor.day:02d}/{descriptor.hour:02d}h_ticks.bi5"
    )


def descriptor_url(
    descriptor: ResourceDescriptor, base_url: str = DEFAULT_BASE_URL
) -> str:
    """Returns the absolute URL of a descriptor's tick file."""
    return f"{base_url.rstrip('/')}/{resource_key(descriptor)}"


def descriptor_from_key(key: str) -> ResourceDescriptor:
    """Recovers the descriptor from a resource key or a full URL.

    This is the inverse of `resource_key` / `descriptor_url`: it undoes the
    zero-based month shift.

    Raises:
        ValueError: If the string does not end in a tick file path.
    """
    match = _KEY_PATTERN.search(key)
    if match is None:
        err_msg = f"Not a tick file locator: {key}"
        raise ValueError(err_msg)
    return ResourceDescriptor(
        symbol=match["symbol"],
        year=int(match["year"]),
        month=int(match["month"]) + 1,
        day=int(match["day"]),
        hour=int(match["hour"]),
    )
