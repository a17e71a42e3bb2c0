from datetime import date, datetime, timedelta, timezone

import pytest

from dukafetch.locator import (
    DEFAULT_BASE_URL,
    build_day,
    build_range,
    descriptor_from_key,
    descriptor_url,
    resource_key,
)
from dukafetch.models import ResourceDescriptor


def test_build_day_has_24_hours_in_order() -> None:
    """A day yields hours 0..23 with the symbol uppercased."""
    descriptors = build_day("eurusd", date(2003, 1, 5))

    assert len(descriptors) == 24
    assert [d.hour for d in descriptors] == list(range(24))
    assert {d.symbol for d in descriptors} == {"EURUSD"}
    assert {(d.year, d.month, d.day) for d in descriptors} == {(2003, 1, 5)}


def test_day_urls_use_zero_based_month() -> None:
    """January is transmitted as '00' on the wire."""
    urls = [descriptor_url(d) for d in build_day("eurusd", date(2003, 1, 5))]

    assert urls[0] == (
        "https://datafeed.dukascopy.com/datafeed/EURUSD/2003/00/05/00h_ticks.bi5"
    )
    assert urls[-1] == (
        "https://datafeed.dukascopy.com/datafeed/EURUSD/2003/00/05/23h_ticks.bi5"
    )


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (date(2003, 1, 5), date(2003, 1, 30)),
        (date(2020, 2, 27), date(2020, 3, 2)),  # leap day
        (date(2019, 12, 30), date(2020, 1, 2)),  # year boundary
        (date(2021, 6, 1), date(2021, 6, 2)),
    ],
)
def test_build_range_count_and_order(start: date, end: date) -> None:
    """Exactly 24 descriptors per day, strictly ascending in time."""
    descriptors = build_range("EURUSD", start, end)

    assert len(descriptors) == 24 * (end - start).days
    anchors = [d.hour_start for d in descriptors]
    assert anchors == sorted(anchors)
    assert all(b - a == timedelta(hours=1) for a, b in zip(anchors, anchors[1:]))
    assert anchors[0] == datetime(start.year, start.month, start.day, tzinfo=timezone.utc)


def test_build_range_spanning_months() -> None:
    """URLs switch month index at the month boundary."""
    descriptors = build_range("EURUSD", date(2003, 1, 30), date(2003, 2, 2))
    urls = [descriptor_url(d) for d in descriptors]

    assert urls[0].endswith("/EURUSD/2003/00/30/00h_ticks.bi5")
    assert urls[-1].endswith("/EURUSD/2003/01/01/23h_ticks.bi5")


@pytest.mark.parametrize(
    ("start", "end"),
    [
        (date(2003, 1, 5), date(2003, 1, 5)),
        (date(2003, 1, 6), date(2003, 1, 5)),
    ],
)
def test_build_range_empty(start: date, end: date) -> None:
    """An empty or inverted range produces nothing."""
    assert build_range("EURUSD", start, end) == []


def test_build_range_accepts_aware_datetimes() -> None:
    """Datetimes are reduced to their UTC calendar date."""
    tz = timezone(timedelta(hours=-5))
    start = datetime(2003, 1, 4, 22, 0, tzinfo=tz)  # 2003-01-05 03:00 UTC
    end = datetime(2003, 1, 5, 21, 0, tzinfo=tz)  # 2003-01-06 02:00 UTC

    descriptors = build_range("EURUSD", start, end)

    assert len(descriptors) == 24
    assert descriptors[0].day == 5


def test_round_trip_through_url() -> None:
    """Each descriptor is recovered from the URL built for it."""
    descriptors = build_range("eurusd", date(2003, 1, 5), date(2003, 1, 6))

    for hour, descriptor in enumerate(descriptors):
        recovered = descriptor_from_key(descriptor_url(descriptor))
        assert recovered == descriptor
        assert (
            recovered.symbol,
            recovered.year,
            recovered.month,
            recovered.day,
            recovered.hour,
        ) == ("EURUSD", 2003, 1, 5, hour)


def test_round_trip_through_key_in_december() -> None:
    """December is '11' on the wire and 12 after decoding."""
    descriptor = ResourceDescriptor("GBPUSD", 2010, 12, 31, 23)

    key = resource_key(descriptor)

    assert key == "GBPUSD/2010/11/31/23h_ticks.bi5"
    assert descriptor_from_key(key) == descriptor


@pytest.mark.parametrize("symbol", ["BRENT.CMDUSD", "USA500.IDXUSD", "E_XAUUSD"])
def test_round_trip_keeps_punctuated_symbols(symbol: str) -> None:
    """Catalog symbols may keep dots or underscores; the whole segment is the symbol."""
    descriptor = ResourceDescriptor(symbol, 2010, 3, 1, 5)

    assert descriptor_from_key(descriptor_url(descriptor)) == descriptor
    assert descriptor_from_key(resource_key(descriptor)).symbol == symbol


def test_descriptor_url_tolerates_trailing_slash() -> None:
    """A base URL with a trailing slash does not produce a double slash."""
    descriptor = ResourceDescriptor("EURUSD", 2003, 1, 5, 7)

    assert descriptor_url(descriptor, "http://example.test/feed/") == (
        "http://example.test/feed/EURUSD/2003/00/05/07h_ticks.bi5"
    )
    assert descriptor_url(descriptor).startswith(DEFAULT_BASE_URL)


@pytest.mark.parametrize(
    "key",
    [
        "",
        "EURUSD/2003/00/05",
        "https://example.test/EURUSD/03/00/05/00h_ticks.bi5",
        "EURUSD/2003/0/5/0h_ticks.bi5",
        "EURUSD/2003/00/05/00h_ticks.bi5.tmp",
    ],
)
def test_descriptor_from_key_rejects_garbage(key: str) -> None:
    """Strings without a tick file path raise ValueError."""
    with pytest.raises(ValueError, match="Not a tick file locator"):
        descriptor_from_key(key)


def test_descriptor_validation() -> None:
    """Impossible hours and dates are rejected."""
    with pytest.raises(ValueError, match="Hour must be within 0-23"):
        ResourceDescriptor("EURUSD", 2003, 1, 5, 24)
    with pytest.raises(ValueError):
        ResourceDescriptor("EURUSD", 2003, 2, 30, 0)
