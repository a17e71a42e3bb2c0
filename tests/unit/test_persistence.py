from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import numpy as np
import pytest

from dukafetch.decoder import decode_records
from dukafetch.exceptions import OutputPathError
from dukafetch.locator import build_range
from dukafetch.models import ResourceDescriptor, TickRecord
from dukafetch.persistence import (
    CSV_HEADER,
    RecordWriter,
    build_filename,
    format_record,
    format_volume,
    merge_symbol,
)


def make_record(second: int, ask: str, bid: str) -> TickRecord:
    """Helper to create a TickRecord inside 2003-01-05 00h."""
    return TickRecord(
        timestamp=datetime(2003, 1, 5, 0, 0, second, 123000, tzinfo=timezone.utc),
        ask=Decimal(ask),
        bid=Decimal(bid),
        ask_volume=1.5,
        bid_volume=0.25,
    )


def test_filename_is_zero_padded_and_one_based() -> None:
    descriptor = ResourceDescriptor("eurusd", 2003, 1, 5, 7)
    assert build_filename(descriptor) == "EURUSD_2003_01_05_07h_ticks.csv"


def test_filenames_sort_chronologically() -> None:
    """Plain string order of the filenames matches time order."""
    descriptors = build_range("EURUSD", date(2003, 9, 28), date(2003, 10, 3))
    names = [build_filename(d) for d in descriptors]

    assert sorted(names) == names
    assert len(set(names)) == len(names)


def test_format_record() -> None:
    """Timestamps carry milliseconds; prices are plain decimals."""
    row = format_record(make_record(1, "1.03215", "1.03210"))

    assert row == ["2003-01-05T00:00:01.123Z", "1.03215", "1.03210", "1.5", "0.25"]


def test_format_record_zero_prices_stay_plain() -> None:
    """A scaled zero like Decimal('0E-5') is not rendered in exponent form."""
    (record,) = decode_records(
        b"\x00" * 20, datetime(2003, 1, 5, tzinfo=timezone.utc), Decimal(100000)
    )

    row = format_record(record)

    assert row == ["2003-01-05T00:00:00.000Z", "0.00000", "0.00000", "0", "0"]


@pytest.mark.parametrize(
    ("volume", "expected"),
    [
        (0.0, "0"),
        (1.5, "1.5"),
        (float(np.float32(1.0000001)), "1.0000001"),
        (12345678.0, "12345678"),
        (float(np.float32(3.4e20)), "340000000000000000000"),
        (float(np.float32(1e-8)), "0.00000001"),
    ],
)
def test_format_volume(volume: float, expected: str) -> None:
    """Volumes are written positionally with just enough digits."""
    text = format_volume(volume)

    assert text == expected
    assert np.float32(float(text)) == np.float32(volume)


@pytest.mark.asyncio
async def test_write_creates_csv_with_header(tmp_path: Path) -> None:
    writer = RecordWriter(tmp_path)
    descriptor = ResourceDescriptor("EURUSD", 2003, 1, 5, 0)
    writer.ensure_directory("EURUSD")

    path = await writer.write(
        descriptor, [make_record(1, "1.1", "1.0"), make_record(2, "1.2", "1.1")]
    )

    assert path == tmp_path / "EURUSD" / "EURUSD_2003_01_05_00h_ticks.csv"
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == ",".join(CSV_HEADER)
    assert lines[0] == "datetime,ask,bid,ask_vol,bid_vol"
    assert lines[1] == "2003-01-05T00:00:01.123Z,1.1,1.0,1.5,0.25"
    assert len(lines) == 3


@pytest.mark.asyncio
async def test_write_overwrites_previous_artifact(tmp_path: Path) -> None:
    """Re-running a descriptor replaces its file instead of appending."""
    writer = RecordWriter(tmp_path)
    descriptor = ResourceDescriptor("EURUSD", 2003, 1, 5, 0)
    writer.ensure_directory("EURUSD")

    await writer.write(descriptor, [make_record(1, "1.1", "1.0")] * 5)
    path = await writer.write(descriptor, [make_record(2, "1.2", "1.1")])

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert list((tmp_path / "EURUSD").iterdir()) == [path]


@pytest.mark.asyncio
async def test_write_empty_records_writes_header_only(tmp_path: Path) -> None:
    writer = RecordWriter(tmp_path)
    writer.ensure_directory("EURUSD")

    path = await writer.write(ResourceDescriptor("EURUSD", 2003, 1, 5, 3), [])

    assert path.read_text(encoding="utf-8") == "datetime,ask,bid,ask_vol,bid_vol\n"


def test_ensure_directory_reports_unwritable_path(tmp_path: Path) -> None:
    """A file in the way of the output directory is a configuration error."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    writer = RecordWriter(blocker)

    with pytest.raises(OutputPathError) as exc_info:
        writer.ensure_directory("EURUSD")

    assert exc_info.value.path == blocker / "EURUSD"


@pytest.mark.asyncio
async def test_merge_orders_by_filename_with_single_header(tmp_path: Path) -> None:
    input_dir = tmp_path / "bi5"
    writer = RecordWriter(input_dir)
    writer.ensure_directory("EURUSD")
    # Written out of order on purpose.
    await writer.write(
        ResourceDescriptor("EURUSD", 2003, 1, 6, 0), [make_record(3, "1.3", "1.2")]
    )
    await writer.write(
        ResourceDescriptor("EURUSD", 2003, 1, 5, 23), [make_record(2, "1.2", "1.1")]
    )
    await writer.write(
        ResourceDescriptor("EURUSD", 2003, 1, 5, 1),
        [make_record(1, "1.1", "1.0"), make_record(1, "1.15", "1.05")],
    )
    await writer.write(ResourceDescriptor("EURUSD", 2003, 1, 5, 2), [])

    target = await merge_symbol(input_dir, tmp_path / "merged", "eurusd")

    assert target == tmp_path / "merged" / "EURUSD.csv"
    lines = target.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "datetime,ask,bid,ask_vol,bid_vol"
    assert [line.split(",")[1] for line in lines[1:]] == ["1.1", "1.15", "1.2", "1.3"]


@pytest.mark.asyncio
async def test_merge_without_artifacts_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="No tick files for 'GBPUSD'"):
        await merge_symbol(tmp_path, tmp_path / "merged", "GBPUSD")
