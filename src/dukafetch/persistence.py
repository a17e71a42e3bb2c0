import csv
import io
from collections.abc import Sequence
from pathlib import Path
from typing import Final

import aiofiles
import aiofiles.os
import numpy as np
from loguru import logger

from dukafetch.exceptions import OutputPathError
from dukafetch.models import ResourceDescriptor, TickRecord
from dukafetch.utils.time import format_rfc3339_millis

# --- Constants ---

# The header row for every per-hour and merged CSV file.
CSV_HEADER: Final[list[str]] = ["datetime", "ask", "bid", "ask_vol", "bid_vol"]

ARTIFACT_SUFFIX: Final[str] = "h_ticks.csv"


def build_filename(descriptor: ResourceDescriptor) -> str:
    """Returns the artifact filename for a descriptor.

    Every numeric field is zero-padded so that plain string order of the
    filenames is chronological order. The month is one-based here.
    """
    return (
        f"{descriptor.symbol}_{descriptor.year:04d}_{descriptor.month:02d}_"
        f"{descriptor.day:02d}_{descriptor.hour:02d}{ARTIFACT_SUFFIX}"
    )


def format_volume(volume: float) -> str:
    """Renders a wire volume as the shortest decimal that reads back exactly.

    Volumes are single-precision on the wire, so the digits are chosen for
    float32 and never switch to exponent notation.
    """
    return np.format_float_positional(np.float32(volume), trim="-")


def format_record(record: TickRecord) -> list[str]:
    """Converts a TickRecord to a list of strings for CSV writing."""
    return [
        format_rfc3339_millis(record.timestamp),
        f"{record.ask:f}",
        f"{record.bid:f}",
        format_volume(record.ask_volume),
        format_volume(record.bid_volume),
    ]


def _render_csv(rows: Sequence[Sequence[str]]) -> str:
    string_io = io.StringIO()
    writer = csv.writer(string_io, lineterminator="\n")
    writer.writerows(rows)
    return string_io.getvalue()


class RecordWriter:
    """Writes decoded records as one CSV file per descriptor.

    Files go to ``<output_directory>/<SYMBOL>/`` and are named by
    `build_filename`, so a re-run overwrites the previous artifact instead of
    adding a second one. Each descriptor has its own path, which means
    concurrent writes never touch the same file.
    """

    def __init__(self, output_directory: Path) -> None:
        """Initializes the writer.

        Args:
            output_directory: The base directory holding one folder per symbol.
        """
        self.output_directory = output_directory

    def symbol_directory(self, symbol: str) -> Path:
        """Returns the folder that holds a symbol's per-hour artifacts."""
        return self.output_directory / symbol.upper()

    def path_for(self, descriptor: ResourceDescriptor) -> Path:
        """Returns the artifact path for a descriptor."""
        return self.symbol_directory(descriptor.symbol) / build_filename(descriptor)

    def ensure_directory(self, symbol: str) -> Path:
        """Creates the symbol's folder if needed.

        Raises:
            OutputPathError: If the folder cannot be created.
        """
        directory = self.symbol_directory(symbol)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputPathError(directory, str(e)) from e
        if not directory.is_dir():
            raise OutputPathError(directory, "not a directory")
        return directory

    async def write(
        self, descriptor: ResourceDescriptor, records: Sequence[TickRecord]
    ) -> Path:
        """Persists one descriptor's records, replacing any earlier artifact.

        Args:
            descriptor: The hour the records belong to.
            records: The decoded records, possibly empty.

        Returns:
            The path of the written file.
        """
        path = self.path_for(descriptor)
        content = _render_csv([CSV_HEADER, *(format_record(r) for r in records)])
        async with aiofiles.open(path, mode="w", encoding="utf-8", newline="") as f:
            await f.write(content)
        logger.trace(f"Wrote {len(records)} ticks to '{path}'.")
        return path


async def merge_symbol(
    input_directory: Path, output_directory: Path, symbol: str
) -> Path:
    """Concatenates a symbol's per-hour artifacts into a single CSV file.

    Artifacts are taken in filename order, which is chronological given the
    naming scheme. The header is written once and each artifact's own header
    line is dropped.

    Args:
        input_directory: The base directory a RecordWriter wrote to.
        output_directory: Where ``<SYMBOL>.csv`` is written.
        symbol: The instrument symbol.

    Returns:
        The path of the merged file.

    Raises:
        FileNotFoundError: If there are no artifacts for the symbol.
        OutputPathError: If the output directory cannot be created.
    """
    symbol = symbol.upper()
    source_dir = input_directory / symbol
    sources = sorted(
        source_dir.glob(f"{symbol}_*{ARTIFACT_SUFFIX}"), key=lambda p: p.name
    )
    if not sources:
        err_msg = f"No tick files for '{symbol}' in '{source_dir}'."
        raise FileNotFoundError(err_msg)

    try:
        await aiofiles.os.makedirs(output_directory, exist_ok=True)
    except OSError as e:
        raise OutputPathError(output_directory, str(e)) from e

    target = output_directory / f"{symbol}.csv"
    logger.info(f"Merging {len(sources)} files for {symbol} into '{target}'.")
    rows = 0
    async with aiofiles.open(target, mode="w", encoding="utf-8", newline="") as out:
        await out.write(_render_csv([CSV_HEADER]))
        for source in sources:
            async with aiofiles.open(source, encoding="utf-8", newline="") as f:
                lines = (await f.read()).splitlines(keepends=True)
            body = lines[1:] if lines and lines[0].startswith(CSV_HEADER[0]) else lines
            if body and not body[-1].endswith("\n"):
                body[-1] += "\n"
            await out.write("".join(body))
            rows += len(body)

    logger.success(f"Merged {rows} ticks for {symbol}.")
    return target
