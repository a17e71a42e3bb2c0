from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import TYPE_CHECKING, Final

import httpx
from loguru import logger

from dukafetch.decoder import decode_payload
from dukafetch.exceptions import ConfigurationError, DecodeError
from dukafetch.locator import DEFAULT_BASE_URL, build_range, descriptor_url
from dukafetch.models import (
    Decoded,
    DownloadReport,
    Failed,
    FetchOutcome,
    InstrumentMeta,
    NoData,
    ResourceDescriptor,
)
from dukafetch.utils.limiter import ConcurrencyLimiter
from dukafetch.utils.time import to_utc_date

if TYPE_CHECKING:
    from loguru import Logger

    from dukafetch.meta import MetadataLookup
    from dukafetch.persistence import RecordWriter

# --- Defaults ---
DEFAULT_CONCURRENCY_LIMIT: Final[int] = 24
DEFAULT_MAX_RETRIES: Final[int] = 10
DEFAULT_RETRY_DELAY_S: Final[float] = 5.0

# A round is fetched in slices of this many descriptors per concurrency slot,
# so decoded ticks of a long range are never all held at once.
BATCH_SIZE_PER_SLOT: Final[int] = 16

# Statuses that mean "the provider has nothing for this hour".
NO_DATA_STATUSES: Final[frozenset[int]] = frozenset({httpx.codes.NOT_FOUND})


class Downloader:
    """Fetches, decodes and persists hourly tick files.

    A single control flow drives the work: each batch is fetched with at most
    `concurrency_limit` requests in flight and is awaited as a whole before
    the next decision is made. Transient failures (unexpected statuses,
    transport errors, timeouts) form the next batch, after a fixed delay,
    until the retry budget runs out. Missing hours (404 or an empty body) are
    terminal and never retried. Decode and write failures stay scoped to
    their own descriptor and are reported as permanent.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        writer: RecordWriter,
        catalog: MetadataLookup,
        *,
        base_url: str = DEFAULT_BASE_URL,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY_S,
        batch_size: int | None = None,
        log: Logger | None = None,
    ) -> None:
        """Initializes the downloader.

        Args:
            client: Shared HTTP client used for every request.
            writer: Destination for decoded records.
            catalog: Source of per-symbol price scale and history start.
            base_url: Root of the tick file tree.
            concurrency_limit: Maximum number of requests in flight.
            max_retries: How many extra rounds failed descriptors get.
            retry_delay: Seconds to wait before each retry round.
            batch_size: Descriptors fetched per slice of a round. Defaults to
                `BATCH_SIZE_PER_SLOT` times the concurrency limit.
            log: Logger to report through. Defaults to the module logger.
        """
        if concurrency_limit <= 0:
            err_msg = "concurrency_limit must be a positive integer."
            raise ValueError(err_msg)
        if batch_size is not None and batch_size <= 0:
            err_msg = "batch_size must be a positive integer."
            raise ValueError(err_msg)
        if max_retries < 0:
            err_msg = "max_retries must not be negative."
            raise ValueError(err_msg)
        if retry_delay < 0:
            err_msg = "retry_delay must not be negative."
            raise ValueError(err_msg)

        self.client = client
        self.writer = writer
        self.catalog = catalog
        self.base_url = base_url
        self.concurrency_limit = concurrency_limit
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.batch_size = batch_size or concurrency_limit * BATCH_SIZE_PER_SLOT
        self.log = log or logger.bind(component="downloader")

    # --- Public API ---

    async def run(self, descriptors: Sequence[ResourceDescriptor]) -> DownloadReport:
        """Downloads every descriptor, retrying transient failures.

        Metadata and output folders for every symbol involved are checked
        before the first request, so a configuration problem aborts the run
        without network traffic.

        Returns:
            A report whose ``failed`` set holds the permanently failed
            descriptors. Failures are reported, never raised.

        Raises:
            UnknownSymbolError: If a symbol has no metadata.
            OutputPathError: If a symbol's output folder is unusable.
        """
        metas = self._resolve_metadata(descriptors)
        symbols = sorted(metas)
        for symbol in symbols:
            self.writer.ensure_directory(symbol)
        report = DownloadReport(symbol=",".join(symbols), requested=len(descriptors))

        work: list[ResourceDescriptor] = list(descriptors)
        attempt = 0
        while work:
            if attempt > 0:
                self.log.warning(f"Retry({attempt}/{self.max_retries})")
                await asyncio.sleep(self.retry_delay)

            retry: list[ResourceDescriptor] = []
            for start in range(0, len(work), self.batch_size):
                outcomes = await self._run_batch(
                    work[start : start + self.batch_size], metas
                )
                self._tally(outcomes, report, retry)
            report.attempts = attempt + 1

            if attempt >= self.max_retries:
                report.failed.update(retry)
                break
            work = retry
            attempt += 1

        return report

    async def download_symbol(
        self, symbol: str, start: date | datetime, end: date | datetime
    ) -> DownloadReport:
        """Downloads one symbol's hourly files for the days in [start, end).

        The start is moved forward to the instrument's first day of history.

        Raises:
            UnknownSymbolError: If the symbol has no metadata.
            OutputPathError: If the symbol's output folder is unusable.
        """
        symbol = symbol.upper()
        meta = self.catalog.get(symbol)
        start_day = to_utc_date(start)
        end_day = to_utc_date(end)
        history_day = to_utc_date(meta.earliest_history)
        if start_day < history_day:
            self.log.info(
                f"{symbol} history starts on {history_day}; "
                f"skipping days before it."
            )
            start_day = history_day

        directory = self.writer.ensure_directory(symbol)
        self.log.info(
            f"Downloading {symbol} from:{start_day} to:{end_day} "
            f"---> Write To {directory}"
        )

        report = await self.run(build_range(symbol, start_day, end_day))
        report.symbol = symbol

        if report.failed:
            self.log.error(
                f"Error {symbol}: {len(report.failed)} files failed permanently: "
                f"{report.failed_urls(self.base_url)}"
            )
        else:
            self.log.success(
                f"Done {symbol}: {report.decoded} files, {report.ticks} ticks, "
                f"{report.no_data} empty hours."
            )
        return report

    # --- Internals ---

    def _resolve_metadata(
        self, descriptors: Iterable[ResourceDescriptor]
    ) -> dict[str, InstrumentMeta]:
        metas: dict[str, InstrumentMeta] = {}
        for descriptor in descriptors:
            if descriptor.symbol not in metas:
                metas[descriptor.symbol] = self.catalog.get(descriptor.symbol)
        return metas

    @staticmethod
    def _tally(
        outcomes: Iterable[FetchOutcome],
        report: DownloadReport,
        retry: list[ResourceDescriptor],
    ) -> None:
        for outcome in outcomes:
            if isinstance(outcome, Decoded):
                report.decoded += 1
                report.ticks += len(outcome.records)
            elif isinstance(outcome, NoData):
                report.no_data += 1
            elif outcome.retryable:
                retry.append(outcome.descriptor)
            else:
                report.failed.add(outcome.descriptor)

    async def _run_batch(
        self,
        batch: Sequence[ResourceDescriptor],
        metas: dict[str, InstrumentMeta],
    ) -> list[FetchOutcome]:
        # Its queue binds to the running loop, so each batch gets its own.
        limiter = ConcurrencyLimiter(self.concurrency_limit)
        return await asyncio.gather(
            *(self._fetch_one(d, metas[d.symbol], limiter) for d in batch)
        )

    async def _fetch_one(
        self,
        descriptor: ResourceDescriptor,
        meta: InstrumentMeta,
        limiter: ConcurrencyLimiter,
    ) -> FetchOutcome:
        url = descriptor_url(descriptor, self.base_url)
        async with limiter.acquire():
            try:
                response = await self.client.get(url)
            except httpx.HTTPError as e:
                self.log.debug(f"{url} --> {type(e).__name__}: {e}")
                return Failed(descriptor, retryable=True, reason=type(e).__name__)

        self.log.debug(f"{url} --> {response.status_code}")
        status = response.status_code
        if status in NO_DATA_STATUSES:
            return NoData(descriptor, status)
        if status != httpx.codes.OK:
            return Failed(descriptor, retryable=True, reason=f"HTTP {status}")
        if not response.content:
            return NoData(descriptor, status)

        try:
            records = decode_payload(response.content, descriptor, meta)
        except DecodeError as e:
            self.log.error(f"Could not decode {url}: {e.reason}")
            return Failed(descriptor, retryable=False, reason=e.reason)

        try:
            path = await self.writer.write(descriptor, records)
        except OSError as e:
            self.log.error(f"Could not write ticks for {descriptor}: {e}")
            return Failed(descriptor, retryable=False, reason=str(e))

        return Decoded(descriptor, tuple(records), path)


async def download_symbols(
    downloader: Downloader,
    symbols: Iterable[str],
    start: date | datetime,
    end: date | datetime,
) -> list[DownloadReport]:
    """Downloads several symbols one after another.

    A configuration failure (unknown symbol, unusable output folder) skips
    that symbol only; the others are still processed.

    Returns:
        One report per symbol that could be started, in input order.
    """
    reports: list[DownloadReport] = []
    for symbol in symbols:
        try:
            reports.append(await downloader.download_symbol(symbol, start, end))
        except ConfigurationError as e:
            downloader.log.error(f"Skipping {symbol.upper()}: {e}")
    return reports
