"""Command line interface for dukafetch."""

from __future__ import annotations

import asyncio
from datetime import date, timedelta
from pathlib import Path

import httpx
import typer
from loguru import logger

from dukafetch.config import CONFIG_FILE, Settings, load_config
from dukafetch.downloader import Downloader, download_symbols
from dukafetch.exceptions import DukafetchError, MetadataError
from dukafetch.logging_config import setup_logging
from dukafetch.meta import fetch_instruments_payload, load_catalog, save_payload
from dukafetch.models import DownloadReport
from dukafetch.persistence import RecordWriter, merge_symbol
from dukafetch.utils.time import parse_date, utc_today

app = typer.Typer(
    add_completion=False,
    help="Download and decode hourly historical tick data.",
)


def _settings(ctx: typer.Context) -> Settings:
    settings: Settings = ctx.ensure_object(Settings)
    return settings


def _configure_logging(settings: Settings, verbose: bool) -> None:
    general = settings.general
    setup_logging(
        console_level="DEBUG" if verbose else general.log_level_console,
        file_level=general.log_level_file,
        log_dir=Path(general.log_directory) if general.log_directory else None,
    )


def _parse_date_option(value: str | None, default: date) -> date:
    if value is None:
        return default
    try:
        return parse_date(value)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


def _split_symbols(symbols: list[str]) -> list[str]:
    """Accepts both ``EURUSD GBPUSD`` and ``EURUSD,GBPUSD``."""
    return [s.strip().upper() for arg in symbols for s in arg.split(",") if s.strip()]


def _print_summary(
    requested: list[str], reports: list[DownloadReport], base_url: str
) -> None:
    processed = {r.symbol for r in reports}
    typer.echo("")
    typer.echo("Summary")
    for report in reports:
        status = "ok" if report.ok else f"{len(report.failed)} failed"
        typer.echo(
            f"  {report.symbol}: {report.decoded} files, {report.ticks} ticks, "
            f"{report.no_data} empty, {status}"
        )
        for url in report.failed_urls(base_url):
            typer.echo(f"    failed: {url}")
    for symbol in requested:
        if symbol not in processed:
            typer.echo(f"  {symbol}: skipped")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        CONFIG_FILE,
        "--config",
        help="Path to the TOML configuration file.",
        show_default=True,
    ),
) -> None:
    """Dukafetch command line interface."""
    ctx.obj = load_config(config, create=config == CONFIG_FILE)


@app.command("download")
def download_command(
    ctx: typer.Context,
    symbols: list[str] = typer.Argument(..., help="Symbols like EURUSD,GBPUSD."),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Output directory."
    ),
    start: str | None = typer.Option(
        None, "--start", "-s", help="Start date (YYYY-MM-DD) [default: today - 1]."
    ),
    end: str | None = typer.Option(
        None, "--end", "-e", help="End date, exclusive (YYYY-MM-DD) [default: today]."
    ),
    retry_count: int | None = typer.Option(
        None, "--retry-count", "-r", min=0, help="Retry rounds for failed files."
    ),
    concurrency: int | None = typer.Option(
        None, "--concurrency", "-c", min=1, help="Maximum requests in flight."
    ),
    meta_file: Path | None = typer.Option(
        None,
        "--meta-file",
        "-m",
        help="Instrument metadata file written by `meta`. Fetched live if absent.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose mode."),
) -> None:
    """Download hourly tick files and write them as CSV."""
    settings = _settings(ctx)
    _configure_logging(settings, verbose)

    today = utc_today()
    start_day = _parse_date_option(start, today - timedelta(days=1))
    end_day = _parse_date_option(end, today)
    dl = settings.download
    requested = _split_symbols(symbols)
    output_dir = output or Path(dl.output_directory)
    cache_file = meta_file or Path(settings.meta.cache_file)

    async def _run() -> list[DownloadReport]:
        async with httpx.AsyncClient(
            timeout=dl.request_timeout_s, follow_redirects=True
        ) as client:
            catalog = await load_catalog(
                client,
                cache_file,
                url=settings.meta.url,
                referer=settings.meta.referer,
                retry_count=settings.meta.retry_count,
            )
            downloader = Downloader(
                client,
                RecordWriter(output_dir),
                catalog,
                base_url=dl.base_url,
                concurrency_limit=concurrency or dl.concurrency_limit,
                max_retries=dl.max_retries if retry_count is None else retry_count,
                retry_delay=dl.retry_delay_s,
            )
            return await download_symbols(downloader, requested, start_day, end_day)

    try:
        reports = asyncio.run(_run())
    except MetadataError as e:
        logger.error(f"Instrument metadata unavailable: {e}")
        raise typer.Exit(code=1) from e

    _print_summary(requested, reports, dl.base_url)


@app.command("merge")
def merge_command(
    ctx: typer.Context,
    symbols: list[str] = typer.Argument(..., help="Symbols to merge."),
    input_dir: Path = typer.Option(
        Path("bi5"), "--input", "-i", help="Directory written by `download`."
    ),
    output_dir: Path = typer.Option(
        Path("merged"), "--output", "-o", help="Directory for merged files."
    ),
) -> None:
    """Concatenate each symbol's hourly CSV files into one file."""
    _configure_logging(_settings(ctx), verbose=False)

    async def _run() -> None:
        for symbol in _split_symbols(symbols):
            try:
                path = await merge_symbol(input_dir, output_dir, symbol)
            except (FileNotFoundError, DukafetchError) as e:
                logger.error(f"Skipping {symbol}: {e}")
            else:
                typer.echo(f"{symbol} -> {path}")

    asyncio.run(_run())


@app.command("aggregate")
def aggregate_command(ctx: typer.Context) -> None:
    """Aggregate ticks into candles (not implemented)."""
    _configure_logging(_settings(ctx), verbose=False)
    logger.warning("Candle aggregation is not implemented; nothing to do.")


@app.command("meta")
def meta_command(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Where to write the instrument metadata JSON."
    ),
    retry_count: int | None = typer.Option(
        None, "--retry-count", "-r", min=1, help="Fetch attempts."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose mode."),
) -> None:
    """Fetch instrument metadata and save it for later downloads."""
    settings = _settings(ctx)
    _configure_logging(settings, verbose)
    meta = settings.meta
    target = output or Path(meta.cache_file)

    async def _run() -> None:
        async with httpx.AsyncClient(timeout=meta.request_timeout_s) as client:
            payload = await fetch_instruments_payload(
                client,
                meta.url,
                meta.referer,
                meta.retry_count if retry_count is None else retry_count,
            )
        await save_payload(payload, target)

    try:
        asyncio.run(_run())
    except (MetadataError, OSError) as e:
        logger.error(f"Could not save instrument metadata: {e}")
        raise typer.Exit(code=1) from e
