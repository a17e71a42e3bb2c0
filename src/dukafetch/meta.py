"""The instrument catalog: price scale and earliest history per symbol.

The provider serves the catalog as JSONP, i.e. a JSON object wrapped in a
callback call such as ``jsonp({...});``. Each entry under ``instruments``
carries a ``pipValue`` from which the integer price divisor is derived
(``10 / pipValue``) and a ``history_start_tick`` in epoch milliseconds,
encoded as a string.
"""

import json
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Final, Protocol

import aiofiles
import httpx
from loguru import logger

from dukafetch.exceptions import MetadataError, UnknownSymbolError
from dukafetch.models import InstrumentMeta
from dukafetch.utils.time import from_epoch_millis

# --- Constants ---

DEFAULT_META_URL: Final[str] = (
    "https://freeserv.dukascopy.com/2.0/index.php?path=common%2Finstruments"
)
DEFAULT_META_REFERER: Final[str] = "https://freeserv.dukascopy.com/"

PIP_TO_SCALE_NUMERATOR: Final[Decimal] = Decimal(10)


class MetadataLookup(Protocol):
    """Anything that maps an uppercased symbol to its InstrumentMeta."""

    def get(self, symbol: str) -> InstrumentMeta:
        """Returns the metadata for ``symbol`` or raises UnknownSymbolError."""
        ...


class InstrumentCatalog:
    """An in-memory MetadataLookup keyed by uppercased symbol."""

    def __init__(self, instruments: Mapping[str, InstrumentMeta]) -> None:
        self._instruments = {k.upper(): v for k, v in instruments.items()}

    def __len__(self) -> int:
        return len(self._instruments)

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.upper() in self._instruments

    @property
    def symbols(self) -> list[str]:
        return sorted(self._instruments)

    def get(self, symbol: str) -> InstrumentMeta:
        try:
            return self._instruments[symbol.upper()]
        except KeyError:
            raise UnknownSymbolError(symbol.upper()) from None

    @classmethod
    def from_payload(cls, text: str) -> "InstrumentCatalog":
        """Builds a catalog from a JSONP or plain JSON catalog document."""
        return cls(parse_instruments(strip_jsonp(text)))

    @classmethod
    def from_file(cls, path: Path) -> "InstrumentCatalog":
        """Loads a catalog previously saved by `save_payload`.

        Raises:
            MetadataError: If the file cannot be read or parsed.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            err_msg = f"Could not read instrument file '{path}': {e}"
            raise MetadataError(err_msg) from e
        catalog = cls.from_payload(text)
        logger.info(f"Loaded {len(catalog)} instruments from '{path}'.")
        return catalog


def strip_jsonp(text: str) -> str:
    """Removes a JSONP callback wrapper, returning the inner JSON text.

    Plain JSON (starting with ``{``) is returned unchanged.

    Raises:
        MetadataError: If the text is neither JSON nor a callback wrapper.
    """
    stripped = text.strip()
    if stripped.startswith("{"):
        return stripped
    start = stripped.find("(")
    end = stripped.rfind(")")
    if start == -1 or end <= start:
        err_msg = "Instrument payload is not wrapped in a callback."
        raise MetadataError(err_msg)
    return stripped[start + 1 : end].strip()


def _price_scale(pip_value: Any) -> Decimal | None:
    if isinstance(pip_value, bool) or not isinstance(pip_value, int | float | str):
        return None
    try:
        pip = Decimal(str(pip_value))
    except InvalidOperation:
        return None
    if not pip.is_finite() or pip <= 0:
        return None
    return PIP_TO_SCALE_NUMERATOR / pip


def parse_instruments(json_text: str) -> dict[str, InstrumentMeta]:
    """Parses the catalog JSON into InstrumentMeta keyed by symbol.

    Keys like ``"EUR/USD"`` become ``"EURUSD"``. Entries without a usable
    ``pipValue`` or ``history_start_tick`` are skipped.

    Raises:
        MetadataError: If the document is not JSON or lacks ``instruments``.
    """
    try:
        document = json.loads(json_text)
    except json.JSONDecodeError as e:
        err_msg = f"Instrument payload is not valid JSON: {e}"
        raise MetadataError(err_msg) from e

    instruments = document.get("instruments") if isinstance(document, dict) else None
    if not isinstance(instruments, dict):
        err_msg = "Instrument payload has no 'instruments' object."
        raise MetadataError(err_msg)

    parsed: dict[str, InstrumentMeta] = {}
    for key, entry in instruments.items():
        if not isinstance(entry, dict):
            continue
        scale = _price_scale(entry.get("pipValue"))
        start_tick = entry.get("history_start_tick")
        if scale is None or start_tick is None:
            logger.debug(f"Skipping instrument '{key}' with incomplete metadata.")
            continue
        try:
            earliest = from_epoch_millis(start_tick)
        except ValueError as e:
            logger.debug(f"Skipping instrument '{key}': {e}")
            continue
        symbol = key.replace("/", "").upper()
        parsed[symbol] = InstrumentMeta(price_scale=scale, earliest_history=earliest)
    return parsed


async def fetch_instruments_payload(
    client: httpx.AsyncClient,
    url: str = DEFAULT_META_URL,
    referer: str = DEFAULT_META_REFERER,
    retry_count: int = 10,
) -> str:
    """Downloads the raw catalog, trying up to ``retry_count`` times.

    Returns:
        The catalog as plain JSON text (callback wrapper removed).

    Raises:
        MetadataError: If every attempt failed.
    """
    attempts = max(retry_count, 1)
    last_error = ""
    for attempt in range(1, attempts + 1):
        try:
            response = await client.get(url, headers={"referer": referer})
        except httpx.HTTPError as e:
            last_error = f"{type(e).__name__}: {e}"
        else:
            if response.status_code == httpx.codes.OK:
                return strip_jsonp(response.text)
            last_error = f"HTTP {response.status_code}"
        logger.warning(
            f"Fetching instrument metadata failed ({attempt}/{attempts}): "
            f"{last_error}"
        )

    err_msg = f"Could not fetch instrument metadata from '{url}': {last_error}"
    raise MetadataError(err_msg)


async def save_payload(json_text: str, path: Path) -> None:
    """Writes catalog JSON to ``path``, creating parent folders."""
    path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(path, mode="w", encoding="utf-8") as f:
        await f.write(json_text)
    logger.info(f"Instrument metadata written to '{path}'.")


async def load_catalog(
    client: httpx.AsyncClient,
    cache_file: Path | None = None,
    url: str = DEFAULT_META_URL,
    referer: str = DEFAULT_META_REFERER,
    retry_count: int = 10,
) -> InstrumentCatalog:
    """Returns the catalog from ``cache_file`` if it exists, else from the network."""
    if cache_file is not None and cache_file.exists():
        return InstrumentCatalog.from_file(cache_file)
    logger.info("Fetching instrument metadata...")
    payload = await fetch_instruments_payload(client, url, referer, retry_count)
    catalog = InstrumentCatalog(parse_instruments(payload))
    logger.success(f"Fetched metadata for {len(catalog)} instruments.")
    return catalog
