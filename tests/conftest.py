import lzma
import struct
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from dukafetch.meta import InstrumentCatalog
from dukafetch.models import InstrumentMeta

# (offset_ms, ask_int, bid_int, ask_volume, bid_volume)
RawTick = tuple[int, int, int, float, float]


def pack_ticks(ticks: Sequence[RawTick]) -> bytes:
    """Packs raw tick tuples into the uncompressed 20-byte record layout."""
    return b"".join(struct.pack(">iiiff", *tick) for tick in ticks)


def compress(raw: bytes) -> bytes:
    """Compresses bytes the way the provider does (legacy .lzma container)."""
    return lzma.compress(raw, format=lzma.FORMAT_ALONE)


@pytest.fixture
def pack_raw() -> Callable[[Sequence[RawTick]], bytes]:
    """Provides `pack_ticks` for tests working on decompressed buffers."""
    return pack_ticks


@pytest.fixture
def make_payload() -> Callable[[Sequence[RawTick]], bytes]:
    """Provides a function turning raw tick tuples into a compressed payload."""

    def _make(ticks: Sequence[RawTick]) -> bytes:
        return compress(pack_ticks(ticks))

    return _make


@pytest.fixture
def eurusd_meta() -> InstrumentMeta:
    """Metadata for EURUSD: five decimal places, history from 2003-05-04."""
    return InstrumentMeta(
        price_scale=Decimal(100000),
        earliest_history=datetime(2003, 5, 4, tzinfo=timezone.utc),
    )


@pytest.fixture
def catalog(eurusd_meta: InstrumentMeta) -> InstrumentCatalog:
    """A catalog with EURUSD and USDJPY."""
    return InstrumentCatalog(
        {
            "EURUSD": eurusd_meta,
            "USDJPY": InstrumentMeta(
                price_scale=Decimal(1000),
                earliest_history=datetime(2003, 5, 4, tzinfo=timezone.utc),
            ),
        }
    )
