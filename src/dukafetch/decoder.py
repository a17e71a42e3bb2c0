import lzma
import struct
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Final

from dukafetch.exceptions import DecodeError
from dukafetch.models import InstrumentMeta, ResourceDescriptor, TickRecord

# --- Constants ---

# Each tick is five big-endian 4-byte fields: millisecond offset from the
# hour start, ask and bid as scaled integers, ask and bid volume as floats.
RECORD_FORMAT: Final[str] = ">iiiff"
RECORD_SIZE: Final[int] = struct.calcsize(RECORD_FORMAT)

_RECORD_STRUCT: Final[struct.Struct] = struct.Struct(RECORD_FORMAT)

# Upper bound on price decimals for scales whose reciprocal never terminates.
MAX_PRICE_PLACES: Final[int] = 10


def price_quantum(price_scale: Decimal) -> Decimal:
    """Returns the smallest price step for a scale, e.g. 0.00001 for 100000.

    Prices are quantized to it so every price of an instrument carries the
    same number of decimals, however the scale itself was spelled.
    """
    step = (Decimal(1) / price_scale).normalize()
    places = min(max(-int(step.as_tuple().exponent), 0), MAX_PRICE_PLACES)
    return Decimal(1).scaleb(-places)


def decompress(payload: bytes) -> bytes:
    """Decompresses a raw tick file.

    Raises:
        DecodeError: If the payload is not a valid LZMA stream.
    """
    try:
        return lzma.decompress(payload)
    except (lzma.LZMAError, EOFError) as e:
        err_msg = f"LZMA decompression failed: {e}"
        raise DecodeError(err_msg) from e


def decode_records(
    raw: bytes, hour_start: datetime, price_scale: Decimal
) -> list[TickRecord]:
    """Decodes a decompressed buffer into tick records.

    The buffer has no header or length prefix; it is a flat run of
    `RECORD_SIZE`-byte records and its end is the only terminator.

    Args:
        raw: The decompressed bytes.
        hour_start: The UTC instant the millisecond offsets are relative to.
        price_scale: Divisor for the integer ask and bid fields.

    Returns:
        One TickRecord per record, in file order.

    Raises:
        DecodeError: If the buffer length is not a whole number of records.
    """
    if len(raw) % RECORD_SIZE:
        err_msg = (
            f"Buffer of {len(raw)} bytes is not a multiple of the "
            f"{RECORD_SIZE}-byte record size."
        )
        raise DecodeError(err_msg)

    quantum = price_quantum(price_scale)
    records: list[TickRecord] = []
    for offset_ms, ask_int, bid_int, ask_volume, bid_volume in (
        _RECORD_STRUCT.iter_unpack(raw)
    ):
        records.append(
            TickRecord(
                timestamp=hour_start + timedelta(milliseconds=offset_ms),
                ask=(Decimal(ask_int) / price_scale).quantize(quantum),
                bid=(Decimal(bid_int) / price_scale).quantize(quantum),
                ask_volume=ask_volume,
                bid_volume=bid_volume,
            )
        )
    return records


def decode_payload(
    payload: bytes, descriptor: ResourceDescriptor, meta: InstrumentMeta
) -> list[TickRecord]:
    """Decompresses and decodes one descriptor's tick file.

    Either every record is returned or a DecodeError is raised; partial
    results are never produced.

    Raises:
        DecodeError: Tagged with ``descriptor``.
    """
    try:
        raw = decompress(payload)
        return decode_records(raw, descriptor.hour_start, meta.price_scale)
    except DecodeError as e:
        raise DecodeError(e.reason, descriptor) from e
