from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path

# --- Descriptors and records ---


@dataclass(frozen=True, order=True)
class ResourceDescriptor:
    """Identifies one fetchable hourly tick file.

    Field order doubles as sort order, so sorting descriptors of a single
    symbol yields chronological order.
    """

    symbol: str
    year: int
    month: int  # 1-12; the wire format shifts this to 0-11.
    day: int
    hour: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper())
        if not 0 <= self.hour <= 23:  # noqa: PLR2004
            err_msg = f"Hour must be within 0-23, got {self.hour}."
            raise ValueError(err_msg)
        # Raises ValueError for impossible calendar dates.
        datetime(self.year, self.month, self.day, tzinfo=timezone.utc)

    @property
    def hour_start(self) -> datetime:
        """The UTC instant at which this descriptor's hour begins."""
        return datetime(
            self.year, self.month, self.day, self.hour, tzinfo=timezone.utc
        )

    def __str__(self) -> str:
        return (
            f"{self.symbol} {self.year:04d}-{self.month:02d}-{self.day:02d} "
            f"{self.hour:02d}h"
        )


@dataclass(frozen=True)
class TickRecord:
    """A single decoded quote update."""

    timestamp: datetime
    ask: Decimal
    bid: Decimal
    ask_volume: float
    bid_volume: float


@dataclass(frozen=True)
class InstrumentMeta:
    """Per-instrument data needed to decode and bound a download.

    Attributes:
        price_scale: Divisor applied to the raw integer price fields.
        earliest_history: First instant for which the provider has ticks.
    """

    price_scale: Decimal
    earliest_history: datetime

    def __post_init__(self) -> None:
        scale = self.price_scale
        if not isinstance(scale, Decimal):
            # Going through str() keeps float noise like 100000.00000000001
            # out of the scale when it is a clean decimal number.
            try:
                scale = Decimal(str(scale))
            except InvalidOperation as e:
                err_msg = f"Invalid price scale: {self.price_scale!r}"
                raise ValueError(err_msg) from e
        if not scale.is_finite() or scale <= 0:
            err_msg = f"Price scale must be positive, got {self.price_scale!r}."
            raise ValueError(err_msg)
        object.__setattr__(self, "price_scale", scale)
        if self.earliest_history.tzinfo is None:
            object.__setattr__(
                self,
                "earliest_history",
                self.earliest_history.replace(tzinfo=timezone.utc),
            )


# --- Fetch outcomes ---


@dataclass(frozen=True)
class Decoded:
    """The resource was fetched, decoded and written."""

    descriptor: ResourceDescriptor
    records: tuple[TickRecord, ...]
    path: Path


@dataclass(frozen=True)
class NoData:
    """The provider has nothing for this hour. Terminal, not an error."""

    descriptor: ResourceDescriptor
    status_code: int


@dataclass(frozen=True)
class Failed:
    """The descriptor did not make it through this attempt.

    Only retryable failures are fetched again; the rest are permanent.
    """

    descriptor: ResourceDescriptor
    retryable: bool
    reason: str = ""


FetchOutcome = Decoded | NoData | Failed


@dataclass
class DownloadReport:
    """Summary of a download run for one symbol."""

    symbol: str
    requested: int = 0
    decoded: int = 0
    no_data: int = 0
    ticks: int = 0
    attempts: int = 0
    failed: set[ResourceDescriptor] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        """True when no descriptor ended up permanently failed."""
        return not self.failed

    def failed_urls(self, base_url: str) -> list[str]:
        """Returns the URLs of all permanently failed descriptors, in order."""
        # Local import: locator depends on this module.
        from dukafetch.locator import descriptor_url

        return [descriptor_url(d, base_url) for d in sorted(self.failed)]
