from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dukafetch.models import ResourceDescriptor


class DukafetchError(Exception):
    """Base class for all errors raised by dukafetch."""


class ConfigurationError(DukafetchError):
    """A problem that makes a symbol (or the whole run) impossible to start.

    These are raised before any network request is made for the affected
    symbol. Callers processing several symbols skip the failing one and carry
    on with the rest.
    """


class UnknownSymbolError(ConfigurationError):
    """Raised when the instrument catalog has no entry for a symbol."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        super().__init__(f"No instrument metadata for symbol '{symbol}'.")


class OutputPathError(ConfigurationError):
    """Raised when an output directory cannot be created or written to."""

    def __init__(self, path: Path, reason: str = "") -> None:
        self.path = path
        message = f"Output path '{path}' is not writable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DecodeError(DukafetchError):
    """A payload could not be turned into tick records.

    Scoped to a single descriptor: the orchestrator reports it and moves on.
    """

    def __init__(
        self, reason: str, descriptor: ResourceDescriptor | None = None
    ) -> None:
        self.reason = reason
        self.descriptor = descriptor
        if descriptor is not None:
            super().__init__(f"{descriptor}: {reason}")
        else:
            super().__init__(reason)


class MetadataError(DukafetchError):
    """The instrument catalog could not be fetched or parsed."""
