# src/dukafetch/__init__.py
"""Dukafetch: a downloader and decoder for hourly historical tick files.

The provider publishes one LZMA-compressed binary file per instrument per UTC
hour. This package builds the locators for a date range, fetches them with a
bounded number of concurrent requests and a bounded retry budget, decodes
the fixed-width tick records and writes them out as CSV.

The pipeline runs on Python's asyncio, with httpx for network access and
aiofiles for disk writes.

Key modules:
- `locator`: Per-hour resource descriptors and their URLs.
- `downloader`: The fetch orchestrator with its retry loop.
- `decoder`: LZMA decompression and 20-byte record decoding.
- `persistence`: Per-hour CSV artifacts and the per-symbol merge.
- `meta`: The instrument catalog (price scale, earliest history).
"""

import importlib.metadata

try:
    __version__: str = importlib.metadata.version("dukafetch")
except importlib.metadata.PackageNotFoundError:
    # Running from a source checkout that has not been installed.
    __version__ = "0.0.0-dev"
