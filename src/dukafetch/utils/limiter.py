import asyncio
import contextlib
from collections.abc import AsyncGenerator


class ConcurrencyLimiter:
    """An asynchronous ceiling on the number of operations in flight.

    Tokens live in an `asyncio.Queue` sized to the limit. Acquiring takes a
    token (waiting when none is left) and releasing puts it back, so at most
    `limit` holders exist at any moment. Unlike a token bucket there is no
    refill task: throughput is bounded only by how fast holders finish.

    Usage:
        limiter = ConcurrencyLimiter(24)
        async with limiter.acquire():
            # At most 24 coroutines are inside this block at once.
            await client.get(url)
    """

    def __init__(self, limit: int) -> None:
        """Initializes the limiter.

        Args:
            limit: The maximum number of concurrent holders.
        """
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            err_msg = "Concurrency limit must be a positive integer."
            raise ValueError(err_msg)

        self.limit = limit
        self._tokens: asyncio.Queue[None] = asyncio.Queue(maxsize=limit)
        self._in_flight = 0
        self._peak = 0

        for _ in range(limit):
            self._tokens.put_nowait(None)

    @property
    def in_flight(self) -> int:
        """Number of holders currently inside `acquire()`."""
        return self._in_flight

    @property
    def peak(self) -> int:
        """Highest number of simultaneous holders observed so far."""
        return self._peak

    @contextlib.asynccontextmanager
    async def acquire(self) -> AsyncGenerator[None, None]:
        """Acquires a slot, waiting if necessary. Use as an async context manager."""
        # `get()` is cancellation-safe.
        await self._tokens.get()
        self._in_flight += 1
        self._peak = max(self._peak, self._in_flight)
        try:
            yield
        finally:
            self._in_flight -= 1
            # There is always room: every token put back was taken first.
            self._tokens.put_nowait(None)
