"""Per-host request pacing for the marketplace API."""

from __future__ import annotations

import asyncio
import os
import time
from collections import defaultdict


def default_rate() -> float:
    return float(os.environ.get("MARKETPLACE_REQUESTS_PER_SECOND", "5"))


class RateLimiter:
    """Minimum spacing between requests to the same host."""

    def __init__(self, *, rate: float | None = None) -> None:
        self.rate = rate or default_rate()
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = defaultdict(lambda: 0.0)

    async def wait_for_host(self, host: str) -> None:
        lock = self._locks[host]
        async with lock:
            elapsed = time.monotonic() - self._last_request[host]
            min_interval = 1.0 / self.rate
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_request[host] = time.monotonic()
