"""Per node-type rate limiting shared across workflow runs."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import TYPE_CHECKING

from ..core.config import RateLimitSettings, settings

if TYPE_CHECKING:
    from ..nodes.base import BaseNode

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sliding-window limiter allowing at most `max_calls` per `period` seconds.

    Callers wait until a slot frees up; nothing is rejected.
    """

    def __init__(self, max_calls: int, period: float = 1.0) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be at least 1")
        if period <= 0:
            raise ValueError("period must be positive")
        self.max_calls = max_calls
        self.period = period
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait for a free slot and take it."""
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._calls and now - self._calls[0] >= self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await asyncio.sleep(self.period - (now - self._calls[0]))

    async def __aenter__(self) -> RateLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class RateLimiterRegistry:
    """Lazily created limiters keyed by node type."""

    def __init__(self, overrides: dict[str, RateLimitSettings] | None = None) -> None:
        self._overrides = dict(settings.rate_limits if overrides is None else overrides)
        self._limiters: dict[str, RateLimiter | None] = {}

    def for_node(self, node: BaseNode) -> RateLimiter | None:
        """Limiter for a node type, or None when the type is unlimited."""
        if node.type in self._limiters:
            return self._limiters[node.type]

        config = self._overrides.get(node.type) or node.rate_limit
        limiter = RateLimiter(config.max_calls, config.period) if config else None
        if limiter:
            logger.debug(
                "Rate limiting %s to %d calls per %.2fs", node.type, limiter.max_calls, limiter.period
            )
        self._limiters[node.type] = limiter
        return limiter


# Shared by every runner that is not given its own
rate_limiters = RateLimiterRegistry()
