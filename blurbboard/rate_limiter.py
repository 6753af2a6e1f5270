"""
Per-origin cooldown enforcement
"""

import asyncio
import time
from typing import Callable, Dict, Tuple

from .constants import ERROR_MESSAGES, RATE_LIMIT_COOLDOWN_SECONDS
from .logger import get_logger, log_security_event

logger = get_logger()


class RateLimiter:
    """Tracks the last accepted action per network origin"""

    def __init__(self, cooldown_seconds: float = RATE_LIMIT_COOLDOWN_SECONDS,
                 name: str = "default", clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self.name = name
        self._clock = clock
        # origin -> last accepted timestamp
        self._last_accepted: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def check_and_record(self, origin: str) -> Tuple[bool, str]:
        """
        Accept the action if the origin's cooldown has elapsed

        A rejected call leaves the stored timestamp untouched, so hammering the
        server does not extend the window.

        Args:
            origin: Caller network origin

        Returns:
            Tuple of (is_allowed, error_message)
        """
        async with self._lock:
            now = self._clock()
            last = self._last_accepted.get(origin)

            if last is not None and now - last < self.cooldown_seconds:
                log_security_event("rate_limit_exceeded", {
                    "limiter": self.name,
                    "origin": origin,
                    "elapsed": round(now - last, 3),
                })
                return False, ERROR_MESSAGES["rate_limit"]

            self._last_accepted[origin] = now
            return True, ""

    async def prune(self, older_than_seconds: float) -> int:
        """
        Forget origins whose last accepted action is older than the given age

        Returns:
            Number of entries removed
        """
        async with self._lock:
            cutoff = self._clock() - max(older_than_seconds, self.cooldown_seconds)
            stale = [origin for origin, last in self._last_accepted.items() if last < cutoff]
            for origin in stale:
                del self._last_accepted[origin]

        if stale:
            logger.debug(f"Rate limiter {self.name}: pruned {len(stale)} origins")
        return len(stale)

    async def tracked_origins(self) -> int:
        async with self._lock:
            return len(self._last_accepted)
