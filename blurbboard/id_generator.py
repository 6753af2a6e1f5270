"""
Short numeric identifiers that do not collide with stored rows
"""

import random
from typing import Awaitable, Callable, Optional

from .constants import ID_KINDS, ID_MAX, ID_MIN
from .logger import get_logger

logger = get_logger()

# (kind, candidate) -> whether a row with that id already exists
ExistsCheck = Callable[[str, int], Awaitable[bool]]


class IdGenerator:
    """Draws 6-digit ids and redraws until storage has no row with the candidate"""

    def __init__(self, exists: ExistsCheck, rng: Optional[random.Random] = None):
        self._exists = exists
        self._rng = rng or random.SystemRandom()

    def draw(self) -> int:
        return self._rng.randint(ID_MIN, ID_MAX)

    async def new_id(self, kind: str) -> int:
        """
        Generate an identifier that is free in the given kind's table

        The check is not atomic with the later insert; callers treat an insert
        conflict as a signal to generate again.

        Args:
            kind: "message" or "user"

        Returns:
            Identifier absent from storage at the time of the check
        """
        if kind not in ID_KINDS:
            raise ValueError(f"Unknown identifier kind: {kind}")

        candidate = self.draw()
        while await self._exists(kind, candidate):
            logger.debug(f"Identifier collision for {kind} {candidate}, redrawing")
            candidate = self.draw()

        return candidate
