"""Randomized pacing between browser actions."""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING

from cart_monitor.utils.config import DelayRange, PacingSettings
from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = get_logger(__name__)


class HumanPacer:
    """
    Inserts randomized pauses so interactions do not follow a fixed cadence.

    Every delay is drawn from a configured ``(min, max)`` range; ranges are
    validated to be strictly positive.
    """

    def __init__(
        self,
        settings: PacingSettings | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or PacingSettings()
        self._rng = rng or random.Random()
        self._sleep = sleep

    def draw(self, delay_range: DelayRange) -> float:
        return self._rng.uniform(delay_range.min_sec, delay_range.max_sec)

    async def pause(self, delay_range: DelayRange) -> float:
        """Sleep for a random duration inside ``delay_range``."""
        delay = self.draw(delay_range)
        await self._sleep(delay)
        return delay

    async def random_delay(self, min_sec: float = 0.5, max_sec: float = 2.0) -> float:
        return await self.pause(DelayRange(min_sec=min_sec, max_sec=max_sec))

    async def between_options(self) -> float:
        return await self.pause(self.settings.between_options)

    async def before_click(self) -> float:
        return await self.pause(self.settings.before_click)

    async def between_skus(self) -> float:
        """Pause between two variants, occasionally taking a longer break."""
        delay = await self.pause(self.settings.between_skus)
        if self._rng.random() < self.settings.long_pause_probability:
            extra = await self.pause(self.settings.long_pause)
            logger.debug("Long pause between variants", seconds=round(extra, 2))
            delay += extra
        return delay
