"""Request pacing with randomized delays.

Pacing is the main anti-detection control: every navigation is preceded by a
pre-request delay and successive URLs are separated by a longer
inter-request delay.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple

from grocery_scraper.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

DurationProvider = Callable[[float, float], float]
Sleeper = Callable[[float], Awaitable[None]]


class PacingPolicy:
    """Draws delays uniformly from fixed ranges and waits them out."""

    def __init__(
        self,
        pre_request_range: Tuple[float, float] = (5.0, 10.0),
        inter_request_range: Tuple[float, float] = (15.0, 25.0),
        duration_provider: DurationProvider = random.uniform,
        sleep: Sleeper = asyncio.sleep,
    ):
        """
        Initialize pacing policy.

        Args:
            pre_request_range: (min, max) seconds before each navigation
            inter_request_range: (min, max) seconds between successive URLs
            duration_provider: Callable returning a value in [min, max]
            sleep: Coroutine used to wait out delays
        """
        self.pre_request_range = pre_request_range
        self.inter_request_range = inter_request_range
        self._duration_provider = duration_provider
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None, **kwargs) -> "PacingPolicy":
        config = config or default_settings
        return cls(
            pre_request_range=(
                config.pre_request_delay_min_seconds,
                config.pre_request_delay_max_seconds,
            ),
            inter_request_range=(
                config.inter_request_delay_min_seconds,
                config.inter_request_delay_max_seconds,
            ),
            **kwargs,
        )

    def pre_request_delay(self) -> float:
        """Seconds to wait before a navigation."""
        return self._draw(self.pre_request_range)

    def inter_request_delay(self) -> float:
        """Seconds to wait between two URLs."""
        return self._draw(self.inter_request_range)

    def _draw(self, bounds: Tuple[float, float]) -> float:
        low, high = bounds
        return max(0.0, float(self._duration_provider(low, high)))

    async def wait(self, seconds: float, stop_event: Optional[asyncio.Event] = None) -> bool:
        """
        Wait for the given delay.

        Args:
            seconds: Delay length
            stop_event: When set, the wait ends early

        Returns:
            True if the full delay elapsed, False if cut short by stop_event
        """
        if seconds <= 0:
            return not (stop_event and stop_event.is_set())

        if stop_event is None:
            await self._sleep(seconds)
            return True

        sleep_task = asyncio.ensure_future(self._sleep(seconds))
        stop_task = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleep_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleep_task, stop_task):
                if not task.done():
                    task.cancel()
        if sleep_task.done() and not sleep_task.cancelled():
            sleep_task.result()
        return not stop_event.is_set()
