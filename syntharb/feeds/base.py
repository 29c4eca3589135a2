"""
Base classes for tick feeds.

The engine does not connect to exchanges; feeds are async iterables of
``MarketTick`` supplied by a market data collaborator. ``ReplayFeed`` plays
back recorded ticks for simulation and tests.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import AsyncIterator, Iterable

import structlog

from syntharb.models.schemas import MarketTick

logger = structlog.get_logger()


@dataclass
class FeedHealth:
    """Health status of a tick feed."""
    messages: int = 0
    last_message_ms: int = 0
    finished: bool = False

    @property
    def age_ms(self) -> int:
        """Get age of last message in milliseconds."""
        if self.last_message_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_message_ms


class ReplayFeed:
    """
    Async iterable over recorded ticks.

    Args:
        ticks: Ticks in arrival order
        interval_seconds: Delay between ticks (0 just yields to the loop)
        name: Feed name for logging
    """

    def __init__(
        self,
        ticks: Iterable[MarketTick],
        interval_seconds: float = 0.0,
        name: str = "replay",
    ):
        self._ticks = list(ticks)
        self.interval_seconds = interval_seconds
        self.name = name
        self.health = FeedHealth()
        self.logger = logger.bind(feed=name)

    def __len__(self) -> int:
        return len(self._ticks)

    def __aiter__(self) -> AsyncIterator[MarketTick]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[MarketTick]:
        for tick in self._ticks:
            await asyncio.sleep(self.interval_seconds)
            self.health.messages += 1
            self.health.last_message_ms = int(time.time() * 1000)
            yield tick

        self.health.finished = True
        self.logger.debug("Replay finished", messages=self.health.messages)
