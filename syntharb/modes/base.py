"""
Base executor class for trade dispatch.
"""

from abc import ABC, abstractmethod

import structlog

from syntharb.models.schemas import TradeIntent

logger = structlog.get_logger()


class BaseExecutor(ABC):
    """
    Abstract base class for execution collaborators.

    Executors:
    - Shadow: Log would-be trades, track simulated PnL
    - Callback: Hand intents to an external order placement coroutine
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logger.bind(mode=name)
        self._dispatches = 0

    @property
    def dispatches(self) -> int:
        """Number of intents handed to this executor."""
        return self._dispatches

    @property
    def dry_run(self) -> bool:
        return True

    @abstractmethod
    async def execute(self, intent: TradeIntent) -> float:
        """
        Dispatch a trade intent.

        Args:
            intent: Sized trade intent

        Returns:
            Simulated or realized PnL attributed to this dispatch
        """
        pass

    @abstractmethod
    def get_metrics(self) -> dict:
        """Get executor-specific metrics."""
        pass
