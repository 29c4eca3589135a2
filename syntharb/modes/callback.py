"""
Callback executor - forwards trade intents to an order placement coroutine.
"""

from typing import Awaitable, Callable, Optional

from syntharb.modes.base import BaseExecutor
from syntharb.modes.shadow import ShadowExecutor
from syntharb.models.schemas import TradeIntent

IntentHandler = Callable[[TradeIntent], Awaitable[Optional[float]]]


class CallbackExecutor(BaseExecutor):
    """
    Live executor. The handler owns order placement; exceptions it raises
    propagate to the processor, which counts them as processing errors.
    """

    def __init__(self, handler: IntentHandler):
        super().__init__("callback")
        self._handler = handler
        self._realized_pnl = 0.0
        self._failures = 0

    @property
    def dry_run(self) -> bool:
        return False

    async def execute(self, intent: TradeIntent) -> float:
        self._dispatches += 1
        try:
            result = await self._handler(intent)
        except Exception:
            self._failures += 1
            raise

        pnl = float(result) if result is not None else 0.0
        self._realized_pnl += pnl
        self.logger.info(
            "Intent dispatched",
            opportunity_id=intent.opportunity.id,
            position_size=round(intent.position_size, 2),
        )
        return pnl

    def get_metrics(self) -> dict:
        return {
            "mode": self.name,
            "intents": self._dispatches,
            "failures": self._failures,
            "realized_pnl": self._realized_pnl,
        }


def create_executor(
    enable_execution: bool,
    handler: Optional[IntentHandler] = None,
) -> BaseExecutor:
    """Shadow executor unless execution is enabled with a handler."""
    if not enable_execution:
        return ShadowExecutor()
    if handler is None:
        raise ValueError("enable_execution requires an intent handler")
    return CallbackExecutor(handler)
