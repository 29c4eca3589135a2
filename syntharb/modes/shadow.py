"""
Shadow Mode - log would-be trades without placing orders.
"""

from syntharb.modes.base import BaseExecutor
from syntharb.models.schemas import TradeIntent


class ShadowExecutor(BaseExecutor):
    """
    Shadow executor for dry runs and data collection.

    Simulated PnL per intent is the opportunity's edge per unit stake times
    the position size, i.e. the trade is assumed to converge fully.
    """

    def __init__(self):
        super().__init__("shadow")
        self._simulated_pnl = 0.0
        self._notional = 0.0
        self._intents: list[TradeIntent] = []

    @property
    def intents(self) -> list[TradeIntent]:
        return list(self._intents)

    async def execute(self, intent: TradeIntent) -> float:
        self._dispatches += 1
        self._intents.append(intent)

        opp = intent.opportunity
        pnl = opp.edge_per_unit * intent.position_size
        self._simulated_pnl += pnl
        self._notional += intent.position_size

        self.logger.info(
            "Would execute",
            opportunity_id=opp.id,
            primary=opp.primary_tick.market_id,
            hedge=opp.hedge_tick.market_id,
            z_score=round(opp.mispricing, 3),
            hedge_ratio=round(opp.hedge_ratio, 4),
            position_size=round(intent.position_size, 2),
            simulated_pnl=round(pnl, 2),
        )
        return pnl

    def get_metrics(self) -> dict:
        return {
            "mode": self.name,
            "intents": self._dispatches,
            "simulated_pnl": self._simulated_pnl,
            "notional": self._notional,
            "avg_pnl": self._simulated_pnl / self._dispatches if self._dispatches else 0.0,
        }
