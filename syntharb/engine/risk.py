"""
Risk manager for synthetic arbitrage positions.

Two jobs:
- Exposure limits by correlation tier, plus a tail-risk cap
- Fractional Kelly sizing: edge-proportional, penalized by correlation^2 and
  tail risk, hard-capped
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from config.settings import settings
from syntharb.models.schemas import Opportunity, RejectionReason

logger = structlog.get_logger()


@dataclass
class RiskConfig:
    """Sizing and exposure limits."""
    bankroll: float = 100_000.0
    kelly_scale: float = 0.5
    max_kelly_fraction: float = 0.25
    edge_ceiling: float = 1.0
    max_tail_risk_pct: float = 5.0
    exposure_by_tier: dict[float, float] = field(default_factory=lambda: {
        0.9: 50_000.0,
        0.8: 25_000.0,
        0.7: 10_000.0,
    })

    @classmethod
    def from_settings(cls) -> "RiskConfig":
        cfg = settings.risk
        return cls(
            bankroll=cfg.bankroll,
            kelly_scale=cfg.kelly_scale,
            max_kelly_fraction=cfg.max_kelly_fraction,
            edge_ceiling=cfg.edge_ceiling,
            max_tail_risk_pct=cfg.max_tail_risk_pct,
            exposure_by_tier=dict(cfg.exposure_by_tier),
        )


class SyntheticRiskManager:
    """Validates exposure and sizes accepted opportunities."""

    def __init__(self, config: Optional[RiskConfig] = None):
        self.config = config or RiskConfig.from_settings()
        self.logger = logger.bind(component="risk")
        self.last_rejection: Optional[RejectionReason] = None

        # Highest tier first
        self._tiers = sorted(self.config.exposure_by_tier.items(), reverse=True)

    def max_exposure(self, correlation: float) -> float:
        """Exposure limit for the correlation's tier (0 below every tier)."""
        magnitude = abs(correlation)
        for threshold, exposure in self._tiers:
            if magnitude >= threshold:
                return exposure
        return 0.0

    def validate(self, opportunity: Opportunity) -> bool:
        """Check tier exposure and tail risk."""
        self.last_rejection = None

        max_exposure = self.max_exposure(opportunity.correlation)
        if max_exposure <= 0:
            self.last_rejection = RejectionReason.BELOW_CORRELATION_TIER
            return False

        total_exposure = opportunity.base_stake + opportunity.required_hedge_size
        if total_exposure > max_exposure:
            self.last_rejection = RejectionReason.EXPOSURE_TOO_HIGH
            self.logger.debug(
                "Exposure above tier limit",
                opportunity_id=opportunity.id,
                exposure=f"{total_exposure:.0f}",
                limit=f"{max_exposure:.0f}",
            )
            return False

        if opportunity.tail_risk > self.config.max_tail_risk_pct:
            self.last_rejection = RejectionReason.TAIL_RISK_TOO_HIGH
            self.logger.debug(
                "Tail risk too high",
                opportunity_id=opportunity.id,
                tail_risk=f"{opportunity.tail_risk:.2f}%",
                max=f"{self.config.max_tail_risk_pct:.2f}%",
            )
            return False

        return True

    def kelly_fraction(self, opportunity: Opportunity) -> float:
        """
        Fraction of bankroll to commit.

        edge/ceiling * correlation^2 * scale, haircut by tail risk and capped.
        Squaring the correlation penalizes weak hedges harder than weak edges.
        """
        edge = max(0.0, opportunity.edge_per_unit)
        if edge <= 0 or self.config.edge_ceiling <= 0:
            return 0.0

        edge_factor = min(edge / self.config.edge_ceiling, 1.0)
        correlation_penalty = opportunity.correlation ** 2
        tail_risk_penalty = max(0.0, 1.0 - opportunity.tail_risk / 100.0)

        fraction = edge_factor * correlation_penalty * tail_risk_penalty * self.config.kelly_scale
        return max(0.0, min(fraction, self.config.max_kelly_fraction))

    def calculate_position_size(
        self,
        opportunity: Opportunity,
        max_position_size: Optional[float] = None,
    ) -> float:
        """Bankroll * Kelly fraction, clamped to ``max_position_size``."""
        size = self.kelly_fraction(opportunity) * self.config.bankroll
        if max_position_size is not None:
            size = min(size, max_position_size)
        return max(0.0, size)
