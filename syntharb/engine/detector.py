"""
Synthetic Arbitrage Opportunity Detector.

Compares a synchronized primary/hedge tick pair against the modeled
relationship between the two markets:

    expected hedge price = intercept + hedge_ratio * primary price
    mispricing (z)       = (actual hedge - expected hedge) / residual std dev

A pair is reported when |z| clears the significance threshold and the
relationship is confident and correlated enough. The correlation tier gate
(validate_opportunity) is a separate hard risk control.
"""

import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional
from uuid import uuid4

import structlog

from config.settings import settings
from syntharb.engine.errors import MalformedTickError
from syntharb.models.schemas import (
    GameContext,
    MarketTick,
    Opportunity,
    RejectionReason,
    SyntheticRelationship,
)

logger = structlog.get_logger()


@dataclass
class DetectorConfig:
    """Configuration for opportunity detection."""

    z_score_threshold: float = 2.5
    min_confidence: float = 0.7
    min_correlation: float = 0.7

    # Highest first; the last entry is the minimum tier
    correlation_tiers: tuple[float, ...] = (0.9, 0.8, 0.7)

    base_stake: float = 1000.0
    payout_multiplier: float = 1.0
    tail_risk_scale: float = 10.0

    # Game context (NBA defaults)
    final_period: int = 4
    late_game_minutes: float = 2.0
    high_pace: float = 102.0
    low_pace: float = 98.0
    blowout_run: float = 12.0
    foul_trouble: int = 2

    @classmethod
    def from_settings(cls) -> "DetectorConfig":
        cfg = settings.detector
        return cls(
            z_score_threshold=cfg.z_score_threshold,
            min_confidence=cfg.min_confidence,
            min_correlation=cfg.min_correlation,
            correlation_tiers=tuple(cfg.correlation_tiers),
            base_stake=cfg.base_stake,
            payout_multiplier=cfg.payout_multiplier,
            tail_risk_scale=cfg.tail_risk_scale,
        )

    @property
    def min_correlation_tier(self) -> float:
        return min(self.correlation_tiers)


class SyntheticArbDetector:
    """
    Detects statistical mispricing between correlated markets.

    Holds a read-only view of relationship snapshots (pull model); the
    covariance engine owns their computation.
    """

    def __init__(
        self,
        relationships: Iterable[SyntheticRelationship] = (),
        config: Optional[DetectorConfig] = None,
    ):
        self.config = config or DetectorConfig.from_settings()
        self.logger = logger.bind(component="detector")

        self._relationships: dict[tuple[str, str], SyntheticRelationship] = {}
        self.update_relationships(relationships)

        # Rejection tracking
        self.last_rejection: Optional[RejectionReason] = None
        self._rejection_counts: dict[str, int] = {}
        self._window_rejections: dict[str, int] = {}
        self._last_rejection_log_ms: int = 0

        self._detections = 0

    # =========================================================================
    # Relationship view
    # =========================================================================

    def update_relationships(self, relationships: Iterable[SyntheticRelationship]) -> None:
        """Replace the detector's view of the current relationships."""
        self._relationships = {rel.key: rel for rel in relationships}

    def get_relationship(
        self,
        primary_tick: MarketTick,
        hedge_tick: MarketTick,
    ) -> Optional[SyntheticRelationship]:
        """
        Game-specific relationship first, then a market-label relationship
        shared across games (e.g. spread-1q -> spread-full). A registered but
        not yet fitted game pair defers to the label relationship.
        """
        rel = self._relationships.get((primary_tick.market_id, hedge_tick.market_id))
        if rel is not None and rel.samples == 0 and rel.residual_std_dev <= 0:
            label_rel = self._relationships.get((primary_tick.market, hedge_tick.market))
            if label_rel is not None:
                return label_rel
        if rel is None:
            rel = self._relationships.get((primary_tick.market, hedge_tick.market))
        return rel

    # =========================================================================
    # Core Detection
    # =========================================================================

    def detect(
        self,
        primary_tick: MarketTick,
        hedge_tick: MarketTick,
        game_context: Optional[GameContext] = None,
    ) -> Optional[Opportunity]:
        """
        Detect a mispricing on a synchronized tick pair.

        Returns:
            Opportunity if the pair is significant and risk-acceptable, None otherwise

        Raises:
            MalformedTickError: ticks from different games or non-finite prices
        """
        self.validate_ticks(primary_tick, hedge_tick)
        self.last_rejection = None

        # 1. Relationship
        relationship = self.get_relationship(primary_tick, hedge_tick)
        if relationship is None:
            self._track_rejection(RejectionReason.NO_RELATIONSHIP)
            return None

        if relationship.residual_std_dev <= 0 or not math.isfinite(relationship.residual_std_dev):
            self._track_rejection(RejectionReason.ZERO_RESIDUAL_STD)
            return None

        # 2-3. Expected hedge price and residual z-score
        expected_hedge = relationship.intercept + relationship.hedge_ratio * primary_tick.price
        residual = hedge_tick.price - expected_hedge
        z_score = residual / relationship.residual_std_dev

        # 4. Gates
        if abs(z_score) < self.config.z_score_threshold:
            self._track_rejection(RejectionReason.BELOW_Z_THRESHOLD)
            return None

        if relationship.confidence < self.config.min_confidence:
            self._track_rejection(RejectionReason.CONFIDENCE_TOO_LOW)
            return None

        if abs(relationship.correlation) < self.config.min_correlation:
            self._track_rejection(RejectionReason.CORRELATION_TOO_LOW)
            return None

        # 5. Sizing and risk
        base_stake = self.config.base_stake
        hedge_ratio = self.adjust_hedge_ratio(relationship.hedge_ratio, game_context)
        required_hedge_size = base_stake * abs(hedge_ratio)

        expected_value = (
            abs(residual)
            * base_stake
            * abs(relationship.correlation)
            * self.config.payout_multiplier
        )

        tail_risk = self.calculate_tail_risk(relationship, z_score, game_context)

        # 6. Opportunity
        self._detections += 1
        opportunity = Opportunity(
            id=str(uuid4()),
            primary_tick=primary_tick,
            hedge_tick=hedge_tick,
            mispricing=z_score,
            expected_value=expected_value,
            hedge_ratio=hedge_ratio,
            required_hedge_size=required_hedge_size,
            tail_risk=tail_risk,
            confidence=relationship.confidence,
            correlation=relationship.correlation,
            base_stake=base_stake,
            timestamp_ms=int(time.time() * 1000),
        )

        self.logger.debug(
            "Mispricing detected",
            opportunity_id=opportunity.id,
            primary=primary_tick.market_id,
            hedge=hedge_tick.market_id,
            z_score=f"{z_score:.2f}",
            expected_value=f"{expected_value:.2f}",
            tail_risk=f"{tail_risk:.2f}%",
        )

        return opportunity

    def validate_ticks(self, primary_tick: MarketTick, hedge_tick: MarketTick) -> None:
        if primary_tick.game_id != hedge_tick.game_id:
            raise MalformedTickError(
                f"tick pair spans games: {primary_tick.game_id} != {hedge_tick.game_id}"
            )
        for tick in (primary_tick, hedge_tick):
            if not math.isfinite(tick.price):
                raise MalformedTickError(f"non-finite price on {tick.market_id}: {tick.price}")

    # =========================================================================
    # Game context
    # =========================================================================

    def adjust_hedge_ratio(
        self,
        base_hedge_ratio: float,
        game_context: Optional[GameContext] = None,
    ) -> float:
        """Scale the hedge leg for tempo, blowouts and early foul trouble."""
        if game_context is None:
            return base_hedge_ratio

        adjusted = base_hedge_ratio

        # Fast pace puts more weight on the early period
        if game_context.pace > self.config.high_pace:
            adjusted *= 1.08
        elif game_context.pace < self.config.low_pace:
            adjusted *= 0.92

        # Blowout = mean reversion
        if abs(game_context.run_differential) > self.config.blowout_run:
            adjusted *= 0.92

        if game_context.key_player_fouls >= self.config.foul_trouble and game_context.period == 1:
            adjusted *= 0.85

        return adjusted

    def calculate_tail_risk(
        self,
        relationship: SyntheticRelationship,
        z_score: float,
        game_context: Optional[GameContext] = None,
    ) -> float:
        """
        Probability-weighted worst case, in percent (0-100).

        Widens as correlation and confidence fall, beyond 3 sigma (model may
        be breaking), and in high-variance game states.
        """
        correlation_risk = 1.0 - abs(relationship.correlation)
        confidence_risk = 1.0 - relationship.confidence
        z_score_risk = max(0.0, (abs(z_score) - 3.0) / 3.0)

        risk = (correlation_risk + confidence_risk + z_score_risk) / 3.0
        risk *= self.config.tail_risk_scale
        risk *= self.context_volatility(game_context)

        return max(0.0, min(risk, 100.0))

    def context_volatility(self, game_context: Optional[GameContext] = None) -> float:
        """Tail risk multiplier (>= 1.0) for the current game state."""
        if game_context is None:
            return 1.0

        multiplier = 1.0

        late_game = (
            game_context.period >= self.config.final_period
            and game_context.time_remaining <= self.config.late_game_minutes
        )
        if late_game:
            multiplier *= 1.5

        if game_context.key_player_fouls >= self.config.foul_trouble:
            multiplier *= 1.25

        if game_context.pace > self.config.high_pace:
            multiplier *= 1.15

        if abs(game_context.run_differential) > self.config.blowout_run:
            multiplier *= 1.1

        return multiplier

    # =========================================================================
    # Validation
    # =========================================================================

    def correlation_tier(self, correlation: float) -> Optional[float]:
        """Highest tier the correlation magnitude reaches, or None."""
        magnitude = abs(correlation)
        for tier in self.config.correlation_tiers:
            if magnitude >= tier:
                return tier
        return None

    def validate_opportunity(self, opportunity: Opportunity) -> bool:
        """Hard correlation tier gate, independent of the detection math."""
        if self.correlation_tier(opportunity.correlation) is None:
            self._track_rejection(RejectionReason.BELOW_CORRELATION_TIER)
            return False
        return True

    # =========================================================================
    # Metrics
    # =========================================================================

    def _track_rejection(self, reason: RejectionReason) -> None:
        """Track rejection for metrics."""
        self.last_rejection = reason
        self._rejection_counts[reason.value] = self._rejection_counts.get(reason.value, 0) + 1
        self._window_rejections[reason.value] = self._window_rejections.get(reason.value, 0) + 1

        # Log periodically
        now_ms = int(time.time() * 1000)
        if now_ms - self._last_rejection_log_ms > 60_000:  # Every minute
            self._last_rejection_log_ms = now_ms
            self.logger.debug(
                "Detector rejections (last 60s)",
                rejections=dict(self._window_rejections),
            )
            self._window_rejections.clear()

    def get_rejection_counts(self) -> dict[str, int]:
        return dict(self._rejection_counts)

    def get_statistics(self) -> dict:
        """Get detector statistics."""
        relationships = list(self._relationships.values())
        count = len(relationships)

        return {
            "total_relationships": count,
            "high_confidence_relationships": sum(
                1 for r in relationships if r.confidence >= self.config.min_confidence
            ),
            "high_correlation_relationships": sum(
                1 for r in relationships if abs(r.correlation) >= 0.8
            ),
            "average_confidence": (
                sum(r.confidence for r in relationships) / count if count else 0.0
            ),
            "average_correlation": (
                sum(abs(r.correlation) for r in relationships) / count if count else 0.0
            ),
            "detections": self._detections,
            "rejection_counts": dict(self._rejection_counts),
        }
