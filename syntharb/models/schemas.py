"""
Data models and schemas for the synthetic arbitrage engine.

Runtime values are plain dataclasses (frozen where the value must never be
mutated after creation). The JSONL log record is a Pydantic model.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RejectionReason(str, Enum):
    """Why a tick pair or opportunity produced no trade."""
    NO_RELATIONSHIP = "no_relationship"
    ZERO_RESIDUAL_STD = "zero_residual_std"
    BELOW_Z_THRESHOLD = "below_z_threshold"
    CONFIDENCE_TOO_LOW = "confidence_too_low"
    CORRELATION_TOO_LOW = "correlation_too_low"
    BELOW_CORRELATION_TIER = "below_correlation_tier"
    EXPOSURE_TOO_HIGH = "exposure_too_high"
    TAIL_RISK_TOO_HIGH = "tail_risk_too_high"
    POSITION_SIZE_ZERO = "position_size_zero"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    STALE_PAIR = "stale_pair"


class BreakerState(str, Enum):
    """Circuit breaker state."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# --- Market Data Models ---

@dataclass(frozen=True)
class Quote:
    """Two-sided price quote (home/away, optional draw)."""
    home: float
    away: float
    draw: Optional[float] = None


@dataclass(frozen=True)
class MarketTick:
    """Single immutable observation from an external odds feed."""
    game_id: str
    timestamp_ms: int
    exchange: str
    quote: Quote
    market: str  # e.g. "spread-1q"
    sport: str   # e.g. "nba"
    volume: Optional[float] = None
    liquidity: Optional[float] = None

    @property
    def market_id(self) -> str:
        """Game-qualified market identifier, e.g. LAL-BOS-2024-spread-1q."""
        return f"{self.game_id}-{self.market}"

    @property
    def price(self) -> float:
        """Reference price used by the statistics (home side of the quote)."""
        return self.quote.home


@dataclass
class GameContext:
    """Live game state supplied by a scoring feed. Read-only to the engine."""
    period: int = 1
    time_remaining: float = 12.0  # Minutes left in the current period
    pace: float = 100.0
    run_differential: float = 0.0
    key_player_fouls: int = 0
    home_score: int = 0
    away_score: int = 0

    @property
    def score_differential(self) -> int:
        return self.home_score - self.away_score


# --- Statistical Models ---

@dataclass(frozen=True)
class HedgeParameters:
    """Result of a single hedge ratio regression."""
    ratio: float
    correlation: float
    confidence: float
    covariance: float
    variance: float  # Variance of the primary series
    residual_std_dev: float
    intercept: float = 0.0
    samples: int = 0


@dataclass(frozen=True)
class SyntheticRelationship:
    """
    Learned statistical link between a primary and a hedge market.

    Instances are never mutated; the covariance engine swaps in a new
    snapshot on every recomputation.
    """
    primary_market: str
    hedge_market: str
    covariance: float
    correlation: float
    hedge_ratio: float
    half_life_ms: float
    residual_std_dev: float
    confidence: float
    last_updated_ms: int
    intercept: float = 0.0
    samples: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.primary_market, self.hedge_market)

    @property
    def beta(self) -> float:
        return self.hedge_ratio

    @classmethod
    def empty(
        cls,
        primary_market: str,
        hedge_market: str,
        half_life_ms: float,
        timestamp_ms: int = 0,
    ) -> "SyntheticRelationship":
        """Placeholder for a registered pair that has no data yet."""
        return cls(
            primary_market=primary_market,
            hedge_market=hedge_market,
            covariance=0.0,
            correlation=0.0,
            hedge_ratio=0.0,
            half_life_ms=half_life_ms,
            residual_std_dev=0.0,
            confidence=0.0,
            last_updated_ms=timestamp_ms,
        )


@dataclass(frozen=True)
class Opportunity:
    """A detected mispricing between two correlated markets."""
    id: str
    primary_tick: MarketTick
    hedge_tick: MarketTick
    mispricing: float          # Residual z-score (signed)
    expected_value: float      # Monetary edge at base stake
    hedge_ratio: float         # Context-adjusted ratio used for the hedge leg
    required_hedge_size: float
    tail_risk: float           # Percent
    confidence: float
    correlation: float
    base_stake: float = 1000.0
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def relationship_key(self) -> tuple[str, str]:
        return (self.primary_tick.market_id, self.hedge_tick.market_id)

    @property
    def edge_per_unit(self) -> float:
        """Expected value per unit of primary stake."""
        if self.base_stake <= 0:
            return 0.0
        return self.expected_value / self.base_stake

    def to_log(self, decision: str, position_size: float = 0.0, reason: str = "") -> "OpportunityLog":
        """Convert to the JSONL log record."""
        return OpportunityLog(
            opportunity_id=self.id,
            timestamp_ms=self.timestamp_ms,
            game_id=self.primary_tick.game_id,
            primary_market=self.primary_tick.market_id,
            hedge_market=self.hedge_tick.market_id,
            primary_price=self.primary_tick.price,
            hedge_price=self.hedge_tick.price,
            mispricing=self.mispricing,
            expected_value=self.expected_value,
            hedge_ratio=self.hedge_ratio,
            required_hedge_size=self.required_hedge_size,
            tail_risk=self.tail_risk,
            confidence=self.confidence,
            correlation=self.correlation,
            decision=decision,
            position_size=position_size,
            rejection_reason=reason,
        )


@dataclass(frozen=True)
class TradeIntent:
    """Value object handed to the execution collaborator."""
    opportunity: Opportunity
    position_size: float
    dry_run: bool = True


@dataclass
class ProcessingStats:
    """Cumulative stream processor counters."""
    pairs_processed: int = 0
    stale_pairs_dropped: int = 0
    covariance_updates: int = 0
    opportunities_detected: int = 0
    opportunities_validated: int = 0
    opportunities_rejected: int = 0
    opportunities_executed: int = 0
    processing_errors: int = 0
    simulated_pnl: float = 0.0
    average_latency_ms: float = 0.0

    @property
    def execution_rate(self) -> float:
        if self.opportunities_detected == 0:
            return 0.0
        return self.opportunities_executed / self.opportunities_detected


# --- Log Models ---

class OpportunityLog(BaseModel):
    """One JSON line per opportunity decision."""
    opportunity_id: str
    timestamp_ms: int
    game_id: str
    primary_market: str
    hedge_market: str
    primary_price: float
    hedge_price: float
    mispricing: float
    expected_value: float
    hedge_ratio: float
    required_hedge_size: float
    tail_risk: float
    confidence: float
    correlation: float
    decision: str  # "accepted", "rejected", "executed", "shadow"
    position_size: float = 0.0
    rejection_reason: str = ""
    tags: dict = Field(default_factory=dict)


class StalePairLog(BaseModel):
    """One JSON line per tick pair dropped for latency skew."""
    type: str = "stale_pair"
    timestamp_ms: int = Field(default_factory=lambda: int(time.time() * 1000))
    game_id: str
    primary_market: str
    hedge_market: str
    primary_timestamp_ms: int
    hedge_timestamp_ms: int
    skew_ms: int
