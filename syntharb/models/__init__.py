"""Data models."""

from syntharb.models.schemas import (
    BreakerState,
    GameContext,
    HedgeParameters,
    MarketTick,
    Opportunity,
    OpportunityLog,
    ProcessingStats,
    Quote,
    RejectionReason,
    StalePairLog,
    SyntheticRelationship,
    TradeIntent,
)

__all__ = [
    "BreakerState",
    "GameContext",
    "HedgeParameters",
    "MarketTick",
    "Opportunity",
    "OpportunityLog",
    "ProcessingStats",
    "Quote",
    "RejectionReason",
    "StalePairLog",
    "SyntheticRelationship",
    "TradeIntent",
]
