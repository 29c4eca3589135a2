"""Utility modules."""

from syntharb.utils.logging import setup_logging, OpportunityLogger, PerformanceTracker
from syntharb.utils.circuit_breaker import RelationshipCircuitBreaker, BreakerConfig

__all__ = [
    "setup_logging",
    "OpportunityLogger",
    "PerformanceTracker",
    "RelationshipCircuitBreaker",
    "BreakerConfig",
]
