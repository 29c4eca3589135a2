"""Relationship estimation, detection and stream processing engines."""

from syntharb.engine.covariance import CovarianceEngine, RelationshipTable
from syntharb.engine.detector import DetectorConfig, SyntheticArbDetector
from syntharb.engine.errors import InvalidInputError, MalformedTickError, SyntheticArbError
from syntharb.engine.processor import ProcessingConfig, SyntheticArbProcessor
from syntharb.engine.risk import RiskConfig, SyntheticRiskManager

__all__ = [
    "CovarianceEngine",
    "RelationshipTable",
    "DetectorConfig",
    "SyntheticArbDetector",
    "InvalidInputError",
    "MalformedTickError",
    "SyntheticArbError",
    "ProcessingConfig",
    "SyntheticArbProcessor",
    "RiskConfig",
    "SyntheticRiskManager",
]
