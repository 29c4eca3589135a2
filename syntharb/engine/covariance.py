"""
Covariance Engine for synthetic arbitrage.

Tracks rolling price history per market and estimates the statistical
relationship (correlation, hedge ratio, residual spread) between
explicitly registered market pairs.

Logic:
- Each market keeps a fixed-capacity rolling window of prices
- A registered pair collects matched samples once both sides have a fresh price
- Every matched sample triggers a time-weighted regression over the pair window
  (weight = exp(-ln(2) / half_life * age)), and the stored relationship is
  swapped for the new immutable snapshot
"""

import math
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional, Sequence

import numpy as np
import structlog

from config.settings import settings
from syntharb.engine.errors import InvalidInputError
from syntharb.models.schemas import HedgeParameters, SyntheticRelationship

logger = structlog.get_logger()

PairKey = tuple[str, str]


@dataclass
class PriceHistory:
    """Fixed-capacity rolling window of prices for one market."""
    max_size: int = 1000
    prices: deque = field(default_factory=deque)
    timestamps: deque = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.prices = deque(self.prices, maxlen=self.max_size)
        self.timestamps = deque(self.timestamps, maxlen=self.max_size)

    def add(self, price: float, timestamp_ms: int) -> None:
        """Add a price point, evicting the oldest on overflow."""
        self.prices.append(price)
        self.timestamps.append(timestamp_ms)

    def to_list(self) -> list[float]:
        return list(self.prices)

    @property
    def latest(self) -> Optional[float]:
        return self.prices[-1] if self.prices else None

    def __len__(self) -> int:
        return len(self.prices)


@dataclass
class PairWindow:
    """Matched (primary, hedge) samples for one registered pair."""
    max_size: int = 1000
    primary: deque = field(default_factory=deque)
    hedge: deque = field(default_factory=deque)
    timestamps: deque = field(default_factory=deque)

    # Latest unmatched price per side: market_id -> (price, timestamp_ms)
    pending: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.primary = deque(self.primary, maxlen=self.max_size)
        self.hedge = deque(self.hedge, maxlen=self.max_size)
        self.timestamps = deque(self.timestamps, maxlen=self.max_size)

    def add(self, primary_price: float, hedge_price: float, timestamp_ms: int) -> None:
        self.primary.append(primary_price)
        self.hedge.append(hedge_price)
        self.timestamps.append(timestamp_ms)

    def __len__(self) -> int:
        return len(self.primary)


class RelationshipTable:
    """
    Relationship records keyed by (primary, hedge).

    Records are immutable; a write replaces the whole record under the key's
    lock, so readers see either the old or the new snapshot.
    """

    def __init__(self):
        self._records: dict[PairKey, SyntheticRelationship] = {}
        self._locks: dict[PairKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: PairKey) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    @contextmanager
    def writer(self, key: PairKey) -> Iterator[None]:
        """Exclusive writer section for one key."""
        with self._lock_for(key):
            yield

    def get(self, key: PairKey) -> Optional[SyntheticRelationship]:
        return self._records.get(key)

    def replace(self, key: PairKey, relationship: SyntheticRelationship) -> None:
        self._records[key] = relationship

    def snapshot(self) -> dict[PairKey, SyntheticRelationship]:
        """Consistent point-in-time copy of the table."""
        return dict(self._records)

    def clear(self) -> None:
        with self._locks_guard:
            self._records = {}
            self._locks = {}

    def __contains__(self, key: PairKey) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)


class CovarianceEngine:
    """
    Rolling covariance and hedge ratio estimator.

    Only pairs registered with ``register_pair`` or injected through
    ``update_relationships`` are tracked; prices for other markets are ignored.
    """

    def __init__(
        self,
        half_life_ms: Optional[float] = None,
        max_history_size: Optional[int] = None,
        min_samples: Optional[int] = None,
        sample_saturation: Optional[float] = None,
    ):
        cfg = settings.covariance
        self.half_life_ms = half_life_ms if half_life_ms is not None else cfg.half_life_ms
        self.max_history_size = max_history_size if max_history_size is not None else cfg.max_history_size
        self.min_samples = min_samples if min_samples is not None else cfg.min_samples
        self.sample_saturation = sample_saturation if sample_saturation is not None else cfg.sample_saturation

        if self.half_life_ms <= 0:
            raise ValueError("half_life_ms must be positive")
        if self.max_history_size < 2:
            raise ValueError("max_history_size must be at least 2")

        self.logger = logger.bind(component="covariance")

        self._price_history: dict[str, PriceHistory] = {}
        self._windows: dict[PairKey, PairWindow] = {}
        self._pairs_by_market: dict[str, set[PairKey]] = {}
        self._table = RelationshipTable()

        self._covariance_updates = 0

    # =========================================================================
    # Pair registration
    # =========================================================================

    def register_pair(
        self,
        primary_market: str,
        hedge_market: str,
        half_life_ms: Optional[float] = None,
    ) -> SyntheticRelationship:
        """
        Start tracking a (primary, hedge) pair.

        Returns the current relationship; a newly registered pair starts with
        an empty zero-confidence relationship.
        """
        if primary_market == hedge_market:
            raise InvalidInputError("primary and hedge market must differ")

        key = (primary_market, hedge_market)
        with self._table.writer(key):
            existing = self._table.get(key)
            if existing is None:
                existing = SyntheticRelationship.empty(
                    primary_market,
                    hedge_market,
                    half_life_ms or self.half_life_ms,
                )
                self._table.replace(key, existing)
            self._track(key)

        return existing

    def is_tracked(self, primary_market: str, hedge_market: str) -> bool:
        return (primary_market, hedge_market) in self._windows

    def _track(self, key: PairKey) -> None:
        if key not in self._windows:
            self._windows[key] = PairWindow(max_size=self.max_history_size)
        for market_id in key:
            self._pairs_by_market.setdefault(market_id, set()).add(key)
            if market_id not in self._price_history:
                self._price_history[market_id] = PriceHistory(max_size=self.max_history_size)

    # =========================================================================
    # Streaming updates
    # =========================================================================

    def update_price(
        self,
        market_id: str,
        price: float,
        timestamp_ms: Optional[int] = None,
    ) -> None:
        """
        Append a price to a market's rolling window.

        Every tracked pair that now has a fresh price on both sides records a
        matched sample and recomputes its relationship. Unknown markets are a
        no-op.
        """
        keys = self._pairs_by_market.get(market_id)
        if not keys:
            return

        if not math.isfinite(price):
            raise InvalidInputError(f"non-finite price for {market_id}: {price}")

        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)

        self._price_history[market_id].add(price, timestamp_ms)

        for key in list(keys):
            self._on_pair_price(key, market_id, price, timestamp_ms)

    def _on_pair_price(
        self,
        key: PairKey,
        market_id: str,
        price: float,
        timestamp_ms: int,
    ) -> None:
        primary_market, hedge_market = key
        with self._table.writer(key):
            window = self._windows[key]
            window.pending[market_id] = (price, timestamp_ms)

            if primary_market not in window.pending or hedge_market not in window.pending:
                return

            primary_price, primary_ts = window.pending.pop(primary_market)
            hedge_price, hedge_ts = window.pending.pop(hedge_market)
            sample_ts = max(primary_ts, hedge_ts)
            window.add(primary_price, hedge_price, sample_ts)

            self._recompute(key, window, sample_ts)

    def _recompute(self, key: PairKey, window: PairWindow, timestamp_ms: int) -> None:
        """Refit the pair on its current window and swap in the new snapshot."""
        if len(window) < self.min_samples:
            return

        current = self._table.get(key)
        half_life_ms = current.half_life_ms if current else self.half_life_ms

        primary = np.fromiter(window.primary, dtype=float, count=len(window))
        hedge = np.fromiter(window.hedge, dtype=float, count=len(window))
        timestamps = np.fromiter(window.timestamps, dtype=float, count=len(window))

        # Samples stamped after the triggering sample count as fresh
        ages = np.maximum(0.0, timestamp_ms - timestamps)
        weights = np.exp(-(math.log(2) / half_life_ms) * ages)

        params = self.calculate_hedge_ratio(primary, hedge, weights=weights)

        relationship = SyntheticRelationship(
            primary_market=key[0],
            hedge_market=key[1],
            covariance=params.covariance,
            correlation=params.correlation,
            hedge_ratio=params.ratio,
            half_life_ms=half_life_ms,
            residual_std_dev=params.residual_std_dev,
            confidence=params.confidence,
            last_updated_ms=timestamp_ms,
            intercept=params.intercept,
            samples=params.samples,
        )
        self._table.replace(key, relationship)
        self._covariance_updates += 1

    # =========================================================================
    # Statistics
    # =========================================================================

    def calculate_hedge_ratio(
        self,
        series_a: Sequence[float],
        series_b: Sequence[float],
        weights: Optional[Sequence[float]] = None,
    ) -> HedgeParameters:
        """
        Regress B on A.

        Returns Pearson correlation, the OLS slope of B on A as the hedge
        ratio, and the standard deviation of ``B - ratio * A``. Optional
        weights (0 < w <= 1) give a weighted fit; their mean acts as the
        recency factor of the confidence score.

        Raises:
            InvalidInputError: empty, unequal-length or non-finite input
        """
        a = np.asarray(series_a, dtype=float)
        b = np.asarray(series_b, dtype=float)

        if a.ndim != 1 or b.ndim != 1:
            raise InvalidInputError("price series must be one-dimensional")
        if a.size == 0 or b.size == 0:
            raise InvalidInputError("price series must be non-empty")
        if a.size != b.size:
            raise InvalidInputError(
                f"price series must have equal length ({a.size} != {b.size})"
            )
        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
            raise InvalidInputError("price series contain non-finite values")

        if weights is None:
            w = np.ones_like(a)
        else:
            w = np.asarray(weights, dtype=float)
            if w.shape != a.shape:
                raise InvalidInputError("weights must match series length")
            if not np.all(np.isfinite(w)) or np.any(w < 0) or w.sum() <= 0:
                raise InvalidInputError("weights must be finite, non-negative and not all zero")

        n = int(a.size)
        w_sum = float(w.sum())

        mean_a = float(np.dot(w, a) / w_sum)
        mean_b = float(np.dot(w, b) / w_sum)
        da = a - mean_a
        db = b - mean_b

        var_a = float(np.dot(w, da * da) / w_sum)
        var_b = float(np.dot(w, db * db) / w_sum)
        cov = float(np.dot(w, da * db) / w_sum)

        # Constant series: no relationship can be measured
        if np.ptp(a) == 0 or np.ptp(b) == 0 or var_a <= 0 or var_b <= 0:
            return HedgeParameters(
                ratio=0.0,
                correlation=0.0,
                confidence=0.0,
                covariance=0.0,
                variance=max(var_a, 0.0),
                residual_std_dev=math.sqrt(max(var_b, 0.0)),
                intercept=mean_b,
                samples=n,
            )

        correlation = cov / math.sqrt(var_a * var_b)
        correlation = max(-1.0, min(1.0, correlation))
        ratio = cov / var_a

        residuals = b - ratio * a
        intercept = float(np.dot(w, residuals) / w_sum)
        centered = residuals - intercept
        residual_var = float(np.dot(w, centered * centered) / w_sum)

        # Weights peak at the newest sample; their sum is the effective sample count
        recency = min(1.0, float(w.max()))
        effective = min(float(n), w_sum)

        return HedgeParameters(
            ratio=ratio,
            correlation=correlation,
            confidence=self.calculate_confidence(correlation, n, recency, effective),
            covariance=cov,
            variance=var_a,
            residual_std_dev=math.sqrt(max(residual_var, 0.0)),
            intercept=intercept,
            samples=n,
        )

    def calculate_confidence(
        self,
        correlation: float,
        samples: int,
        recency: float = 1.0,
        effective_samples: Optional[float] = None,
    ) -> float:
        """
        Confidence = sample factor * recency * |correlation|, bounded to [0, 1].

        The sample factor saturates (1 - exp(-n_eff / saturation)), so a short
        or weakly correlated series never scores high. ``n_eff`` is the sum of
        the decay weights (``samples`` when unweighted); appending a sample
        never lowers it. ``recency`` is the decay weight of the newest sample.
        """
        if samples < self.min_samples or not math.isfinite(correlation):
            return 0.0
        if effective_samples is None:
            effective_samples = samples
        sample_factor = 1.0 - math.exp(-max(0.0, effective_samples) / self.sample_saturation)
        recency = max(0.0, min(1.0, recency))
        confidence = sample_factor * recency * abs(correlation)
        return max(0.0, min(1.0, confidence))

    # =========================================================================
    # Relationship access
    # =========================================================================

    def get_relationship(
        self,
        primary_market: str,
        hedge_market: str,
    ) -> Optional[SyntheticRelationship]:
        """Get the current relationship snapshot for a pair."""
        return self._table.get((primary_market, hedge_market))

    def snapshot(self) -> dict[PairKey, SyntheticRelationship]:
        """Point-in-time copy of all relationships."""
        return self._table.snapshot()

    def get_high_confidence_relationships(
        self,
        min_confidence: float = 0.7,
        min_correlation: float = 0.7,
    ) -> list[SyntheticRelationship]:
        """Relationships that clear both the confidence and correlation floor."""
        return [
            rel for rel in self._table.snapshot().values()
            if rel.confidence >= min_confidence and abs(rel.correlation) >= min_correlation
        ]

    def update_relationships(
        self,
        relationships: Iterable[SyntheticRelationship],
        replace: bool = True,
    ) -> None:
        """
        Seed or bulk-replace the tracked relationship set.

        With ``replace`` the table is reset to exactly the given relationships
        (pairs not listed stop being tracked). Seeded snapshots stay in place
        until their pair window holds ``min_samples`` matched samples. The batch
        is validated before anything is changed, so a bad entry leaves the
        current table untouched.
        """
        relationships = list(relationships)
        for rel in relationships:
            if rel.primary_market == rel.hedge_market:
                raise InvalidInputError(
                    f"primary and hedge market must differ ({rel.primary_market})"
                )

        if replace:
            keep = {rel.key for rel in relationships}
            for key in list(self._windows):
                if key not in keep:
                    self._untrack(key)
            self._table.clear()

        for rel in relationships:
            with self._table.writer(rel.key):
                self._table.replace(rel.key, rel)
                self._track(rel.key)

        self.logger.info(
            "Relationships loaded",
            count=len(relationships),
            replace=replace,
            tracked=len(self._windows),
        )

    def _untrack(self, key: PairKey) -> None:
        self._windows.pop(key, None)
        for market_id in key:
            pairs = self._pairs_by_market.get(market_id)
            if pairs is None:
                continue
            pairs.discard(key)
            if not pairs:
                del self._pairs_by_market[market_id]
                self._price_history.pop(market_id, None)

    def get_price_history(self, market_id: str) -> list[float]:
        history = self._price_history.get(market_id)
        return history.to_list() if history else []

    def reset(self) -> None:
        """Clear all history and relationships."""
        self._price_history.clear()
        self._windows.clear()
        self._pairs_by_market.clear()
        self._table.clear()
        self._covariance_updates = 0

    def get_statistics(self) -> dict:
        """Aggregate diagnostics. Pure read."""
        relationships = list(self._table.snapshot().values())
        count = len(relationships)

        return {
            "total_markets": len(self._price_history),
            "tracked_pairs": len(self._windows),
            "total_relationships": count,
            "high_confidence_relationships": sum(1 for r in relationships if r.confidence >= 0.7),
            "average_correlation": (
                sum(abs(r.correlation) for r in relationships) / count if count else 0.0
            ),
            "average_confidence": (
                sum(r.confidence for r in relationships) / count if count else 0.0
            ),
            "covariance_updates": self._covariance_updates,
        }
