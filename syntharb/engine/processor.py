"""
Synthetic Arbitrage Stream Processor.

Consumes a primary and a hedge tick stream, keeps them paired, and drives
the pipeline for every synchronized pair:

    merge -> covariance update -> detect -> validate -> risk -> breaker
          -> size -> dispatch (shadow or live executor)

Each (primary, hedge) relationship is one processing lane. Lanes run as
independent asyncio tasks; updates for the same relationship key are
serialized by a per-key lock so the engine sees them in arrival order.
"""

import asyncio
import dataclasses
import time
from dataclasses import dataclass
from typing import AsyncIterable, Callable, Iterable, Optional

import structlog

from config.settings import settings
from syntharb.engine.covariance import CovarianceEngine
from syntharb.engine.detector import DetectorConfig, SyntheticArbDetector
from syntharb.engine.errors import SyntheticArbError
from syntharb.engine.risk import SyntheticRiskManager
from syntharb.feeds.merge import merge_streams
from syntharb.modes.base import BaseExecutor
from syntharb.modes.callback import create_executor
from syntharb.models.schemas import (
    GameContext,
    MarketTick,
    Opportunity,
    ProcessingStats,
    RejectionReason,
    StalePairLog,
    SyntheticRelationship,
    TradeIntent,
)
from syntharb.utils.circuit_breaker import BreakerConfig, RelationshipCircuitBreaker
from syntharb.utils.logging import OpportunityLogger, PerformanceTracker

logger = structlog.get_logger()

ContextProvider = Callable[[str], Optional[GameContext]]
Lane = tuple[AsyncIterable[MarketTick], AsyncIterable[MarketTick]]


@dataclass
class ProcessingConfig:
    """Processor options. Fixed for the processor's lifetime."""
    max_latency_delta_ms: int = 500
    min_confidence: float = 0.7
    min_correlation: float = 0.7
    max_position_size: float = 25_000.0
    enable_execution: bool = False
    circuit_breaker_enabled: bool = True

    @classmethod
    def from_settings(cls) -> "ProcessingConfig":
        cfg = settings.processing
        return cls(
            max_latency_delta_ms=cfg.max_latency_delta_ms,
            min_confidence=cfg.min_confidence,
            min_correlation=cfg.min_correlation,
            max_position_size=cfg.max_position_size,
            enable_execution=cfg.enable_execution,
            circuit_breaker_enabled=settings.circuit_breaker.enabled,
        )


class SyntheticArbProcessor:
    """
    Stream processor for cross-market synthetic arbitrage.

    Args:
        config: Processor options (defaults from settings)
        covariance_engine: Relationship estimator
        detector: Opportunity detector, built from settings when omitted;
            its confidence and correlation floors are set to the processor's
        risk_manager: Exposure validation and sizing
        executor: Trade intent collaborator; selected from
            ``enable_execution`` when omitted
        context_provider: game_id -> GameContext lookup
        opportunity_logger: JSONL audit log of opportunity decisions
        breaker_config: Thresholds for per-relationship circuit breakers
    """

    def __init__(
        self,
        config: Optional[ProcessingConfig] = None,
        covariance_engine: Optional[CovarianceEngine] = None,
        detector: Optional[SyntheticArbDetector] = None,
        risk_manager: Optional[SyntheticRiskManager] = None,
        executor: Optional[BaseExecutor] = None,
        context_provider: Optional[ContextProvider] = None,
        opportunity_logger: Optional[OpportunityLogger] = None,
        breaker_config: Optional[BreakerConfig] = None,
    ):
        self.config = config or ProcessingConfig.from_settings()
        self.logger = logger.bind(component="processor")

        self.covariance_engine = covariance_engine or CovarianceEngine()

        # The processor floors are the detector gates, injected or not
        if detector is None:
            detector = SyntheticArbDetector(config=DetectorConfig.from_settings())
        detector.config = dataclasses.replace(
            detector.config,
            min_confidence=self.config.min_confidence,
            min_correlation=self.config.min_correlation,
        )
        self.detector = detector

        self.risk_manager = risk_manager or SyntheticRiskManager()

        if executor is None:
            executor = create_executor(self.config.enable_execution)
        elif not self.config.enable_execution and not executor.dry_run:
            raise ValueError("live executor supplied but enable_execution is off")
        self.executor = executor

        self.context_provider = context_provider
        self.opportunity_logger = opportunity_logger
        self.performance = PerformanceTracker()

        self._breaker_config = breaker_config
        self._breakers: dict[tuple[str, str], RelationshipCircuitBreaker] = {}

        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._stop_event = asyncio.Event()
        self._stats = ProcessingStats()

    # =========================================================================
    # Relationships
    # =========================================================================

    def update_relationships(self, relationships: Iterable[SyntheticRelationship]) -> None:
        """Seed the engine and refresh the detector's view."""
        self.covariance_engine.update_relationships(relationships)
        self.detector.update_relationships(self.covariance_engine.snapshot().values())

    # =========================================================================
    # Stream processing
    # =========================================================================

    async def process_cross_market_stream(
        self,
        primary_stream: AsyncIterable[MarketTick],
        hedge_stream: AsyncIterable[MarketTick],
    ) -> ProcessingStats:
        """
        Process one lane until either stream ends or ``stop()`` is called.

        Returns:
            Statistics snapshot at the end of the lane
        """
        pairs = merge_streams(
            primary_stream,
            hedge_stream,
            self.config.max_latency_delta_ms,
            on_stale=self._on_stale,
            stop_event=self._stop_event,
        )

        try:
            async for primary_tick, hedge_tick in pairs:
                if self._stop_event.is_set():
                    break
                await self._process_pair(primary_tick, hedge_tick)
                if self._stop_event.is_set():
                    self.logger.info("Lane stopped", pairs=self._stats.pairs_processed)
                    break
        finally:
            await pairs.aclose()

        return self.get_statistics()

    async def run_lanes(self, lanes: Iterable[Lane]) -> ProcessingStats:
        """Run several (primary, hedge) lanes concurrently, one task each."""
        tasks = [
            asyncio.create_task(
                self.process_cross_market_stream(primary, hedge),
                name=f"lane_{i}",
            )
            for i, (primary, hedge) in enumerate(lanes)
        ]
        if not tasks:
            return self.get_statistics()

        self.logger.info("Lanes started", lanes=len(tasks))
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for task, result in zip(tasks, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                self._stats.processing_errors += 1
                self.logger.error("Lane failed", lane=task.get_name(), error=str(result))

        return self.get_statistics()

    def stop(self) -> None:
        """Finish the in-flight pair, then stop consuming streams."""
        if not self._stop_event.is_set():
            self._stop_event.set()
            self.logger.info("Stop requested")

    @property
    def is_stopped(self) -> bool:
        return self._stop_event.is_set()

    async def _process_pair(self, primary_tick: MarketTick, hedge_tick: MarketTick) -> None:
        started = time.perf_counter()
        key = (primary_tick.market_id, hedge_tick.market_id)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            self._stats.pairs_processed += 1
            try:
                await self._handle_pair(key, primary_tick, hedge_tick)
            except SyntheticArbError as e:
                self._stats.processing_errors += 1
                self.logger.warning(
                    "Tick pair skipped",
                    primary=primary_tick.market_id,
                    hedge=hedge_tick.market_id,
                    error=str(e),
                )

        self._record_latency((time.perf_counter() - started) * 1000)

    async def _handle_pair(
        self,
        key: tuple[str, str],
        primary_tick: MarketTick,
        hedge_tick: MarketTick,
    ) -> None:
        # Reject malformed pairs before they touch relationship state
        self.detector.validate_ticks(primary_tick, hedge_tick)

        # 1. Covariance update
        if not self.covariance_engine.is_tracked(*key):
            self.covariance_engine.register_pair(*key)

        self.covariance_engine.update_price(
            primary_tick.market_id, primary_tick.price, primary_tick.timestamp_ms
        )
        self.covariance_engine.update_price(
            hedge_tick.market_id, hedge_tick.price, hedge_tick.timestamp_ms
        )
        self._stats.covariance_updates += 1

        # 2. Detection on the latest snapshot
        self.detector.update_relationships(self.covariance_engine.snapshot().values())
        game_context = self.context_provider(primary_tick.game_id) if self.context_provider else None

        opportunity = self.detector.detect(primary_tick, hedge_tick, game_context)
        if opportunity is None:
            return

        self._stats.opportunities_detected += 1

        # 3. Validation chain
        if not self.detector.validate_opportunity(opportunity):
            self._reject(opportunity, self.detector.last_rejection)
            return

        if not self.risk_manager.validate(opportunity):
            self._reject(opportunity, self.risk_manager.last_rejection)
            return

        if self.config.circuit_breaker_enabled:
            breaker = self._breaker_for(key)
            if not breaker.evaluate(opportunity):
                self._reject(opportunity, RejectionReason.CIRCUIT_BREAKER_OPEN)
                return

        # 4. Sizing
        position_size = self.risk_manager.calculate_position_size(
            opportunity, self.config.max_position_size
        )
        if position_size <= 0:
            self._reject(opportunity, RejectionReason.POSITION_SIZE_ZERO)
            return

        self._stats.opportunities_validated += 1

        # 5. Dispatch
        await self._dispatch(opportunity, position_size)

    async def _dispatch(self, opportunity: Opportunity, position_size: float) -> None:
        intent = TradeIntent(
            opportunity=opportunity,
            position_size=position_size,
            dry_run=self.executor.dry_run,
        )

        try:
            pnl = await self.executor.execute(intent)
        except Exception as e:
            self._stats.processing_errors += 1
            self.logger.error(
                "Executor failed",
                opportunity_id=opportunity.id,
                executor=self.executor.name,
                error=str(e),
            )
            self._log_decision(opportunity, "failed", position_size, str(e))
            return

        if intent.dry_run:
            self._stats.simulated_pnl += pnl
            self.performance.record_pnl(pnl)
            decision = "shadow"
        else:
            self._stats.opportunities_executed += 1
            decision = "executed"

        self._log_decision(opportunity, decision, position_size)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _breaker_for(self, key: tuple[str, str]) -> RelationshipCircuitBreaker:
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = RelationshipCircuitBreaker(key, config=self._breaker_config)
            self._breakers[key] = breaker
        return breaker

    def _on_stale(self, primary_tick: MarketTick, hedge_tick: MarketTick, skew_ms: int) -> None:
        self._stats.stale_pairs_dropped += 1
        self.performance.record_decision("stale", RejectionReason.STALE_PAIR.value)
        if self.opportunity_logger:
            self.opportunity_logger.log_stale_pair(StalePairLog(
                game_id=primary_tick.game_id,
                primary_market=primary_tick.market_id,
                hedge_market=hedge_tick.market_id,
                primary_timestamp_ms=primary_tick.timestamp_ms,
                hedge_timestamp_ms=hedge_tick.timestamp_ms,
                skew_ms=skew_ms,
            ))

    def _reject(self, opportunity: Opportunity, reason: Optional[RejectionReason]) -> None:
        self._stats.opportunities_rejected += 1
        reason_value = reason.value if reason else ""
        self.logger.debug(
            "Opportunity rejected",
            opportunity_id=opportunity.id,
            reason=reason_value,
        )
        self._log_decision(opportunity, "rejected", 0.0, reason_value)

    def _log_decision(
        self,
        opportunity: Opportunity,
        decision: str,
        position_size: float = 0.0,
        reason: str = "",
    ) -> None:
        self.performance.record_decision(decision, reason)
        if self.opportunity_logger:
            self.opportunity_logger.log_opportunity(
                opportunity.to_log(decision, position_size=position_size, reason=reason)
            )

    def _record_latency(self, latency_ms: float) -> None:
        self.performance.record_latency(latency_ms)
        n = self._stats.pairs_processed
        if n > 0:
            self._stats.average_latency_ms += (latency_ms - self._stats.average_latency_ms) / n

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_statistics(self) -> ProcessingStats:
        """Copy of the cumulative counters."""
        return dataclasses.replace(self._stats)

    def reset_statistics(self) -> None:
        self._stats = ProcessingStats()
        self.performance.reset()

    def get_breaker_status(self) -> dict[str, dict]:
        return {
            "->".join(key): breaker.get_status()
            for key, breaker in self._breakers.items()
        }

    def get_diagnostics(self) -> dict:
        """Statistics from every stage of the pipeline."""
        return {
            "processing": dataclasses.asdict(self._stats),
            "covariance": self.covariance_engine.get_statistics(),
            "detector": self.detector.get_statistics(),
            "executor": self.executor.get_metrics(),
            "performance": self.performance.get_summary(),
            "breakers": self.get_breaker_status(),
        }

    def close(self) -> None:
        if self.opportunity_logger:
            self.opportunity_logger.close()
