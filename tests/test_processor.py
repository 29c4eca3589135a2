"""Tests for the stream processor."""

import asyncio

import pytest

from conftest import GAME, iterate, make_tick, quiet_feed
from syntharb.engine.covariance import CovarianceEngine
from syntharb.engine.detector import DetectorConfig, SyntheticArbDetector
from syntharb.engine.processor import ProcessingConfig, SyntheticArbProcessor
from syntharb.engine.risk import RiskConfig, SyntheticRiskManager
from syntharb.feeds.base import ReplayFeed
from syntharb.feeds.synthetic import generate_tick_streams
from syntharb.modes import CallbackExecutor, ShadowExecutor, create_executor
from syntharb.models.schemas import (
    OpportunityLog,
    ProcessingStats,
    StalePairLog,
    SyntheticRelationship,
)
from syntharb.utils.circuit_breaker import BreakerConfig
from syntharb.utils.logging import OpportunityLogger


class SpyDetector(SyntheticArbDetector):
    """Detector that records every pair it is asked about."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []

    def detect(self, primary_tick, hedge_tick, game_context=None):
        self.calls.append((primary_tick, hedge_tick))
        return super().detect(primary_tick, hedge_tick, game_context)


def build_processor(
    executor=None,
    enable_execution=False,
    max_position_size=25_000.0,
    detector=None,
    opportunity_logger=None,
    context_provider=None,
    half_life_ms=1e15,
    min_confidence=0.7,
    min_correlation=0.7,
):
    return SyntheticArbProcessor(
        config=ProcessingConfig(
            max_latency_delta_ms=500,
            min_confidence=min_confidence,
            min_correlation=min_correlation,
            max_position_size=max_position_size,
            enable_execution=enable_execution,
        ),
        covariance_engine=CovarianceEngine(
            half_life_ms=half_life_ms,
            max_history_size=1000,
            min_samples=10,
            sample_saturation=25.0,
        ),
        detector=detector or SyntheticArbDetector(config=DetectorConfig()),
        risk_manager=SyntheticRiskManager(RiskConfig(max_tail_risk_pct=50.0)),
        executor=executor or ShadowExecutor(),
        context_provider=context_provider,
        opportunity_logger=opportunity_logger,
        breaker_config=BreakerConfig(residual_explosion_multiplier=50.0),
    )


def dislocated_streams(game_id=GAME, seed=3, n=120, shock_at=100):
    """Correlated ticks, 1 s apart, with an 8-sigma hedge shock at ``shock_at``."""
    return generate_tick_streams(
        game_id=game_id,
        primary_market="spread-1q",
        hedge_market="spread-full",
        n=n,
        hedge_ratio=0.28,
        correlation=0.9,
        seed=seed,
        interval_ms=1000,
        shocks={shock_at: 8.0},
        exact=True,
    )


class TestStaleness:
    """Tests for latency skew handling."""

    @pytest.mark.asyncio
    async def test_stale_pair_skips_detector(self):
        """Test a pair beyond the latency delta never reaches the detector."""
        detector = SpyDetector(config=DetectorConfig())
        processor = build_processor(detector=detector)

        primary = [make_tick(100.0, "spread-1q", t) for t in (0, 1000, 2000)]
        hedge = [make_tick(28.0, "spread-full", t) for t in (0, 1600, 2000)]

        stats = await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert stats.stale_pairs_dropped == 1
        assert stats.pairs_processed == 2
        assert [p.timestamp_ms for p, _ in detector.calls] == [0, 2000]
        assert len(processor.covariance_engine.get_price_history(f"{GAME}-spread-1q")) == 2

    @pytest.mark.asyncio
    async def test_stale_pair_logged(self, tmp_path):
        opportunity_logger = OpportunityLogger(str(tmp_path))
        processor = build_processor(opportunity_logger=opportunity_logger)

        await processor.process_cross_market_stream(
            iterate([make_tick(100.0, "spread-1q", 0)]),
            iterate([make_tick(28.0, "spread-full", 900)]),
        )
        processor.close()

        line = opportunity_logger.current_file.read_text().strip()
        record = StalePairLog.model_validate_json(line)
        assert record.game_id == GAME
        assert record.primary_market == f"{GAME}-spread-1q"
        assert record.skew_ms == 900



class TestPipeline:
    """End-to-end tests through the shadow executor."""

    @pytest.mark.asyncio
    async def test_shadow_run(self):
        executor = ShadowExecutor()
        processor = build_processor(executor=executor)
        primary, hedge = dislocated_streams()

        stats = await processor.process_cross_market_stream(ReplayFeed(primary), ReplayFeed(hedge))

        assert stats.pairs_processed == 120
        assert stats.covariance_updates == 120
        assert stats.processing_errors == 0
        assert stats.opportunities_detected >= 1
        assert stats.opportunities_validated >= 1
        assert stats.opportunities_executed == 0
        assert stats.simulated_pnl > 0
        assert executor.dispatches == stats.opportunities_validated
        assert all(intent.dry_run for intent in executor.intents)
        assert any(intent.opportunity.hedge_tick.timestamp_ms == 100_000 for intent in executor.intents)

        rel = processor.covariance_engine.get_relationship(f"{GAME}-spread-1q", f"{GAME}-spread-full")
        assert rel.hedge_ratio == pytest.approx(0.28, abs=0.05)

    @pytest.mark.asyncio
    async def test_late_shock_detected_with_decay(self):
        """Test a long stream under a 5 minute half-life still detects a late shock."""
        executor = ShadowExecutor()
        processor = build_processor(executor=executor, half_life_ms=300_000.0)
        primary, hedge = dislocated_streams(n=600, shock_at=550)

        stats = await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert stats.pairs_processed == 600
        assert any(intent.opportunity.hedge_tick.timestamp_ms == 550_000 for intent in executor.intents)

        rel = processor.covariance_engine.get_relationship(f"{GAME}-spread-1q", f"{GAME}-spread-full")
        assert rel.samples == 600
        assert rel.confidence >= 0.7


    @pytest.mark.asyncio
    async def test_position_size_clamped(self):
        executor = ShadowExecutor()
        processor = build_processor(executor=executor, max_position_size=100.0)
        primary, hedge = dislocated_streams()

        await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert executor.intents
        assert all(0 < intent.position_size <= 100.0 for intent in executor.intents)

    @pytest.mark.asyncio
    async def test_live_executor_dispatch(self):
        handled = []

        async def handler(intent):
            handled.append(intent)
            return 1.0

        processor = build_processor(executor=CallbackExecutor(handler), enable_execution=True)
        primary, hedge = dislocated_streams()

        stats = await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert handled
        assert stats.opportunities_executed == len(handled)
        assert stats.simulated_pnl == 0.0
        assert not any(intent.dry_run for intent in handled)

    @pytest.mark.asyncio
    async def test_executor_failure_counted(self):
        async def handler(intent):
            raise ConnectionError("exchange unavailable")

        processor = build_processor(executor=CallbackExecutor(handler), enable_execution=True)
        primary, hedge = dislocated_streams()

        stats = await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert stats.pairs_processed == 120
        assert stats.processing_errors == stats.opportunities_validated
        assert stats.opportunities_executed == 0

    @pytest.mark.asyncio
    async def test_malformed_pair_skipped(self):
        """Test a cross-game pair is counted as an error and the stream continues."""
        primary = [make_tick(100.0, "spread-1q", t) for t in (0, 1000, 2000)]
        hedge = [
            make_tick(28.0, "spread-full", 0),
            make_tick(28.0, "spread-full", 1000, game_id="GSW-DEN-2024"),
            make_tick(28.0, "spread-full", 2000),
        ]
        processor = build_processor()

        stats = await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        assert stats.pairs_processed == 3
        assert stats.processing_errors == 1
        assert stats.covariance_updates == 2
        assert not processor.covariance_engine.is_tracked(f"{GAME}-spread-1q", "GSW-DEN-2024-spread-full")

    @pytest.mark.asyncio
    async def test_seeded_label_relationship(self):
        """Test injected relationships are used before the pair has its own fit."""
        processor = build_processor()
        processor.update_relationships([SyntheticRelationship(
            primary_market="spread-1q",
            hedge_market="spread-full",
            covariance=0.2,
            correlation=0.9,
            hedge_ratio=0.28,
            half_life_ms=300_000.0,
            residual_std_dev=0.5,
            confidence=0.9,
            last_updated_ms=0,
        )])

        stats = await processor.process_cross_market_stream(
            iterate([make_tick(100.0, "spread-1q", 0)]),
            iterate([make_tick(29.5, "spread-full", 0)]),
        )

        assert stats.opportunities_detected == 1
        assert stats.opportunities_validated == 1

    @pytest.mark.asyncio
    async def test_opportunity_log_written(self, tmp_path):
        opportunity_logger = OpportunityLogger(str(tmp_path))
        processor = build_processor(opportunity_logger=opportunity_logger)
        primary, hedge = dislocated_streams()

        await processor.process_cross_market_stream(iterate(primary), iterate(hedge))
        processor.close()

        lines = opportunity_logger.current_file.read_text().splitlines()
        assert lines
        records = [OpportunityLog.model_validate_json(line) for line in lines]
        assert {r.decision for r in records} <= {"shadow", "rejected"}
        assert any(r.decision == "shadow" for r in records)


class TestLifecycle:
    """Tests for lanes, stop and statistics."""

    @pytest.mark.asyncio
    async def test_stop_finishes_in_flight_pair(self):
        processor = None
        seen = []

        def context_provider(game_id):
            seen.append(game_id)
            if len(seen) == 5:
                processor.stop()
            return None

        processor = build_processor(context_provider=context_provider)
        primary, hedge = dislocated_streams()

        stats = await processor.process_cross_market_stream(ReplayFeed(primary), ReplayFeed(hedge))

        assert processor.is_stopped
        assert stats.pairs_processed == 5
        assert stats.covariance_updates == 5

    @pytest.mark.asyncio
    async def test_stop_while_feeds_idle(self):
        """Test stop() ends a lane that is waiting on quiet feeds."""
        gate = asyncio.Event()
        closed = []
        processor = build_processor()

        task = asyncio.create_task(processor.process_cross_market_stream(
            quiet_feed("spread-1q", gate, closed),
            quiet_feed("spread-full", gate, closed),
        ))
        for _ in range(100):
            if processor.get_statistics().pairs_processed:
                break
            await asyncio.sleep(0)

        processor.stop()
        stats = await asyncio.wait_for(task, timeout=1.0)

        assert stats.pairs_processed == 1
        assert sorted(closed) == ["spread-1q", "spread-full"]


    @pytest.mark.asyncio
    async def test_run_lanes(self):
        processor = build_processor()
        lanes = []
        for seed, game_id in enumerate(("LAL-BOS-2024", "GSW-DEN-2024")):
            primary, hedge = dislocated_streams(game_id=game_id, seed=seed)
            lanes.append((ReplayFeed(primary), ReplayFeed(hedge)))

        stats = await processor.run_lanes(lanes)

        assert stats.pairs_processed == 240
        assert processor.covariance_engine.get_statistics()["tracked_pairs"] == 2

    @pytest.mark.asyncio
    async def test_lane_failure_isolated(self):
        async def broken():
            yield make_tick(28.0, "spread-full", 0)
            raise RuntimeError("feed disconnected")

        processor = build_processor()
        primary, hedge = dislocated_streams()

        stats = await processor.run_lanes([
            (iterate(primary), iterate(hedge)),
            (iterate([make_tick(1.0, "total-1h", 0), make_tick(1.0, "total-1h", 1)]), broken()),
        ])

        assert stats.pairs_processed == 121
        assert stats.processing_errors == 1

    @pytest.mark.asyncio
    async def test_statistics_copy_and_reset(self):
        processor = build_processor()
        primary, hedge = dislocated_streams()
        await processor.process_cross_market_stream(iterate(primary), iterate(hedge))

        stats = processor.get_statistics()
        stats.pairs_processed = 0
        assert processor.get_statistics().pairs_processed == 120
        assert processor.get_statistics().average_latency_ms > 0

        processor.reset_statistics()

        assert processor.get_statistics() == ProcessingStats()


class TestConfiguration:
    """Tests for executor selection and detector floors."""

    def test_shadow_when_disabled(self):
        assert isinstance(create_executor(False), ShadowExecutor)

    def test_enabled_requires_handler(self):
        with pytest.raises(ValueError):
            create_executor(True)

    def test_live_executor_requires_flag(self):
        async def handler(intent):
            return None

        with pytest.raises(ValueError):
            build_processor(executor=CallbackExecutor(handler), enable_execution=False)

    def test_floors_applied_to_injected_detector(self):
        detector = SyntheticArbDetector(
            config=DetectorConfig(min_confidence=0.1, min_correlation=0.2, z_score_threshold=3.0)
        )

        processor = build_processor(detector=detector, min_confidence=0.75, min_correlation=0.8)

        assert processor.detector is detector
        assert detector.config.min_confidence == 0.75
        assert detector.config.min_correlation == 0.8
        assert detector.config.z_score_threshold == 3.0
