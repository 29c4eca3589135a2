"""Tests for the synthetic arbitrage detector."""

import dataclasses

import pytest

from conftest import GAME, make_tick
from syntharb.engine.detector import DetectorConfig, SyntheticArbDetector
from syntharb.engine.errors import MalformedTickError
from syntharb.models.schemas import GameContext, RejectionReason, SyntheticRelationship

PRIMARY = f"{GAME}-spread-1q"
HEDGE = f"{GAME}-spread-full"


def make_relationship(
    correlation: float = 0.85,
    confidence: float = 0.85,
    hedge_ratio: float = 0.28,
    residual_std_dev: float = 0.5,
    intercept: float = 0.0,
    primary: str = PRIMARY,
    hedge: str = HEDGE,
) -> SyntheticRelationship:
    return SyntheticRelationship(
        primary_market=primary,
        hedge_market=hedge,
        covariance=0.2,
        correlation=correlation,
        hedge_ratio=hedge_ratio,
        half_life_ms=300_000.0,
        residual_std_dev=residual_std_dev,
        confidence=confidence,
        last_updated_ms=0,
        intercept=intercept,
        samples=100,
    )


@pytest.fixture
def detector():
    """Detector with a single strong relationship."""
    return SyntheticArbDetector([make_relationship()], config=DetectorConfig())


@pytest.fixture
def primary_tick():
    return make_tick(100.0, "spread-1q")


@pytest.fixture
def mispriced_hedge():
    """Hedge 3 residual std devs above 0.28 * 100."""
    return make_tick(28.0 + 3 * 0.5, "spread-full")


class TestDetection:
    """Tests for detect()."""

    def test_three_sigma_mispricing(self, detector, primary_tick, mispriced_hedge):
        """Test a 3-sigma deviation produces an opportunity."""
        opp = detector.detect(primary_tick, mispriced_hedge)

        assert opp is not None
        assert opp.mispricing == pytest.approx(3.0)
        assert opp.hedge_ratio == pytest.approx(0.28)
        assert opp.required_hedge_size == pytest.approx(280.0)
        # |residual| * stake * |corr| * payout
        assert opp.expected_value == pytest.approx(1.5 * 1000 * 0.85)
        assert opp.correlation == 0.85
        assert opp.confidence == 0.85
        assert opp.relationship_key == (PRIMARY, HEDGE)
        assert detector.last_rejection is None

    def test_negative_mispricing(self, detector, primary_tick):
        opp = detector.detect(primary_tick, make_tick(28.0 - 1.5, "spread-full"))

        assert opp is not None
        assert opp.mispricing == pytest.approx(-3.0)
        assert opp.expected_value > 0

    def test_low_confidence_rejected(self, primary_tick, mispriced_hedge):
        """Test the same pair under a 0.5 confidence relationship returns None."""
        detector = SyntheticArbDetector(
            [make_relationship(confidence=0.5)], config=DetectorConfig()
        )

        assert detector.detect(primary_tick, mispriced_hedge) is None
        assert detector.last_rejection == RejectionReason.CONFIDENCE_TOO_LOW

    def test_low_correlation_rejected(self, primary_tick, mispriced_hedge):
        detector = SyntheticArbDetector(
            [make_relationship(correlation=0.6, confidence=0.8)], config=DetectorConfig()
        )

        assert detector.detect(primary_tick, mispriced_hedge) is None
        assert detector.last_rejection == RejectionReason.CORRELATION_TOO_LOW

    def test_below_threshold(self, detector, primary_tick):
        assert detector.detect(primary_tick, make_tick(28.5, "spread-full")) is None
        assert detector.last_rejection == RejectionReason.BELOW_Z_THRESHOLD

    def test_no_relationship(self, detector):
        primary = make_tick(100.0, "total-1h")
        hedge = make_tick(210.0, "total-full")

        assert detector.detect(primary, hedge) is None
        assert detector.last_rejection == RejectionReason.NO_RELATIONSHIP

    def test_zero_residual_std(self, primary_tick, mispriced_hedge):
        detector = SyntheticArbDetector(
            [make_relationship(residual_std_dev=0.0)], config=DetectorConfig()
        )

        assert detector.detect(primary_tick, mispriced_hedge) is None
        assert detector.last_rejection == RejectionReason.ZERO_RESIDUAL_STD

    def test_intercept_shifts_expectation(self, primary_tick):
        detector = SyntheticArbDetector(
            [make_relationship(intercept=2.0)], config=DetectorConfig()
        )

        # Expected hedge = 2 + 28 = 30; 31.5 is +3 sigma
        opp = detector.detect(primary_tick, make_tick(31.5, "spread-full"))

        assert opp is not None
        assert opp.mispricing == pytest.approx(3.0)

    def test_mismatched_game_raises(self, detector, primary_tick):
        other_game = make_tick(29.5, "spread-full", game_id="GSW-DEN-2024")

        with pytest.raises(MalformedTickError):
            detector.detect(primary_tick, other_game)

    def test_non_finite_price_raises(self, detector, primary_tick):
        with pytest.raises(MalformedTickError):
            detector.detect(primary_tick, make_tick(float("nan"), "spread-full"))

    def test_label_relationship_fallback(self, mispriced_hedge, primary_tick):
        """Test a market-label relationship applies to any game."""
        detector = SyntheticArbDetector(
            [make_relationship(primary="spread-1q", hedge="spread-full")],
            config=DetectorConfig(),
        )

        opp = detector.detect(primary_tick, mispriced_hedge)

        assert opp is not None
        assert opp.mispricing == pytest.approx(3.0)

    def test_unfitted_game_pair_defers_to_label(self, primary_tick, mispriced_hedge):
        detector = SyntheticArbDetector(
            [
                SyntheticRelationship.empty(PRIMARY, HEDGE, 300_000.0),
                make_relationship(primary="spread-1q", hedge="spread-full"),
            ],
            config=DetectorConfig(),
        )

        assert detector.detect(primary_tick, mispriced_hedge) is not None

    def test_update_relationships_replaces_view(self, detector, primary_tick, mispriced_hedge):
        detector.update_relationships([])

        assert detector.detect(primary_tick, mispriced_hedge) is None
        assert detector.last_rejection == RejectionReason.NO_RELATIONSHIP


class TestValidation:
    """Tests for the correlation tier gate."""

    @pytest.mark.parametrize("correlation, accepted", [
        (0.95, True),
        (0.85, True),
        (0.75, True),
        (0.65, False),
        (0.55, False),
        (-0.95, True),
        (-0.65, False),
    ])
    def test_correlation_tiers(self, detector, primary_tick, mispriced_hedge, correlation, accepted):
        """Test tier validation ignores mispricing magnitude."""
        opp = detector.detect(primary_tick, mispriced_hedge)
        opp = dataclasses.replace(opp, correlation=correlation, mispricing=25.0)

        assert detector.validate_opportunity(opp) is accepted

    def test_rejection_reason_recorded(self, detector, primary_tick, mispriced_hedge):
        opp = detector.detect(primary_tick, mispriced_hedge)

        detector.validate_opportunity(dataclasses.replace(opp, correlation=0.5))

        assert detector.last_rejection == RejectionReason.BELOW_CORRELATION_TIER

    def test_tier_lookup(self, detector):
        assert detector.correlation_tier(0.93) == 0.9
        assert detector.correlation_tier(0.81) == 0.8
        assert detector.correlation_tier(0.7) == 0.7
        assert detector.correlation_tier(0.69) is None


class TestGameContext:
    """Tests for context-driven hedge and tail risk adjustments."""

    def test_no_context_leaves_ratio(self, detector):
        assert detector.adjust_hedge_ratio(0.28) == 0.28

    def test_high_pace_increases_ratio(self, detector):
        assert detector.adjust_hedge_ratio(0.28, GameContext(pace=105.0)) == pytest.approx(0.28 * 1.08)

    def test_low_pace_and_blowout(self, detector):
        context = GameContext(pace=95.0, run_differential=-15.0)

        assert detector.adjust_hedge_ratio(0.28, context) == pytest.approx(0.28 * 0.92 * 0.92)

    def test_early_foul_trouble(self, detector):
        early = GameContext(period=1, key_player_fouls=2)
        late = GameContext(period=3, key_player_fouls=2)

        assert detector.adjust_hedge_ratio(1.0, early) == pytest.approx(0.85)
        assert detector.adjust_hedge_ratio(1.0, late) == pytest.approx(1.0)

    def test_late_game_widens_tail_risk(self, detector, primary_tick, mispriced_hedge):
        calm = detector.detect(primary_tick, mispriced_hedge)
        late = detector.detect(
            primary_tick,
            mispriced_hedge,
            GameContext(period=4, time_remaining=1.5),
        )

        # ((1 - 0.85) + (1 - 0.85) + 0) / 3 * 10
        assert calm.tail_risk == pytest.approx(1.0)
        assert late.tail_risk == pytest.approx(1.5)

    def test_context_hedge_size(self, detector, primary_tick, mispriced_hedge):
        opp = detector.detect(primary_tick, mispriced_hedge, GameContext(pace=105.0))

        assert opp.hedge_ratio == pytest.approx(0.28 * 1.08)
        assert opp.required_hedge_size == pytest.approx(1000 * 0.28 * 1.08)

    def test_tail_risk_capped(self, detector):
        rel = make_relationship(correlation=0.0, confidence=0.0)
        context = GameContext(period=4, time_remaining=0.5, key_player_fouls=3, pace=110.0, run_differential=20.0)
        detector.config.tail_risk_scale = 1000.0

        assert detector.calculate_tail_risk(rel, 50.0, context) == 100.0


class TestDetectorStatistics:
    """Tests for detector metrics."""

    def test_counts(self, detector, primary_tick, mispriced_hedge):
        detector.detect(primary_tick, mispriced_hedge)
        detector.detect(primary_tick, make_tick(28.0, "spread-full"))

        stats = detector.get_statistics()

        assert stats["detections"] == 1
        assert stats["total_relationships"] == 1
        assert stats["high_confidence_relationships"] == 1
        assert stats["rejection_counts"] == {"below_z_threshold": 1}
        assert detector.get_rejection_counts() == {"below_z_threshold": 1}
