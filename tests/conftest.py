"""Shared fixtures and tick builders."""

import pytest

from syntharb.engine.covariance import CovarianceEngine
from syntharb.models.schemas import MarketTick, Opportunity, Quote

GAME = "LAL-BOS-2024"


def make_tick(
    price: float,
    market: str = "spread-1q",
    timestamp_ms: int = 0,
    game_id: str = GAME,
) -> MarketTick:
    """Build a tick with ``price`` on the home side."""
    return MarketTick(
        game_id=game_id,
        timestamp_ms=timestamp_ms,
        exchange="test",
        quote=Quote(home=price, away=-price),
        market=market,
        sport="nba",
    )


async def iterate(items):
    """Async iterable over a list."""
    for item in items:
        yield item


async def quiet_feed(market, gate, closed):
    """Yield one tick, then wait on ``gate`` like a live feed with no traffic."""
    try:
        yield make_tick(100.0, market, 0)
        await gate.wait()
        yield make_tick(100.0, market, 1000)
    finally:
        closed.append(market)



@pytest.fixture
def engine():
    """Engine with no practical decay, so fits match unweighted statistics."""
    return CovarianceEngine(
        half_life_ms=1e15,
        max_history_size=500,
        min_samples=10,
        sample_saturation=25.0,
    )


def make_opportunity(
    correlation: float = 0.9,
    expected_value: float = 200.0,
    tail_risk: float = 1.0,
    mispricing: float = 3.0,
    required_hedge_size: float = 280.0,
    base_stake: float = 1000.0,
    confidence: float = 0.85,
):
    """Build an opportunity on the default game pair."""
    return Opportunity(
        id="opp-1",
        primary_tick=make_tick(100.0, "spread-1q"),
        hedge_tick=make_tick(29.5, "spread-full"),
        mispricing=mispricing,
        expected_value=expected_value,
        hedge_ratio=required_hedge_size / base_stake,
        required_hedge_size=required_hedge_size,
        tail_risk=tail_risk,
        confidence=confidence,
        correlation=correlation,
        base_stake=base_stake,
        timestamp_ms=0,
    )
