"""
Synthetic correlated tick generation for simulation runs and tests.

hedge = intercept + hedge_ratio * primary + noise, with the noise scale chosen
so that corr(primary, hedge) equals the requested correlation.
"""

import math
from typing import Optional

import numpy as np

from syntharb.models.schemas import MarketTick, Quote


def generate_correlated_prices(
    n: int,
    hedge_ratio: float,
    correlation: float,
    primary_mean: float = 100.0,
    primary_std: float = 1.0,
    intercept: float = 0.0,
    seed: Optional[int] = None,
    exact: bool = False,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Generate a primary series and a linearly related hedge series.

    With ``exact`` the sample statistics match the requested slope and
    correlation exactly (noise is orthogonalized against the primary).
    """
    if n < 3:
        raise ValueError("n must be at least 3")
    if not 0 < abs(correlation) <= 1:
        raise ValueError("correlation must be in (0, 1] in magnitude")

    rng = np.random.default_rng(seed)
    primary = rng.standard_normal(n)
    noise = rng.standard_normal(n)

    if exact:
        centered = primary - primary.mean()
        primary = centered / centered.std()
        noise = noise - noise.mean()
        noise = noise - (noise @ primary) / (primary @ primary) * primary
        noise = noise / noise.std()

    primary = primary_mean + primary_std * primary

    noise_std = abs(hedge_ratio) * primary_std * math.sqrt(max(0.0, 1.0 / correlation ** 2 - 1.0))
    sign = 1.0 if correlation > 0 else -1.0
    hedge = intercept + sign * abs(hedge_ratio) * primary + noise_std * noise

    return primary, hedge


def generate_tick_streams(
    game_id: str,
    primary_market: str,
    hedge_market: str,
    n: int,
    hedge_ratio: float,
    correlation: float,
    seed: Optional[int] = None,
    start_ms: int = 0,
    interval_ms: int = 1000,
    hedge_lag_ms: int = 0,
    exchange: str = "simulated",
    sport: str = "nba",
    shocks: Optional[dict[int, float]] = None,
    **price_kwargs,
) -> tuple[list[MarketTick], list[MarketTick]]:
    """
    Build aligned primary/hedge tick lists.

    Args:
        shocks: index -> hedge price shock in units of the noise std dev
        hedge_lag_ms: hedge tick timestamp offset (latency skew)
    """
    primary, hedge = generate_correlated_prices(
        n, hedge_ratio, correlation, seed=seed, **price_kwargs
    )

    if shocks:
        primary_std = price_kwargs.get("primary_std", 1.0)
        noise_std = abs(hedge_ratio) * primary_std * math.sqrt(
            max(0.0, 1.0 / correlation ** 2 - 1.0)
        )
        for index, sigma in shocks.items():
            hedge[index] += sigma * noise_std

    primary_ticks = []
    hedge_ticks = []
    for i in range(n):
        ts = start_ms + i * interval_ms
        primary_ticks.append(MarketTick(
            game_id=game_id,
            timestamp_ms=ts,
            exchange=exchange,
            quote=Quote(home=float(primary[i]), away=-float(primary[i])),
            market=primary_market,
            sport=sport,
        ))
        hedge_ticks.append(MarketTick(
            game_id=game_id,
            timestamp_ms=ts + hedge_lag_ms,
            exchange=exchange,
            quote=Quote(home=float(hedge[i]), away=-float(hedge[i])),
            market=hedge_market,
            sport=sport,
        ))

    return primary_ticks, hedge_ticks
