"""
Synthetic Arbitrage Engine - Shadow Simulation

Generates correlated tick streams for a set of games, runs one processing
lane per (primary, hedge) market pair and prints a summary on exit.
Nothing is dispatched to an exchange.
"""

import asyncio
import signal
from typing import Optional

import structlog

from config.settings import settings
from syntharb.engine.processor import ProcessingConfig, SyntheticArbProcessor
from syntharb.feeds.base import ReplayFeed
from syntharb.feeds.context import GameContextStore
from syntharb.feeds.synthetic import generate_tick_streams
from syntharb.models.schemas import GameContext
from syntharb.utils.logging import OpportunityLogger, setup_logging

logger = structlog.get_logger()

DEFAULT_GAMES = ("LAL-BOS-2024", "GSW-DEN-2024", "MIA-NYK-2024")
DEFAULT_PAIRS = (("spread-1q", "spread-full"), ("total-1h", "total-full"))


class SimulationRunner:
    """
    Shadow-mode simulation orchestrator.

    Coordinates:
    - Synthetic tick feeds (one primary/hedge lane per game and market pair)
    - Game context side-channel
    - The stream processor in shadow mode
    """

    def __init__(
        self,
        games: tuple[str, ...] = DEFAULT_GAMES,
        market_pairs: tuple[tuple[str, str], ...] = DEFAULT_PAIRS,
        ticks_per_lane: int = 400,
        tick_interval_seconds: float = 0.01,
        seed: Optional[int] = 7,
    ):
        self.logger = logger.bind(component="simulation")

        setup_logging(settings.log_level, settings.log_dir, settings.json_logs)

        self.games = games
        self.market_pairs = market_pairs
        self.ticks_per_lane = ticks_per_lane
        self.tick_interval_seconds = tick_interval_seconds
        self.seed = seed

        self.context_store = GameContextStore()
        for game_id in games:
            self.context_store.update(game_id, GameContext())

        # Shadow only: execution stays off regardless of environment
        config = ProcessingConfig.from_settings()
        config.enable_execution = False

        self.processor = SyntheticArbProcessor(
            config=config,
            context_provider=self.context_store.get,
            opportunity_logger=OpportunityLogger(settings.log_dir),
        )

        self._feeds: list[ReplayFeed] = []

    def _build_lanes(self) -> list[tuple[ReplayFeed, ReplayFeed]]:
        lanes = []
        lane_seed = self.seed
        for game_id in self.games:
            for primary_market, hedge_market in self.market_pairs:
                primary_ticks, hedge_ticks = generate_tick_streams(
                    game_id=game_id,
                    primary_market=primary_market,
                    hedge_market=hedge_market,
                    n=self.ticks_per_lane,
                    hedge_ratio=0.28,
                    correlation=0.9,
                    seed=lane_seed,
                    start_ms=0,
                    interval_ms=1000,
                    # Occasional dislocations in the hedge market
                    shocks={i: 4.0 for i in range(50, self.ticks_per_lane, 75)},
                )
                primary_feed = ReplayFeed(
                    primary_ticks,
                    self.tick_interval_seconds,
                    name=f"{game_id}-{primary_market}",
                )
                hedge_feed = ReplayFeed(
                    hedge_ticks,
                    self.tick_interval_seconds,
                    name=f"{game_id}-{hedge_market}",
                )
                self._feeds.extend([primary_feed, hedge_feed])
                lanes.append((primary_feed, hedge_feed))
                if lane_seed is not None:
                    lane_seed += 1
        return lanes

    async def start(self) -> None:
        """Run every lane to completion or until shutdown."""
        lanes = self._build_lanes()
        self.logger.info(
            "Starting shadow simulation",
            games=len(self.games),
            lanes=len(lanes),
            ticks_per_lane=self.ticks_per_lane,
        )

        try:
            await self.processor.run_lanes(lanes)
        finally:
            self.stop()

    def stop(self) -> None:
        """Print the report and release log files."""
        self.processor.close()

        diagnostics = self.processor.get_diagnostics()
        stats = self.processor.get_statistics()
        latency = diagnostics["performance"]["latency"]

        print("\n" + "=" * 60)
        print("SHADOW SIMULATION SUMMARY")
        print("=" * 60)
        print(f"Pairs processed:        {stats.pairs_processed}")
        print(f"Stale pairs dropped:    {stats.stale_pairs_dropped}")
        print(f"Covariance updates:     {stats.covariance_updates}")
        print(f"Opportunities detected: {stats.opportunities_detected}")
        print(f"  validated:            {stats.opportunities_validated}")
        print(f"  rejected:             {stats.opportunities_rejected}")
        print(f"Processing errors:      {stats.processing_errors}")
        print(f"Simulated PnL:          {stats.simulated_pnl:,.2f}")
        print(f"Latency mean / p95 ms:  {latency['mean']:.3f} / {latency['p95']:.3f}")
        print(f"Relationships tracked:  {diagnostics['covariance']['tracked_pairs']}")
        print("=" * 60 + "\n")

        self.logger.info("Simulation stopped", pairs=stats.pairs_processed)

    def shutdown(self) -> None:
        """Trigger cooperative shutdown."""
        self.processor.stop()


def main():
    """Main entry point."""
    runner = SimulationRunner()

    def signal_handler(sig, frame):
        print("\n\nShutdown requested, finishing in-flight pairs...\n")
        runner.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        asyncio.run(runner.start())
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")


if __name__ == "__main__":
    main()
