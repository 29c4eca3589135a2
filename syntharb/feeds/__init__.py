"""Tick feeds and stream synchronization."""

from syntharb.feeds.base import FeedHealth, ReplayFeed
from syntharb.feeds.context import GameContextStore
from syntharb.feeds.merge import merge_streams
from syntharb.feeds.synthetic import generate_correlated_prices, generate_tick_streams

__all__ = [
    "FeedHealth",
    "ReplayFeed",
    "GameContextStore",
    "merge_streams",
    "generate_correlated_prices",
    "generate_tick_streams",
]
