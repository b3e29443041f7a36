"""Upstream game state and odds feeds."""

from courtpulse.feeds.base import (
    GameStateSource,
    OddsSource,
    UpstreamError,
    RateLimitedError,
    InvalidGameError,
    to_edge_error,
)
from courtpulse.feeds.nba_live import NBALiveFeed
from courtpulse.feeds.odds_api import OddsAPIFeed

__all__ = [
    "GameStateSource",
    "OddsSource",
    "UpstreamError",
    "RateLimitedError",
    "InvalidGameError",
    "to_edge_error",
    "NBALiveFeed",
    "OddsAPIFeed",
]
