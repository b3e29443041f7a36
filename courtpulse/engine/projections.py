"""
Projection Engine.

Extrapolates each player's live box score to a final-stat distribution:

    rate       = stat / minutes played
    rest       = remaining game minutes * player's share of minutes so far
    mean       = stat + rate * rest
    std_dev    = sqrt(rate * rest)   (Poisson), floored while minutes remain
    confidence = minutes played / full_minutes, capped at 1
"""

import math
from typing import Optional

import structlog

from config.settings import EdgeSettings
from courtpulse.models.schemas import MARKET_STATS, GameSnapshot, ModelProjection

logger = structlog.get_logger()

MIN_STD_DEV = 0.5


class ProjectionEngine:
    """Builds ModelProjections from the latest snapshot of a game."""

    def __init__(self, config: Optional[EdgeSettings] = None):
        self.config = config or EdgeSettings()
        self.logger = logger.bind(component="projection_engine")

        unknown = [m for m in self.config.markets if m not in MARKET_STATS]
        if unknown:
            self.logger.warning("Ignoring markets without a box-score stat", markets=unknown)
        self.markets = [m for m in self.config.markets if m in MARKET_STATS]

    def project(self, snapshot: GameSnapshot) -> list[ModelProjection]:
        elapsed_minutes = snapshot.elapsed_seconds / 60.0
        remaining_minutes = snapshot.remaining_seconds / 60.0

        projections = []
        for player in snapshot.players:
            if player.minutes < self.config.min_minutes:
                continue

            share = min(1.0, player.minutes / elapsed_minutes) if elapsed_minutes > 0 else 0.0
            rest = remaining_minutes * share
            confidence = min(1.0, player.minutes / self.config.full_minutes)

            for market in self.markets:
                stat = player.stat(market)
                expected_rest = stat / player.minutes * rest

                if snapshot.is_final or rest <= 0:
                    std_dev = 0.0
                else:
                    std_dev = max(MIN_STD_DEV, math.sqrt(expected_rest))

                projections.append(ModelProjection(
                    player_id=player.player_id,
                    player_name=player.name,
                    team_id=player.team_id,
                    market=market,
                    mean=stat + expected_rest,
                    std_dev=std_dev,
                    confidence=confidence,
                ))

        return projections
