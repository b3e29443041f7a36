"""
Player Momentum.

Per-stat momentum for each player on a 0-10 scale: 5 means the player is
producing at their game-to-date rate over the recent window, 10 means twice
that rate or better, 0 means nothing in the window. The correlation flag says
whether the projected final value clears the best available prop line.
"""

from typing import Optional, Sequence

import structlog

from courtpulse.engine.edges import LineIndex, select_best_line
from courtpulse.models.schemas import (
    MARKET_STATS,
    BookmakerLine,
    GameSnapshot,
    ModelProjection,
    PlayerLine,
    PlayerMomentum,
)

logger = structlog.get_logger()

NEUTRAL = 5.0
MAX_MOMENTUM = 10.0


class PlayerMomentumEngine:
    def __init__(self, window_seconds: float = 300.0, markets: Optional[Sequence[str]] = None):
        self.window_seconds = window_seconds
        self.markets = [m for m in (markets or MARKET_STATS) if m in MARKET_STATS]
        self.logger = logger.bind(component="player_momentum_engine")

    def _baseline(self, history: Sequence[GameSnapshot]) -> GameSnapshot:
        start = history[-1].elapsed_seconds - self.window_seconds
        baseline = history[0]
        for snap in history:
            if snap.elapsed_seconds <= start:
                baseline = snap
            else:
                break
        return baseline

    def compute(
        self,
        history: Sequence[GameSnapshot],
        projections: Sequence[ModelProjection] = (),
        odds: Sequence[BookmakerLine] = (),
    ) -> list[PlayerMomentum]:
        if not history:
            return []

        latest = history[-1]
        before = {p.player_id: p for p in self._baseline(history).players}
        projected = {(p.player_id, p.market): p for p in projections}
        index = LineIndex(odds)

        results = []
        for player in latest.players:
            base = before.get(player.player_id) or PlayerLine(player.player_id, player.name, player.team_id)
            window_minutes = player.minutes - base.minutes

            momentum: dict[str, float] = {}
            correlations: dict[str, bool] = {}
            current: dict[str, float] = {}
            lines: dict[str, float] = {}

            for market in self.markets:
                stat_name = MARKET_STATS[market]
                stat = player.stat(market)
                current[stat_name] = stat

                game_rate = stat / player.minutes if player.minutes > 0 else 0.0
                if window_minutes > 0 and game_rate > 0:
                    window_rate = (stat - base.stat(market)) / window_minutes
                    value = min(MAX_MOMENTUM, max(0.0, NEUTRAL * window_rate / game_rate))
                else:
                    value = NEUTRAL
                momentum[stat_name] = round(value, 2)

                best = select_best_line(index.find(player.player_id, player.name, market))
                if best is None:
                    continue
                lines[stat_name] = best.line
                projection = projected.get((player.player_id, market))
                if projection is not None:
                    correlations[stat_name] = projection.mean > best.line

            results.append(PlayerMomentum(
                player_id=player.player_id,
                player_name=player.name,
                team_id=player.team_id,
                momentum=momentum,
                correlations=correlations,
                current_stats=current,
                prop_lines=lines,
            ))

        self.logger.debug("Computed player momentum", game_id=latest.game_id, players=len(results))
        return results
