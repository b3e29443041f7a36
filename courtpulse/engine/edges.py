"""
Edge Engine.

Compares model projections against live bookmaker prop lines.

For every projected player+market:
1. Collect the matching lines (one per bookmaker)
2. Pick the best line: lowest vig (tightest over/under), ties by bookmaker name
3. edge_pct = 100 * (P_model(over) - P_market_fair(over)), in probability points
4. Suppress edges with |edge_pct| < min_edge_pct (the boundary is kept)

Edge ids are uuid5 over game/player/market/time-bucket, so recomputing the
same inputs yields the same ids.

Game-level lines (moneyline, spread, total) get the same best-line pick and
the moneyline is set against the model's win probability.
"""

import uuid
from datetime import datetime
from typing import Iterable, Optional, Sequence

import structlog

from config.settings import EdgeSettings
from courtpulse.models.schemas import (
    BookmakerLine,
    Edge,
    EdgeBatch,
    EdgeError,
    GameLine,
    GameOdds,
    GameSnapshot,
    ModelProjection,
    Predictions,
)
from courtpulse.utils.names import normalize_player_name

logger = structlog.get_logger()

EDGE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "courtpulse/edges")


def edge_pct(model_prob: float, market_prob: float) -> float:
    """Probability gap in percentage points, rounded to 0.01."""
    return round(100.0 * (model_prob - market_prob), 2)


def dedupe_by_bookmaker(lines: Iterable[BookmakerLine]) -> list[BookmakerLine]:
    """Keep one quote per bookmaker: the latest, first seen on a tie."""
    latest: dict[str, BookmakerLine] = {}
    for line in lines:
        current = latest.get(line.bookmaker)
        if current is None or line.timestamp > current.timestamp:
            latest[line.bookmaker] = line
    return list(latest.values())


def rank_lines(lines: Iterable[BookmakerLine]) -> list[BookmakerLine]:
    """Order quotes best first: tightest over/under spread, then bookmaker name."""
    return sorted(dedupe_by_bookmaker(lines), key=lambda l: (round(l.vig, 9), l.bookmaker))


def select_best_line(lines: Iterable[BookmakerLine]) -> Optional[BookmakerLine]:
    """The most liquid-looking quote, or None when there are no quotes."""
    ranked = rank_lines(lines)
    return ranked[0] if ranked else None


class LineIndex:
    """Lookup of bookmaker lines by market and player (id first, then name)."""

    def __init__(self, lines: Iterable[BookmakerLine]):
        self._by_id: dict[tuple[str, str], list[BookmakerLine]] = {}
        self._by_name: dict[tuple[str, str], list[BookmakerLine]] = {}
        for line in lines:
            if line.player_id:
                self._by_id.setdefault((line.market, line.player_id), []).append(line)
            else:
                key = (line.market, normalize_player_name(line.player_name))
                self._by_name.setdefault(key, []).append(line)

    def find(self, player_id: str, player_name: str, market: str) -> list[BookmakerLine]:
        lines = self._by_id.get((market, player_id))
        if lines:
            return lines
        return self._by_name.get((market, normalize_player_name(player_name)), [])


class EdgeEngine:
    """
    Computes edges for one game.

    Pure: identical projections and odds always give identical edge ids and
    percentages. Missing odds for a projected market come back as a
    per-market EDGE_NOT_FOUND inside the batch, never as a failed batch.
    """

    def __init__(self, min_edge_pct: float = 2.0, config: Optional[EdgeSettings] = None):
        self.min_edge_pct = min_edge_pct
        self.config = config or EdgeSettings()
        self.logger = logger.bind(component="edge_engine")

    def make_edge_id(self, game_id: str, player_id: str, market: str, timestamp: datetime) -> str:
        bucket = int(timestamp.timestamp() // self.config.bucket_seconds)
        return str(uuid.uuid5(EDGE_NAMESPACE, f"{game_id}:{player_id}:{market}:{bucket}"))

    def compute_edges(
        self,
        game_id: str,
        projections: Sequence[ModelProjection],
        odds: Sequence[BookmakerLine],
        as_of: Optional[datetime] = None,
    ) -> EdgeBatch:
        """
        Compute edges for every projected player+market.

        Args:
            game_id: Game the projections belong to
            projections: Model projections (one per player+market)
            odds: Bookmaker lines for the game
            as_of: Edge timestamp; defaults to the newest matched line

        Returns:
            EdgeBatch with emitted edges (strongest first) and per-market misses
        """
        index = LineIndex(odds)
        edges: list[Edge] = []
        errors: list[EdgeError] = []
        suppressed = 0

        for projection in projections:
            ranked = rank_lines(index.find(projection.player_id, projection.player_name, projection.market))
            if not ranked:
                errors.append(EdgeError.not_found(
                    f"No odds for {projection.player_name} {projection.market}",
                    game_id=game_id,
                    player_id=projection.player_id,
                    market=projection.market,
                ))
                continue

            best = ranked[0]
            pct = edge_pct(projection.prob_over(best.line), best.fair_over)
            if abs(pct) < self.min_edge_pct:
                suppressed += 1
                continue

            timestamp = as_of or max(line.timestamp for line in ranked)
            edges.append(Edge(
                edge_id=self.make_edge_id(game_id, projection.player_id, projection.market, timestamp),
                game_id=game_id,
                player_id=projection.player_id,
                player_name=projection.player_name,
                market=projection.market,
                edge_pct=pct,
                timestamp=timestamp,
                odds=tuple(line.to_quote() for line in ranked),
                projection=projection,
            ))

        edges.sort(key=lambda e: (-abs(e.edge_pct), e.player_id, e.market))

        self.logger.debug(
            "Computed edges",
            game_id=game_id,
            projections=len(projections),
            lines=len(odds),
            edges=len(edges),
            suppressed=suppressed,
            missing=len(errors),
        )

        return EdgeBatch(
            game_id=game_id,
            edges=tuple(edges),
            errors=tuple(errors),
            computed_at=as_of or max((line.timestamp for line in odds), default=None),
        )

    def compute_game_odds(
        self,
        snapshot: GameSnapshot,
        lines: Sequence[GameLine],
        predictions: Optional[Predictions] = None,
    ) -> GameOdds:
        """
        Best moneyline, spread and total for a game, by the same tie-break
        as prop lines, with the model's home win probability alongside.
        """
        best = {}
        for market in ("h2h", "spreads", "totals"):
            ranked = rank_lines(line for line in lines if line.market == market)
            best[market] = ranked[0] if ranked else None

        return GameOdds(
            game_id=snapshot.game_id,
            home_team_name=snapshot.home_team_name,
            away_team_name=snapshot.away_team_name,
            moneyline=best["h2h"],
            spread=best["spreads"],
            total=best["totals"],
            model_home_win_probability=predictions.home_win_probability if predictions else None,
            last_update=max((line.timestamp for line in lines), default=None),
        )
