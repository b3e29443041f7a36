"""
Live basketball analytics data models and schemas.

Defines the core data structures for:
- Game state snapshots (consumed from the live feed)
- Momentum metrics (team, matchup and prediction level)
- Bookmaker lines, model projections and edges
- The error values surfaced to consumers
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


REGULATION_PERIODS = 4
PERIOD_SECONDS = 12 * 60
OVERTIME_SECONDS = 5 * 60
REGULATION_SECONDS = REGULATION_PERIODS * PERIOD_SECONDS


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts else None


# =============================================================================
# Game State (consumed)
# =============================================================================

class GameStatus(Enum):
    """Game lifecycle as reported upstream."""
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINAL = "final"


@dataclass(frozen=True)
class TeamStats:
    """Box-score counters used for the possession estimate."""
    field_goals_attempted: int = 0
    free_throws_attempted: int = 0
    offensive_rebounds: int = 0
    turnovers: int = 0

    @property
    def possessions(self) -> float:
        """Standard possession estimate: FGA + 0.44*FTA - OREB + TOV."""
        return (
            self.field_goals_attempted
            + 0.44 * self.free_throws_attempted
            - self.offensive_rebounds
            + self.turnovers
        )


@dataclass(frozen=True)
class PlayerLine:
    """A player's live box-score line."""
    player_id: str
    name: str
    team_id: str
    minutes: float = 0.0
    points: int = 0
    rebounds: int = 0
    assists: int = 0
    blocks: int = 0
    steals: int = 0

    def stat(self, market: str) -> float:
        """Current value of the stat a prop market settles on."""
        return float(getattr(self, MARKET_STATS[market]))


@dataclass(frozen=True)
class GameSnapshot:
    """
    Point-in-time fact about a game.

    Superseded by later snapshots, never mutated.
    """
    game_id: str
    home_team_id: str
    home_team_name: str
    away_team_id: str
    away_team_name: str
    home_score: int
    away_score: int
    period: int
    clock_seconds: float          # Seconds remaining in the current period
    status: GameStatus
    timestamp: datetime

    home_stats: Optional[TeamStats] = None
    away_stats: Optional[TeamStats] = None
    players: tuple[PlayerLine, ...] = ()

    @staticmethod
    def period_length(period: int) -> float:
        """Length of a period in seconds (overtimes are 5 minutes)."""
        return PERIOD_SECONDS if period <= REGULATION_PERIODS else OVERTIME_SECONDS

    @property
    def elapsed_seconds(self) -> float:
        """Game-clock seconds played so far."""
        if self.period <= 0:
            return 0.0
        played = 0.0
        for p in range(1, self.period):
            played += self.period_length(p)
        remaining = min(max(self.clock_seconds, 0.0), self.period_length(self.period))
        return played + self.period_length(self.period) - remaining

    @property
    def remaining_seconds(self) -> float:
        """Seconds left in regulation, or in the current overtime."""
        if self.status == GameStatus.FINAL:
            return 0.0
        if self.period <= REGULATION_PERIODS:
            return max(0.0, REGULATION_SECONDS - self.elapsed_seconds)
        return max(0.0, self.clock_seconds)

    @property
    def is_final(self) -> bool:
        return self.status == GameStatus.FINAL

    def get_display_name(self) -> str:
        """Get human-readable game name."""
        return f"{self.away_team_name} @ {self.home_team_name}"


@dataclass(frozen=True)
class GameSummary:
    """Scoreboard row for the live games list."""
    game_id: str
    home_team_id: str
    home_team_name: str
    away_team_id: str
    away_team_name: str
    home_score: int
    away_score: int
    status: GameStatus
    period: int
    clock_seconds: float
    start_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "gameId": self.game_id,
            "homeTeam": self.home_team_name,
            "awayTeam": self.away_team_name,
            "homeTeamId": self.home_team_id,
            "awayTeamId": self.away_team_id,
            "homeScore": self.home_score,
            "awayScore": self.away_score,
            "status": self.status.value,
            "period": self.period,
            "clockSeconds": self.clock_seconds,
            "gameTime": _iso(self.start_time),
        }


# =============================================================================
# Momentum
# =============================================================================

class Trend(Enum):
    """Direction of a momentum reading."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    @classmethod
    def classify(cls, net_change: float, dead_zone: float) -> "Trend":
        """Sign-classify with a dead zone around zero."""
        if net_change > dead_zone:
            return cls.UP
        if net_change < -dead_zone:
            return cls.DOWN
        return cls.NEUTRAL


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class MomentumMetrics:
    """A single bounded momentum reading."""
    overall: float               # 0-1 scale
    net_change: float            # Unsquashed raw delta
    trend: Trend
    confidence: float            # 0-1 scale
    last_update: datetime

    def __post_init__(self):
        object.__setattr__(self, "overall", clamp(self.overall))
        object.__setattr__(self, "confidence", clamp(self.confidence))

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "netChange": self.net_change,
            "trend": self.trend.value,
            "confidence": self.confidence,
            "lastUpdate": _iso(self.last_update),
        }


@dataclass(frozen=True)
class KeyFactor:
    """One driver behind a team's momentum."""
    factor: str
    impact: float                # -1 to 1 scale
    description: str

    def __post_init__(self):
        object.__setattr__(self, "impact", clamp(self.impact, -1.0, 1.0))

    def to_dict(self) -> dict:
        return {"factor": self.factor, "impact": self.impact, "description": self.description}


@dataclass(frozen=True)
class TeamMomentum:
    """Momentum for one side of a game."""
    team_id: str
    team_name: str
    offense: MomentumMetrics
    defense: MomentumMetrics
    overall: MomentumMetrics
    key_factors: tuple[KeyFactor, ...] = ()

    def __post_init__(self):
        # Strongest factor first
        ordered = tuple(sorted(self.key_factors, key=lambda f: (-abs(f.impact), f.factor)))
        object.__setattr__(self, "key_factors", ordered)

    def to_dict(self) -> dict:
        return {
            "teamId": self.team_id,
            "teamName": self.team_name,
            "metrics": {
                "offense": self.offense.to_dict(),
                "defense": self.defense.to_dict(),
                "overall": self.overall.to_dict(),
            },
            "keyFactors": [f.to_dict() for f in self.key_factors],
        }


@dataclass(frozen=True)
class MatchupMetrics:
    home_advantage: float        # 0-1 scale
    pace_impact: float           # -1 to 1 scale
    matchup_strength: float      # 0-1 scale

    def __post_init__(self):
        object.__setattr__(self, "home_advantage", clamp(self.home_advantage))
        object.__setattr__(self, "pace_impact", clamp(self.pace_impact, -1.0, 1.0))
        object.__setattr__(self, "matchup_strength", clamp(self.matchup_strength))

    def to_dict(self) -> dict:
        return {
            "homeAdvantage": self.home_advantage,
            "paceImpact": self.pace_impact,
            "matchupStrength": self.matchup_strength,
        }


@dataclass(frozen=True)
class Predictions:
    home_win_probability: float
    away_win_probability: float
    expected_home_score: float
    expected_away_score: float
    confidence: float

    def to_dict(self) -> dict:
        return {
            "winProbability": {
                "home": self.home_win_probability,
                "away": self.away_win_probability,
            },
            "expectedScore": {
                "home": self.expected_home_score,
                "away": self.expected_away_score,
            },
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class GameMomentum:
    """
    Full momentum picture for a game.

    Produced whole by the momentum engine on every refresh; the cache
    replaces it, never edits it. `stale` is only set on copies handed to
    consumers when the cached value is outdated.
    """
    game_id: str
    home_team: TeamMomentum
    away_team: TeamMomentum
    matchup: MatchupMetrics
    predictions: Predictions
    last_update: datetime
    stale: bool = False

    def to_dict(self) -> dict:
        return {
            "gameId": self.game_id,
            "homeTeam": self.home_team.to_dict(),
            "awayTeam": self.away_team.to_dict(),
            "matchupMetrics": self.matchup.to_dict(),
            "predictions": self.predictions.to_dict(),
            "lastUpdate": _iso(self.last_update),
            "stale": self.stale,
        }


# =============================================================================
# Odds & Edges
# =============================================================================

# Prop market key -> PlayerLine attribute
MARKET_STATS = {
    "player_points": "points",
    "player_rebounds": "rebounds",
    "player_assists": "assists",
    "player_blocks": "blocks",
    "player_steals": "steals",
}


def american_to_probability(american: float) -> float:
    """Convert American odds to implied probability."""
    if american > 0:
        return 100 / (american + 100)
    else:
        return abs(american) / (abs(american) + 100)


def normal_cdf(z: float) -> float:
    """Standard normal CDF."""
    return 0.5 * (1.0 + math.erf(z / math.sqrt(2.0)))


@dataclass(frozen=True)
class BookmakerLine:
    """A bookmaker's over/under quote on one player prop."""
    bookmaker: str               # "draftkings", "fanduel", ...
    player_name: str
    market: str                  # "player_points", ...
    line: float                  # 24.5
    over: float                  # American price, e.g. -115
    under: float                 # American price, e.g. -105
    timestamp: datetime
    player_id: Optional[str] = None

    @property
    def implied_over(self) -> float:
        return american_to_probability(self.over)

    @property
    def implied_under(self) -> float:
        return american_to_probability(self.under)

    @property
    def vig(self) -> float:
        """House edge; the tighter the over/under, the lower."""
        return self.implied_over + self.implied_under - 1.0

    @property
    def fair_over(self) -> float:
        """Vig-removed probability of the over."""
        total = self.implied_over + self.implied_under
        if total <= 0:
            return 0.5
        return self.implied_over / total

    def to_quote(self) -> "OddsQuote":
        return OddsQuote(bookmaker=self.bookmaker, line=self.line, over=self.over, under=self.under)


@dataclass(frozen=True)
class OddsQuote:
    bookmaker: str
    line: float
    over: float
    under: float

    def to_dict(self) -> dict:
        return {"bookmaker": self.bookmaker, "line": self.line, "over": self.over, "under": self.under}


@dataclass(frozen=True)
class GameLine:
    """
    A bookmaker's two-way quote on a game market.

    For h2h and spreads the sides are home/away; for totals `home` holds
    the over price and `away` the under. `point` is the home spread or the
    total, None for h2h.
    """
    bookmaker: str
    market: str                  # "h2h", "spreads", "totals"
    home: float                  # American price
    away: float
    timestamp: datetime
    point: Optional[float] = None

    @property
    def vig(self) -> float:
        return american_to_probability(self.home) + american_to_probability(self.away) - 1.0

    @property
    def fair_home(self) -> float:
        """Vig-removed probability of the home (or over) side."""
        home = american_to_probability(self.home)
        total = home + american_to_probability(self.away)
        if total <= 0:
            return 0.5
        return home / total


@dataclass(frozen=True)
class OddsBoard:
    """Everything the odds source returned for one game in one request."""
    props: tuple[BookmakerLine, ...] = ()
    game_lines: tuple[GameLine, ...] = ()


@dataclass(frozen=True)
class GameOdds:
    """
    Best moneyline, spread and total for a game, next to the model.

    edge_pct compares the momentum model's home win probability with the
    vig-free moneyline, in probability points.
    """
    game_id: str
    home_team_name: str
    away_team_name: str
    moneyline: Optional[GameLine] = None
    spread: Optional[GameLine] = None
    total: Optional[GameLine] = None
    model_home_win_probability: Optional[float] = None
    last_update: Optional[datetime] = None
    stale: bool = False

    @property
    def market_home_win_probability(self) -> Optional[float]:
        if self.moneyline is None:
            return None
        return self.moneyline.fair_home

    @property
    def edge_pct(self) -> Optional[float]:
        market = self.market_home_win_probability
        if market is None or self.model_home_win_probability is None:
            return None
        return round(100.0 * (self.model_home_win_probability - market), 2)

    def to_dict(self) -> dict:
        markets = {}
        if self.moneyline:
            markets["moneyline"] = {
                "bookmaker": self.moneyline.bookmaker,
                "home": self.moneyline.home,
                "away": self.moneyline.away,
            }
        if self.spread:
            markets["spread"] = {
                "bookmaker": self.spread.bookmaker,
                "points": self.spread.point,
                "home": self.spread.home,
                "away": self.spread.away,
            }
        if self.total:
            markets["total"] = {
                "bookmaker": self.total.bookmaker,
                "points": self.total.point,
                "over": self.total.home,
                "under": self.total.away,
            }
        return {
            "gameId": self.game_id,
            "homeTeam": self.home_team_name,
            "awayTeam": self.away_team_name,
            "markets": markets,
            "winProbability": {
                "market": self.market_home_win_probability,
                "model": self.model_home_win_probability,
            },
            "edgePct": self.edge_pct,
            "lastUpdate": _iso(self.last_update),
            "stale": self.stale,
        }


@dataclass(frozen=True)
class ModelProjection:
    """Model distribution of a player's final stat for one market."""
    player_id: str
    player_name: str
    team_id: str
    market: str
    mean: float
    std_dev: float
    confidence: float

    def __post_init__(self):
        object.__setattr__(self, "std_dev", max(0.0, self.std_dev))
        object.__setattr__(self, "confidence", clamp(self.confidence))

    def prob_over(self, line: float) -> float:
        """P(final stat > line) under a normal approximation."""
        if self.std_dev == 0:
            if self.mean > line:
                return 1.0
            if self.mean < line:
                return 0.0
            return 0.5
        return 1.0 - normal_cdf((line - self.mean) / self.std_dev)

    def to_dict(self) -> dict:
        return {"mean": self.mean, "stdDev": self.std_dev, "confidence": self.confidence}


@dataclass(frozen=True)
class Edge:
    """
    Model-vs-market deviation on one player prop.

    edge_pct is in probability points: +5.0 means the model gives the over
    five points more than the vig-free market does.
    """
    edge_id: str
    game_id: str
    player_id: str
    player_name: str
    market: str
    edge_pct: float
    timestamp: datetime
    odds: tuple[OddsQuote, ...]
    projection: ModelProjection

    @property
    def direction(self) -> str:
        """Side the model favours."""
        if self.edge_pct > 0:
            return "over"
        if self.edge_pct < 0:
            return "under"
        return "none"

    def to_dict(self) -> dict:
        return {
            "edgeId": self.edge_id,
            "gameId": self.game_id,
            "playerId": self.player_id,
            "playerName": self.player_name,
            "market": self.market,
            "edgePct": self.edge_pct,
            "timestamp": _iso(self.timestamp),
            "odds": [q.to_dict() for q in self.odds],
            "modelProjection": self.projection.to_dict(),
        }


class EdgeErrorCode(Enum):
    EDGE_NOT_FOUND = "EDGE_NOT_FOUND"    # No market data yet; resolves on a later poll
    INVALID_GAME = "INVALID_GAME"        # Unknown/malformed game; stop tracking
    RATE_LIMITED = "RATE_LIMITED"        # Upstream throttling; retry with backoff


@dataclass(frozen=True)
class EdgeError:
    """Error value surfaced to consumers instead of an exception."""
    code: EdgeErrorCode
    message: str
    game_id: Optional[str] = None
    player_id: Optional[str] = None
    market: Optional[str] = None

    @property
    def is_retriable(self) -> bool:
        return self.code != EdgeErrorCode.INVALID_GAME

    @classmethod
    def not_found(cls, message: str, **kwargs) -> "EdgeError":
        return cls(EdgeErrorCode.EDGE_NOT_FOUND, message, **kwargs)

    @classmethod
    def invalid_game(cls, message: str, **kwargs) -> "EdgeError":
        return cls(EdgeErrorCode.INVALID_GAME, message, **kwargs)

    @classmethod
    def rate_limited(cls, message: str, **kwargs) -> "EdgeError":
        return cls(EdgeErrorCode.RATE_LIMITED, message, **kwargs)

    def to_dict(self) -> dict:
        data = {"code": self.code.value, "message": self.message}
        if self.game_id is not None:
            data["gameId"] = self.game_id
        if self.player_id is not None:
            data["playerId"] = self.player_id
        if self.market is not None:
            data["market"] = self.market
        return data


@dataclass(frozen=True)
class EdgeBatch:
    """Edges for a game plus the per-market misses of the same computation."""
    game_id: str
    edges: tuple[Edge, ...]
    errors: tuple[EdgeError, ...] = ()
    computed_at: Optional[datetime] = None
    stale: bool = False

    def get(self, player_id: str, market: str) -> Optional[Edge]:
        for edge in self.edges:
            if edge.player_id == player_id and edge.market == market:
                return edge
        return None

    def to_dict(self) -> dict:
        return {
            "gameId": self.game_id,
            "edges": [e.to_dict() for e in self.edges],
            "errors": [e.to_dict() for e in self.errors],
            "computedAt": _iso(self.computed_at),
            "stale": self.stale,
        }


# =============================================================================
# Player Momentum
# =============================================================================

@dataclass(frozen=True)
class PlayerMomentum:
    """Per-stat momentum for one player (0-10 scale, 5 = on season-to-date pace)."""
    player_id: str
    player_name: str
    team_id: str
    momentum: dict[str, float] = field(default_factory=dict)        # market -> 0-10
    correlations: dict[str, bool] = field(default_factory=dict)     # market -> beating the line
    current_stats: dict[str, float] = field(default_factory=dict)
    prop_lines: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "playerId": self.player_id,
            "playerName": self.player_name,
            "teamId": self.team_id,
            "playerMomentum": dict(self.momentum),
            "correlations": dict(self.correlations),
            "currentStats": dict(self.current_stats),
            "propLines": dict(self.prop_lines),
        }
