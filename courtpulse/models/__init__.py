"""Game, momentum and edge data models."""

from courtpulse.models.schemas import (
    GameStatus,
    TeamStats,
    PlayerLine,
    GameSnapshot,
    GameSummary,
    Trend,
    MomentumMetrics,
    KeyFactor,
    TeamMomentum,
    MatchupMetrics,
    Predictions,
    GameMomentum,
    BookmakerLine,
    GameLine,
    OddsBoard,
    GameOdds,
    OddsQuote,
    ModelProjection,
    Edge,
    EdgeBatch,
    EdgeError,
    EdgeErrorCode,
    PlayerMomentum,
    MARKET_STATS,
)

__all__ = [
    "GameStatus",
    "TeamStats",
    "PlayerLine",
    "GameSnapshot",
    "GameSummary",
    "Trend",
    "MomentumMetrics",
    "KeyFactor",
    "TeamMomentum",
    "MatchupMetrics",
    "Predictions",
    "GameMomentum",
    "BookmakerLine",
    "GameLine",
    "OddsBoard",
    "GameOdds",
    "OddsQuote",
    "ModelProjection",
    "Edge",
    "EdgeBatch",
    "EdgeError",
    "EdgeErrorCode",
    "PlayerMomentum",
    "MARKET_STATS",
]
