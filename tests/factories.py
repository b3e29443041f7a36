"""Builders and fake sources shared by the tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from courtpulse.feeds.base import GameStateSource, OddsSource
from courtpulse.models.schemas import (
    BookmakerLine,
    GameSnapshot,
    GameStatus,
    GameSummary,
    OddsBoard,
    PlayerLine,
    TeamStats,
)

GAME_ID = "0022500123"
HOME_ID = "1610612747"
AWAY_ID = "1610612744"
BASE_TIME = datetime(2026, 1, 15, 3, 0, tzinfo=timezone.utc)


def make_snapshot(
    home_score: int = 0,
    away_score: int = 0,
    elapsed: float = 0.0,
    status: GameStatus = GameStatus.LIVE,
    game_id: str = GAME_ID,
    players: tuple = (),
    home_stats: Optional[TeamStats] = None,
    away_stats: Optional[TeamStats] = None,
    timestamp: Optional[datetime] = None,
    home_team_id: str = HOME_ID,
    away_team_id: str = AWAY_ID,
) -> GameSnapshot:
    """Snapshot at `elapsed` game-clock seconds (regulation only)."""
    period = min(4, int(elapsed // 720) + 1)
    clock = period * 720 - elapsed
    return GameSnapshot(
        game_id=game_id,
        home_team_id=home_team_id,
        home_team_name="Los Angeles Lakers",
        away_team_id=away_team_id,
        away_team_name="Golden State Warriors",
        home_score=home_score,
        away_score=away_score,
        period=period,
        clock_seconds=clock,
        status=status,
        timestamp=timestamp or BASE_TIME + timedelta(seconds=elapsed),
        home_stats=home_stats,
        away_stats=away_stats,
        players=players,
    )


def make_player(
    player_id: str = "2544",
    name: str = "LeBron James",
    team_id: str = HOME_ID,
    minutes: float = 24.0,
    points: int = 14,
    rebounds: int = 4,
    assists: int = 5,
    blocks: int = 1,
    steals: int = 1,
) -> PlayerLine:
    return PlayerLine(
        player_id=player_id,
        name=name,
        team_id=team_id,
        minutes=minutes,
        points=points,
        rebounds=rebounds,
        assists=assists,
        blocks=blocks,
        steals=steals,
    )


def make_line(
    bookmaker: str = "draftkings",
    player_name: str = "LeBron James",
    market: str = "player_points",
    line: float = 25.5,
    over: float = -110,
    under: float = -110,
    timestamp: datetime = BASE_TIME,
    player_id: Optional[str] = None,
) -> BookmakerLine:
    return BookmakerLine(
        bookmaker=bookmaker,
        player_name=player_name,
        market=market,
        line=line,
        over=over,
        under=under,
        timestamp=timestamp,
        player_id=player_id,
    )


class FakeGameSource(GameStateSource):
    """
    Scripted game state source.

    Each fetch pops the next item from `script` (a snapshot or an exception
    to raise); the last item repeats. Set `gate` to hold fetches open.
    """

    def __init__(self, script: list):
        self.script = list(script)
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.games: list[GameSummary] = []

    async def fetch_snapshot(self, game_id: str) -> GameSnapshot:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def list_games(self) -> list[GameSummary]:
        return self.games


class FakeOddsSource(OddsSource):
    """Returns fixed lines, or raises `error` when set."""

    def __init__(self, lines: Optional[list] = None, game_lines: Optional[list] = None):
        self.lines = lines or []
        self.game_lines = game_lines or []
        self.error: Optional[Exception] = None
        self.calls = 0

    async def fetch_lines(self, snapshot: GameSnapshot) -> list[BookmakerLine]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.lines)

    async def fetch_odds(self, snapshot: GameSnapshot) -> OddsBoard:
        props = await self.fetch_lines(snapshot)
        return OddsBoard(props=tuple(props), game_lines=tuple(self.game_lines))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
