"""
NBA Live Data Feed.

Reads the public live-data JSON the NBA serves from its CDN:
- /boxscore/boxscore_{gameId}.json: score, clock, team and player box scores
- /scoreboard/todaysScoreboard_00.json: today's games

The CDN answers 403/404 for unknown game ids and for games that have not
tipped off yet. Only ids missing from today's scoreboard map to
InvalidGameError; the rest are retried.
"""

import re
from datetime import datetime, timezone
from typing import Optional

import httpx

from config.settings import NBALiveSettings
from courtpulse.feeds.base import GameStateSource, HTTPFeed, InvalidGameError, UpstreamError
from courtpulse.models.schemas import (
    GameSnapshot,
    GameStatus,
    GameSummary,
    PlayerLine,
    TeamStats,
)

# ISO-8601 durations as used by the feed: "PT05M32.00S"
_CLOCK_RE = re.compile(r"PT(?:(\d+)M)?(?:([\d.]+)S)?")

_STATUS = {
    1: GameStatus.SCHEDULED,
    2: GameStatus.LIVE,
    3: GameStatus.FINAL,
}


def parse_clock(value: Optional[str]) -> float:
    """'PT05M32.00S' -> 332.0 seconds. Empty or malformed -> 0."""
    if not value:
        return 0.0
    match = _CLOCK_RE.fullmatch(value.strip())
    if not match:
        return 0.0
    minutes = int(match.group(1) or 0)
    seconds = float(match.group(2) or 0)
    return minutes * 60 + seconds


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _team_name(team: dict) -> str:
    return f"{team.get('teamCity', '')} {team.get('teamName', '')}".strip()


class NBALiveFeed(HTTPFeed, GameStateSource):
    """
    Game State Source backed by the NBA live-data CDN.

    Usage:
        async with NBALiveFeed() as feed:
            snapshot = await feed.fetch_snapshot("0022400061")
    """

    def __init__(
        self,
        config: Optional[NBALiveSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or NBALiveSettings()
        super().__init__(
            name="nba_live",
            base_url=self.config.base_url,
            timeout=self.config.timeout_seconds,
            client=client,
        )

    async def fetch_snapshot(self, game_id: str) -> GameSnapshot:
        data = await self._get_json(
            f"/boxscore/boxscore_{game_id}.json",
            missing_statuses=(403, 404),
        )
        if data is None:
            raise await self._missing_boxscore(game_id)

        game = data.get("game") if isinstance(data, dict) else None
        if not game:
            raise UpstreamError(f"Boxscore for {game_id} has no game block", source=self.name)

        snapshot = self._parse_boxscore(game, fetched_at=datetime.now(timezone.utc))
        if snapshot.game_id != game_id:
            raise InvalidGameError(
                f"Boxscore returned game {snapshot.game_id} for {game_id}",
                source=self.name,
            )
        return snapshot

    async def _missing_boxscore(self, game_id: str) -> UpstreamError:
        """
        Error for a boxscore the CDN refused.

        Games that have not tipped off yet are on today's scoreboard but have
        no boxscore; those are retried. Anything else is an unknown game.
        """
        games = await self.list_games()
        if any(game.game_id == game_id for game in games):
            self.logger.debug("Boxscore not published yet", game_id=game_id)
            return UpstreamError(f"Boxscore for {game_id} not published yet", source=self.name)
        return InvalidGameError(f"Unknown game {game_id}", source=self.name)

    async def list_games(self) -> list[GameSummary]:
        data = await self._get_json("/scoreboard/todaysScoreboard_00.json")
        if not data:
            return []

        games = []
        for game in data.get("scoreboard", {}).get("games", []):
            home = game.get("homeTeam", {})
            away = game.get("awayTeam", {})
            games.append(GameSummary(
                game_id=str(game.get("gameId", "")),
                home_team_id=str(home.get("teamId", "")),
                home_team_name=_team_name(home),
                away_team_id=str(away.get("teamId", "")),
                away_team_name=_team_name(away),
                home_score=int(home.get("score") or 0),
                away_score=int(away.get("score") or 0),
                status=_STATUS.get(game.get("gameStatus"), GameStatus.SCHEDULED),
                period=int(game.get("period") or 0),
                clock_seconds=parse_clock(game.get("gameClock")),
                start_time=_parse_time(game.get("gameTimeUTC")),
            ))
        return games

    # =========================================================================
    # Parsing
    # =========================================================================

    def _parse_boxscore(self, game: dict, fetched_at: datetime) -> GameSnapshot:
        try:
            home = game["homeTeam"]
            away = game["awayTeam"]
            return GameSnapshot(
                game_id=str(game["gameId"]),
                home_team_id=str(home["teamId"]),
                home_team_name=_team_name(home),
                away_team_id=str(away["teamId"]),
                away_team_name=_team_name(away),
                home_score=int(home.get("score") or 0),
                away_score=int(away.get("score") or 0),
                period=int(game.get("period") or 0),
                clock_seconds=parse_clock(game.get("gameClock")),
                status=_STATUS.get(game.get("gameStatus"), GameStatus.SCHEDULED),
                timestamp=fetched_at,
                home_stats=self._parse_team_stats(home),
                away_stats=self._parse_team_stats(away),
                players=tuple(
                    self._parse_player(p, str(team["teamId"]))
                    for team in (home, away)
                    for p in team.get("players", [])
                    if p.get("played") != "0"
                ),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed boxscore: {e}", source=self.name) from e

    @staticmethod
    def _parse_team_stats(team: dict) -> Optional[TeamStats]:
        stats = team.get("statistics")
        if not stats:
            return None
        return TeamStats(
            field_goals_attempted=int(stats.get("fieldGoalsAttempted") or 0),
            free_throws_attempted=int(stats.get("freeThrowsAttempted") or 0),
            offensive_rebounds=int(stats.get("reboundsOffensive") or 0),
            turnovers=int(stats.get("turnovers") or 0),
        )

    @staticmethod
    def _parse_player(player: dict, team_id: str) -> PlayerLine:
        stats = player.get("statistics", {})
        return PlayerLine(
            player_id=str(player["personId"]),
            name=player.get("name", ""),
            team_id=team_id,
            minutes=round(parse_clock(stats.get("minutes")) / 60.0, 2),
            points=int(stats.get("points") or 0),
            rebounds=int(stats.get("reboundsTotal") or 0),
            assists=int(stats.get("assists") or 0),
            blocks=int(stats.get("blocks") or 0),
            steals=int(stats.get("steals") or 0),
        )
