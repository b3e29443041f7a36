"""
The Odds API Feed.

Player-prop and game lines (moneyline, spread, total) for NBA games from
US sportsbooks.

API Docs: https://the-odds-api.com/liveapi/guides/v4/

Endpoints used:
- /sports/{sport}/events: list events (free), used to map a game to an event id
- /sports/{sport}/events/{eventId}/odds: prop and game markets for one event

Prop markets cost quota per market and region, so requests are limited
client-side and the quota headers are tracked.
"""

import asyncio
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

import httpx

from config.settings import OddsAPISettings
from courtpulse.feeds.base import HTTPFeed, OddsSource
from courtpulse.models.schemas import BookmakerLine, GameLine, GameSnapshot, OddsBoard
from courtpulse.utils.names import team_nickname

GAME_MARKETS = ("h2h", "spreads", "totals")


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class OddsAPIFeed(HTTPFeed, OddsSource):
    """
    Odds Source backed by The Odds API.

    Usage:
        async with OddsAPIFeed(settings.odds_api, markets=settings.edges.markets) as feed:
            lines = await feed.fetch_lines(snapshot)
    """

    def __init__(
        self,
        config: OddsAPISettings,
        markets: list[str],
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.markets = markets
        super().__init__(
            name="odds_api",
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            client=client,
        )

        # game_id -> event id
        self._event_ids: dict[str, str] = {}

        # Rate limiting
        self._request_timestamps: list[float] = []
        self._requests_remaining: Optional[int] = None
        self._requests_used: int = 0

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    async def _wait_for_rate_limit(self) -> None:
        """Wait if we're hitting the client-side request limit."""
        now = time.monotonic()

        # Clean old timestamps (older than 1 minute)
        self._request_timestamps = [
            ts for ts in self._request_timestamps
            if now - ts < 60
        ]

        if len(self._request_timestamps) >= self.config.requests_per_minute:
            wait_time = 60 - (now - self._request_timestamps[0])
            if wait_time > 0:
                self.logger.debug("Rate limit reached, waiting", seconds=round(wait_time, 1))
                await asyncio.sleep(wait_time)

        self._request_timestamps.append(time.monotonic())

    def _on_response(self, response: httpx.Response) -> None:
        """Track quota usage from headers."""
        if "x-requests-remaining" in response.headers:
            self._requests_remaining = int(float(response.headers["x-requests-remaining"]))
        if "x-requests-used" in response.headers:
            self._requests_used = int(float(response.headers["x-requests-used"]))
            self.logger.debug(
                "API request",
                used=self._requests_used,
                remaining=self._requests_remaining,
            )

    async def _request(self, path: str, params: Optional[dict] = None):
        await self._wait_for_rate_limit()
        full_params = {"apiKey": self.config.api_key}
        if params:
            full_params.update(params)
        return await self._get_json(path, params=full_params)

    # =========================================================================
    # Event Mapping
    # =========================================================================

    async def resolve_event_id(self, snapshot: GameSnapshot) -> Optional[str]:
        """Find the Odds API event for a game by its team nicknames."""
        cached = self._event_ids.get(snapshot.game_id)
        if cached:
            return cached

        data = await self._request(f"/sports/{self.config.sport_key}/events")
        if not isinstance(data, list):
            return None

        home = team_nickname(snapshot.home_team_name)
        away = team_nickname(snapshot.away_team_name)
        for event in data:
            if (team_nickname(event.get("home_team", "")) == home
                    and team_nickname(event.get("away_team", "")) == away):
                event_id = event.get("id")
                if event_id:
                    self._event_ids[snapshot.game_id] = event_id
                    self.logger.info(
                        "Mapped game to event",
                        game_id=snapshot.game_id,
                        event_id=event_id,
                        game=snapshot.get_display_name(),
                    )
                    return event_id

        self.logger.debug("No event for game", game_id=snapshot.game_id, game=snapshot.get_display_name())
        return None

    # =========================================================================
    # Lines
    # =========================================================================

    async def fetch_lines(self, snapshot: GameSnapshot) -> list[BookmakerLine]:
        board = await self.fetch_odds(snapshot)
        return list(board.props)

    async def fetch_odds(self, snapshot: GameSnapshot) -> OddsBoard:
        """Props and game lines for one game, in a single event-odds request."""
        event_id = await self.resolve_event_id(snapshot)
        if not event_id:
            return OddsBoard()

        params = {
            "regions": ",".join(self.config.regions),
            "markets": ",".join([*self.markets, *self.config.game_markets]),
            "oddsFormat": "american",
        }
        if self.config.bookmakers:
            params["bookmakers"] = ",".join(self.config.bookmakers)

        data = await self._request(
            f"/sports/{self.config.sport_key}/events/{event_id}/odds",
            params,
        )
        if data is None:
            # Event dropped off the board; re-resolve next time
            self._event_ids.pop(snapshot.game_id, None)
            return OddsBoard()

        board = OddsBoard(
            props=tuple(self.parse_event_odds(data)),
            game_lines=tuple(self.parse_game_lines(data)),
        )
        self.logger.debug(
            "Fetched lines",
            game_id=snapshot.game_id,
            props=len(board.props),
            game_lines=len(board.game_lines),
            requests_remaining=self._requests_remaining,
        )
        return board

    def parse_event_odds(self, data: dict) -> list[BookmakerLine]:
        """Pair Over/Under outcomes per bookmaker, market, player and point."""
        lines = []
        fallback_time = datetime.now(timezone.utc)

        for book in data.get("bookmakers", []):
            bookmaker = book.get("key", "")
            book_time = _parse_time(book.get("last_update")) or fallback_time

            for market in book.get("markets", []):
                market_key = market.get("key", "")
                if market_key in GAME_MARKETS:
                    continue
                market_time = _parse_time(market.get("last_update")) or book_time

                # (player, point) -> {"over": price, "under": price}
                pairs: dict[tuple[str, float], dict[str, float]] = defaultdict(dict)
                for outcome in market.get("outcomes", []):
                    player = outcome.get("description")
                    point = outcome.get("point")
                    side = str(outcome.get("name", "")).lower()
                    price = outcome.get("price")
                    if not player or point is None or price is None or side not in ("over", "under"):
                        continue
                    pairs[(player, float(point))][side] = float(price)

                for (player, point), prices in pairs.items():
                    if "over" not in prices or "under" not in prices:
                        continue
                    lines.append(BookmakerLine(
                        bookmaker=bookmaker,
                        player_name=player,
                        market=market_key,
                        line=point,
                        over=prices["over"],
                        under=prices["under"],
                        timestamp=market_time,
                    ))

        return lines

    def parse_game_lines(self, data: dict) -> list[GameLine]:
        """Moneyline, spread and total quotes, one per bookmaker and market."""
        home_team = data.get("home_team", "")
        away_team = data.get("away_team", "")
        lines = []
        fallback_time = datetime.now(timezone.utc)

        for book in data.get("bookmakers", []):
            bookmaker = book.get("key", "")
            book_time = _parse_time(book.get("last_update")) or fallback_time

            for market in book.get("markets", []):
                market_key = market.get("key", "")
                if market_key not in GAME_MARKETS:
                    continue

                prices: dict[str, float] = {}
                point = None
                for outcome in market.get("outcomes", []):
                    name = str(outcome.get("name", ""))
                    price = outcome.get("price")
                    if price is None:
                        continue
                    if market_key == "totals":
                        side = {"over": "home", "under": "away"}.get(name.lower())
                    else:
                        side = {home_team: "home", away_team: "away"}.get(name)
                    if side is None:
                        continue
                    prices[side] = float(price)
                    if side == "home" and outcome.get("point") is not None:
                        point = float(outcome["point"])

                if "home" not in prices or "away" not in prices:
                    continue
                lines.append(GameLine(
                    bookmaker=bookmaker,
                    market=market_key,
                    home=prices["home"],
                    away=prices["away"],
                    point=point,
                    timestamp=_parse_time(market.get("last_update")) or book_time,
                ))

        return lines

    # =========================================================================
    # Metrics
    # =========================================================================

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        metrics = super().get_metrics()
        metrics.update({
            "events_mapped": len(self._event_ids),
            "requests_remaining": self._requests_remaining,
            "requests_used": self._requests_used,
        })
        return metrics
