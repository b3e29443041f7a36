"""
Consumer interface.

What dashboards and other presentation layers call. Reads are served
from the coordinator's cache and never wait on upstream: a read nudges
the coordinator to refresh in the background and returns what is cached
now. Results are values (data or EdgeError); nothing here raises.
"""

from typing import Optional, Union

import structlog

from courtpulse.feeds.base import GameStateSource, UpstreamError, to_edge_error
from courtpulse.models.schemas import (
    EdgeBatch,
    EdgeError,
    GameMomentum,
    GameOdds,
    GameSummary,
    PlayerMomentum,
)
from courtpulse.refresh.coordinator import (
    GameUpdate,
    RefreshCoordinator,
    Subscription,
    TrackerState,
)

logger = structlog.get_logger()


class MomentumService:
    """Read side of the analytics layer."""

    def __init__(self, coordinator: RefreshCoordinator, game_source: Optional[GameStateSource] = None):
        self.coordinator = coordinator
        self.game_source = game_source or coordinator.game_source
        self.logger = logger.bind(component="momentum_service")

    def _read(self, game_id: str) -> Union[GameUpdate, EdgeError]:
        """Cached view of a game, scheduling a refresh if it is due."""
        if not game_id or not game_id.strip():
            return EdgeError.invalid_game("Game id is empty", game_id=game_id)

        self.coordinator.request_refresh(game_id)
        tracker = self.coordinator.get_tracker(game_id)
        if tracker is None:
            return EdgeError.not_found("No data yet for game", game_id=game_id)

        if tracker.state == TrackerState.CLOSED and tracker.last_error is not None:
            return tracker.last_error

        update = self.coordinator.current_update(tracker)
        if update.momentum is None:
            if tracker.last_error is not None:
                return tracker.last_error
            return EdgeError.not_found("No data yet for game", game_id=game_id)
        return update

    async def get_momentum(self, game_id: str) -> Union[GameMomentum, EdgeError]:
        """Latest momentum for a game, marked stale when outdated."""
        update = self._read(game_id)
        if isinstance(update, EdgeError):
            return update
        return update.momentum

    async def get_edges(self, game_id: str) -> Union[EdgeBatch, EdgeError]:
        """Latest edges for a game (strongest first) with per-market misses."""
        update = self._read(game_id)
        if isinstance(update, EdgeError):
            return update
        if update.edges is None:
            return update.odds_error or EdgeError.not_found("No edges computed yet", game_id=game_id)
        return update.edges

    async def get_game_odds(self, game_id: str) -> Union[GameOdds, EdgeError]:
        """Best moneyline, spread and total for a game, with the model's win probability."""
        update = self._read(game_id)
        if isinstance(update, EdgeError):
            return update
        if update.game_odds is None:
            return update.odds_error or EdgeError.not_found("No game lines yet", game_id=game_id)
        return update.game_odds

    async def get_player_momentum(
        self,
        game_id: str,
        player_id: Optional[str] = None,
    ) -> Union[list[PlayerMomentum], EdgeError]:
        """Per-player stat momentum, optionally for a single player."""
        update = self._read(game_id)
        if isinstance(update, EdgeError):
            return update

        players = list(update.players)
        if player_id is None:
            return players

        matches = [p for p in players if p.player_id == player_id]
        if not matches:
            return EdgeError.not_found(
                "Player not in box score", game_id=game_id, player_id=player_id
            )
        return matches

    async def list_games(self) -> Union[list[GameSummary], EdgeError]:
        """Today's games from the scoreboard."""
        try:
            return await self.game_source.list_games()
        except UpstreamError as e:
            self.logger.warning("Scoreboard unavailable", error=str(e))
            return to_edge_error(e)

    def subscribe(self, game_id: str) -> Subscription:
        """Stream of GameUpdates (data or error) for a game."""
        return self.coordinator.subscribe(game_id)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.coordinator.unsubscribe(subscription)
