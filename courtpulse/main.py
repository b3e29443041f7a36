"""
CourtPulse - Main Entry Point.

Runs the live analytics loop:
1. Poll NBA live box scores for tracked games
2. Pull player-prop and game lines from The Odds API
3. Recompute team momentum, win probabilities and player-prop edges
4. Log every update and a periodic status line

Usage:
    python -m courtpulse.main

Environment Variables:
    ODDS_API_KEY                - Required: The Odds API key
    TRACKED_GAMES               - Comma-separated NBA game ids (default: today's live games)
    REFRESH__POLL_INTERVAL_MS   - Poll interval per game (default: 10000)
    REFRESH__MIN_EDGE_PCT       - Minimum edge to report (default: 2.0)
    LOG_LEVEL / JSON_LOGS       - Logging output
"""

import asyncio
import signal
import sys
import time
from typing import Optional

import structlog
from pydantic import ValidationError

from config.settings import Settings, get_settings
from courtpulse.engine import EdgeEngine, MomentumEngine, PlayerMomentumEngine, ProjectionEngine
from courtpulse.feeds import NBALiveFeed, OddsAPIFeed
from courtpulse.models.schemas import GameStatus
from courtpulse.refresh import GameUpdate, RefreshCoordinator, Subscription
from courtpulse.service import MomentumService
from courtpulse.utils.logging import setup_logging

logger = structlog.get_logger()


class CourtPulseApp:
    """
    Live momentum and edge tracker.

    Subscribes to each tracked game and logs what the consumer interface
    would hand to a dashboard.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = logger.bind(component="courtpulse")

        # Validate required settings
        if not self.settings.odds_api.api_key:
            self.logger.error("ODDS_API_KEY environment variable required")
            raise ValueError("Missing ODDS_API_KEY")

        # Initialize components
        self.game_feed = NBALiveFeed(config=self.settings.nba_live)
        self.odds_feed = OddsAPIFeed(
            config=self.settings.odds_api,
            markets=self.settings.edges.markets,
        )

        self.coordinator = RefreshCoordinator(
            game_source=self.game_feed,
            odds_source=self.odds_feed,
            settings=self.settings.refresh,
            momentum_engine=MomentumEngine(self.settings.momentum),
            projection_engine=ProjectionEngine(self.settings.edges),
            edge_engine=EdgeEngine(
                min_edge_pct=self.settings.refresh.min_edge_pct,
                config=self.settings.edges,
            ),
            player_engine=PlayerMomentumEngine(
                window_seconds=self.settings.momentum.window_seconds,
                markets=self.settings.edges.markets,
            ),
        )
        self.service = MomentumService(self.coordinator)

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._subscriptions: list[Subscription] = []

        # Stats
        self._updates_received = 0
        self._edges_seen = 0
        self._start_time_ms = 0

    async def start(self) -> None:
        """Start tracking and run until shutdown."""
        self.logger.info(
            "Starting CourtPulse",
            poll_interval_ms=self.settings.refresh.poll_interval_ms,
            min_edge_pct=self.settings.refresh.min_edge_pct,
            markets=self.settings.edges.markets,
        )

        self._running = True
        self._start_time_ms = int(time.time() * 1000)

        await self.game_feed.start()
        await self.odds_feed.start()

        game_ids = await self._resolve_games()
        if not game_ids:
            self.logger.warning("No games to track")

        tasks = [asyncio.create_task(self._status_loop())]
        for game_id in game_ids:
            sub = self.service.subscribe(game_id)
            self._subscriptions.append(sub)
            tasks.append(asyncio.create_task(self._consume(sub)))

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            self.logger.info("CourtPulse cancelled")

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        await self.stop()

    async def stop(self) -> None:
        """Stop polling and close feeds."""
        self.logger.info("Stopping CourtPulse...")
        self._running = False

        for sub in self._subscriptions:
            self.service.unsubscribe(sub)
        await self.coordinator.stop()

        await self.odds_feed.stop()
        await self.game_feed.stop()

        runtime_seconds = (int(time.time() * 1000) - self._start_time_ms) / 1000
        self.logger.info(
            "CourtPulse stopped",
            runtime_min=round(runtime_seconds / 60, 1),
            updates=self._updates_received,
            edges=self._edges_seen,
        )

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()
        self._running = False

    async def _resolve_games(self) -> list[str]:
        """Configured games, or whatever is live on today's scoreboard."""
        if self.settings.tracked_game_ids:
            return self.settings.tracked_game_ids

        games = await self.service.list_games()
        if not isinstance(games, list):
            self.logger.error("Could not load scoreboard", code=games.code.value, error=games.message)
            return []

        live = [g.game_id for g in games if g.status == GameStatus.LIVE]
        self.logger.info("Tracking live games", total=len(games), live=len(live))
        return live

    # =========================================================================
    # Main Loops
    # =========================================================================

    async def _consume(self, sub: Subscription) -> None:
        """Log updates for one game until its stream ends."""
        async for update in sub:
            self._updates_received += 1
            self._log_update(update)
        self.logger.info("Stream ended", game_id=sub.game_id)

    def _log_update(self, update: GameUpdate) -> None:
        if update.error is not None:
            self.logger.warning(
                "Game error",
                game_id=update.game_id,
                state=update.state.value,
                code=update.error.code.value,
                error=update.error.message,
            )
            return

        momentum = update.momentum
        self.logger.info(
            "Momentum update",
            game_id=update.game_id,
            home=f"{momentum.home_team.overall.overall:.2f} {momentum.home_team.overall.trend.value}",
            away=f"{momentum.away_team.overall.overall:.2f} {momentum.away_team.overall.trend.value}",
            home_win=f"{momentum.predictions.home_win_probability:.1%}",
            stale=momentum.stale,
        )

        if update.odds_error is not None:
            self.logger.warning(
                "Odds unavailable",
                game_id=update.game_id,
                code=update.odds_error.code.value,
                error=update.odds_error.message,
            )

        game_odds = update.game_odds
        if game_odds is not None and game_odds.edge_pct is not None:
            self.logger.info(
                "Moneyline",
                game_id=update.game_id,
                bookmaker=game_odds.moneyline.bookmaker,
                market_home=f"{game_odds.market_home_win_probability:.1%}",
                model_home=f"{game_odds.model_home_win_probability:.1%}",
                edge_pct=game_odds.edge_pct,
            )

        if update.edges is None:
            return
        self._edges_seen += len(update.edges.edges)
        for edge in update.edges.edges[:3]:
            best = edge.odds[0]
            self.logger.info(
                "Edge",
                game_id=update.game_id,
                player=edge.player_name,
                market=edge.market,
                direction=edge.direction,
                edge_pct=edge.edge_pct,
                line=best.line,
                bookmaker=best.bookmaker,
                projected=round(edge.projection.mean, 1),
            )

    async def _status_loop(self) -> None:
        """Log periodic status."""
        while self._running:
            try:
                await asyncio.sleep(self.settings.status_interval_seconds)

                metrics = self.coordinator.get_metrics()
                odds_metrics = self.odds_feed.get_metrics()
                runtime_seconds = (int(time.time() * 1000) - self._start_time_ms) / 1000

                self.logger.info(
                    "Status",
                    runtime_min=round(runtime_seconds / 60, 1),
                    games=metrics["tracked"],
                    states={gid: g["state"] for gid, g in metrics["games"].items()},
                    updates=self._updates_received,
                    edges=self._edges_seen,
                    odds_requests_remaining=odds_metrics.get("requests_remaining"),
                )

            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Status loop error", error=str(e))


def main():
    """Main entry point."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)

    # Create app
    try:
        app = CourtPulseApp(settings)
    except ValueError as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    # Setup signal handlers
    def signal_handler(sig, frame):
        print("\nShutdown requested...")
        app.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run
    try:
        asyncio.run(app.start())
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    main()
