"""
Refresh Coordinator.

Owns the per-game cache and decides when upstream is called:

- at most one fetch in flight per game (callers attach to it)
- polling while a game has subscribers, exponential backoff on failure
- odds failures back off separately and only hold back edges
- latest-timestamp-wins when applying results
- closed games kept read-only for a retention window, then evicted

State machine per game:

    IDLE -> FETCHING -> READY -> STALE -> FETCHING -> ...
                 \\-> CLOSED (final whistle or permanent failure)
"""

import asyncio
import dataclasses
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import structlog

from config.settings import RefreshSettings
from courtpulse.engine import EdgeEngine, MomentumEngine, PlayerMomentumEngine, ProjectionEngine
from courtpulse.feeds.base import (
    GameStateSource,
    InvalidGameError,
    OddsSource,
    RateLimitedError,
    UpstreamError,
    to_edge_error,
)
from courtpulse.models.schemas import (
    BookmakerLine,
    EdgeBatch,
    EdgeError,
    EdgeErrorCode,
    GameMomentum,
    GameOdds,
    GameSnapshot,
    OddsBoard,
    PlayerMomentum,
)
from courtpulse.utils.backoff import ExponentialBackoff

logger = structlog.get_logger()


class TrackerState(Enum):
    IDLE = "idle"            # Nothing cached, nothing in flight
    FETCHING = "fetching"
    READY = "ready"          # Cached and fresh
    STALE = "stale"          # Cached but outdated or last fetch failed
    CLOSED = "closed"        # Final or permanently failed; read-only


@dataclass(frozen=True)
class GameUpdate:
    """One push to a subscriber: fresh data, or an error."""
    game_id: str
    state: TrackerState
    momentum: Optional[GameMomentum] = None
    edges: Optional[EdgeBatch] = None
    players: tuple[PlayerMomentum, ...] = ()
    game_odds: Optional[GameOdds] = None
    odds_error: Optional[EdgeError] = None     # Last odds fetch failed; edges are carried over
    error: Optional[EdgeError] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"gameId": self.game_id, "state": self.state.value, "error": self.error.to_dict()}
        return {
            "gameId": self.game_id,
            "state": self.state.value,
            "momentum": self.momentum.to_dict() if self.momentum else None,
            "edges": self.edges.to_dict() if self.edges else None,
            "players": [p.to_dict() for p in self.players],
            "gameOdds": self.game_odds.to_dict() if self.game_odds else None,
            "oddsError": self.odds_error.to_dict() if self.odds_error else None,
        }


class Subscription:
    """
    Stream of GameUpdates for one game.

    Usable as an async iterator and as an async context manager. The queue
    is bounded; a slow consumer loses the oldest updates, never the newest.
    The stream ends when the game closes or the subscription is closed.
    """

    def __init__(self, coordinator: "RefreshCoordinator", game_id: str, maxsize: int = 32):
        self.game_id = game_id
        self._coordinator = coordinator
        self._queue: asyncio.Queue[Optional[GameUpdate]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def _put(self, item: Optional[GameUpdate]) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(item)

    def push(self, update: GameUpdate) -> None:
        if not self.closed:
            self._put(update)

    def finish(self) -> None:
        """End the stream. Pending updates are still delivered first."""
        if not self.closed:
            self.closed = True
            self._put(None)

    async def get(self, timeout: Optional[float] = None) -> Optional[GameUpdate]:
        """Next update, or None once the stream has ended."""
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        self._coordinator.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> GameUpdate:
        update = await self._queue.get()
        if update is None:
            raise StopAsyncIteration
        return update

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


@dataclass
class GameTracker:
    """Cache entry and scheduling state for one game. Mutated only by the coordinator."""
    game_id: str
    backoff: ExponentialBackoff
    odds_backoff: ExponentialBackoff
    history: deque
    state: TrackerState = TrackerState.IDLE
    momentum: Optional[GameMomentum] = None
    edges: Optional[EdgeBatch] = None
    players: tuple[PlayerMomentum, ...] = ()
    game_odds: Optional[GameOdds] = None
    props: tuple[BookmakerLine, ...] = ()      # Last good prop lines
    last_error: Optional[EdgeError] = None
    odds_error: Optional[EdgeError] = None
    odds_next_attempt_at: float = 0.0
    data_timestamp: Optional[float] = None    # Epoch seconds of the snapshot behind the cache
    fetched_at: Optional[float] = None        # Coordinator clock
    closed_at: Optional[float] = None
    next_attempt_at: float = 0.0
    retry_delay: float = 0.0
    in_flight: Optional[asyncio.Task] = None
    schedule_task: Optional[asyncio.Task] = None
    subscribers: list[Subscription] = field(default_factory=list)
    fetch_count: int = 0
    failure_count: int = 0

    @property
    def has_data(self) -> bool:
        return self.momentum is not None

    @property
    def refcount(self) -> int:
        return len(self.subscribers)

    @property
    def is_fetching(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class RefreshCoordinator:
    """
    Keeps tracked games' momentum, edges and player momentum fresh.

    Sources and engines are injected; `clock` is a monotonic clock in
    seconds so staleness and retention can be driven by tests.
    """

    def __init__(
        self,
        game_source: GameStateSource,
        odds_source: OddsSource,
        settings: Optional[RefreshSettings] = None,
        momentum_engine: Optional[MomentumEngine] = None,
        projection_engine: Optional[ProjectionEngine] = None,
        edge_engine: Optional[EdgeEngine] = None,
        player_engine: Optional[PlayerMomentumEngine] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.game_source = game_source
        self.odds_source = odds_source
        self.settings = settings or RefreshSettings()
        self.momentum_engine = momentum_engine or MomentumEngine()
        self.projection_engine = projection_engine or ProjectionEngine()
        self.edge_engine = edge_engine or EdgeEngine(min_edge_pct=self.settings.min_edge_pct)
        self.player_engine = player_engine or PlayerMomentumEngine()
        self.clock = clock

        self._trackers: dict[str, GameTracker] = {}
        self._closing = False
        self.logger = logger.bind(component="refresh_coordinator")

    # =========================================================================
    # Tracking
    # =========================================================================

    def _new_backoff(self) -> ExponentialBackoff:
        return ExponentialBackoff(
            base_seconds=self.settings.backoff_base_ms / 1000,
            cap_seconds=self.settings.backoff_cap_ms / 1000,
        )

    def track(self, game_id: str) -> GameTracker:
        """Get the tracker for a game, creating an IDLE one if needed."""
        tracker = self._trackers.get(game_id)
        if tracker is None:
            tracker = GameTracker(
                game_id=game_id,
                backoff=self._new_backoff(),
                odds_backoff=self._new_backoff(),
                history=deque(maxlen=self.settings.history_size),
            )
            self._trackers[game_id] = tracker
            self.logger.debug("Tracking game", game_id=game_id)
        return tracker

    def get_tracker(self, game_id: str) -> Optional[GameTracker]:
        tracker = self._trackers.get(game_id)
        if tracker is not None:
            self._expire(tracker)
        return tracker

    def get_state(self, game_id: str) -> Optional[TrackerState]:
        tracker = self.get_tracker(game_id)
        return tracker.state if tracker else None

    @property
    def game_ids(self) -> list[str]:
        return list(self._trackers)

    def _age(self, tracker: GameTracker) -> Optional[float]:
        if tracker.fetched_at is None:
            return None
        return self.clock() - tracker.fetched_at

    def _expire(self, tracker: GameTracker) -> None:
        """READY -> STALE once the staleness window has passed."""
        if tracker.state != TrackerState.READY:
            return
        age = self._age(tracker)
        if age is not None and age * 1000 >= self.settings.stale_after_ms:
            tracker.state = TrackerState.STALE
            self.logger.debug("Cache stale", game_id=tracker.game_id, age_s=round(age, 1))

    def is_stale(self, tracker: GameTracker) -> bool:
        """Whether cached values should be handed out marked stale."""
        self._expire(tracker)
        if tracker.state == TrackerState.CLOSED:
            # Final results stay authoritative; a game closed by error does not
            return tracker.last_error is not None
        if tracker.last_error is not None or tracker.state == TrackerState.STALE:
            return True
        age = self._age(tracker)
        return age is not None and age * 1000 >= self.settings.stale_after_ms

    def current_update(self, tracker: GameTracker) -> GameUpdate:
        """Cached values as consumers should see them."""
        stale = self.is_stale(tracker)
        momentum = tracker.momentum
        edges = tracker.edges
        game_odds = tracker.game_odds
        if stale:
            momentum = dataclasses.replace(momentum, stale=True) if momentum else None
        if stale or tracker.odds_error is not None:
            if edges is not None:
                errors = edges.errors
                if tracker.odds_error is not None:
                    errors = errors + (tracker.odds_error,)
                edges = dataclasses.replace(edges, stale=True, errors=errors)
            if game_odds is not None:
                game_odds = dataclasses.replace(game_odds, stale=True)
        return GameUpdate(
            game_id=tracker.game_id,
            state=tracker.state,
            momentum=momentum,
            edges=edges,
            players=tracker.players,
            game_odds=game_odds,
            odds_error=tracker.odds_error,
        )

    # =========================================================================
    # Fetching
    # =========================================================================

    def _start_fetch(self, tracker: GameTracker) -> Optional[asyncio.Task]:
        """Return the in-flight fetch, starting one if none is running."""
        if tracker.is_fetching:
            return tracker.in_flight
        if tracker.state == TrackerState.CLOSED or self._closing:
            return None

        tracker.state = TrackerState.FETCHING
        tracker.in_flight = asyncio.create_task(
            self._fetch(tracker), name=f"fetch-{tracker.game_id}"
        )
        return tracker.in_flight

    def request_refresh(self, game_id: str) -> Optional[asyncio.Task]:
        """
        Ask for fresh data without waiting for it.

        Does nothing while the cache is fresh, the game is closed, or a
        previous failure's backoff has not elapsed. Otherwise attaches to
        (or starts) the single in-flight fetch. Closed games past their
        retention are swept first.

        Returns:
            The fetch task, or None when no fetch is needed
        """
        self.evict_closed()
        tracker = self.track(game_id)
        self._expire(tracker)

        if tracker.is_fetching:
            return tracker.in_flight
        if tracker.state in (TrackerState.READY, TrackerState.CLOSED):
            return None
        if self.clock() < tracker.next_attempt_at:
            return None
        return self._start_fetch(tracker)

    async def refresh(self, game_id: str) -> GameTracker:
        """Fetch now (or join the fetch already running) and wait for it."""
        tracker = self.track(game_id)
        task = self._start_fetch(tracker)
        if task is not None:
            await asyncio.shield(task)
        return tracker

    async def _fetch(self, tracker: GameTracker) -> bool:
        game_id = tracker.game_id
        tracker.fetch_count += 1
        try:
            snapshot = await self.game_source.fetch_snapshot(game_id)
            self._append_history(tracker, snapshot)
            board = await self._fetch_odds(tracker, snapshot)
        except asyncio.CancelledError:
            self._restore_state(tracker)
            raise
        except InvalidGameError as e:
            self._close(tracker, to_edge_error(e, game_id))
            return False
        except RateLimitedError as e:
            self._record_failure(tracker, to_edge_error(e, game_id), retry_after=e.retry_after)
            return False
        except UpstreamError as e:
            self._record_failure(tracker, to_edge_error(e, game_id))
            return False
        except Exception as e:
            self.logger.exception("Unexpected fetch error", game_id=game_id)
            self._record_failure(tracker, to_edge_error(e, game_id))
            return False
        finally:
            tracker.in_flight = None

        try:
            return self._apply(tracker, snapshot, board)
        except Exception as e:
            self.logger.exception("Failed to compute game state", game_id=game_id)
            self._record_failure(tracker, to_edge_error(e, game_id))
            return False

    async def _fetch_odds(self, tracker: GameTracker, snapshot: GameSnapshot) -> Optional[OddsBoard]:
        """
        Lines for a snapshot, or None when the odds source is failing.

        Odds failures only hold back edges: they back off on their own and
        are recorded in `odds_error`, while momentum keeps updating.
        """
        if self.clock() < tracker.odds_next_attempt_at:
            return None

        retry_after = None
        try:
            board = await self.odds_source.fetch_odds(snapshot)
        except RateLimitedError as e:
            error = EdgeError.rate_limited(str(e), game_id=tracker.game_id)
            retry_after = e.retry_after
        except UpstreamError as e:
            error = EdgeError.not_found(f"Odds unavailable: {e}", game_id=tracker.game_id)
        except Exception as e:
            self.logger.exception("Unexpected odds error", game_id=tracker.game_id)
            error = EdgeError.not_found(f"Odds unavailable: {e}", game_id=tracker.game_id)
        else:
            tracker.odds_error = None
            tracker.odds_next_attempt_at = 0.0
            tracker.odds_backoff.reset()
            return board

        delay = tracker.odds_backoff.next_delay(retry_after)
        tracker.odds_error = error
        tracker.odds_next_attempt_at = self.clock() + delay
        self.logger.warning(
            "Odds fetch failed",
            game_id=tracker.game_id,
            code=error.code.value,
            error=error.message,
            consecutive=tracker.odds_backoff.failures,
            retry_in_s=round(delay, 2),
        )
        return None

    def _append_history(self, tracker: GameTracker, snapshot: GameSnapshot) -> None:
        if tracker.history and snapshot.timestamp < tracker.history[-1].timestamp:
            self.logger.debug(
                "Discarding out-of-order snapshot",
                game_id=tracker.game_id,
                timestamp=snapshot.timestamp.isoformat(),
            )
            return
        tracker.history.append(snapshot)

    def _apply(self, tracker: GameTracker, snapshot: GameSnapshot, board: Optional[OddsBoard]) -> bool:
        """
        Compute everything for a fetched snapshot and swap it into the cache.

        Without a board (odds failing) the previous edges and game odds are
        kept and player momentum uses the last good prop lines.
        """
        game_id = tracker.game_id
        snapshot_ts = snapshot.timestamp.timestamp()

        if tracker.data_timestamp is not None and snapshot_ts < tracker.data_timestamp:
            # A newer result already landed
            self._restore_state(tracker)
            return True

        history = list(tracker.history)
        momentum = self.momentum_engine.compute_game_momentum(history)
        if isinstance(momentum, EdgeError):
            if momentum.code == EdgeErrorCode.INVALID_GAME:
                self._close(tracker, dataclasses.replace(momentum, game_id=game_id))
            else:
                self._record_failure(tracker, momentum)
            return False

        projections = self.projection_engine.project(snapshot)
        if board is not None:
            tracker.props = board.props
            tracker.edges = self.edge_engine.compute_edges(
                game_id, projections, board.props, as_of=snapshot.timestamp
            )
            tracker.game_odds = self.edge_engine.compute_game_odds(
                snapshot, board.game_lines, momentum.predictions
            )
        players = self.player_engine.compute(history, projections, tracker.props)

        tracker.momentum = momentum
        tracker.players = tuple(players)
        tracker.data_timestamp = snapshot_ts
        tracker.fetched_at = self.clock()
        tracker.last_error = None
        tracker.next_attempt_at = 0.0
        tracker.backoff.reset()

        if snapshot.is_final:
            tracker.state = TrackerState.CLOSED
            tracker.closed_at = self.clock()
            self.logger.info(
                "Game final, closing",
                game_id=game_id,
                score=f"{snapshot.away_score}-{snapshot.home_score}",
            )
        else:
            tracker.state = TrackerState.READY

        self.logger.debug(
            "Cache updated",
            game_id=game_id,
            snapshots=len(history),
            edges=len(tracker.edges.edges) if tracker.edges else None,
            odds_error=tracker.odds_error.code.value if tracker.odds_error else None,
            home_overall=momentum.home_team.overall.overall,
            away_overall=momentum.away_team.overall.overall,
        )

        update = self.current_update(tracker)
        for sub in list(tracker.subscribers):
            sub.push(update)
        if tracker.state == TrackerState.CLOSED:
            self._finish_subscribers(tracker)
        return True

    def _restore_state(self, tracker: GameTracker) -> None:
        """Leave FETCHING without new data."""
        if tracker.state != TrackerState.FETCHING:
            return
        if not tracker.has_data:
            tracker.state = TrackerState.IDLE
        elif tracker.last_error is not None:
            tracker.state = TrackerState.STALE
        else:
            tracker.state = TrackerState.READY
            self._expire(tracker)

    def _record_failure(
        self,
        tracker: GameTracker,
        error: EdgeError,
        retry_after: Optional[float] = None,
    ) -> None:
        """Transient failure: keep the last good value, back off, escalate on repeats."""
        tracker.failure_count += 1
        tracker.last_error = error
        tracker.retry_delay = tracker.backoff.next_delay(retry_after)
        tracker.next_attempt_at = self.clock() + tracker.retry_delay
        tracker.state = TrackerState.STALE if tracker.has_data else TrackerState.IDLE

        self.logger.warning(
            "Fetch failed",
            game_id=tracker.game_id,
            code=error.code.value,
            error=error.message,
            consecutive=tracker.backoff.failures,
            retry_in_s=round(tracker.retry_delay, 2),
        )

        if tracker.backoff.failures >= self.settings.retry_attempts:
            update = GameUpdate(game_id=tracker.game_id, state=tracker.state, error=error)
            for sub in list(tracker.subscribers):
                sub.push(update)

    def _close(self, tracker: GameTracker, error: EdgeError) -> None:
        """Permanent failure: stop scheduling and tell subscribers."""
        tracker.last_error = error
        tracker.state = TrackerState.CLOSED
        tracker.closed_at = self.clock()

        self.logger.error(
            "Game closed on permanent error",
            game_id=tracker.game_id,
            code=error.code.value,
            error=error.message,
        )

        update = GameUpdate(game_id=tracker.game_id, state=tracker.state, error=error)
        for sub in list(tracker.subscribers):
            sub.push(update)
        self._finish_subscribers(tracker)

    def _finish_subscribers(self, tracker: GameTracker) -> None:
        for sub in tracker.subscribers:
            sub.finish()

    # =========================================================================
    # Subscriptions & Scheduling
    # =========================================================================

    def subscribe(self, game_id: str) -> Subscription:
        """
        Start receiving updates for a game.

        The first subscriber starts the polling loop. A subscriber joining a
        game with cached data receives it immediately.
        """
        self.evict_closed()
        tracker = self.track(game_id)
        sub = Subscription(self, game_id, maxsize=self.settings.subscriber_queue_size)
        tracker.subscribers.append(sub)

        if tracker.has_data:
            sub.push(self.current_update(tracker))

        if tracker.state == TrackerState.CLOSED:
            if tracker.last_error is not None:
                sub.push(GameUpdate(game_id=game_id, state=tracker.state, error=tracker.last_error))
            sub.finish()
            return sub

        if tracker.schedule_task is None or tracker.schedule_task.done():
            tracker.schedule_task = asyncio.create_task(
                self._schedule_loop(tracker), name=f"schedule-{game_id}"
            )
        self.logger.debug("Subscribed", game_id=game_id, refcount=tracker.refcount)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        """Drop a subscription. The last one stops polling (not the in-flight fetch)."""
        subscription.finish()
        tracker = self._trackers.get(subscription.game_id)
        if tracker is None or subscription not in tracker.subscribers:
            return

        tracker.subscribers.remove(subscription)
        self.logger.debug("Unsubscribed", game_id=tracker.game_id, refcount=tracker.refcount)

        if tracker.refcount == 0 and tracker.schedule_task is not None:
            tracker.schedule_task.cancel()
            tracker.schedule_task = None

    async def _schedule_loop(self, tracker: GameTracker) -> None:
        poll_interval = self.settings.poll_interval_ms / 1000
        log = self.logger.bind(game_id=tracker.game_id)
        log.debug("Polling started", interval_s=poll_interval)

        try:
            while tracker.refcount > 0 and tracker.state != TrackerState.CLOSED:
                age = self._age(tracker)
                if tracker.last_error is None and age is not None and age < poll_interval:
                    # Someone else refreshed recently
                    await asyncio.sleep(poll_interval - age)
                    continue

                task = self._start_fetch(tracker)
                if task is None:
                    break
                # Cancelling the loop must not cancel the fetch
                await asyncio.shield(task)

                self.evict_closed()
                if tracker.state == TrackerState.CLOSED:
                    break

                delay = tracker.retry_delay if tracker.last_error is not None else poll_interval
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            log.debug("Polling cancelled")
            raise

        log.debug("Polling stopped", state=tracker.state.value)

    def evict_closed(self) -> list[str]:
        """Drop closed games past their retention window. Returns evicted ids."""
        now = self.clock()
        retention = self.settings.closed_retention_ms / 1000
        evicted = [
            game_id
            for game_id, tracker in self._trackers.items()
            if tracker.state == TrackerState.CLOSED
            and tracker.closed_at is not None
            and now - tracker.closed_at >= retention
            and not tracker.is_fetching
        ]
        for game_id in evicted:
            tracker = self._trackers.pop(game_id)
            self._finish_subscribers(tracker)
            self.logger.info("Evicted closed game", game_id=game_id)
        return evicted

    async def stop(self) -> None:
        """Cancel polling, let in-flight fetches finish, end all streams."""
        self._closing = True
        loops = [t.schedule_task for t in self._trackers.values() if t.schedule_task]
        for task in loops:
            task.cancel()
        fetches = [t.in_flight for t in self._trackers.values() if t.is_fetching]
        await asyncio.gather(*loops, *fetches, return_exceptions=True)

        for tracker in self._trackers.values():
            tracker.schedule_task = None
            self._finish_subscribers(tracker)
        self.logger.info("Coordinator stopped", games=len(self._trackers))

    def get_metrics(self) -> dict:
        """Get current metrics for all tracked games."""
        games = {}
        for game_id, tracker in self._trackers.items():
            self._expire(tracker)
            age = self._age(tracker)
            games[game_id] = {
                "state": tracker.state.value,
                "refcount": tracker.refcount,
                "fetch_count": tracker.fetch_count,
                "failure_count": tracker.failure_count,
                "consecutive_failures": tracker.backoff.failures,
                "snapshots": len(tracker.history),
                "age_s": round(age, 1) if age is not None else None,
                "last_error": tracker.last_error.code.value if tracker.last_error else None,
                "odds_error": tracker.odds_error.code.value if tracker.odds_error else None,
                "odds_failures": tracker.odds_backoff.failures,
            }
        return {"tracked": len(self._trackers), "games": games}
