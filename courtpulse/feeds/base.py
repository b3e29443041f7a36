"""
Base classes for upstream data sources.

Defines the source contracts the refresh coordinator depends on, the
upstream error taxonomy, and shared httpx plumbing (client lifecycle,
status mapping, health tracking) for the HTTP feeds.
"""

import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import certifi
import httpx
import orjson
import structlog

from courtpulse.models.schemas import BookmakerLine, EdgeError, GameSnapshot, GameSummary, OddsBoard

logger = structlog.get_logger()


# =============================================================================
# Errors
# =============================================================================

class UpstreamError(Exception):
    """Transient upstream failure (network, 5xx, bad payload). Retried with backoff."""

    def __init__(self, message: str, source: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.source = source
        self.status = status


class RateLimitedError(UpstreamError):
    """Upstream is throttling us."""

    def __init__(self, message: str, source: str = "", retry_after: Optional[float] = None):
        super().__init__(message, source=source, status=429)
        self.retry_after = retry_after


class InvalidGameError(UpstreamError):
    """Upstream does not know the game id. Not retriable."""


def to_edge_error(exc: Exception, game_id: Optional[str] = None) -> EdgeError:
    """Map an upstream exception to the error value consumers see."""
    if isinstance(exc, InvalidGameError):
        return EdgeError.invalid_game(str(exc), game_id=game_id)
    if isinstance(exc, RateLimitedError):
        return EdgeError.rate_limited(str(exc), game_id=game_id)
    # Anything else is recoverable: no fresh data until a later poll succeeds
    return EdgeError.not_found(f"Upstream unavailable: {exc}", game_id=game_id)


# =============================================================================
# Source Contracts
# =============================================================================

class GameStateSource(ABC):
    """Provider of live game facts, normalized to GameSnapshot."""

    @abstractmethod
    async def fetch_snapshot(self, game_id: str) -> GameSnapshot:
        """
        Fetch the current state of a game.

        Raises:
            InvalidGameError: unknown game id
            RateLimitedError: upstream throttling
            UpstreamError: any other failure
        """

    async def list_games(self) -> list[GameSummary]:
        """Games on today's board. Optional."""
        return []


class OddsSource(ABC):
    """Provider of bookmaker player-prop and game lines."""

    @abstractmethod
    async def fetch_lines(self, snapshot: GameSnapshot) -> list[BookmakerLine]:
        """
        Fetch prop lines for the game in `snapshot`.

        An empty list means no market is open. Raises like GameStateSource.
        """

    async def fetch_odds(self, snapshot: GameSnapshot) -> OddsBoard:
        """Prop lines plus moneyline/spread/total. Sources without game lines return props only."""
        return OddsBoard(props=tuple(await self.fetch_lines(snapshot)))


# =============================================================================
# Health
# =============================================================================

@dataclass
class FeedHealth:
    """Health status of a data feed."""
    connected: bool = False
    last_message_ms: int = 0
    error_count: int = 0
    rate_limited_count: int = 0
    latency_ms: float = 0.0

    @property
    def age_ms(self) -> int:
        """Get age of last successful response in milliseconds."""
        if self.last_message_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_message_ms


# =============================================================================
# HTTP Feed
# =============================================================================

class HTTPFeed:
    """
    Shared httpx client handling for polling feeds.

    The client is created in start() (or injected, e.g. with an
    httpx.MockTransport in tests) and closed in stop().
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.health = FeedHealth()

        self._http_client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

        self.logger = logger.bind(feed=name)

    async def start(self) -> None:
        """Open the HTTP client."""
        if self._http_client is None:
            ssl_context = ssl.create_default_context(cafile=certifi.where())
            self._http_client = httpx.AsyncClient(
                verify=ssl_context,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_client = True
        self.logger.info("Feed started", base_url=self.base_url)

    async def stop(self) -> None:
        """Close the HTTP client if we created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        self.health.connected = False
        self.logger.info("Feed stopped")

    async def __aenter__(self) -> "HTTPFeed":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def _get_json(
        self,
        path: str,
        params: Optional[dict] = None,
        missing_statuses: tuple[int, ...] = (404,),
    ) -> Optional[Any]:
        """
        GET a JSON document.

        Returns:
            Parsed JSON, or None when the status is one of `missing_statuses`

        Raises:
            RateLimitedError on 429, UpstreamError on anything else non-200
        """
        if self._http_client is None:
            await self.start()

        url = f"{self.base_url}{path}"
        started = time.perf_counter()
        try:
            response = await self._http_client.get(url, params=params)
        except httpx.HTTPError as e:
            self.health.error_count += 1
            self.health.connected = False
            raise UpstreamError(f"Request failed: {e}", source=self.name) from e

        self.health.latency_ms = (time.perf_counter() - started) * 1000

        if response.status_code == 429:
            self.health.rate_limited_count += 1
            retry_after = response.headers.get("retry-after")
            self.logger.warning("Rate limited by upstream", path=path, retry_after=retry_after)
            raise RateLimitedError(
                f"{self.name} rate limited",
                source=self.name,
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if response.status_code in missing_statuses:
            self.logger.debug("Resource not found", path=path, status=response.status_code)
            return None

        if response.status_code != 200:
            self.health.error_count += 1
            self.logger.warning(
                "API error",
                path=path,
                status=response.status_code,
                body=response.text[:200],
            )
            raise UpstreamError(
                f"{self.name} returned HTTP {response.status_code}",
                source=self.name,
                status=response.status_code,
            )

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            self.health.error_count += 1
            raise UpstreamError(f"{self.name} returned invalid JSON", source=self.name) from e

        self.health.connected = True
        self.health.last_message_ms = int(time.time() * 1000)
        self._on_response(response)
        return data

    def _on_response(self, response: httpx.Response) -> None:
        """Hook for quota headers etc. Override in subclass."""

    def get_metrics(self) -> dict:
        """Get current metrics for this feed."""
        return {
            "name": self.name,
            "connected": self.health.connected,
            "age_ms": self.health.age_ms,
            "error_count": self.health.error_count,
            "rate_limited_count": self.health.rate_limited_count,
            "latency_ms": round(self.health.latency_ms, 1),
        }
