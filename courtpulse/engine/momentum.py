"""
Momentum Engine.

Turns an ordered history of game snapshots into per-team momentum metrics
and match-level predictions.

Scales (all deterministic, see MomentumSettings for the constants):
- overall:  raw run differential in the window, logistic-squashed
- offense:  points per 100 possessions vs league rating, /10, squashed
- defense:  league rating vs opponent points per 100 possessions, /10, squashed
- trend:    sign of the raw delta with a dead zone around zero
- confidence: grows with snapshots observed, shrinks with clock gaps
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import structlog

from config.settings import MomentumSettings
from courtpulse.models.schemas import (
    REGULATION_SECONDS,
    EdgeError,
    GameMomentum,
    GameSnapshot,
    KeyFactor,
    MatchupMetrics,
    MomentumMetrics,
    Predictions,
    TeamMomentum,
    Trend,
    clamp,
    normal_cdf,
)

logger = structlog.get_logger()


@dataclass
class MomentumContext:
    """Optional per-game overrides for the league priors."""
    home_court_points: Optional[float] = None
    league_pace: Optional[float] = None


@dataclass
class _Window:
    """Deltas between the window baseline and the latest snapshot."""
    baseline: GameSnapshot
    latest: GameSnapshot
    minutes: float
    possessions: float
    pace: float
    home_points: int
    away_points: int


class MomentumEngine:
    """
    Computes GameMomentum from snapshot history.

    Pure: no I/O, no state between calls. Invalid input comes back as an
    INVALID_GAME EdgeError, never as an exception or a partial result.
    """

    def __init__(self, config: Optional[MomentumSettings] = None):
        self.config = config or MomentumSettings()
        self.logger = logger.bind(component="momentum_engine")

    def compute_game_momentum(
        self,
        history: Sequence[GameSnapshot],
        context: Optional[MomentumContext] = None,
    ) -> Union[GameMomentum, EdgeError]:
        """
        Compute momentum for the game described by `history`.

        Args:
            history: Snapshots of one game, ascending by timestamp
            context: Optional prior overrides

        Returns:
            GameMomentum, or EdgeError(INVALID_GAME) for empty/malformed history
        """
        history = list(history)
        error = self._validate(history)
        if error:
            self.logger.debug("Rejected history", code=error.code.value, reason=error.message)
            return error

        context = context or MomentumContext()
        league_pace = context.league_pace or self.config.league_pace
        home_court_points = (
            context.home_court_points
            if context.home_court_points is not None
            else self.config.home_court_points
        )

        latest = history[-1]
        window = self._window(history, league_pace)
        confidence = self._confidence(history)
        run_team, run_points = self._current_run(history)

        home = self._team_momentum(
            team_id=latest.home_team_id,
            team_name=latest.home_team_name,
            points=window.home_points,
            opp_points=window.away_points,
            margin=latest.home_score - latest.away_score,
            run=run_points if run_team == "home" else -run_points if run_team == "away" else 0,
            window=window,
            confidence=confidence,
        )
        away = self._team_momentum(
            team_id=latest.away_team_id,
            team_name=latest.away_team_name,
            points=window.away_points,
            opp_points=window.home_points,
            margin=latest.away_score - latest.home_score,
            run=run_points if run_team == "away" else -run_points if run_team == "home" else 0,
            window=window,
            confidence=confidence,
        )

        home_level = home.overall.overall
        away_level = away.overall.overall
        matchup = MatchupMetrics(
            home_advantage=0.5 + self.config.home_court_edge + 0.5 * (home_level - away_level),
            pace_impact=math.tanh((window.pace - league_pace) / 10.0),
            matchup_strength=1.0 - abs(home_level - away_level),
        )

        predictions = self._predict(
            latest=latest,
            window=window,
            league_pace=league_pace,
            home_court_points=home_court_points,
            home_level=home_level,
            away_level=away_level,
            confidence=min(home.overall.confidence, away.overall.confidence),
        )

        momentum = GameMomentum(
            game_id=latest.game_id,
            home_team=home,
            away_team=away,
            matchup=matchup,
            predictions=predictions,
            last_update=latest.timestamp,
        )

        self.logger.debug(
            "Computed momentum",
            game_id=latest.game_id,
            home_net=window.home_points - window.away_points,
            home_win=f"{predictions.home_win_probability:.1%}",
            confidence=f"{confidence:.2f}",
            snapshots=len(history),
        )
        return momentum

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(self, history: list[GameSnapshot]) -> Optional[EdgeError]:
        if not history:
            return EdgeError.invalid_game("Snapshot history is empty")

        first = history[0]
        for prev, snap in zip(history, history[1:]):
            if snap.game_id != first.game_id:
                return EdgeError.invalid_game(
                    f"Mixed game ids in history: {first.game_id} and {snap.game_id}",
                    game_id=first.game_id,
                )
            if (snap.home_team_id, snap.away_team_id) != (first.home_team_id, first.away_team_id):
                return EdgeError.invalid_game(
                    "Team ids changed within one game's history",
                    game_id=first.game_id,
                )
            if snap.timestamp < prev.timestamp:
                return EdgeError.invalid_game(
                    "Snapshot history is not in ascending time order",
                    game_id=first.game_id,
                )
        return None

    # =========================================================================
    # Window & Confidence
    # =========================================================================

    def _window(self, history: list[GameSnapshot], league_pace: float) -> _Window:
        """
        Measure the last `window_seconds` of game clock.

        The baseline is the last snapshot at or before the window start, so
        the window is never shorter than configured once enough history exists.
        """
        latest = history[-1]
        start = latest.elapsed_seconds - self.config.window_seconds

        baseline = history[0]
        for snap in history:
            if snap.elapsed_seconds <= start:
                baseline = snap
            else:
                break

        minutes = max(0.0, (latest.elapsed_seconds - baseline.elapsed_seconds) / 60.0)

        possessions = 0.0
        if (baseline.home_stats and baseline.away_stats
                and latest.home_stats and latest.away_stats):
            home_poss = latest.home_stats.possessions - baseline.home_stats.possessions
            away_poss = latest.away_stats.possessions - baseline.away_stats.possessions
            possessions = (home_poss + away_poss) / 2.0
        if possessions <= 0:
            possessions = minutes * league_pace / 48.0
        possessions = max(possessions, 1.0)

        pace = possessions / minutes * 48.0 if minutes > 0 else league_pace

        return _Window(
            baseline=baseline,
            latest=latest,
            minutes=minutes,
            possessions=possessions,
            pace=pace,
            home_points=latest.home_score - baseline.home_score,
            away_points=latest.away_score - baseline.away_score,
        )

    def _confidence(self, history: list[GameSnapshot]) -> float:
        """
        Sample-size confidence with a data-gap penalty.

        Gaps are consecutive snapshots whose game clock jumps further than
        max_gap_seconds (missed polls).
        """
        n = len(history)
        sample = min(1.0, n / self.config.min_snapshots)

        gaps = sum(
            1 for prev, snap in zip(history, history[1:])
            if snap.elapsed_seconds - prev.elapsed_seconds > self.config.max_gap_seconds
        )
        gap_ratio = gaps / max(1, n - 1)

        return clamp(sample * (1.0 - self.config.gap_penalty * gap_ratio))

    def _current_run(self, history: list[GameSnapshot]) -> tuple[Optional[str], int]:
        """
        Find the active unanswered run, walking back from the latest snapshot.

        Returns:
            ("home" | "away" | None, points in the run)
        """
        team: Optional[str] = None
        points = 0
        for prev, snap in zip(reversed(history[:-1]), reversed(history[1:])):
            home_delta = snap.home_score - prev.home_score
            away_delta = snap.away_score - prev.away_score
            if home_delta > 0 and away_delta > 0:
                break
            if home_delta > 0:
                if team == "away":
                    break
                team = "home"
                points += home_delta
            elif away_delta > 0:
                if team == "home":
                    break
                team = "away"
                points += away_delta
        return team, points

    # =========================================================================
    # Team Metrics
    # =========================================================================

    def _metric(self, net_change: float, scale: float, confidence: float, window: _Window) -> MomentumMetrics:
        return MomentumMetrics(
            overall=1.0 / (1.0 + math.exp(-net_change / scale)),
            net_change=net_change,
            trend=Trend.classify(net_change, self.config.trend_dead_zone),
            confidence=confidence,
            last_update=window.latest.timestamp,
        )

    def _team_momentum(
        self,
        team_id: str,
        team_name: str,
        points: int,
        opp_points: int,
        margin: int,
        run: int,
        window: _Window,
        confidence: float,
    ) -> TeamMomentum:
        rating = self.config.league_rating

        if window.minutes > 0:
            offense_rating = 100.0 * points / window.possessions
            defense_rating = 100.0 * opp_points / window.possessions
            offense_net = (offense_rating - rating) / 10.0
            defense_net = (rating - defense_rating) / 10.0
        else:
            # No clock has run inside the window: no efficiency signal yet
            offense_rating = defense_rating = rating
            offense_net = defense_net = 0.0

        overall_net = float(points - opp_points)

        if run > 0:
            run_desc = f"{run}-0 run"
        elif run < 0:
            run_desc = f"Opponent on a {-run}-0 run"
        else:
            run_desc = "No active scoring run"

        if margin > 0:
            margin_desc = f"Leading by {margin}"
        elif margin < 0:
            margin_desc = f"Trailing by {-margin}"
        else:
            margin_desc = "Tied"

        window_clock = f"{int(window.minutes)}:{int(round(window.minutes * 60)) % 60:02d}"
        factors = (
            KeyFactor("scoring_run", math.tanh(run / 10.0), run_desc),
            KeyFactor(
                "offensive_efficiency",
                math.tanh(offense_net / 2.0),
                f"{offense_rating:.1f} pts/100 poss over last {window_clock}",
            ),
            KeyFactor(
                "defensive_stops",
                math.tanh(defense_net / 2.0),
                f"Allowing {defense_rating:.1f} pts/100 poss over last {window_clock}",
            ),
            KeyFactor("score_margin", math.tanh(margin / 15.0), margin_desc),
        )

        return TeamMomentum(
            team_id=team_id,
            team_name=team_name,
            offense=self._metric(offense_net, self.config.efficiency_scale, confidence, window),
            defense=self._metric(defense_net, self.config.efficiency_scale, confidence, window),
            overall=self._metric(overall_net, self.config.overall_scale, confidence, window),
            key_factors=factors,
        )

    # =========================================================================
    # Predictions
    # =========================================================================

    def _predict(
        self,
        latest: GameSnapshot,
        window: _Window,
        league_pace: float,
        home_court_points: float,
        home_level: float,
        away_level: float,
        confidence: float,
    ) -> Predictions:
        if latest.is_final:
            if latest.home_score > latest.away_score:
                home_prob = 1.0
            elif latest.home_score < latest.away_score:
                home_prob = 0.0
            else:
                home_prob = 0.5
            return Predictions(
                home_win_probability=home_prob,
                away_win_probability=1.0 - home_prob,
                expected_home_score=float(latest.home_score),
                expected_away_score=float(latest.away_score),
                confidence=1.0,
            )

        remaining = latest.remaining_seconds / 60.0

        # Keep one hot/cold stretch from dominating the rest-of-game pace
        pace = clamp(window.pace, 0.8 * league_pace, 1.2 * league_pace)
        base_rate = pace / 48.0 * (self.config.league_rating / 100.0)
        home_rate = base_rate * (1.0 + self.config.momentum_weight * (home_level - 0.5))
        away_rate = base_rate * (1.0 + self.config.momentum_weight * (away_level - 0.5))

        expected_home = latest.home_score + home_rate * remaining
        expected_away = latest.away_score + away_rate * remaining
        margin = expected_home - expected_away + home_court_points * remaining / 48.0

        sigma = max(self.config.sigma_floor, self.config.sigma_per_sqrt_minute * math.sqrt(remaining))
        home_raw = normal_cdf(margin / sigma)
        away_raw = normal_cdf(-margin / sigma)
        total = home_raw + away_raw
        home_prob = home_raw / total if total > 0 else 0.5

        elapsed_fraction = min(1.0, latest.elapsed_seconds / REGULATION_SECONDS)

        return Predictions(
            home_win_probability=home_prob,
            away_win_probability=1.0 - home_prob,
            expected_home_score=round(expected_home, 1),
            expected_away_score=round(expected_away, 1),
            confidence=clamp(confidence * (0.5 + 0.5 * elapsed_fraction)),
        )
