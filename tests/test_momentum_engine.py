"""Tests for the momentum engine."""

import dataclasses
from datetime import timedelta

import pytest

from config.settings import MomentumSettings
from courtpulse.engine.momentum import MomentumContext, MomentumEngine
from courtpulse.models.schemas import (
    EdgeError,
    EdgeErrorCode,
    GameMomentum,
    GameStatus,
    TeamStats,
    Trend,
)
from tests.factories import make_snapshot


@pytest.fixture
def engine():
    """Create a fresh momentum engine for each test."""
    return MomentumEngine(MomentumSettings())


@pytest.fixture
def home_run_history():
    """Tied 50-50, then the home side scores 10 unanswered in under three minutes."""
    history = []
    for elapsed in range(900, 1201, 30):
        history.append(make_snapshot(50, 50, elapsed=elapsed))
    home = 50
    for elapsed in range(1230, 1381, 30):
        if home < 60:
            home += 2
        history.append(make_snapshot(home, 50, elapsed=elapsed))
    return history


def steady_history(count: int, step: float = 30.0, start: float = 600.0):
    """Evenly traded baskets, one snapshot every `step` seconds."""
    return [
        make_snapshot(40 + 2 * (i // 2), 40 + 2 * ((i + 1) // 2), elapsed=start + i * step)
        for i in range(count)
    ]


def all_metrics(momentum: GameMomentum):
    for team in (momentum.home_team, momentum.away_team):
        yield from (team.offense, team.defense, team.overall)


class TestScoringRun:
    """A 10-0 run inside the window."""

    def test_home_trend_up_away_trend_down(self, engine, home_run_history):
        momentum = engine.compute_game_momentum(home_run_history)

        assert isinstance(momentum, GameMomentum)
        assert momentum.home_team.overall.trend == Trend.UP
        assert momentum.away_team.overall.trend == Trend.DOWN
        assert momentum.home_team.overall.net_change == 10
        assert momentum.home_team.overall.overall > 0.5 > momentum.away_team.overall.overall

    def test_run_reported_as_key_factor(self, engine, home_run_history):
        momentum = engine.compute_game_momentum(home_run_history)

        factors = {f.factor: f for f in momentum.home_team.key_factors}
        assert factors["scoring_run"].description == "10-0 run"
        assert factors["scoring_run"].impact > 0
        assert factors["score_margin"].description == "Leading by 10"

        away_factors = {f.factor: f for f in momentum.away_team.key_factors}
        assert away_factors["scoring_run"].impact < 0
        assert away_factors["score_margin"].description == "Trailing by 10"

    def test_key_factors_sorted_by_impact(self, engine, home_run_history):
        momentum = engine.compute_game_momentum(home_run_history)

        impacts = [abs(f.impact) for f in momentum.home_team.key_factors]
        assert impacts == sorted(impacts, reverse=True)

    def test_leader_favoured(self, engine, home_run_history):
        momentum = engine.compute_game_momentum(home_run_history)

        assert momentum.predictions.home_win_probability > 0.5
        assert momentum.predictions.expected_home_score > momentum.predictions.expected_away_score

    def test_run_outside_window_is_ignored(self, engine, home_run_history):
        # Ten more minutes of even scoring after the run
        last = home_run_history[-1]
        history = list(home_run_history)
        for i in range(1, 21):
            history.append(make_snapshot(
                last.home_score + 2 * (i // 2),
                last.away_score + 2 * ((i + 1) // 2),
                elapsed=last.elapsed_seconds + i * 30,
            ))

        momentum = engine.compute_game_momentum(history)

        assert momentum.home_team.overall.trend == Trend.NEUTRAL
        assert abs(momentum.home_team.overall.net_change) <= 0.5


class TestBounds:
    @pytest.mark.parametrize("home,away", [(0, 0), (30, 0), (0, 30), (75, 71), (140, 90)])
    def test_metrics_in_unit_interval(self, engine, home, away):
        history = [
            make_snapshot(0, 0, elapsed=0),
            make_snapshot(home // 2, away // 2, elapsed=900),
            make_snapshot(home, away, elapsed=1200),
        ]

        momentum = engine.compute_game_momentum(history)

        for metric in all_metrics(momentum):
            assert 0.0 <= metric.overall <= 1.0
            assert 0.0 <= metric.confidence <= 1.0
        for team in (momentum.home_team, momentum.away_team):
            for factor in team.key_factors:
                assert -1.0 <= factor.impact <= 1.0
        assert 0.0 <= momentum.matchup.home_advantage <= 1.0
        assert -1.0 <= momentum.matchup.pace_impact <= 1.0
        assert 0.0 <= momentum.matchup.matchup_strength <= 1.0

    @pytest.mark.parametrize("home,away,elapsed", [(0, 0, 60), (55, 48, 1500), (98, 99, 2800), (40, 70, 2000)])
    def test_win_probabilities_sum_to_one(self, engine, home, away, elapsed):
        history = [make_snapshot(0, 0, elapsed=0), make_snapshot(home, away, elapsed=elapsed)]

        predictions = engine.compute_game_momentum(history).predictions

        assert predictions.home_win_probability + predictions.away_win_probability == pytest.approx(1.0)
        assert 0.0 <= predictions.home_win_probability <= 1.0
        assert 0.0 <= predictions.confidence <= 1.0

    def test_possessions_from_box_score(self, engine):
        start = TeamStats(field_goals_attempted=40, free_throws_attempted=10, offensive_rebounds=5, turnovers=6)
        end = TeamStats(field_goals_attempted=48, free_throws_attempted=12, offensive_rebounds=6, turnovers=7)
        history = [
            make_snapshot(50, 50, elapsed=1200, home_stats=start, away_stats=start),
            make_snapshot(62, 50, elapsed=1500, home_stats=end, away_stats=end),
        ]

        momentum = engine.compute_game_momentum(history)

        # 12 points on ~8.9 possessions is well above league efficiency
        assert momentum.home_team.offense.trend == Trend.UP
        assert momentum.away_team.defense.trend == Trend.DOWN


class TestConfidence:
    def test_grows_with_snapshots(self, engine):
        confidences = []
        for n in range(1, 16):
            momentum = engine.compute_game_momentum(steady_history(n))
            confidences.append(momentum.home_team.overall.confidence)

        assert confidences == sorted(confidences)
        assert confidences[0] == pytest.approx(0.1)
        assert confidences[-1] == pytest.approx(1.0)

    def test_gap_penalty(self, engine):
        smooth = steady_history(12)
        gappy = steady_history(6) + steady_history(6, start=smooth[5].elapsed_seconds + 300)

        smooth_conf = engine.compute_game_momentum(smooth).home_team.overall.confidence
        gappy_conf = engine.compute_game_momentum(gappy).home_team.overall.confidence

        assert gappy_conf < smooth_conf

    def test_single_snapshot_is_neutral(self, engine):
        momentum = engine.compute_game_momentum([make_snapshot(10, 8, elapsed=300)])

        assert momentum.home_team.offense.net_change == 0.0
        assert momentum.home_team.defense.net_change == 0.0
        assert momentum.home_team.offense.trend == Trend.NEUTRAL


class TestPredictions:
    def test_final_game_is_decided(self, engine):
        history = [
            make_snapshot(100, 100, elapsed=2700),
            make_snapshot(110, 104, elapsed=2880, status=GameStatus.FINAL),
        ]

        predictions = engine.compute_game_momentum(history).predictions

        assert predictions.home_win_probability == 1.0
        assert predictions.away_win_probability == 0.0
        assert predictions.expected_home_score == 110.0
        assert predictions.confidence == 1.0

    def test_home_court_prior(self, engine):
        history = [make_snapshot(0, 0, elapsed=0), make_snapshot(2, 2, elapsed=60)]

        neutral = engine.compute_game_momentum(history, MomentumContext(home_court_points=0.0))
        default = engine.compute_game_momentum(history)

        assert neutral.predictions.home_win_probability == pytest.approx(0.5)
        assert default.predictions.home_win_probability > 0.5

    def test_deterministic(self, engine, home_run_history):
        assert engine.compute_game_momentum(home_run_history) == engine.compute_game_momentum(home_run_history)


class TestInvalidHistory:
    def test_empty(self, engine):
        result = engine.compute_game_momentum([])

        assert isinstance(result, EdgeError)
        assert result.code == EdgeErrorCode.INVALID_GAME
        assert not result.is_retriable

    def test_mixed_games(self, engine):
        history = [make_snapshot(0, 0, elapsed=0), make_snapshot(2, 0, elapsed=30, game_id="0022500999")]

        result = engine.compute_game_momentum(history)

        assert result.code == EdgeErrorCode.INVALID_GAME

    def test_descending_timestamps(self, engine):
        first = make_snapshot(2, 0, elapsed=30)
        second = dataclasses.replace(first, timestamp=first.timestamp - timedelta(seconds=10))

        result = engine.compute_game_momentum([first, second])

        assert result.code == EdgeErrorCode.INVALID_GAME

    def test_team_change(self, engine):
        history = [make_snapshot(0, 0, elapsed=0), make_snapshot(2, 0, elapsed=30, away_team_id="1610612738")]

        result = engine.compute_game_momentum(history)

        assert result.code == EdgeErrorCode.INVALID_GAME
