"""Tests for the data models and small utilities."""

import orjson
import pytest

from courtpulse.engine.momentum import MomentumEngine
from courtpulse.models.schemas import (
    EdgeError,
    EdgeErrorCode,
    KeyFactor,
    MomentumMetrics,
    Trend,
    american_to_probability,
)
from courtpulse.utils.backoff import ExponentialBackoff
from courtpulse.utils.names import normalize_player_name, team_nickname
from courtpulse.utils.serialization import dumps
from tests.factories import BASE_TIME, GAME_ID, make_line, make_snapshot


class TestOdds:
    @pytest.mark.parametrize("american,probability", [(-110, 110 / 210), (100, 0.5), (150, 0.4), (-200, 2 / 3)])
    def test_implied_probability(self, american, probability):
        assert american_to_probability(american) == pytest.approx(probability)

    def test_vig_and_fair_probability(self):
        line = make_line(over=-110, under=-110)

        assert line.vig == pytest.approx(2 * 110 / 210 - 1)
        assert line.fair_over == pytest.approx(0.5)


class TestBounds:
    def test_metrics_clamped(self):
        metric = MomentumMetrics(overall=1.3, net_change=9.0, trend=Trend.UP, confidence=-0.2, last_update=BASE_TIME)

        assert metric.overall == 1.0
        assert metric.confidence == 0.0

    def test_factor_impact_clamped(self):
        assert KeyFactor("scoring_run", -3.0, "").impact == -1.0

    @pytest.mark.parametrize("net,expected", [(0.5, Trend.NEUTRAL), (-0.5, Trend.NEUTRAL), (0.51, Trend.UP), (-2, Trend.DOWN)])
    def test_trend_dead_zone(self, net, expected):
        assert Trend.classify(net, 0.5) == expected


class TestSerialization:
    def test_momentum_shape(self):
        momentum = MomentumEngine().compute_game_momentum([make_snapshot(0, 0, elapsed=0), make_snapshot(8, 2, elapsed=240)])

        data = orjson.loads(dumps(momentum))

        assert data["gameId"] == GAME_ID
        assert set(data["homeTeam"]["metrics"]) == {"offense", "defense", "overall"}
        assert data["predictions"]["winProbability"]["home"] + data["predictions"]["winProbability"]["away"] == pytest.approx(1.0)
        assert data["stale"] is False
        assert data["lastUpdate"].startswith("2026-01-15T03:04:00")

    def test_error_shape(self):
        error = EdgeError.not_found("No odds", game_id=GAME_ID, market="player_points")

        data = orjson.loads(dumps([error]))

        assert data == [{"code": "EDGE_NOT_FOUND", "message": "No odds", "gameId": GAME_ID, "market": "player_points"}]
        assert error.code == EdgeErrorCode.EDGE_NOT_FOUND


class TestBackoff:
    def test_doubles_until_cap(self):
        backoff = ExponentialBackoff(base_seconds=1.0, cap_seconds=5.0)

        assert [backoff.next_delay() for _ in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
        backoff.reset()
        assert backoff.next_delay() == 1.0


class TestNames:
    @pytest.mark.parametrize("raw,normalized", [
        ("Nikola Jokić", "nikola jokic"),
        ("Jaren Jackson Jr.", "jaren jackson"),
        ("Shai Gilgeous-Alexander", "shai gilgeous alexander"),
        ("  De'Aaron   Fox ", "deaaron fox"),
    ])
    def test_normalize(self, raw, normalized):
        assert normalize_player_name(raw) == normalized

    @pytest.mark.parametrize("nba,odds_api", [
        ("LA Clippers", "Los Angeles Clippers"),
        ("Los Angeles Lakers", "Los Angeles Lakers"),
        ("Portland Trail Blazers", "Portland Trail Blazers"),
    ])
    def test_team_nickname(self, nba, odds_api):
        assert team_nickname(nba) == team_nickname(odds_api)

    def test_team_nicknames_differ(self):
        assert team_nickname("LA Clippers") != team_nickname("Los Angeles Lakers")
