"""Tests for the projection engine."""

import math

import pytest

from config.settings import EdgeSettings
from courtpulse.engine.projections import MIN_STD_DEV, ProjectionEngine
from courtpulse.models.schemas import GameStatus
from tests.factories import make_player, make_snapshot


@pytest.fixture
def engine():
    return ProjectionEngine(EdgeSettings())


@pytest.fixture
def halftime_snapshot():
    return make_snapshot(
        60, 58,
        elapsed=1440,
        players=(
            make_player(minutes=24.0, points=14, rebounds=4, assists=5, blocks=0, steals=1),
            make_player(player_id="1641705", name="Bench Guy", minutes=0.5, points=0),
        ),
    )


def by_market(projections):
    return {p.market: p for p in projections}


class TestProjection:
    def test_extrapolates_current_rate(self, engine, halftime_snapshot):
        points = by_market(engine.project(halftime_snapshot))["player_points"]

        # 14 points in 24 of 24 minutes, 24 minutes to go
        assert points.mean == pytest.approx(28.0)
        assert points.std_dev == pytest.approx(math.sqrt(14.0))
        assert points.confidence == pytest.approx(24.0 / 36.0)

    def test_one_projection_per_market(self, engine, halftime_snapshot):
        projections = engine.project(halftime_snapshot)

        assert sorted(p.market for p in projections) == sorted(EdgeSettings().markets)
        assert {p.player_id for p in projections} == {"2544"}

    def test_zero_stat_keeps_floor_std_dev(self, engine, halftime_snapshot):
        blocks = by_market(engine.project(halftime_snapshot))["player_blocks"]

        assert blocks.mean == 0.0
        assert blocks.std_dev == MIN_STD_DEV

    def test_final_game_has_no_uncertainty(self, engine):
        snapshot = make_snapshot(
            110, 100,
            elapsed=2880,
            status=GameStatus.FINAL,
            players=(make_player(minutes=36.0, points=31),),
        )

        points = by_market(engine.project(snapshot))["player_points"]

        assert points.mean == 31.0
        assert points.std_dev == 0.0
        assert points.prob_over(30.5) == 1.0
        assert points.prob_over(31.5) == 0.0

    def test_unknown_market_ignored(self):
        engine = ProjectionEngine(EdgeSettings(markets=["player_points", "player_threes"]))

        assert engine.markets == ["player_points"]

    def test_no_minutes_no_projections(self, engine):
        assert engine.project(make_snapshot(0, 0, elapsed=0)) == []
