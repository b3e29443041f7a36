"""Tests for per-player stat momentum."""

import pytest

from courtpulse.engine.player_momentum import PlayerMomentumEngine
from courtpulse.engine.projections import ProjectionEngine
from tests.factories import make_line, make_player, make_snapshot


@pytest.fixture
def engine():
    return PlayerMomentumEngine(window_seconds=300)


@pytest.fixture
def history():
    """LeBron scores 5 in the last 5 minutes after 9 in his first 19."""
    return [
        make_snapshot(40, 40, elapsed=840, players=(make_player(minutes=14.0, points=6, rebounds=2),)),
        make_snapshot(50, 48, elapsed=1140, players=(make_player(minutes=19.0, points=9, rebounds=4),)),
        make_snapshot(60, 58, elapsed=1440, players=(make_player(minutes=24.0, points=14, rebounds=4),)),
    ]


class TestPlayerMomentum:
    def test_hot_stretch_above_neutral(self, engine, history):
        [player] = engine.compute(history)

        # 1.0 pts/min in the window vs 14/24 for the game
        assert player.momentum["points"] == pytest.approx(round(5.0 * 1.0 / (14 / 24), 2))
        assert player.momentum["points"] > 5.0
        assert player.current_stats["points"] == 14.0

    def test_cold_stretch_below_neutral(self, engine, history):
        [player] = engine.compute(history)

        # No rebounds in the window
        assert player.momentum["rebounds"] == 0.0

    def test_no_production_is_neutral(self, engine):
        history = [
            make_snapshot(40, 40, elapsed=1140, players=(make_player(minutes=19.0, blocks=0),)),
            make_snapshot(50, 48, elapsed=1440, players=(make_player(minutes=24.0, blocks=0),)),
        ]

        [player] = engine.compute(history)

        assert player.momentum["blocks"] == 5.0
        assert player.current_stats["blocks"] == 0.0

    def test_no_window_minutes_is_neutral(self, engine):
        snapshot = make_snapshot(10, 8, elapsed=300, players=(make_player(minutes=5.0, points=6),))

        [player] = engine.compute([snapshot])

        assert all(value == 5.0 for value in player.momentum.values())

    def test_capped_at_ten(self, engine):
        history = [
            make_snapshot(40, 40, elapsed=1140, players=(make_player(minutes=19.0, points=0),)),
            make_snapshot(60, 40, elapsed=1440, players=(make_player(minutes=24.0, points=20),)),
        ]

        [player] = engine.compute(history)

        # All 20 points came in the window: 4/min vs 20/24 for the game
        assert player.momentum["points"] == 10.0

    def test_correlation_with_prop_line(self, engine, history):
        projections = ProjectionEngine().project(history[-1])
        lines = [
            make_line(market="player_points", line=25.5),
            make_line(market="player_rebounds", line=9.5),
        ]

        [player] = engine.compute(history, projections, lines)

        assert player.prop_lines == {"points": 25.5, "rebounds": 9.5}
        assert player.correlations == {"points": True, "rebounds": False}

    def test_empty_history(self, engine):
        assert engine.compute([]) == []
