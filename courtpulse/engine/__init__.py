"""
Analytics engines.

Pure transforms from snapshots and odds into momentum, projections,
edges and player momentum. No I/O; the refresh coordinator owns state.
"""

from courtpulse.engine.momentum import MomentumEngine, MomentumContext
from courtpulse.engine.projections import ProjectionEngine
from courtpulse.engine.edges import EdgeEngine, select_best_line
from courtpulse.engine.player_momentum import PlayerMomentumEngine

__all__ = [
    "MomentumEngine",
    "MomentumContext",
    "ProjectionEngine",
    "EdgeEngine",
    "select_best_line",
    "PlayerMomentumEngine",
]
