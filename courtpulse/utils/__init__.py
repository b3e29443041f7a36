"""Utility modules."""

from courtpulse.utils.logging import setup_logging
from courtpulse.utils.backoff import ExponentialBackoff
from courtpulse.utils.names import normalize_player_name
from courtpulse.utils.serialization import dumps

__all__ = [
    "setup_logging",
    "ExponentialBackoff",
    "normalize_player_name",
    "dumps",
]
