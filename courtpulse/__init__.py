"""
CourtPulse - live basketball momentum and betting edge analytics.

Turns live game telemetry and bookmaker prop lines into bounded,
confidence-scored metrics, and keeps them fresh for consumers:
- feeds/: Upstream sources (NBA live data, The Odds API)
- engine/: Pure transforms (momentum, projections, edges, player momentum)
- refresh/: Polling, dedup, backoff and the per-game cache
- service.py: Typed read API and subscriptions for presentation layers
"""

__version__ = "0.1.0"
