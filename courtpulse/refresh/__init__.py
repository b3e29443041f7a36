"""Cache, polling and subscriptions for tracked games."""

from courtpulse.refresh.coordinator import (
    GameTracker,
    GameUpdate,
    RefreshCoordinator,
    Subscription,
    TrackerState,
)

__all__ = [
    "GameTracker",
    "GameUpdate",
    "RefreshCoordinator",
    "Subscription",
    "TrackerState",
]
