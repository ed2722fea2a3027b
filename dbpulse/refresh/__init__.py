from .latest import LatestRequestTracker
from .scheduler import (
    DEFAULT_INTERVAL_MS,
    RefreshHandle,
    RefreshOptions,
    RefreshScheduler,
    RefreshSnapshot,
    RefreshState,
)

__all__ = [
    "DEFAULT_INTERVAL_MS",
    "LatestRequestTracker",
    "RefreshHandle",
    "RefreshOptions",
    "RefreshScheduler",
    "RefreshSnapshot",
    "RefreshState",
]
