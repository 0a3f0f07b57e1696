"""Offline-resilience core: network state store, cache table and broadcasts."""

from homeboard.core.offline.events import EventBus, NetworkRecoveryStarted, OfflineStateChanged
from homeboard.core.offline.state import CacheEntry, NetworkStateStore

__all__ = [
    "CacheEntry",
    "EventBus",
    "NetworkRecoveryStarted",
    "NetworkStateStore",
    "OfflineStateChanged",
]
