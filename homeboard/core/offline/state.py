"""
Network State Store - single source of truth for connectivity and cached data.

One instance per process, created at startup and injected into every
scheduler, resilient caller and transport. It owns the cache table and the
event bus that gates periodic refresh activity across sources.

Concurrency model: every mutation here is synchronous and runs between
``await`` points of a single asyncio loop, so no lock is taken. Callers must
re-read state after an ``await``. Sharing an instance across threads requires
an explicit lock (or a dedicated loop acting as an actor) around the store.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from homeboard.core.offline.events import EventBus, NetworkRecoveryStarted, OfflineStateChanged
from homeboard.core.services.errors import RecoveryError
from homeboard.core.storage.state_file import PersistedCacheEntry, PersistedState, StateFile

logger = logging.getLogger(__name__)

DEFAULT_ERROR_THRESHOLD = 3
DEFAULT_STALE_AFTER_SECONDS = 15 * 60

STATUS_OFFLINE = "Offline - Using cached data"
STATUS_STALE = "Limited connectivity - Data may be outdated"
STATUS_NOMINAL = "Online - All systems operational"


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    is_stale: bool = False

    def age(self, now: float) -> float:
        return max(0.0, now - self.timestamp)


class NetworkStateStore:
    """Online/offline/recovering state machine plus the shared cache table."""

    def __init__(
        self,
        *,
        events: Optional[EventBus] = None,
        state_file: Optional[StateFile] = None,
        time_fn: Callable[[], float] = time.time,
        error_threshold: int = DEFAULT_ERROR_THRESHOLD,
        stale_after: float = DEFAULT_STALE_AFTER_SECONDS,
    ) -> None:
        self.events = events or EventBus()
        self._state_file = state_file
        self._time_fn = time_fn
        self._error_threshold = max(1, int(error_threshold))
        self._stale_after = max(0.0, float(stale_after))

        now = self._time_fn()
        self.is_offline: bool = False
        self.is_recovering: bool = False
        self.last_online_time: float = now
        self.last_update_time: float = now
        self.network_error_count: int = 0
        self._cache: Dict[str, CacheEntry] = {}
        self._recovery_task: Optional[asyncio.Task] = None

    # --- Persistence ---

    @classmethod
    def from_state_file(cls, state_file: StateFile, **kwargs: Any) -> "NetworkStateStore":
        store = cls(state_file=state_file, **kwargs)
        persisted = state_file.load()
        if persisted is not None:
            store.restore(persisted)
        return store

    def restore(self, persisted: PersistedState) -> None:
        """Replace persisted fields with a decoded snapshot."""
        if persisted.last_online_time is not None:
            self.last_online_time = persisted.last_online_time
        if persisted.last_update_time is not None:
            self.last_update_time = persisted.last_update_time
        self.network_error_count = persisted.network_error_count
        self._cache = {
            key: CacheEntry(data=entry.data, timestamp=entry.timestamp, is_stale=entry.is_stale)
            for key, entry in persisted.cache.items()
        }
        logger.info("Restored offline state with %d cached entr(y/ies)", len(self._cache))

    def to_persisted(self) -> PersistedState:
        return PersistedState(
            last_online_time=self.last_online_time,
            last_update_time=self.last_update_time,
            network_error_count=self.network_error_count,
            cache={
                key: PersistedCacheEntry(data=entry.data, timestamp=entry.timestamp, is_stale=entry.is_stale)
                for key, entry in self._cache.items()
            },
        )

    def _persist(self) -> None:
        if self._state_file is None:
            return
        try:
            self._state_file.save(self.to_persisted())
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not persist offline state to %s: %s", self._state_file.path, e)

    # --- Broadcast helpers ---

    def _broadcast(self, event: Any) -> None:
        """Fire-and-forget delivery; async listener work is scheduled, never awaited."""
        for pending in self.events.publish(event):
            _detach(pending)

    # --- Connectivity transitions ---

    def set_offline(self) -> None:
        logger.info("Setting offline state - stopping all refresh intervals")
        was_offline = self.is_offline
        self.is_offline = True
        self.is_recovering = False
        if was_offline:
            logger.debug("Already offline, skipping broadcast")
            return
        self._broadcast(OfflineStateChanged(is_offline=True))

    def set_online(self) -> Optional[asyncio.Task]:
        """Mark online, notify listeners and start a recovery sequence.

        Returns the recovery task (the pending one if a recovery is already
        scheduled), or ``None`` when no event loop is running
        (recovery is then left to the next connectivity-positive signal).
        """
        logger.info("Setting online state - triggering network recovery")
        was_offline = self.is_offline
        self.is_offline = False
        self.last_online_time = max(self.last_online_time, self._time_fn())
        if was_offline:
            self._broadcast(OfflineStateChanged(is_offline=False))
        self._persist()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, network recovery deferred")
            return None
        if self._recovery_task is not None and not self._recovery_task.done():
            logger.debug("Recovery already scheduled")
            return self._recovery_task
        self._recovery_task = loop.create_task(self.trigger_network_recovery())
        return self._recovery_task

    async def trigger_network_recovery(self) -> bool:
        """Run one recovery sequence. Returns False when skipped or failed."""
        if self.is_recovering:
            logger.debug("Recovery already in progress")
            return False

        logger.info("Starting network recovery")
        self.is_recovering = True
        try:
            pending = self.events.publish(NetworkRecoveryStarted())
            if pending:
                results = await asyncio.gather(*pending, return_exceptions=True)
                failures = [r for r in results if isinstance(r, BaseException)]
                if failures:
                    raise RecoveryError(f"{len(failures)} recovery handler(s) failed: {failures[0]}")
            self.last_update_time = max(self.last_update_time, self._time_fn())
            self.network_error_count = 0
            self._persist()
            logger.info("Network recovery completed successfully")
            return True
        except Exception as e:
            logger.error("Network recovery failed: %s", e)
            self.set_offline()
            return False
        finally:
            self.is_recovering = False

    def now(self) -> float:
        return self._time_fn()

    # --- Cache operations ---

    def cache_data(self, key: str, data: Any, timestamp: Optional[float] = None) -> None:
        ts = self._time_fn() if timestamp is None else float(timestamp)
        logger.debug("Caching data: key=%s timestamp=%s", key, ts)
        self._cache[key] = CacheEntry(data=data, timestamp=ts, is_stale=False)
        self.last_update_time = max(self.last_update_time, ts)
        self.network_error_count = 0
        self._persist()

    def get_cached_data(self, key: str) -> Any:
        """Return cached data for ``key`` unless missing or marked stale."""
        entry = self._cache.get(key)
        if entry is not None and not entry.is_stale:
            logger.debug("Retrieved cached data: %s", key)
            return entry.data
        logger.debug("No valid cached data found for: %s", key)
        return None

    def get_cache_entry(self, key: str, *, include_stale: bool = True) -> Optional[CacheEntry]:
        """Entry lookup for fallback paths; stale entries included by default."""
        entry = self._cache.get(key)
        if entry is None or (entry.is_stale and not include_stale):
            return None
        return entry

    def mark_data_stale(self, key: str) -> None:
        entry = self._cache.get(key)
        if entry is None:
            return
        entry.is_stale = True
        logger.debug("Marked data as stale: %s", key)
        self._persist()

    def invalidate(self, key: str) -> bool:
        removed = self._cache.pop(key, None) is not None
        if removed:
            logger.debug("Invalidated cached data: %s", key)
            self._persist()
        return removed

    def clear_cache(self) -> None:
        logger.info("Clearing all cached data")
        self._cache.clear()
        self._persist()

    def cached_data_count(self) -> int:
        return sum(1 for entry in self._cache.values() if not entry.is_stale)

    def cached_data_entries(self) -> Dict[str, Dict[str, Any]]:
        now = self._time_fn()
        return {
            key: {"timestamp": entry.timestamp, "age": entry.age(now)}
            for key, entry in self._cache.items()
            if not entry.is_stale
        }

    def cache_keys(self) -> List[str]:
        return list(self._cache)

    # --- Error accounting ---

    def increment_network_errors(self) -> None:
        self.network_error_count += 1
        logger.warning("Network error count increased: %d", self.network_error_count)
        if self.network_error_count >= self._error_threshold:
            logger.warning("Network error threshold reached, going offline")
            self.set_offline()
        self._persist()

    def reset_network_errors(self) -> None:
        self.network_error_count = 0
        logger.debug("Network error count reset")
        self._persist()

    # --- Derived values ---

    @property
    def has_stale_data(self) -> bool:
        return self._time_fn() - self.last_update_time > self._stale_after

    @property
    def should_retry(self) -> bool:
        return self.network_error_count < self._error_threshold

    @property
    def status_message(self) -> str:
        if self.is_offline:
            return STATUS_OFFLINE
        if self.has_stale_data:
            return STATUS_STALE
        return STATUS_NOMINAL

    def snapshot(self) -> Dict[str, Any]:
        return {
            "is_offline": self.is_offline,
            "is_recovering": self.is_recovering,
            "last_online_time": self.last_online_time,
            "last_update_time": self.last_update_time,
            "network_error_count": self.network_error_count,
            "has_stale_data": self.has_stale_data,
            "should_retry": self.should_retry,
            "status_message": self.status_message,
            "cached_data_count": self.cached_data_count(),
        }

    async def close(self) -> None:
        """Cancel an in-flight recovery task and flush state."""
        task = self._recovery_task
        self._recovery_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._persist()


def _detach(pending: Awaitable[Any]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        if inspect.iscoroutine(pending):
            pending.close()
        return
    future = asyncio.ensure_future(pending, loop=loop)
    future.add_done_callback(_log_detached_failure)


def _log_detached_failure(future: "asyncio.Future[Any]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background listener failed: %s", exc)
