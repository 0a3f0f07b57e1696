"""Periodic refresh for one data source, gated by the network state store."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from homeboard.core.offline.events import NetworkRecoveryStarted, OfflineStateChanged
from homeboard.core.offline.state import NetworkStateStore
from homeboard.core.services.intervals import fixed_interval

logger = logging.getLogger(__name__)

STATE_STOPPED = "stopped"
STATE_RUNNING = "running"
STATE_PAUSED = "paused"


class RefreshScheduler:
    """
    Timer loop: fetch immediately, then sleep ``interval_fn(last_result)``
    seconds between fetches.

    Reacts to store broadcasts:
    - offline -> stop the timer (paused)
    - online -> restart, which fetches immediately
    - recovery started -> one out-of-band fetch, timer untouched
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        store: NetworkStateStore,
        *,
        interval: float = 60.0,
        interval_fn: Optional[Callable[[Any], float]] = None,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._store = store
        self._interval_fn = interval_fn or fixed_interval(interval)
        self._sleep_fn = sleep_fn
        self._time_fn = time_fn

        self.state = STATE_STOPPED
        self.last_result: Any = None
        self.last_error: Optional[str] = None
        self.last_refresh_at: Optional[float] = None
        self.current_interval: Optional[float] = None
        self.fetch_count = 0

        self._timer_task: Optional[asyncio.Task] = None
        self._out_of_band: Set[asyncio.Task] = set()
        self._unsubscribers: List[Callable[[], None]] = [
            store.events.subscribe(OfflineStateChanged, self._on_offline_state_changed),
            store.events.subscribe(NetworkRecoveryStarted, self._on_network_recovery),
        ]

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        if self._store.is_offline:
            logger.info("[%s] Skipping refresh start - offline state", self.name)
            self.state = STATE_PAUSED
            return
        if self._timer_task is not None:
            self.stop()

        loop = asyncio.get_running_loop()
        self.state = STATE_RUNNING
        self._timer_task = loop.create_task(self._run(), name=f"refresh:{self.name}")
        logger.info("[%s] Periodic refresh started", self.name)

    def stop(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done():
            task.cancel()
            logger.info("[%s] Periodic refresh stopped", self.name)
        self.state = STATE_STOPPED

    async def _run(self) -> None:
        await self.refresh_now()
        while True:
            self.current_interval = self._next_interval()
            await self._sleep_fn(self.current_interval)
            if self._store.is_offline:
                logger.debug("[%s] Skipping refresh - offline state", self.name)
                continue
            await self.refresh_now()

    def _next_interval(self) -> float:
        try:
            return max(0.0, float(self._interval_fn(self.last_result)))
        except Exception:
            logger.exception("[%s] Interval function failed, keeping previous interval", self.name)
            return self.current_interval if self.current_interval is not None else 60.0

    async def refresh_now(self) -> bool:
        """Run one fetch. Failures are recorded, never raised."""
        self.fetch_count += 1
        try:
            result = await self._fetch()
        except Exception as e:
            self.last_error = str(e) or type(e).__name__
            logger.error("[%s] Refresh failed: %s", self.name, self.last_error)
            return False
        self.last_result = result
        self.last_error = None
        self.last_refresh_at = self._time_fn()
        return True

    def _on_offline_state_changed(self, event: OfflineStateChanged) -> None:
        logger.info("[%s] Received offline state change: is_offline=%s", self.name, event.is_offline)
        if event.is_offline:
            self.stop()
            self.state = STATE_PAUSED
        else:
            self.start()

    def _on_network_recovery(self, _event: NetworkRecoveryStarted) -> "asyncio.Task[bool]":
        logger.info("[%s] Network recovery started, refreshing now", self.name)
        task = asyncio.get_running_loop().create_task(self.refresh_now(), name=f"recover:{self.name}")
        self._out_of_band.add(task)
        task.add_done_callback(self._out_of_band.discard)
        return task

    def status(self) -> Dict[str, Any]:
        next_refresh = None
        if self.last_refresh_at is not None and self.current_interval is not None and self.is_running:
            next_refresh = self.last_refresh_at + self.current_interval
        return {
            "name": self.name,
            "state": self.state,
            "is_refreshing": self.is_running,
            "last_refresh": self.last_refresh_at,
            "next_refresh": next_refresh,
            "current_interval": self.current_interval,
            "last_error": self.last_error,
        }

    async def close(self) -> None:
        """Stop the timer, drop subscriptions and cancel out-of-band fetches."""
        timer = self._timer_task
        self.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        pending = [t for t in self._out_of_band if not t.done()]
        if timer is not None:
            pending.append(timer)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._out_of_band.clear()
