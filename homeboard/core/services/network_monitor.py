"""
Connectivity Prober - decides whether the display is really online.

Signals, from most to least trusted:
- an active reachability probe (HEAD on a small well-known URL)
- transport outcomes reported by ``MonitoredHttpClient``
- platform hints (OS network events, screen wake), which only schedule a
  debounced re-check and never flip state directly
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from homeboard.core.config import settings
from homeboard.core.offline.state import NetworkStateStore

logger = logging.getLogger(__name__)


class ConnectivityProber:
    def __init__(
        self,
        store: NetworkStateStore,
        *,
        probe_url: Optional[str] = None,
        timeout: float = 5.0,
        interval: Optional[float] = None,
        debounce: Optional[float] = None,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.probe_url = probe_url or settings.PROBE_URL
        self.timeout = float(timeout)
        self.interval = settings.PROBE_INTERVAL_SECONDS if interval is None else float(interval)
        self.debounce = settings.PROBE_DEBOUNCE_SECONDS if debounce is None else float(debounce)
        self._client_factory = client_factory
        self._sleep_fn = sleep_fn
        self._time_fn = time_fn

        self.last_verdict: Optional[bool] = None
        self.last_checked_at: Optional[float] = None
        self._watch_tasks: List[asyncio.Task] = []
        self._debounce_task: Optional[asyncio.Task] = None
        self._unwatch: Optional[Callable[[], None]] = None

    async def _probe(self) -> bool:
        """Return True when offline. Any exception during the probe counts as offline."""
        try:
            async with self._client_factory(timeout=self.timeout) as client:
                r = await client.head(self.probe_url, headers={"Cache-Control": "no-cache"})
            offline = r.status_code >= 500
        except Exception as e:
            logger.debug("Connectivity probe failed: %s", e)
            offline = True
        self.last_verdict = offline
        self.last_checked_at = self._time_fn()
        return offline

    def _apply(self, offline: bool) -> None:
        if offline and not self._store.is_offline:
            logger.info("Network lost, transitioning to offline state")
            self._store.set_offline()
        elif not offline and self._store.is_offline:
            logger.info("Network restored, transitioning to online state")
            self._store.set_online()

    async def check_connectivity(self) -> bool:
        """One-shot probe; forwards the verdict to the store if it changes state."""
        logger.debug("Performing connectivity check against %s", self.probe_url)
        offline = await self._probe()
        self._apply(offline)
        return offline

    def watch(
        self,
        callback: Optional[Callable[[bool], Any]],
        *,
        forward_to_store: bool = False,
    ) -> Callable[[], None]:
        """Poll every ``interval`` seconds and call ``callback(offline)`` on change.

        With ``forward_to_store`` every verdict also goes through ``_apply``, so a
        store forced offline by transport errors comes back on the next
        reachable probe even when the probe verdict itself never changed.
        """
        task = asyncio.get_running_loop().create_task(
            self._watch_loop(callback, forward_to_store), name="connectivity-watch"
        )
        self._watch_tasks.append(task)

        def _unsubscribe() -> None:
            if not task.done():
                task.cancel()
            if task in self._watch_tasks:
                self._watch_tasks.remove(task)

        return _unsubscribe

    async def _watch_loop(self, callback: Optional[Callable[[bool], Any]], forward_to_store: bool) -> None:
        previous: Optional[bool] = None
        while True:
            offline = await self._probe()
            if forward_to_store:
                self._apply(offline)
            if offline != previous:
                logger.debug("Connectivity watch detected change: offline=%s", offline)
                previous = offline
                if callback is not None:
                    try:
                        callback(offline)
                    except Exception:
                        logger.exception("Connectivity watch callback failed")
            await self._sleep_fn(self.interval)

    def notify_platform_event(self, online: bool) -> None:
        """Low-confidence hint; schedules a verified re-check after the debounce delay."""
        logger.info("Platform %s event detected, verifying", "online" if online else "offline")
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounced_check())

    async def _debounced_check(self) -> None:
        await self._sleep_fn(self.debounce)
        await self.check_connectivity()

    async def start(self) -> None:
        logger.info("Starting continuous network monitoring")
        await self.check_connectivity()
        if self._unwatch is None:
            self._unwatch = self.watch(None, forward_to_store=True)

    async def stop(self) -> None:
        logger.info("Stopping network monitoring")
        tasks = list(self._watch_tasks)
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None
        self._watch_tasks.clear()
        if self._debounce_task is not None:
            tasks.append(self._debounce_task)
            self._debounce_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def is_monitoring(self) -> bool:
        return self._unwatch is not None

    def status(self) -> Dict[str, Any]:
        return {
            "watching": self.is_monitoring,
            "probe_url": self.probe_url,
            "last_verdict": None if self.last_verdict is None else ("offline" if self.last_verdict else "online"),
            "last_checked_at": self.last_checked_at,
        }
