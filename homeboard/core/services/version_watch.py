"""Detects a redeployed frontend by polling a resource's ETag / Last-Modified."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)


class AssetVersionWatcher:
    """
    Metadata-only polling of one known resource.

    The first fingerprint seen only seeds the baseline. A later, different
    fingerprint calls ``on_stale_build(previous, current)``.
    """

    def __init__(
        self,
        url: str,
        on_stale_build: Callable[[str, str], Any],
        *,
        interval: float = 60.0,
        timeout: float = 5.0,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._on_stale_build = on_stale_build
        self.interval = float(interval)
        self.timeout = float(timeout)
        self._client_factory = client_factory
        self._sleep_fn = sleep_fn
        self.last_seen_tag: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    async def probe(self) -> bool:
        """Return True when a build change was detected on this probe."""
        try:
            async with self._client_factory(timeout=self.timeout) as client:
                r = await client.head(self.url, headers={"Cache-Control": "no-cache"})
        except httpx.HTTPError as e:
            logger.debug("Version probe failed: %s", e)
            return False

        tag = r.headers.get("ETag") or r.headers.get("Last-Modified")
        if not tag:
            logger.debug("No ETag/Last-Modified header present on %s", self.url)
            return False

        previous = self.last_seen_tag
        self.last_seen_tag = tag
        if previous is not None and tag != previous:
            logger.warning("App version change detected via tag (%s -> %s)", previous, tag)
            self._on_stale_build(previous, tag)
            return True
        return False

    async def _loop(self) -> None:
        while True:
            await self.probe()
            await self._sleep_fn(self.interval)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="version-watch")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
