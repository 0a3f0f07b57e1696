"""
Resilient Call Wrapper - stale-while-revalidate over the shared cache.

SRP: cache read -> freshness check -> retry -> cache write -> stale fallback.
No HTTP here: the wrapped operation is any ``async () -> data`` callable.

Error accounting (``network_error_count``) is left to the transport layer so a
logical failure is counted once, no matter how many retries happen here.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from homeboard.core.config import settings
from homeboard.core.offline.state import NetworkStateStore
from homeboard.core.services.errors import UpstreamTimeout
from homeboard.core.services.retry_policy import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")

SOURCE_CACHE = "cache"
SOURCE_LIVE = "live"
SOURCE_FALLBACK = "fallback"


@dataclass
class ResilientResult:
    data: Any
    source: str  # cache | live | fallback
    cached_at: Optional[float] = None
    age: Optional[float] = None
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.source == SOURCE_FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "cached_at": self.cached_at,
            "age": self.age,
            "degraded": self.is_degraded,
            "error": self.error,
        }


class ResilientCaller:
    """Per-source wrapper; one instance per data source, sharing the store."""

    def __init__(
        self,
        source_name: str,
        store: NetworkStateStore,
        *,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
        retry_jitter: Optional[float] = None,
        cache_expiry: Optional[float] = None,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        time_fn: Callable[[], float] = time.time,
    ) -> None:
        self.source_name = source_name
        self._store = store
        self._retry_attempts = settings.RETRY_ATTEMPTS if retry_attempts is None else int(retry_attempts)
        self._retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else float(retry_delay)
        self._retry_max_delay = settings.RETRY_MAX_DELAY_SECONDS if retry_max_delay is None else float(retry_max_delay)
        self._retry_jitter = settings.RETRY_JITTER_SECONDS if retry_jitter is None else float(retry_jitter)
        self._cache_expiry = settings.CACHE_EXPIRY_SECONDS if cache_expiry is None else float(cache_expiry)
        self._sleep_fn = sleep_fn
        self._rng = rng
        self._time_fn = time_fn
        self._last_results: Dict[str, ResilientResult] = {}

    @property
    def is_offline(self) -> bool:
        return self._store.is_offline

    def last_result(self, cache_key: str) -> Optional[ResilientResult]:
        return self._last_results.get(cache_key)

    async def resilient_call(
        self,
        operation: Callable[[], Awaitable[T]],
        cache_key: str,
        *,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        cache_expiry: Optional[float] = None,
        force_refresh: bool = False,
    ) -> T:
        """Return fresh cache, live data, or stale cache when the live call fails."""
        result = await self.fetch(
            operation,
            cache_key,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
            cache_expiry=cache_expiry,
            force_refresh=force_refresh,
        )
        return result.data

    async def fetch(
        self,
        operation: Callable[[], Awaitable[Any]],
        cache_key: str,
        *,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        cache_expiry: Optional[float] = None,
        force_refresh: bool = False,
    ) -> ResilientResult:
        """Same as :meth:`resilient_call` but reports where the data came from."""
        expiry = self._cache_expiry if cache_expiry is None else float(cache_expiry)

        if force_refresh:
            logger.info("[%s] Force refresh requested for %s", self.source_name, cache_key)
        else:
            cached = self._fresh_entry(cache_key, expiry)
            if cached is not None:
                logger.debug("[%s] Using cached data for %s", self.source_name, cache_key)
                return self._remember(cache_key, cached)

        policy = RetryPolicy(
            max_attempts=self._retry_attempts if retry_attempts is None else int(retry_attempts),
            base_delay=self._retry_delay if retry_delay is None else float(retry_delay),
            max_delay=self._retry_max_delay,
            jitter=self._retry_jitter,
        )

        try:
            data = await retry_with_backoff(
                operation,
                policy,
                sleep_fn=self._sleep_fn,
                rng=self._rng,
                on_retry=self._log_retry,
            )
        except Exception as e:
            logger.error("[%s] API call failed for %s: %s", self.source_name, cache_key, e)
            entry = self._store.get_cache_entry(cache_key, include_stale=True)
            if entry is None:
                raise
            now = self._time_fn()
            logger.warning(
                "[%s] Returning stale cached data for %s as fallback (age %.0fs)",
                self.source_name,
                cache_key,
                entry.age(now),
            )
            return self._remember(
                cache_key,
                ResilientResult(
                    data=entry.data,
                    source=SOURCE_FALLBACK,
                    cached_at=entry.timestamp,
                    age=entry.age(now),
                    error=str(e),
                ),
            )

        now = self._time_fn()
        self._store.cache_data(cache_key, data, now)
        logger.info("[%s] Successfully cached data for %s", self.source_name, cache_key)
        return self._remember(cache_key, ResilientResult(data=data, source=SOURCE_LIVE, cached_at=now, age=0.0))

    def _fresh_entry(self, cache_key: str, expiry: float) -> Optional[ResilientResult]:
        # Same visibility rule as get_cached_data: stale entries count as absent.
        entry = self._store.get_cache_entry(cache_key, include_stale=False)
        if entry is None:
            return None
        age = self._time_fn() - entry.timestamp
        if age > expiry:
            logger.debug("[%s] Cached data for %s expired (age %.0fs)", self.source_name, cache_key, age)
            return None
        return ResilientResult(data=entry.data, source=SOURCE_CACHE, cached_at=entry.timestamp, age=max(0.0, age))

    def _remember(self, cache_key: str, result: ResilientResult) -> ResilientResult:
        self._last_results[cache_key] = result
        return result

    def _log_retry(self, attempt: int, exc: BaseException, delay: float) -> None:
        logger.warning(
            "Attempt %d failed for %s, retrying in %.2fs: %s",
            attempt + 1,
            self.source_name,
            delay,
            exc,
        )


async def with_deadline(awaitable: Awaitable[T], timeout: float) -> T:
    """Race ``awaitable`` against ``timeout`` seconds.

    Best-effort cancellation only: on timeout the caller gets
    :class:`UpstreamTimeout` while the underlying work keeps running in the
    background and its result is discarded.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        task.add_done_callback(_discard_result)
        raise UpstreamTimeout(f"Operation did not finish within {timeout}s")


def _discard_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()
