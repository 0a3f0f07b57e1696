"""
Homeboard - Monitored HTTP Client

SRP: Only HTTP communication with data providers.
No caching here. Caching belongs to ResilientCaller.

Responsibilities:
- GET requests returning parsed JSON
- Timeout handling (default 8s)
- Error translation to custom exceptions
- Reporting transport outcomes to the network state store. This is the only
  place that increments ``network_error_count``: once per logical request,
  after this layer's own retries and any enclosing retry loop (for example
  ``ResilientCaller``) are exhausted.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from homeboard.core.config import settings
from homeboard.core.offline.state import NetworkStateStore
from homeboard.core.services.errors import (
    BadUpstreamResponse,
    UpstreamTimeout,
    UpstreamUnavailable,
    is_network_error,
)
from homeboard.core.services.retry_policy import RetryPolicy, is_final_attempt, retry_with_backoff

logger = logging.getLogger(__name__)


class MonitoredHttpClient:
    """
    Async JSON client shared by all source adapters.

    A successful response while the store is offline is positive proof of
    connectivity and brings the store back online.
    """

    def __init__(
        self,
        store: NetworkStateStore,
        *,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
        **retry_kwargs: Any,
    ):
        self._store = store
        self.timeout = settings.HTTP_TIMEOUT if timeout is None else float(timeout)
        self._policy = RetryPolicy(
            max_attempts=settings.TRANSPORT_RETRY_ATTEMPTS if retry_attempts is None else int(retry_attempts),
            base_delay=settings.RETRY_DELAY_SECONDS if retry_delay is None else float(retry_delay),
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            retry_predicate=is_network_error,
            jitter=settings.RETRY_JITTER_SECONDS,
        )
        self._client_factory = client_factory
        self._retry_kwargs = retry_kwargs

    async def _get_once(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> Any:
        try:
            async with self._client_factory(timeout=self.timeout) as client:
                r = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException:
            raise UpstreamTimeout(f"Timeout after {self.timeout}s fetching {url}")
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"Cannot connect to {url}: {e}")

        if r.status_code >= 400:
            raise BadUpstreamResponse(f"HTTP error! status: {r.status_code} ({url})", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise BadUpstreamResponse(f"Malformed JSON from {url}: {e}", status_code=r.status_code)

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET ``url`` and return its JSON body, retrying connectivity failures only."""
        logger.debug("Fetching %s", url)
        try:
            data = await retry_with_backoff(
                lambda: self._get_once(url, params, headers),
                self._policy,
                **self._retry_kwargs,
            )
        except Exception as e:
            if is_network_error(e):
                if is_final_attempt():
                    logger.debug("Network error detected during fetch of %s", url)
                    self._store.increment_network_errors()
                else:
                    # The caller retries this request; count its final outcome only.
                    logger.debug("Network error during fetch of %s, caller will retry", url)
            raise

        if self._store.is_offline:
            logger.debug("Successful fetch while offline, transitioning to online")
            self._store.set_online()
        return data
