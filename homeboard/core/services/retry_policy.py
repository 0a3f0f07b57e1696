"""Exponential backoff with jitter for async operations.

The engine has no cancellation token. A caller that needs a hard deadline
wraps the whole call (see ``resilient.with_deadline``); the in-flight
attempt is then abandoned, not stopped.

While an attempt runs, ``is_final_attempt()`` tells code inside the operation
whether any enclosing engine will try it again on failure. Nested engines
restore the outer value when they return, so a layer that keeps per-failure
bookkeeping can defer it until the outermost caller has given up.
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_final_attempt: ContextVar[bool] = ContextVar("homeboard_final_attempt", default=True)


def is_final_attempt() -> bool:
    """False while any enclosing ``retry_with_backoff`` still has retries left."""
    return _final_attempt.get()


def _always_retry(_exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Per-call retry settings. ``max_attempts`` counts retries after the first try."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retry_predicate: Callable[[BaseException], bool] = _always_retry
    jitter: float = 1.0


def compute_backoff(
    attempt: int,
    *,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 1.0,
    rng: Optional[random.Random] = None,
) -> float:
    """Compute ``min(base * 2**attempt + uniform(0, jitter), max_delay)``."""
    safe_attempt = max(0, int(attempt))
    randomizer = rng.uniform if rng is not None else random.uniform
    extra = randomizer(0.0, max(0.0, float(jitter)))
    delay = max(0.0, float(base_delay)) * (2 ** safe_attempt) + extra
    return max(0.0, min(delay, float(max_delay)))


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    **overrides: Any,
) -> T:
    """Run ``operation`` up to ``max_attempts + 1`` times.

    Keyword overrides (``max_attempts``, ``base_delay``, ``max_delay``,
    ``retry_predicate``, ``jitter``) are applied on top of ``policy``.
    A failing ``retry_predicate`` re-raises the error immediately. On
    exhaustion the last error is re-raised.
    """
    effective = replace(policy or RetryPolicy(), **overrides) if overrides else (policy or RetryPolicy())
    max_attempts = max(0, int(effective.max_attempts))

    last_error: Optional[BaseException] = None
    for attempt in range(max_attempts + 1):
        token = _final_attempt.set(attempt == max_attempts and _final_attempt.get())
        try:
            logger.debug("Retry attempt %d/%d", attempt + 1, max_attempts + 1)
            return await operation()
        except Exception as e:
            last_error = e
        finally:
            _final_attempt.reset(token)

        if attempt == max_attempts:
            logger.warning("Max retries (%d) reached, giving up: %s", max_attempts, last_error)
            break

        if not effective.retry_predicate(last_error):
            logger.debug("Error should not be retried: %s", last_error)
            raise last_error

        delay = compute_backoff(
            attempt,
            base_delay=effective.base_delay,
            max_delay=effective.max_delay,
            jitter=effective.jitter,
            rng=rng,
        )
        logger.debug("Attempt %d failed, waiting %.3fs before next attempt: %s", attempt + 1, delay, last_error)
        if on_retry is not None:
            on_retry(attempt, last_error, delay)
        await sleep_fn(delay)

    assert last_error is not None
    raise last_error
