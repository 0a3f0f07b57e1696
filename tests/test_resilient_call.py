"""Tests for the stale-while-revalidate call wrapper."""

from __future__ import annotations

import asyncio

import pytest

from homeboard.core.offline.state import NetworkStateStore
from homeboard.core.services.errors import UpstreamTimeout
from homeboard.core.services.resilient import ResilientCaller, with_deadline

EXPIRY = 900.0


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class _Operation:
    def __init__(self, result="live", exc: Exception | None = None) -> None:
        self.result = result
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.result


async def _no_sleep(_seconds: float) -> None:
    return None


def _setup(clock: _Clock, *, retry_attempts: int = 0):
    store = NetworkStateStore(time_fn=clock.time)
    caller = ResilientCaller(
        "test",
        store,
        retry_attempts=retry_attempts,
        retry_delay=0.01,
        cache_expiry=EXPIRY,
        sleep_fn=_no_sleep,
        time_fn=clock.time,
    )
    return store, caller


def test_fresh_cache_short_circuits_until_expiry():
    clock = _Clock(1000.0)
    store, caller = _setup(clock)
    store.cache_data("k", "cached", timestamp=clock.now)
    operation = _Operation()

    clock.advance(EXPIRY - 0.001)
    assert asyncio.run(caller.resilient_call(operation, "k")) == "cached"
    assert operation.calls == 0
    assert caller.last_result("k").source == "cache"

    clock.advance(0.002)
    assert asyncio.run(caller.resilient_call(operation, "k")) == "live"
    assert operation.calls == 1
    assert store.get_cached_data("k") == "live"


def test_failure_after_retries_falls_back_to_expired_cache():
    clock = _Clock(1000.0)
    store, caller = _setup(clock, retry_attempts=2)
    store.cache_data("k", "old", timestamp=clock.now)
    clock.advance(10 * EXPIRY)
    operation = _Operation(exc=RuntimeError("provider down"))

    result = asyncio.run(caller.fetch(operation, "k"))

    assert result.data == "old"
    assert result.source == "fallback"
    assert result.is_degraded is True
    assert result.age == 10 * EXPIRY
    assert result.error == "provider down"
    assert operation.calls == 3


def test_failure_falls_back_to_entry_marked_stale():
    clock = _Clock()
    store, caller = _setup(clock)
    store.cache_data("k", "marked")
    store.mark_data_stale("k")
    operation = _Operation(exc=RuntimeError("down"))

    assert asyncio.run(caller.resilient_call(operation, "k")) == "marked"
    # Stale-marked entries never satisfy the freshness short-circuit.
    assert operation.calls == 1


def test_failure_without_cache_propagates_error():
    clock = _Clock()
    _store, caller = _setup(clock, retry_attempts=1)
    operation = _Operation(exc=RuntimeError("nothing to show"))

    with pytest.raises(RuntimeError, match="nothing to show"):
        asyncio.run(caller.resilient_call(operation, "missing"))
    assert operation.calls == 2


def test_force_refresh_bypasses_fresh_cache():
    clock = _Clock()
    store, caller = _setup(clock)
    store.cache_data("k", "cached")
    operation = _Operation(result="forced")

    assert asyncio.run(caller.resilient_call(operation, "k", force_refresh=True)) == "forced"
    assert operation.calls == 1
    assert store.get_cached_data("k") == "forced"


def test_per_call_overrides_take_precedence():
    clock = _Clock(1000.0)
    store, caller = _setup(clock)
    store.cache_data("k", "cached", timestamp=clock.now)
    clock.advance(20)
    operation = _Operation(exc=RuntimeError("down"))

    # cache_expiry=10 makes the 20s-old entry expired; retry_attempts=2 -> three tries.
    assert asyncio.run(caller.resilient_call(operation, "k", cache_expiry=10, retry_attempts=2)) == "cached"
    assert operation.calls == 3


def test_wrapper_does_not_touch_network_error_count():
    clock = _Clock()
    store, caller = _setup(clock, retry_attempts=3)
    store.cache_data("k", "cached", timestamp=0.0)
    operation = _Operation(exc=ConnectionError("refused"))

    asyncio.run(caller.resilient_call(operation, "k"))
    assert store.network_error_count == 0
    assert store.is_offline is False


def test_with_deadline_abandons_but_does_not_cancel():
    async def scenario():
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "late"

        with pytest.raises(UpstreamTimeout):
            await with_deadline(slow(), 0.01)
        await asyncio.wait_for(finished.wait(), 1.0)
        return finished.is_set()

    assert asyncio.run(scenario()) is True


def test_with_deadline_returns_result_in_time():
    async def quick():
        return 42

    assert asyncio.run(with_deadline(quick(), 1.0)) == 42
