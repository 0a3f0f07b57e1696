"""Tests for the network state store: cache table, error threshold and recovery."""

from __future__ import annotations

import asyncio

from homeboard.core.offline.events import NetworkRecoveryStarted, OfflineStateChanged
from homeboard.core.offline.state import (
    STATUS_NOMINAL,
    STATUS_OFFLINE,
    STATUS_STALE,
    NetworkStateStore,
)


class _Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


def _store(clock: _Clock | None = None) -> NetworkStateStore:
    clock = clock or _Clock()
    return NetworkStateStore(time_fn=clock.time)


# ---------------------------------------------------------------------------
# Cache table
# ---------------------------------------------------------------------------


class TestCacheTable:
    def test_cache_then_mark_stale_hides_entry_from_plain_reads(self):
        store = _store(_Clock(1000.0))
        store.cache_data("k", {"v": 1}, timestamp=1000.0)
        assert store.get_cached_data("k") == {"v": 1}

        store.mark_data_stale("k")
        assert store.get_cached_data("k") is None

        entry = store.get_cache_entry("k", include_stale=True)
        assert entry is not None
        assert entry.data == {"v": 1}
        assert entry.is_stale is True
        assert store.get_cache_entry("k", include_stale=False) is None

    def test_overwrite_clears_stale_flag(self):
        store = _store()
        store.cache_data("k", 1)
        store.mark_data_stale("k")
        store.cache_data("k", 2)
        assert store.get_cached_data("k") == 2

    def test_mark_stale_on_missing_key_is_noop(self):
        store = _store()
        store.mark_data_stale("missing")
        assert store.get_cache_entry("missing") is None

    def test_cache_write_resets_errors_and_advances_update_time(self):
        clock = _Clock(5000.0)
        store = _store(clock)
        store.increment_network_errors()
        store.increment_network_errors()
        assert store.network_error_count == 2

        store.cache_data("k", "v", timestamp=6000.0)
        assert store.network_error_count == 0
        assert store.last_update_time == 6000.0

        # Older timestamps never move last_update_time backwards.
        store.cache_data("other", "v", timestamp=100.0)
        assert store.last_update_time == 6000.0

    def test_clear_and_invalidate(self):
        store = _store()
        store.cache_data("a", 1)
        store.cache_data("b", 2)

        assert store.invalidate("a") is True
        assert store.invalidate("a") is False
        assert store.get_cached_data("b") == 2

        store.clear_cache()
        assert store.cache_keys() == []
        assert store.cached_data_count() == 0

    def test_counts_and_entries_skip_stale(self):
        clock = _Clock(1000.0)
        store = _store(clock)
        store.cache_data("fresh", 1, timestamp=990.0)
        store.cache_data("stale", 2)
        store.mark_data_stale("stale")

        assert store.cached_data_count() == 1
        entries = store.cached_data_entries()
        assert list(entries) == ["fresh"]
        assert entries["fresh"]["age"] == 10.0


# ---------------------------------------------------------------------------
# Error threshold
# ---------------------------------------------------------------------------


class TestNetworkErrors:
    def test_three_errors_force_offline_exactly_once(self):
        store = _store()
        received = []
        store.events.subscribe(OfflineStateChanged, received.append)

        store.increment_network_errors()
        store.increment_network_errors()
        assert store.is_offline is False
        assert store.should_retry is True

        store.increment_network_errors()
        assert store.is_offline is True
        assert store.should_retry is False
        assert received == [OfflineStateChanged(is_offline=True)]

        store.increment_network_errors()
        assert store.is_offline is True
        assert len(received) == 1

    def test_reset_between_errors_prevents_transition(self):
        store = _store()
        store.increment_network_errors()
        store.increment_network_errors()
        store.reset_network_errors()
        store.increment_network_errors()
        assert store.is_offline is False
        assert store.network_error_count == 1


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------


class TestDerivedValues:
    def test_status_message_precedence(self):
        clock = _Clock(0.0)
        store = _store(clock)
        assert store.status_message == STATUS_NOMINAL

        clock.advance(15 * 60 + 1)
        assert store.has_stale_data is True
        assert store.status_message == STATUS_STALE

        store.set_offline()
        assert store.status_message == STATUS_OFFLINE

    def test_snapshot_contains_flags(self):
        store = _store()
        snap = store.snapshot()
        assert snap["is_offline"] is False
        assert snap["is_recovering"] is False
        assert snap["network_error_count"] == 0
        assert snap["status_message"] == STATUS_NOMINAL


# ---------------------------------------------------------------------------
# Transitions and broadcasts
# ---------------------------------------------------------------------------


class TestTransitions:
    def test_set_offline_is_idempotent(self):
        store = _store()
        received = []
        store.events.subscribe(OfflineStateChanged, received.append)

        store.set_offline()
        store.set_offline()
        assert store.is_offline is True
        assert store.is_recovering is False
        assert len(received) == 1

    def test_throwing_listener_does_not_block_others(self):
        store = _store()
        received = []

        def _boom(_event):
            raise RuntimeError("listener bug")

        store.events.subscribe(OfflineStateChanged, _boom)
        store.events.subscribe(OfflineStateChanged, received.append)

        store.set_offline()
        assert store.is_offline is True
        assert received == [OfflineStateChanged(is_offline=True)]

    def test_set_online_broadcasts_and_recovers(self):
        clock = _Clock(1000.0)
        store = _store(clock)
        received = []
        recoveries = []
        store.events.subscribe(OfflineStateChanged, received.append)
        store.events.subscribe(NetworkRecoveryStarted, recoveries.append)

        store.set_offline()
        store.network_error_count = 2
        clock.advance(60)

        async def scenario():
            task = store.set_online()
            assert task is not None
            return await task

        assert asyncio.run(scenario()) is True
        assert store.is_offline is False
        assert store.last_online_time == 1060.0
        assert store.last_update_time == 1060.0
        assert store.network_error_count == 0
        assert received[-1] == OfflineStateChanged(is_offline=False)
        assert len(recoveries) == 1

    def test_set_online_without_loop_defers_recovery(self):
        store = _store()
        store.set_offline()
        assert store.set_online() is None
        assert store.is_offline is False
        assert store.is_recovering is False


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------


class TestRecovery:
    def test_second_trigger_while_running_is_noop(self):
        store = _store()
        started = []

        async def scenario():
            gate = asyncio.Event()

            async def handler(_event):
                started.append(1)
                await gate.wait()

            store.events.subscribe(NetworkRecoveryStarted, handler)
            first = asyncio.create_task(store.trigger_network_recovery())
            await asyncio.sleep(0)
            assert store.is_recovering is True

            second = await store.trigger_network_recovery()
            gate.set()
            return await first, second

        first, second = asyncio.run(scenario())
        assert first is True
        assert second is False
        assert started == [1]
        assert store.is_recovering is False

    def test_failed_recovery_goes_back_offline(self):
        store = _store()

        async def failing_handler(_event):
            raise ConnectionError("still down")

        store.events.subscribe(NetworkRecoveryStarted, failing_handler)

        assert asyncio.run(store.trigger_network_recovery()) is False
        assert store.is_offline is True
        assert store.is_recovering is False

    def test_sync_listener_failure_does_not_fail_recovery(self):
        store = _store()

        def _boom(_event):
            raise RuntimeError("listener bug")

        store.events.subscribe(NetworkRecoveryStarted, _boom)
        assert asyncio.run(store.trigger_network_recovery()) is True
        assert store.is_offline is False

    def test_repeated_set_online_keeps_one_cancellable_recovery(self):
        store = _store()
        started = []

        async def scenario():
            gate = asyncio.Event()

            async def handler(_event):
                started.append(1)
                await gate.wait()

            store.events.subscribe(NetworkRecoveryStarted, handler)
            store.set_offline()
            first = store.set_online()
            for _ in range(3):
                await asyncio.sleep(0)
            assert store.is_recovering is True

            store.set_offline()
            second = store.set_online()
            assert second is first

            await store.close()
            return first

        first = asyncio.run(scenario())
        assert first.cancelled() is True
        assert started == [1]
        assert store.is_recovering is False
