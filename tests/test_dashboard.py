"""Tests for wiring the per-process dashboard runtime from settings."""

import asyncio
import dataclasses
import json

from homeboard.core.config import settings
from homeboard.core.offline.events import OfflineStateChanged
from homeboard.core.services.dashboard import build_dashboard
from homeboard.core.services.scheduler import STATE_PAUSED


def _config(tmp_path, **overrides):
    return dataclasses.replace(settings, STATE_FILE=str(tmp_path / "offline_state.json"), **overrides)


def test_build_dashboard_registers_enabled_sources(tmp_path):
    dashboard = build_dashboard(_config(tmp_path, NHL_ENABLED=True, WEATHER_ALERTS_ENABLED=True))

    assert dashboard.source_names() == ["nhl", "weather_alerts"]
    assert dashboard.sources["nhl"].primary_cache_key == "nhl-schedule"
    assert dashboard.sources["weather_alerts"].primary_cache_key == "weather-alerts"
    assert dashboard.version_watcher is None
    # One offline-state listener per source scheduler, all sharing one store.
    assert dashboard.store.events.listener_count(OfflineStateChanged) == 2


def test_disabled_sources_are_skipped(tmp_path):
    dashboard = build_dashboard(_config(tmp_path, NHL_ENABLED=False, WEATHER_ALERTS_ENABLED=False))
    assert dashboard.source_names() == []
    assert dashboard.status()["reload_required"] is False


def test_build_dashboard_restores_persisted_cache(tmp_path):
    state = {
        "key": "offline-state",
        "lastOnlineTime": 10.0,
        "lastUpdateTime": 20.0,
        "networkErrorCount": 0,
        "cache": [["weather-alerts", {"data": {"features": []}, "timestamp": 20.0, "isStale": False}]],
    }
    (tmp_path / "offline_state.json").write_text(json.dumps(state), encoding="utf-8")

    dashboard = build_dashboard(_config(tmp_path))

    assert dashboard.store.get_cached_data("weather-alerts") == {"features": []}
    assert dashboard.store.last_update_time == 20.0


def test_stale_build_sets_reload_flag(tmp_path):
    dashboard = build_dashboard(_config(tmp_path, VERSION_CHECK_ENABLED=True, VERSION_CHECK_URL="https://dash.test/"))

    assert dashboard.version_watcher is not None
    dashboard._on_stale_build('"v1"', '"v2"')
    assert dashboard.status()["reload_required"] is True


def test_offline_broadcast_pauses_every_source(tmp_path):
    dashboard = build_dashboard(_config(tmp_path, NHL_ENABLED=True, WEATHER_ALERTS_ENABLED=True))

    dashboard.store.set_offline()

    states = {name: handle.scheduler.state for name, handle in dashboard.sources.items()}
    assert states == {"nhl": STATE_PAUSED, "weather_alerts": STATE_PAUSED}
    asyncio.run(dashboard.store.close())
