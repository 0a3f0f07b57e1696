"""
Dashboard runtime - the per-process context object.

Builds the network state store once and injects it into the transport,
the connectivity prober, and every source's caller/scheduler pair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from homeboard.core.config import Settings, settings as default_settings
from homeboard.core.offline.state import NetworkStateStore
from homeboard.core.services.network_monitor import ConnectivityProber
from homeboard.core.services.resilient import ResilientCaller, ResilientResult
from homeboard.core.services.scheduler import RefreshScheduler
from homeboard.core.services.version_watch import AssetVersionWatcher
from homeboard.core.storage.state_file import StateFile
from homeboard.integrations.http.client import MonitoredHttpClient
from homeboard.sources.nhl import SCHEDULE_CACHE_KEY, NhlSource
from homeboard.sources.weather_alerts import CACHE_KEY as WEATHER_ALERTS_CACHE_KEY
from homeboard.sources.weather_alerts import WeatherAlertsSource

logger = logging.getLogger(__name__)


@dataclass
class SourceHandle:
    name: str
    caller: ResilientCaller
    scheduler: RefreshScheduler
    primary_cache_key: str

    def last_result(self) -> Optional[ResilientResult]:
        return self.caller.last_result(self.primary_cache_key)

    def to_dict(self) -> Dict[str, Any]:
        result = self.last_result()
        return {
            "name": self.name,
            "cache_key": self.primary_cache_key,
            "scheduler": self.scheduler.status(),
            "data": result.to_dict() if result else None,
        }


@dataclass
class Dashboard:
    store: NetworkStateStore
    client: MonitoredHttpClient
    prober: ConnectivityProber
    version_watcher: Optional[AssetVersionWatcher] = None
    sources: Dict[str, SourceHandle] = field(default_factory=dict)
    reload_required: bool = False

    def add_source(
        self,
        name: str,
        fetch: Callable[[], Awaitable[Any]],
        *,
        interval_fn: Callable[[Any], float],
        primary_cache_key: str,
        caller: ResilientCaller,
    ) -> SourceHandle:
        scheduler = RefreshScheduler(name, fetch, self.store, interval_fn=interval_fn)
        handle = SourceHandle(name=name, caller=caller, scheduler=scheduler, primary_cache_key=primary_cache_key)
        self.sources[name] = handle
        return handle

    def _on_stale_build(self, previous: str, current: str) -> None:
        logger.warning("Frontend build changed (%s -> %s), display reload required", previous, current)
        self.reload_required = True

    async def start(self) -> None:
        await self.prober.start()
        for handle in self.sources.values():
            handle.scheduler.start()
        if self.version_watcher is not None:
            self.version_watcher.start()
        logger.info("Dashboard started with %d source(s)", len(self.sources))

    async def stop(self) -> None:
        await self.prober.stop()
        if self.version_watcher is not None:
            await self.version_watcher.stop()
        for handle in self.sources.values():
            await handle.scheduler.close()
        await self.store.close()
        logger.info("Dashboard stopped")

    def status(self) -> Dict[str, Any]:
        payload = self.store.snapshot()
        payload["reload_required"] = self.reload_required
        payload["monitor"] = self.prober.status()
        return payload

    def source_names(self) -> List[str]:
        return sorted(self.sources)


def build_dashboard(config: Settings = default_settings) -> Dashboard:
    store = NetworkStateStore.from_state_file(
        StateFile(config.STATE_FILE),
        error_threshold=config.NETWORK_ERROR_THRESHOLD,
        stale_after=config.STALE_DATA_SECONDS,
    )
    client = MonitoredHttpClient(store, timeout=config.HTTP_TIMEOUT, retry_attempts=config.TRANSPORT_RETRY_ATTEMPTS)
    prober = ConnectivityProber(
        store,
        probe_url=config.PROBE_URL,
        interval=config.PROBE_INTERVAL_SECONDS,
        debounce=config.PROBE_DEBOUNCE_SECONDS,
    )
    dashboard = Dashboard(store=store, client=client, prober=prober)

    if config.VERSION_CHECK_ENABLED:
        dashboard.version_watcher = AssetVersionWatcher(
            config.VERSION_CHECK_URL,
            dashboard._on_stale_build,
            interval=config.VERSION_CHECK_INTERVAL_SECONDS,
        )

    if config.NHL_ENABLED:
        caller = ResilientCaller(NhlSource.name, store)
        nhl = NhlSource(caller, client, team=config.NHL_TEAM, base_url=config.NHL_BASE_URL)
        dashboard.add_source(
            nhl.name,
            nhl.fetch,
            interval_fn=nhl.refresh_interval,
            primary_cache_key=SCHEDULE_CACHE_KEY,
            caller=caller,
        )

    if config.WEATHER_ALERTS_ENABLED:
        caller = ResilientCaller(WeatherAlertsSource.name, store)
        alerts = WeatherAlertsSource(
            caller,
            client,
            point=config.WEATHER_ALERTS_POINT,
            base_url=config.WEATHER_ALERTS_BASE_URL,
            interval=config.WEATHER_ALERTS_INTERVAL_SECONDS,
        )
        dashboard.add_source(
            alerts.name,
            alerts.fetch,
            interval_fn=alerts.refresh_interval,
            primary_cache_key=WEATHER_ALERTS_CACHE_KEY,
            caller=caller,
        )

    return dashboard
