"""NWS active alerts for the configured point."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from homeboard.core.config import settings
from homeboard.core.services.intervals import fixed_interval
from homeboard.core.services.resilient import ResilientCaller
from homeboard.integrations.http.client import MonitoredHttpClient

logger = logging.getLogger(__name__)

CACHE_KEY = "weather-alerts"


class WeatherAlertsSource:
    name = "weather_alerts"

    def __init__(
        self,
        caller: ResilientCaller,
        client: MonitoredHttpClient,
        *,
        point: Optional[str] = None,
        base_url: Optional[str] = None,
        interval: Optional[float] = None,
    ) -> None:
        self._caller = caller
        self._client = client
        self.point = point or settings.WEATHER_ALERTS_POINT
        self.base_url = (base_url or settings.WEATHER_ALERTS_BASE_URL).rstrip("/")
        self.refresh_interval = fixed_interval(
            settings.WEATHER_ALERTS_INTERVAL_SECONDS if interval is None else interval
        )

    async def _request(self) -> Dict[str, Any]:
        return await self._client.get_json(
            f"{self.base_url}/alerts/active",
            params={"point": self.point},
            headers={"User-Agent": settings.WEATHER_ALERTS_USER_AGENT, "Accept": "application/geo+json"},
        )

    async def fetch(self) -> List[Dict[str, Any]]:
        # The alert list changes within minutes; keep the cache window at the refresh interval.
        data = await self._caller.resilient_call(
            self._request,
            CACHE_KEY,
            cache_expiry=self.refresh_interval(None),
        )
        features = (data or {}).get("features") or []
        alerts = [f.get("properties") or {} for f in features if isinstance(f, dict)]
        if not alerts:
            logger.info("No alerts found for point %s", self.point)
        return alerts
