"""NHL schedule + current game adapter with game-state driven refresh."""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional

from homeboard.core.config import settings
from homeboard.core.services.intervals import GameIntervals, game_refresh_interval
from homeboard.core.services.resilient import ResilientCaller
from homeboard.integrations.http.client import MonitoredHttpClient

logger = logging.getLogger(__name__)

SCHEDULE_CACHE_KEY = "nhl-schedule"


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class NhlSource:
    """Fetches the team's week schedule and the first game's landing data."""

    name = "nhl"

    def __init__(
        self,
        caller: ResilientCaller,
        client: MonitoredHttpClient,
        *,
        team: Optional[str] = None,
        base_url: Optional[str] = None,
        intervals: Optional[GameIntervals] = None,
        now_fn: Callable[[], dt.datetime] = _utc_now,
    ) -> None:
        self._caller = caller
        self._client = client
        self.team = (team or settings.NHL_TEAM).lower()
        self.base_url = (base_url or settings.NHL_BASE_URL).rstrip("/")
        self.intervals = intervals or GameIntervals.from_settings()
        self._now_fn = now_fn

    async def get_schedule(self, *, force_refresh: bool = False) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/club-schedule/{self.team}/week/now"
        data = await self._caller.resilient_call(
            lambda: self._client.get_json(url),
            SCHEDULE_CACHE_KEY,
            force_refresh=force_refresh,
        )
        games = (data or {}).get("games") or []
        logger.info("Retrieved %s schedule: %d game(s)", self.team, len(games))
        return games

    async def get_game_details(self, game_id: Any, *, force_refresh: bool = False) -> Dict[str, Any]:
        url = f"{self.base_url}/gamecenter/{game_id}/landing"
        # Live games change faster than the default cache window.
        return await self._caller.resilient_call(
            lambda: self._client.get_json(url),
            f"nhl-game-{game_id}",
            cache_expiry=self.intervals.in_game,
            force_refresh=force_refresh,
        )

    async def fetch(self) -> Dict[str, Any]:
        games = await self.get_schedule()
        event: Optional[Dict[str, Any]] = None
        if games:
            event = await self.get_game_details(games[0].get("id"))
        return {"schedule": games, "event": event}

    def refresh_interval(self, snapshot: Optional[Dict[str, Any]]) -> float:
        event = (snapshot or {}).get("event")
        return game_refresh_interval(event, self._now_fn(), self.intervals)
