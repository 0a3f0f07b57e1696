"""Pure refresh-interval functions used by the schedulers.

Each function maps a snapshot of the last fetched data to a delay in seconds
and has no side effects, so it can be tested without timers.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from homeboard.core.config import settings

PRE_GAME_WINDOW = dt.timedelta(minutes=15)

LIVE_STATES = {"LIVE", "CRIT"}
FINISHED_STATES = {"OFF", "FINAL"}


@dataclass(frozen=True)
class GameIntervals:
    pre_game: float = 15 * 60
    pre_game_close: float = 30
    in_game: float = 15
    post_game: float = 60 * 60

    @classmethod
    def from_settings(cls) -> "GameIntervals":
        return cls(
            pre_game=settings.NHL_PRE_GAME,
            pre_game_close=settings.NHL_PRE_GAME_CLOSE,
            in_game=settings.NHL_IN_GAME,
            post_game=settings.NHL_POST_GAME,
        )


def _parse_utc(value: Any) -> Optional[dt.datetime]:
    if not value:
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        try:
            parsed = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def game_refresh_interval(
    game: Optional[Mapping[str, Any]],
    now: dt.datetime,
    intervals: GameIntervals = GameIntervals(),
) -> float:
    """Pick the refresh delay for a game snapshot (``gameState`` + ``startTimeUTC``)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    if not game:
        return intervals.post_game
    start = _parse_utc(game.get("startTimeUTC"))
    if start is None:
        return intervals.post_game

    state = str(game.get("gameState") or "").upper()
    if state == "FUT":
        if now >= start - PRE_GAME_WINDOW:
            return intervals.pre_game_close
        return intervals.pre_game
    if state in LIVE_STATES:
        return intervals.in_game
    # OFF, FINAL and anything unknown
    return intervals.post_game


def fixed_interval(seconds: float) -> Callable[[Any], float]:
    value = max(0.0, float(seconds))

    def _interval(_snapshot: Any) -> float:
        return value

    return _interval
