from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()  # Load .env file if present


def _get(key: str, default: str = "") -> str:
    return os.getenv(key, default)


def _get_bool(key: str, default: bool = False) -> bool:
    raw = _get(key, "1" if default else "0").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _get_float(key: str, default: float) -> float:
    raw = _get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    APP_NAME: str = _get("APP_NAME", "Homeboard")
    APP_ENV: str = _get("APP_ENV", "dev")
    LOG_LEVEL: str = _get("LOG_LEVEL", "INFO").upper()

    # Offline state persistence
    STATE_FILE: str = _get("STATE_FILE", "data/offline_state.json")

    # Cache / staleness
    CACHE_EXPIRY_SECONDS: float = _get_float("CACHE_EXPIRY_SECONDS", 15 * 60)
    STALE_DATA_SECONDS: float = _get_float("STALE_DATA_SECONDS", 15 * 60)
    NETWORK_ERROR_THRESHOLD: int = int(_get("NETWORK_ERROR_THRESHOLD", "3"))

    # Retry controls
    RETRY_ATTEMPTS: int = int(_get("RETRY_ATTEMPTS", "3"))
    RETRY_DELAY_SECONDS: float = _get_float("RETRY_DELAY_SECONDS", 1.0)
    RETRY_MAX_DELAY_SECONDS: float = _get_float("RETRY_MAX_DELAY_SECONDS", 10.0)
    RETRY_JITTER_SECONDS: float = _get_float("RETRY_JITTER_SECONDS", 1.0)
    TRANSPORT_RETRY_ATTEMPTS: int = int(_get("TRANSPORT_RETRY_ATTEMPTS", "0"))
    HTTP_TIMEOUT: float = _get_float("HTTP_TIMEOUT", 8.0)

    # Connectivity probing
    PROBE_URL: str = _get("PROBE_URL", "https://www.gstatic.com/generate_204")
    PROBE_INTERVAL_SECONDS: float = _get_float("PROBE_INTERVAL_SECONDS", 30.0)
    PROBE_DEBOUNCE_SECONDS: float = _get_float("PROBE_DEBOUNCE_SECONDS", 1.0)

    # Build/version polling
    VERSION_CHECK_ENABLED: bool = _get_bool("VERSION_CHECK_ENABLED", False)
    VERSION_CHECK_URL: str = _get("VERSION_CHECK_URL", "http://localhost:8080/index.html")
    VERSION_CHECK_INTERVAL_SECONDS: float = _get_float("VERSION_CHECK_INTERVAL_SECONDS", 60.0)

    # NHL source
    NHL_ENABLED: bool = _get_bool("NHL_ENABLED", True)
    NHL_TEAM: str = _get("NHL_TEAM", "car").lower()
    NHL_BASE_URL: str = _get("NHL_BASE_URL", "https://api-web.nhle.com/v1")
    NHL_PRE_GAME: float = _get_float("NHL_PRE_GAME", 15 * 60)
    NHL_PRE_GAME_CLOSE: float = _get_float("NHL_PRE_GAME_CLOSE", 30)
    NHL_IN_GAME: float = _get_float("NHL_IN_GAME", 15)
    NHL_POST_GAME: float = _get_float("NHL_POST_GAME", 60 * 60)

    # Weather alerts source
    WEATHER_ALERTS_ENABLED: bool = _get_bool("WEATHER_ALERTS_ENABLED", True)
    WEATHER_ALERTS_BASE_URL: str = _get("WEATHER_ALERTS_BASE_URL", "https://api.weather.gov")
    WEATHER_ALERTS_POINT: str = _get("WEATHER_ALERTS_POINT", "35.986351,-78.679718")
    WEATHER_ALERTS_INTERVAL_SECONDS: float = _get_float("WEATHER_ALERTS_INTERVAL_SECONDS", 60.0)
    WEATHER_ALERTS_USER_AGENT: str = _get("WEATHER_ALERTS_USER_AGENT", "homeboard (dashboard)")


settings = Settings()
