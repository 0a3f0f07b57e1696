"""
Offline State - Persisted Representation

SRP: Only the on-disk shape of the network state and its JSON file.
No connectivity logic. The store decodes this into its in-memory mapping.

Blob structure (fixed storage key ``offline-state``):
{
    "key": "offline-state",
    "lastOnlineTime": 1700000000.0,
    "lastUpdateTime": 1700000000.0,
    "networkErrorCount": 0,
    "cache": {"nhl-schedule": {"data": ..., "timestamp": ..., "isStale": false}}
}

``cache`` is accepted either as a key/value record (above) or as a list of
``[key, entry]`` pairs (how a serialized mapping type is commonly dumped);
both decode to the same dict.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

STORAGE_KEY = "offline-state"


class PersistedCacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data: Any = None
    timestamp: float
    is_stale: bool = Field(default=False, alias="isStale")


class PersistedState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str = STORAGE_KEY
    last_online_time: Optional[float] = Field(default=None, alias="lastOnlineTime")
    last_update_time: Optional[float] = Field(default=None, alias="lastUpdateTime")
    network_error_count: int = Field(default=0, alias="networkErrorCount", ge=0)
    cache: Dict[str, PersistedCacheEntry] = Field(default_factory=dict)

    @field_validator("cache", mode="before")
    @classmethod
    def normalize_cache(cls, value: Any) -> Any:
        """Decode the cache from a record, a pair list, or nothing at all."""
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, (list, tuple)):
            decoded: Dict[str, Any] = {}
            for item in value:
                if isinstance(item, (list, tuple)) and len(item) == 2:
                    decoded[str(item[0])] = item[1]
                else:
                    logger.warning("Skipping malformed persisted cache item: %r", item)
            return decoded
        logger.warning("Unsupported persisted cache type %s, starting empty", type(value).__name__)
        return {}

    def to_blob(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StateFile:
    """
    Best-effort JSON persistence for :class:`PersistedState`.

    Writes are atomic (temp file + rename). A corrupted or unreadable file
    yields ``None`` so the store starts fresh.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Optional[PersistedState]:
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Corrupted offline state in %s, starting fresh: %s", self.path, e)
            return None
        if not isinstance(raw, dict):
            logger.warning("Offline state in %s is not an object, starting fresh", self.path)
            return None
        if raw.get("key", STORAGE_KEY) != STORAGE_KEY:
            logger.warning("Offline state in %s has unexpected key %r, ignoring", self.path, raw.get("key"))
            return None
        try:
            return PersistedState.model_validate(raw)
        except ValueError as e:
            logger.warning("Invalid offline state in %s, starting fresh: %s", self.path, e)
            return None

    def save(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(
            json.dumps(state.to_blob(), indent=2, default=str, ensure_ascii=False),
            encoding="utf-8",
        )
        tmp.replace(self.path)
