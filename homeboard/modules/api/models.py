from __future__ import annotations
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict


class CacheEntryOut(BaseModel):
    key: str
    timestamp: float
    age: float
    is_stale: bool


class RecoveryOut(BaseModel):
    recovered: bool
    is_offline: bool
    status_message: str


class SourcePayloadOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    data: Any = None
    source: Optional[str] = None
    cached_at: Optional[float] = None
    age: Optional[float] = None
    degraded: bool = False
    last_error: Optional[str] = None
    scheduler: Dict[str, Any] = {}
