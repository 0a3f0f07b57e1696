"""
Dashboard API - connectivity status, cache inspection and source data.

Degraded data is never hidden: every source payload carries where it came
from (cache | live | fallback) and how old it is, both in the body and in
the ``X-Data-Source`` / ``X-Data-Age`` / ``X-Upstream-Online`` headers.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from homeboard.core.services.dashboard import Dashboard
from homeboard.modules.api.models import CacheEntryOut, RecoveryOut, SourcePayloadOut

logger = logging.getLogger(__name__)

router = APIRouter()


def _dashboard(request: Request) -> Dashboard:
    dashboard = getattr(request.app.state, "dashboard", None)
    if dashboard is None:
        raise HTTPException(status_code=503, detail="Dashboard runtime not initialized")
    return dashboard


# =============================================================================
# NETWORK STATE
# =============================================================================


@router.get("/network/status")
def network_status(request: Request):
    """Return the offline/recovering state plus derived status message."""
    return _dashboard(request).status()


@router.post("/network/check")
async def network_check(request: Request):
    """Run a connectivity probe now and return the refreshed status."""
    dashboard = _dashboard(request)
    await dashboard.prober.check_connectivity()
    return dashboard.status()


@router.post("/network/recover", response_model=RecoveryOut)
async def network_recover(request: Request):
    """Trigger a recovery sequence (no-op while one is already running)."""
    store = _dashboard(request).store
    recovered = await store.trigger_network_recovery()
    return RecoveryOut(recovered=recovered, is_offline=store.is_offline, status_message=store.status_message)


# =============================================================================
# CACHE
# =============================================================================


@router.get("/cache", response_model=List[CacheEntryOut])
def list_cache(request: Request):
    store = _dashboard(request).store
    now = store.now()
    entries: List[CacheEntryOut] = []
    for key in sorted(store.cache_keys()):
        entry = store.get_cache_entry(key, include_stale=True)
        if entry is None:
            continue
        entries.append(CacheEntryOut(key=key, timestamp=entry.timestamp, age=entry.age(now), is_stale=entry.is_stale))
    return entries


@router.post("/cache/{key}/stale")
def mark_cache_stale(key: str, request: Request):
    store = _dashboard(request).store
    if store.get_cache_entry(key) is None:
        raise HTTPException(status_code=404, detail=f"No cached data for {key}")
    store.mark_data_stale(key)
    return {"key": key, "is_stale": True}


@router.delete("/cache/{key}")
def invalidate_cache_entry(key: str, request: Request):
    if not _dashboard(request).store.invalidate(key):
        raise HTTPException(status_code=404, detail=f"No cached data for {key}")
    return {"key": key, "removed": True}


@router.delete("/cache")
def clear_cache(request: Request):
    _dashboard(request).store.clear_cache()
    return {"cleared": True}


# =============================================================================
# SOURCES
# =============================================================================


@router.get("/sources")
def list_sources(request: Request):
    dashboard = _dashboard(request)
    return {"sources": [dashboard.sources[name].to_dict() for name in dashboard.source_names()]}


@router.get("/sources/{name}")
def get_source(name: str, request: Request):
    """Latest data for one source with provenance headers."""
    dashboard = _dashboard(request)
    handle = dashboard.sources.get(name)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Unknown source: {name}")

    scheduler = handle.scheduler
    result = handle.last_result()
    if scheduler.last_result is None:
        detail = f"No data available for {name}"
        if scheduler.last_error:
            detail = f"{detail}: {scheduler.last_error}"
        raise HTTPException(status_code=503, detail=detail)

    payload = SourcePayloadOut(
        name=name,
        data=scheduler.last_result,
        source=result.source if result else None,
        cached_at=result.cached_at if result else None,
        age=result.age if result else None,
        degraded=result.is_degraded if result else False,
        last_error=scheduler.last_error or (result.error if result else None),
        scheduler=scheduler.status(),
    )
    headers: Dict[str, Any] = {
        "X-Data-Source": payload.source or "unknown",
        "X-Upstream-Online": str(not dashboard.store.is_offline).lower(),
    }
    if payload.age is not None:
        headers["X-Data-Age"] = f"{payload.age:.0f}"

    return Response(
        content=json.dumps(payload.model_dump(), default=str, ensure_ascii=False),
        media_type="application/json",
        headers=headers,
    )
