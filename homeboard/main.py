from __future__ import annotations

import logging
from fastapi import FastAPI

from homeboard.core.config import settings
from homeboard.core.services.dashboard import build_dashboard
from homeboard.modules.api.router import router as api_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.APP_NAME)

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup():
    """Build the per-process runtime and start probing/refreshing."""
    logger.info(f"{settings.APP_NAME} starting")
    logger.info(f"Offline state file: {settings.STATE_FILE}")
    logger.info(f"Connectivity probe: {settings.PROBE_URL} every {settings.PROBE_INTERVAL_SECONDS}s")
    logger.info(f"Cache expiry: {settings.CACHE_EXPIRY_SECONDS}s, retries: {settings.RETRY_ATTEMPTS}")

    dashboard = build_dashboard(settings)
    app.state.dashboard = dashboard
    await dashboard.start()


@app.on_event("shutdown")
async def shutdown():
    """Stop timers and flush the offline state."""
    dashboard = getattr(app.state, "dashboard", None)
    if dashboard is not None:
        await dashboard.stop()


@app.get("/healthz")
def healthz():
    """Health check endpoint."""
    dashboard = getattr(app.state, "dashboard", None)
    return {
        "ok": True,
        "app": settings.APP_NAME,
        "env": settings.APP_ENV,
        "offline": dashboard.store.is_offline if dashboard is not None else None,
    }
