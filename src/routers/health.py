"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.integrations.config_loader import get_sync_config
from src.services.supabase import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("groofit.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 while the API process is up.

    Reports database reachability and which providers have app credentials
    configured; a missing provider is not a failure, its endpoints simply
    answer with ``configuration_error``.
    """
    settings = get_settings()
    db_ok = False
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        db_ok = True
    except Exception as exc:
        logger.warning("Health check DB probe failed: %s", exc)

    return {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "providers": {
            "fitbit": bool(settings.fitbit_client_id and settings.fitbit_client_secret),
            "fatsecret": bool(
                settings.fatsecret_consumer_key and settings.fatsecret_consumer_secret
            ),
        },
        "sync_config_version": get_sync_config().version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
