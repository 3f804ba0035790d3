"""Scheduler-triggered endpoints.

Called by the external cron (hourly backfill tick, periodic auto-sync and
food import, OAuth state cleanup) with the cron secret or the service-role
key as bearer token.  Every handler works across all users through the
elevated store, so none of them take user input.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter

from src.dependencies import AppSettings, ElevatedStore, FatSecret, Fitbit, SchedulerPrincipal
from src.integrations.sync.backfill import BackfillOrchestrator
from src.integrations.sync.daily import DailySyncExecutor
from src.integrations.sync.food import FoodDiarySync
from src.integrations.sync.handshake import HandshakeService
from src.integrations.sync.scheduler import AutoSyncScheduler
from src.integrations.sync.tokens import TokenRefresher
from src.models.integrations import (
    AutoSyncItem,
    AutoSyncResponse,
    BackfillTickItem,
    BackfillTickResponse,
    DayFailure,
    FoodSyncAllResponse,
    FoodSyncItem,
    PurgeResponse,
)

router = APIRouter(prefix="/cron", tags=["scheduler"])
logger = logging.getLogger("groofit.cron")


@router.post("/fitbit/backfill-tick", response_model=BackfillTickResponse)
async def backfill_tick(
    principal: SchedulerPrincipal, store: ElevatedStore, fitbit: Fitbit
) -> Any:
    logger.info("Backfill tick triggered via %s", principal.credential)
    refresher = TokenRefresher(store, fitbit)
    orchestrator = BackfillOrchestrator(
        store, DailySyncExecutor(store, fitbit, refresher), refresher
    )
    results = await orchestrator.tick()
    return BackfillTickResponse(
        jobs=len(results),
        results=[
            BackfillTickItem(
                user_id=r.user_id,
                status=r.status,
                days_processed=r.days_processed,
                days_failed=r.days_failed,
                days_synced=r.job.days_synced if r.job else None,
                total_days=r.job.total_days if r.job else None,
                error=r.error,
            )
            for r in results
        ],
    )


@router.post("/fitbit/auto-sync", response_model=AutoSyncResponse)
async def auto_sync(principal: SchedulerPrincipal, store: ElevatedStore, fitbit: Fitbit) -> Any:
    logger.info("Auto-sync triggered via %s", principal.credential)
    executor = DailySyncExecutor(store, fitbit, TokenRefresher(store, fitbit))
    results = await AutoSyncScheduler(store, executor).sync_all_connected()
    return AutoSyncResponse(
        users=len(results),
        results=[
            AutoSyncItem(
                user_id=r.user_id,
                status=r.status,
                synced_dates=[o.date for o in r.outcomes if o.success],
                failures=[
                    DayFailure(sync_date=o.date, error=o.error)
                    for o in r.outcomes
                    if not o.success
                ],
            )
            for r in results
        ],
    )


@router.post("/fatsecret/sync-food", response_model=FoodSyncAllResponse)
async def sync_food_all(
    principal: SchedulerPrincipal, store: ElevatedStore, fatsecret: FatSecret
) -> Any:
    logger.info("FatSecret food sync triggered via %s", principal.credential)
    target_date = date.today()
    results = await FoodDiarySync(store, fatsecret).sync_all_users(target_date)
    return FoodSyncAllResponse(
        users=len(results),
        sync_date=target_date,
        results=[
            FoodSyncItem(user_id=r.user_id, success=r.success, synced=r.synced, error=r.error)
            for r in results
        ],
    )


@router.post("/oauth-states/purge", response_model=PurgeResponse)
async def purge_oauth_states(
    principal: SchedulerPrincipal,
    store: ElevatedStore,
    fitbit: Fitbit,
    fatsecret: FatSecret,
    settings: AppSettings,
) -> Any:
    service = HandshakeService(store, fitbit, fatsecret, settings.allowed_redirect_origins)
    return PurgeResponse(deleted=await service.purge_stale_states())
