"""Fitbit endpoints: OAuth handshake, on-demand sync, backfill, connection status."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import AppSettings, CurrentUser, FatSecret, Fitbit, UserStore
from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.sync.backfill import BackfillOrchestrator
from src.integrations.sync.daily import DailySyncExecutor
from src.integrations.sync.handshake import HandshakeService
from src.integrations.sync.store import SyncStore
from src.integrations.sync.tokens import TokenRefresher
from src.models.integrations import (
    AuthorizationUrlResponse,
    BackfillJobRead,
    BackfillStartRequest,
    BackfillStartResponse,
    FitbitAuthCallbackRequest,
    FitbitAuthStartRequest,
    FitbitConnectionResponse,
    SuccessResponse,
    SyncDateRequest,
    SyncDayResponse,
    SyncLogRead,
    SyncSleepResponse,
)

router = APIRouter(prefix="/fitbit", tags=["fitbit"])


def _executor(store: SyncStore, fitbit: FitbitAdapter) -> DailySyncExecutor:
    return DailySyncExecutor(store, fitbit, TokenRefresher(store, fitbit))


# ---------- Handshake ----------

@router.post("/auth/start", response_model=AuthorizationUrlResponse)
async def start_auth(
    user: CurrentUser,
    body: FitbitAuthStartRequest,
    store: UserStore,
    fitbit: Fitbit,
    fatsecret: FatSecret,
    settings: AppSettings,
) -> Any:
    service = HandshakeService(store, fitbit, fatsecret, settings.allowed_redirect_origins)
    url = await service.start_fitbit_authorization(user.user_id, body.redirect_url)
    return AuthorizationUrlResponse(authorization_url=url)


@router.post("/auth/callback", response_model=SuccessResponse)
async def complete_auth(
    user: CurrentUser,
    body: FitbitAuthCallbackRequest,
    store: UserStore,
    fitbit: Fitbit,
    fatsecret: FatSecret,
    settings: AppSettings,
) -> Any:
    service = HandshakeService(store, fitbit, fatsecret, settings.allowed_redirect_origins)
    await service.complete_fitbit_authorization(
        user.user_id, body.code, body.state, body.redirect_url
    )
    return SuccessResponse()


# ---------- Sync ----------

@router.post("/sync/day", response_model=SyncDayResponse)
async def sync_day(
    user: CurrentUser, body: SyncDateRequest, store: UserStore, fitbit: Fitbit
) -> Any:
    result = await _executor(store, fitbit).sync_day(
        user.user_id, body.sync_date or date.today()
    )
    return SyncDayResponse(
        sync_date=result.date,
        steps=result.steps,
        calories_out=result.calories_out,
        weight=result.weight,
        body_fat=result.body_fat,
        sleep_minutes=result.sleep_minutes,
        skipped=result.skipped,
    )


@router.post(
    "/sync/sleep", response_model=SyncSleepResponse, response_model_exclude_none=True
)
async def sync_sleep(
    user: CurrentUser, body: SyncDateRequest, store: UserStore, fitbit: Fitbit
) -> Any:
    result = await _executor(store, fitbit).sync_sleep(
        user.user_id, body.sync_date or date.today()
    )
    if not result.has_data:
        return SyncSleepResponse(sync_date=result.date, no_data=True)
    return SyncSleepResponse(
        sync_date=result.date,
        duration_minutes=result.duration_minutes,
        score=result.score,
    )


# ---------- Backfill ----------

@router.post("/backfill", response_model=BackfillStartResponse)
async def start_backfill(
    user: CurrentUser, body: BackfillStartRequest, store: UserStore, fitbit: Fitbit
) -> Any:
    refresher = TokenRefresher(store, fitbit)
    orchestrator = BackfillOrchestrator(
        store, DailySyncExecutor(store, fitbit, refresher), refresher
    )
    result = await orchestrator.start(user.user_id, body.days)
    job = result.job
    if result.created:
        message = f"Backfill started for {job.total_days} days"
    else:
        message = (
            f"Backfill already in progress: {job.days_synced}/{job.total_days} days synced"
        )
    return BackfillStartResponse(
        message=message,
        estimated_completion_hours=result.estimated_completion_hours,
        job=BackfillJobRead.model_validate(job),
    )


@router.get("/backfill", response_model=BackfillJobRead)
async def get_backfill(user: CurrentUser, store: UserStore) -> Any:
    job = await store.get_backfill_job(user.user_id)
    if job is None:
        raise HTTPException(status_code=404, detail="No backfill job")
    return BackfillJobRead.model_validate(job)


# ---------- Connection ----------

@router.get("/connection", response_model=FitbitConnectionResponse)
async def get_connection_status(user: CurrentUser, store: UserStore) -> Any:
    credential = await store.get_fitbit_credential(user.user_id)
    if credential is None:
        return FitbitConnectionResponse(connected=False)
    return FitbitConnectionResponse(
        connected=True,
        fitbit_user_id=credential.fitbit_user_id,
        scope=credential.scope,
        connected_at=credential.connected_at,
        last_sync_at=credential.last_sync_at,
        token_expires_at=credential.token_expires_at,
    )


@router.delete("/connection", status_code=204)
async def disconnect(user: CurrentUser, store: UserStore) -> None:
    if not await store.delete_fitbit_credential(user.user_id):
        raise HTTPException(status_code=404, detail="Fitbit not connected")


@router.get("/sync-logs", response_model=list[SyncLogRead])
async def list_sync_logs(
    user: CurrentUser,
    store: UserStore,
    limit: int = Query(default=50, ge=1, le=200),
) -> Any:
    entries = await store.list_sync_logs(user.user_id, limit=limit)
    return [SyncLogRead.model_validate(e) for e in entries]
