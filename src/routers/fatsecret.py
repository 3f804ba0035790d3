"""FatSecret endpoints: OAuth 1.0a handshake, food diary import, food search."""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import AppSettings, CurrentUser, FatSecret, Fitbit, UserStore
from src.integrations.sync.food import FoodDiarySync
from src.integrations.sync.handshake import HandshakeService
from src.models.integrations import (
    AuthorizationUrlResponse,
    FatSecretAuthCallbackRequest,
    FatSecretAuthStartRequest,
    FoodSearchRequest,
    FoodSyncResponse,
    SuccessResponse,
    SyncDateRequest,
)

router = APIRouter(prefix="/fatsecret", tags=["fatsecret"])


# ---------- Handshake ----------

@router.post("/auth/start", response_model=AuthorizationUrlResponse)
async def start_auth(
    user: CurrentUser,
    body: FatSecretAuthStartRequest,
    store: UserStore,
    fitbit: Fitbit,
    fatsecret: FatSecret,
    settings: AppSettings,
) -> Any:
    service = HandshakeService(store, fitbit, fatsecret, settings.allowed_redirect_origins)
    url = await service.start_fatsecret_authorization(user.user_id, body.callback_url)
    return AuthorizationUrlResponse(authorization_url=url)


@router.post("/auth/callback", response_model=SuccessResponse)
async def complete_auth(
    user: CurrentUser,
    body: FatSecretAuthCallbackRequest,
    store: UserStore,
    fitbit: Fitbit,
    fatsecret: FatSecret,
    settings: AppSettings,
) -> Any:
    service = HandshakeService(store, fitbit, fatsecret, settings.allowed_redirect_origins)
    await service.complete_fatsecret_authorization(
        user.user_id, body.oauth_token, body.oauth_verifier
    )
    return SuccessResponse()


# ---------- Food search (client-credentials token, not user-scoped) ----------

@router.post("/search")
async def search_foods(user: CurrentUser, body: FoodSearchRequest, fatsecret: FatSecret) -> Any:
    return await fatsecret.search_foods(body.query, body.page)


@router.get("/food/{food_id}")
async def get_food(user: CurrentUser, food_id: str, fatsecret: FatSecret) -> Any:
    try:
        return await fatsecret.get_food(food_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ---------- Food diary ----------

@router.post("/sync/food", response_model=FoodSyncResponse)
async def sync_food(
    user: CurrentUser, body: SyncDateRequest, store: UserStore, fatsecret: FatSecret
) -> Any:
    result = await FoodDiarySync(store, fatsecret).sync_user_food(
        user.user_id, body.sync_date or date.today()
    )
    return FoodSyncResponse(synced=result.synced, sync_date=result.date)


@router.delete("/connection", status_code=204)
async def disconnect(user: CurrentUser, store: UserStore) -> None:
    if not await store.delete_fatsecret_credential(user.user_id):
        raise HTTPException(status_code=404, detail="FatSecret not connected")
