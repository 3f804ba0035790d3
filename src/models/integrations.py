"""Pydantic models for the Fitbit / FatSecret integration endpoints.

Request and response field names follow the web client's camelCase where
the client already depends on them (``authorizationUrl``, ``caloriesOut``,
``estimatedCompletionHours``, ``noData``); job and log rows keep the
database's snake_case.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import Field

from src.integrations.base import BackfillStatus, SyncStatus
from src.models.base import GroofitBase


# ---------- Handshakes ----------

class FitbitAuthStartRequest(GroofitBase):
    redirect_url: str = Field(alias="redirectUrl", min_length=1)


class FitbitAuthCallbackRequest(GroofitBase):
    code: str = Field(min_length=1)
    state: str = Field(min_length=1)
    redirect_url: str = Field(alias="redirectUrl", min_length=1)


class FatSecretAuthStartRequest(GroofitBase):
    callback_url: str = Field(alias="callbackUrl", min_length=1)


class FatSecretAuthCallbackRequest(GroofitBase):
    oauth_token: str = Field(min_length=1)
    oauth_verifier: str = Field(min_length=1)


class AuthorizationUrlResponse(GroofitBase):
    authorization_url: str = Field(alias="authorizationUrl")


class SuccessResponse(GroofitBase):
    success: bool = True


# ---------- Fitbit sync ----------

class SyncDateRequest(GroofitBase):
    """Body for single-date syncs; the date defaults to today."""

    sync_date: date | None = Field(default=None, alias="date")


class SyncDayResponse(GroofitBase):
    success: bool = True
    sync_date: date = Field(alias="date")
    steps: int | None = None
    calories_out: int | None = Field(default=None, alias="caloriesOut")
    weight: float | None = None
    body_fat: float | None = Field(default=None, alias="bodyFat")
    sleep_minutes: int | None = Field(default=None, alias="sleepMinutes")
    skipped: list[str] = Field(default_factory=list)


class SyncSleepResponse(GroofitBase):
    success: bool = True
    sync_date: date = Field(alias="date")
    duration_minutes: int | None = None
    score: int | None = None
    no_data: bool | None = Field(default=None, alias="noData")


# ---------- Backfill ----------

class BackfillStartRequest(GroofitBase):
    days: int | None = Field(default=None, ge=1)


class BackfillJobRead(GroofitBase):
    total_days: int
    days_synced: int
    current_day_offset: int
    status: BackfillStatus
    started_at: datetime
    last_sync_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    pct_complete: float


class BackfillStartResponse(GroofitBase):
    message: str
    estimated_completion_hours: float = Field(alias="estimatedCompletionHours")
    job: BackfillJobRead


# ---------- Connection management ----------

class FitbitConnectionResponse(GroofitBase):
    connected: bool
    fitbit_user_id: str | None = None
    scope: str | None = None
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None
    token_expires_at: datetime | None = None


class SyncLogRead(GroofitBase):
    sync_date: date
    status: SyncStatus
    message: str
    created_at: datetime


# ---------- FatSecret ----------

class FoodSearchRequest(GroofitBase):
    query: str = Field(min_length=1, max_length=200)
    page: int = Field(default=0, ge=0)


class FoodSyncResponse(GroofitBase):
    success: bool = True
    synced: int
    sync_date: date = Field(alias="date")


# ---------- Scheduler ----------

class BackfillTickItem(GroofitBase):
    user_id: uuid.UUID
    status: str
    days_processed: int
    days_failed: int
    days_synced: int | None = None
    total_days: int | None = None
    error: str | None = None


class BackfillTickResponse(GroofitBase):
    jobs: int
    results: list[BackfillTickItem]


class DayFailure(GroofitBase):
    sync_date: date = Field(alias="date")
    error: str | None = None


class AutoSyncItem(GroofitBase):
    user_id: uuid.UUID
    status: str
    synced_dates: list[date] = Field(default_factory=list, alias="syncedDates")
    failures: list[DayFailure] = Field(default_factory=list)


class AutoSyncResponse(GroofitBase):
    users: int
    results: list[AutoSyncItem]


class FoodSyncItem(GroofitBase):
    user_id: uuid.UUID
    success: bool
    synced: int = 0
    error: str | None = None


class FoodSyncAllResponse(GroofitBase):
    users: int
    sync_date: date = Field(alias="date")
    results: list[FoodSyncItem]


class PurgeResponse(GroofitBase):
    deleted: int
