"""Shared fixtures for integration sync tests.

``InMemorySyncStore`` implements the full ``SyncStore`` contract with the
same semantics as the Postgres store (unique keys, conditional job creation,
capped advancement, null-preserving daily upserts), so the services can be
exercised without a database.
"""

from __future__ import annotations

import copy
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import httpx
import pytest

from src.integrations.adapters.fatsecret import ClientCredentialsCache, FatSecretAdapter
from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.base import (
    AuthorizationState,
    BackfillJob,
    BackfillStatus,
    DailyLogRecord,
    FatSecretCredential,
    FitbitCredential,
    FoodLogEntry,
    OAuthTokens,
    SleepRecord,
    SyncLogEntry,
)
from src.integrations.config_loader import SyncConfig, load_sync_config
from src.integrations.sync.store import SyncStore

# Canonical test user IDs
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemorySyncStore(SyncStore):
    def __init__(self) -> None:
        self.fitbit_credentials: dict[UUID, FitbitCredential] = {}
        self.fatsecret_credentials: dict[UUID, FatSecretCredential] = {}
        self.states: list[AuthorizationState] = []
        self.jobs: dict[UUID, BackfillJob] = {}
        self.daily_logs: dict[tuple[UUID, date], DailyLogRecord] = {}
        self.sleep_logs: dict[tuple[UUID, date], SleepRecord] = {}
        self.food_logs: list[tuple[UUID, date, FoodLogEntry]] = []
        self.sync_logs: list[SyncLogEntry] = []
        self.token_updates: list[tuple[UUID, OAuthTokens]] = []

    # -- Fitbit credentials

    async def get_fitbit_credential(self, user_id):
        credential = self.fitbit_credentials.get(user_id)
        return copy.copy(credential) if credential else None

    async def upsert_fitbit_credential(self, credential):
        previous = self.fitbit_credentials.get(credential.user_id)
        stored = copy.copy(credential)
        if previous and stored.last_sync_at is None:
            stored.last_sync_at = previous.last_sync_at
        self.fitbit_credentials[credential.user_id] = stored

    async def update_fitbit_tokens(self, user_id, tokens, previous_refresh_token):
        stored = self.fitbit_credentials.get(user_id)
        if stored is None or stored.refresh_token != previous_refresh_token:
            return False
        self.token_updates.append((user_id, tokens))
        stored.apply_tokens(tokens)
        return True

    async def touch_fitbit_last_sync(self, user_id, at):
        if user_id in self.fitbit_credentials:
            self.fitbit_credentials[user_id].last_sync_at = at

    async def delete_fitbit_credential(self, user_id):
        return self.fitbit_credentials.pop(user_id, None) is not None

    async def list_fitbit_credentials(self):
        return [copy.copy(c) for c in self.fitbit_credentials.values()]

    # -- FatSecret credentials

    async def get_fatsecret_credential(self, user_id):
        credential = self.fatsecret_credentials.get(user_id)
        return copy.copy(credential) if credential else None

    async def upsert_fatsecret_credential(self, credential):
        self.fatsecret_credentials[credential.user_id] = copy.copy(credential)

    async def touch_fatsecret_last_sync(self, user_id, at):
        if user_id in self.fatsecret_credentials:
            self.fatsecret_credentials[user_id].last_sync_at = at

    async def delete_fatsecret_credential(self, user_id):
        return self.fatsecret_credentials.pop(user_id, None) is not None

    async def list_fatsecret_credentials(self):
        return [copy.copy(c) for c in self.fatsecret_credentials.values()]

    # -- Authorization states

    async def save_authorization_state(self, state):
        self.states.append(copy.copy(state))

    async def get_authorization_state(self, user_id, provider, state):
        for s in self.states:
            if s.user_id == user_id and s.provider == provider and s.state == state:
                return copy.copy(s)
        return None

    async def delete_authorization_state(self, user_id, provider, state):
        self.states = [
            s
            for s in self.states
            if not (s.user_id == user_id and s.provider == provider and s.state == state)
        ]

    async def delete_authorization_states(self, user_id, provider):
        before = len(self.states)
        self.states = [
            s for s in self.states if not (s.user_id == user_id and s.provider == provider)
        ]
        return before - len(self.states)

    async def purge_authorization_states(self, created_before):
        before = len(self.states)
        self.states = [s for s in self.states if s.created_at >= created_before]
        return before - len(self.states)

    # -- Backfill jobs

    async def get_backfill_job(self, user_id):
        job = self.jobs.get(user_id)
        return copy.copy(job) if job else None

    async def create_backfill_job(self, user_id, total_days, started_at):
        existing = self.jobs.get(user_id)
        if existing and existing.status == BackfillStatus.IN_PROGRESS:
            return None
        job = BackfillJob(user_id=user_id, total_days=total_days, started_at=started_at)
        self.jobs[user_id] = job
        return copy.copy(job)

    async def list_active_backfill_jobs(self):
        active = [j for j in self.jobs.values() if j.status == BackfillStatus.IN_PROGRESS]
        active.sort(key=lambda j: (j.last_sync_at is not None, j.last_sync_at or j.started_at))
        return [copy.copy(j) for j in active]

    async def advance_backfill_job(self, user_id, days, at):
        job = self.jobs.get(user_id)
        if job is None or job.status != BackfillStatus.IN_PROGRESS:
            return None
        reached = job.days_synced + days >= job.total_days
        job.days_synced = min(job.days_synced + days, job.total_days)
        job.current_day_offset += days
        job.last_sync_at = at
        if reached:
            job.status = BackfillStatus.COMPLETED
            job.completed_at = at
        return copy.copy(job)

    async def fail_backfill_job(self, user_id, message, at):
        job = self.jobs.get(user_id)
        if job and job.status == BackfillStatus.IN_PROGRESS:
            job.status = BackfillStatus.ERROR
            job.error_message = message
            job.last_sync_at = at

    # -- Synced data

    async def upsert_daily_log(self, record):
        key = (record.user_id, record.log_date)
        existing = self.daily_logs.get(key)
        if existing is None:
            self.daily_logs[key] = copy.copy(record)
            return
        for column, value in record.metrics().items():
            if value is not None:
                setattr(existing, column, value)

    async def upsert_sleep_log(self, record):
        self.sleep_logs[(record.user_id, record.date)] = copy.copy(record)

    async def replace_food_entries(self, user_id, log_date, entries):
        self.food_logs = [
            row
            for row in self.food_logs
            if not (
                row[0] == user_id
                and row[1] == log_date
                and row[2].fatsecret_food_id is not None
            )
        ]
        self.food_logs.extend((user_id, log_date, e) for e in entries)
        return len(entries)

    # -- Sync log

    async def append_sync_log(self, entry):
        self.sync_logs.append(entry)

    async def list_sync_logs(self, user_id, limit=50):
        rows = [e for e in self.sync_logs if e.user_id == user_id]
        rows.sort(key=lambda e: e.created_at, reverse=True)
        return rows[:limit]


@pytest.fixture
def store() -> InMemorySyncStore:
    return InMemorySyncStore()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """The bundled config with request pacing disabled."""
    config = load_sync_config()
    config.backfill.request_delay_ms = 0
    config.auto_sync.request_delay_ms = 0
    return config


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def make_response(status_code: int = 200, json_data: object | None = None) -> httpx.Response:
    """A real httpx.Response carrying a JSON body."""
    request = httpx.Request("GET", "https://example.test")
    if json_data is None:
        return httpx.Response(status_code, request=request)
    return httpx.Response(status_code, json=json_data, request=request)


@pytest.fixture
def mock_http_client() -> MagicMock:
    client = MagicMock(spec=httpx.AsyncClient)
    client.get = AsyncMock()
    client.post = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# Adapters and credentials
# ---------------------------------------------------------------------------


@pytest.fixture
def fitbit_adapter(mock_http_client: MagicMock) -> FitbitAdapter:
    return FitbitAdapter(
        client_id="test_client_id",
        client_secret="test_client_secret",
        http_client=mock_http_client,
    )


@pytest.fixture
def fatsecret_adapter(mock_http_client: MagicMock, sync_config: SyncConfig) -> FatSecretAdapter:
    return FatSecretAdapter(
        consumer_key="test_consumer_key",
        consumer_secret="test_consumer_secret",
        token_cache=ClientCredentialsCache(),
        http_client=mock_http_client,
        config=sync_config,
    )


def make_fitbit_credential(
    user_id: UUID = TEST_USER_ID, expires_in: timedelta = timedelta(hours=6)
) -> FitbitCredential:
    return FitbitCredential(
        user_id=user_id,
        access_token="access-old",
        refresh_token="refresh-old",
        token_expires_at=TEST_NOW + expires_in,
        fitbit_user_id="ABC123",
        scope="activity weight sleep",
        connected_at=TEST_NOW - timedelta(days=30),
    )


# ---------------------------------------------------------------------------
# Fitbit API payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def fitbit_activity_raw() -> dict:
    return {
        "summary": {
            "steps": 8000,
            "caloriesOut": 2200,
            "restingHeartRate": 58,
            "lightlyActiveMinutes": 180,
            "fairlyActiveMinutes": 25,
            "veryActiveMinutes": 40,
            "distances": [
                {"activity": "tracker", "distance": 5.9},
                {"activity": "total", "distance": 6.12},
            ],
            "heartRateZones": [
                {"name": "Out of Range", "minutes": 1200},
                {"name": "Fat Burn", "minutes": 95},
                {"name": "Cardio", "minutes": 22},
                {"name": "Peak", "minutes": 4},
            ],
        }
    }


@pytest.fixture
def fitbit_weight_raw() -> dict:
    return {"weight": [{"weight": 81.4, "time": "07:02:00"}, {"weight": 81.1, "time": "21:40:00"}]}


@pytest.fixture
def fitbit_fat_raw() -> dict:
    return {"fat": [{"fat": 18.2, "time": "07:02:00"}]}


@pytest.fixture
def fitbit_sleep_raw() -> dict:
    return {
        "sleep": [
            {
                "isMainSleep": False,
                "duration": 1_800_000,
                "efficiency": 80,
                "startTime": "2026-02-23T14:00:00.000",
                "endTime": "2026-02-23T14:30:00.000",
            },
            {
                "isMainSleep": True,
                "duration": 27_000_000,  # 450 min
                "efficiency": 91,
                "startTime": "2026-02-22T23:10:00.000",
                "endTime": "2026-02-23T06:40:00.000",
                "levels": {
                    "summary": {
                        "deep": {"minutes": 82},
                        "rem": {"minutes": 101},
                        "light": {"minutes": 221},
                        "wake": {"minutes": 46},
                    }
                },
            },
        ]
    }
