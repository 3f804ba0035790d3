"""Persistence for credentials, handshake state, backfill jobs and synced data.

``SyncStore`` is the storage contract the sync services depend on.
``PostgresSyncStore`` implements it over the shared asyncpg pool.  A store is
bound to one principal: a user (row-level security applies) or the elevated
scheduler principal that may read and write every user's rows.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, AsyncGenerator
from uuid import UUID

import asyncpg

from src.integrations.base import (
    AuthorizationState,
    BackfillJob,
    BackfillStatus,
    DailyLogRecord,
    FatSecretCredential,
    FitbitCredential,
    FoodLogEntry,
    OAuthTokens,
    Provider,
    SleepRecord,
    SyncLogEntry,
    SyncStatus,
)
from src.integrations.sync.dedup import build_upsert_query
from src.services.supabase import get_connection

logger = logging.getLogger("groofit.integrations.sync.store")


class SyncStore(ABC):
    """Storage operations used by the handshake, token and sync services."""

    # -- Fitbit credentials ---------------------------------------------

    @abstractmethod
    async def get_fitbit_credential(self, user_id: UUID) -> FitbitCredential | None: ...

    @abstractmethod
    async def upsert_fitbit_credential(self, credential: FitbitCredential) -> None:
        """Insert or replace the user's credential (one row per user)."""

    @abstractmethod
    async def update_fitbit_tokens(
        self, user_id: UUID, tokens: OAuthTokens, previous_refresh_token: str
    ) -> bool:
        """Persist a refreshed token set if the stored pair was not rotated meanwhile.

        Returns False, writing nothing, when the stored refresh token is no
        longer ``previous_refresh_token``.
        """

    @abstractmethod
    async def touch_fitbit_last_sync(self, user_id: UUID, at: datetime) -> None: ...

    @abstractmethod
    async def delete_fitbit_credential(self, user_id: UUID) -> bool: ...

    @abstractmethod
    async def list_fitbit_credentials(self) -> list[FitbitCredential]: ...

    # -- FatSecret credentials ------------------------------------------

    @abstractmethod
    async def get_fatsecret_credential(self, user_id: UUID) -> FatSecretCredential | None: ...

    @abstractmethod
    async def upsert_fatsecret_credential(self, credential: FatSecretCredential) -> None: ...

    @abstractmethod
    async def touch_fatsecret_last_sync(self, user_id: UUID, at: datetime) -> None: ...

    @abstractmethod
    async def delete_fatsecret_credential(self, user_id: UUID) -> bool: ...

    @abstractmethod
    async def list_fatsecret_credentials(self) -> list[FatSecretCredential]: ...

    # -- Authorization states -------------------------------------------

    @abstractmethod
    async def save_authorization_state(self, state: AuthorizationState) -> None: ...

    @abstractmethod
    async def get_authorization_state(
        self, user_id: UUID, provider: Provider, state: str
    ) -> AuthorizationState | None:
        """Exact match on (user, provider, state)."""

    @abstractmethod
    async def delete_authorization_state(
        self, user_id: UUID, provider: Provider, state: str
    ) -> None: ...

    @abstractmethod
    async def delete_authorization_states(self, user_id: UUID, provider: Provider) -> int:
        """Delete every state for (user, provider); returns the count."""

    @abstractmethod
    async def purge_authorization_states(self, created_before: datetime) -> int:
        """Delete every state created before the cutoff, for all users."""

    # -- Backfill jobs --------------------------------------------------

    @abstractmethod
    async def get_backfill_job(self, user_id: UUID) -> BackfillJob | None: ...

    @abstractmethod
    async def create_backfill_job(
        self, user_id: UUID, total_days: int, started_at: datetime
    ) -> BackfillJob | None:
        """Start a fresh job, replacing a finished one.

        Returns None without writing if the user's job is still in progress.
        """

    @abstractmethod
    async def list_active_backfill_jobs(self) -> list[BackfillJob]:
        """In-progress jobs, least recently advanced first."""

    @abstractmethod
    async def advance_backfill_job(
        self, user_id: UUID, days: int, at: datetime
    ) -> BackfillJob | None:
        """Atomically move the cursor forward by ``days``.

        ``days_synced`` is capped at ``total_days``; the job becomes completed
        in the same write once the cap is reached.  Returns None if the job is
        no longer in progress.
        """

    @abstractmethod
    async def fail_backfill_job(self, user_id: UUID, message: str, at: datetime) -> None: ...

    # -- Synced data ----------------------------------------------------

    @abstractmethod
    async def upsert_daily_log(self, record: DailyLogRecord) -> None:
        """Upsert on (user, date); ``None`` fields keep the stored value."""

    @abstractmethod
    async def upsert_sleep_log(self, record: SleepRecord) -> None: ...

    @abstractmethod
    async def replace_food_entries(
        self, user_id: UUID, log_date: date, entries: list[FoodLogEntry]
    ) -> int:
        """Replace the provider-synced food entries for one date."""

    # -- Sync log -------------------------------------------------------

    @abstractmethod
    async def append_sync_log(self, entry: SyncLogEntry) -> None: ...

    @abstractmethod
    async def list_sync_logs(self, user_id: UUID, limit: int = 50) -> list[SyncLogEntry]: ...


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _fitbit_credential(row: asyncpg.Record) -> FitbitCredential:
    return FitbitCredential(
        user_id=row["user_id"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expires_at=row["token_expires_at"],
        fitbit_user_id=row["fitbit_user_id"],
        scope=row["scope"],
        connected_at=row["connected_at"],
        last_sync_at=row["last_sync_at"],
    )


def _fatsecret_credential(row: asyncpg.Record) -> FatSecretCredential:
    return FatSecretCredential(
        user_id=row["user_id"],
        oauth_token=row["oauth_token"],
        oauth_secret=row["oauth_secret"],
        fatsecret_user_id=row["fatsecret_user_id"],
        connected_at=row["connected_at"],
        last_sync_at=row["last_sync_at"],
    )


def _authorization_state(row: asyncpg.Record) -> AuthorizationState:
    return AuthorizationState(
        user_id=row["user_id"],
        provider=Provider(row["provider"]),
        state=row["state"],
        request_token_secret=row["request_token_secret"],
        created_at=row["created_at"],
    )


def _backfill_job(row: asyncpg.Record) -> BackfillJob:
    return BackfillJob(
        user_id=row["user_id"],
        total_days=row["total_days"],
        days_synced=row["days_synced"],
        current_day_offset=row["current_day_offset"],
        status=BackfillStatus(row["status"]),
        started_at=row["started_at"],
        last_sync_at=row["last_sync_at"],
        completed_at=row["completed_at"],
        error_message=row["error_message"],
    )


def _sync_log_entry(row: asyncpg.Record) -> SyncLogEntry:
    return SyncLogEntry(
        user_id=row["user_id"],
        sync_date=row["sync_date"],
        status=SyncStatus(row["status"]),
        message=row["message"],
        created_at=row["created_at"],
    )


def _rows_affected(status: str) -> int:
    """Parse asyncpg's command tag, e.g. 'DELETE 3' → 3."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_DAILY_LOG_COLUMNS = ["user_id", "log_date", *DailyLogRecord.METRIC_COLUMNS, "synced_from_fitbit"]
_DAILY_LOG_UPSERT = build_upsert_query(
    "daily_logs",
    _DAILY_LOG_COLUMNS,
    conflict_columns=["user_id", "log_date"],
    preserve_columns=list(DailyLogRecord.METRIC_COLUMNS),
)

_SLEEP_LOG_COLUMNS = [
    "user_id",
    "date",
    "duration_minutes",
    "efficiency",
    "score",
    "deep_minutes",
    "rem_minutes",
    "light_minutes",
    "wake_minutes",
    "start_time",
    "end_time",
    "raw",
]
_SLEEP_LOG_UPSERT = build_upsert_query(
    "sleep_logs", _SLEEP_LOG_COLUMNS, conflict_columns=["user_id", "date"]
)

_FITBIT_CREDENTIAL_COLUMNS = [
    "user_id",
    "fitbit_user_id",
    "access_token",
    "refresh_token",
    "token_expires_at",
    "scope",
    "connected_at",
    "last_sync_at",
]
_FITBIT_CREDENTIAL_UPSERT = build_upsert_query(
    "fitbit_credentials",
    _FITBIT_CREDENTIAL_COLUMNS,
    conflict_columns=["user_id"],
    preserve_columns=["last_sync_at"],
)

_FATSECRET_CREDENTIAL_COLUMNS = [
    "user_id",
    "fatsecret_user_id",
    "oauth_token",
    "oauth_secret",
    "connected_at",
]
_FATSECRET_CREDENTIAL_UPSERT = build_upsert_query(
    "fatsecret_credentials", _FATSECRET_CREDENTIAL_COLUMNS, conflict_columns=["user_id"]
)

_FOOD_LOG_COLUMNS = [
    "user_id",
    "log_date",
    "food_name",
    "brand",
    "meal_type",
    "fatsecret_food_id",
    "serving_description",
    "calories",
    "protein_g",
    "carbs_g",
    "fat_g",
    "fiber_g",
    "quantity",
]


class PostgresSyncStore(SyncStore):
    """SyncStore over the Supabase Postgres database.

    Args:
        user_id:  Bind every statement to this user's row-level security context.
        elevated: Run as the scheduler principal (service role), bypassing RLS.
    """

    def __init__(self, user_id: UUID | None = None, elevated: bool = False) -> None:
        if user_id is None and not elevated:
            raise ValueError("PostgresSyncStore needs a user_id or elevated=True")
        self._user_id = user_id
        self._elevated = elevated

    @asynccontextmanager
    async def _conn(self) -> AsyncGenerator[asyncpg.Connection, None]:
        async with get_connection(user_id=self._user_id, elevated=self._elevated) as conn:
            yield conn

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._conn() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self._conn() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._conn() as conn:
            return await conn.execute(query, *args)

    # -- Fitbit credentials ---------------------------------------------

    async def get_fitbit_credential(self, user_id: UUID) -> FitbitCredential | None:
        row = await self._fetchrow(
            "SELECT * FROM fitbit_credentials WHERE user_id = $1", user_id
        )
        return _fitbit_credential(row) if row else None

    async def upsert_fitbit_credential(self, credential: FitbitCredential) -> None:
        await self._execute(
            _FITBIT_CREDENTIAL_UPSERT,
            credential.user_id,
            credential.fitbit_user_id,
            credential.access_token,
            credential.refresh_token,
            credential.token_expires_at,
            credential.scope,
            credential.connected_at,
            credential.last_sync_at,
        )

    async def update_fitbit_tokens(
        self, user_id: UUID, tokens: OAuthTokens, previous_refresh_token: str
    ) -> bool:
        status = await self._execute(
            """
            UPDATE fitbit_credentials
            SET access_token = $2,
                refresh_token = COALESCE($3, refresh_token),
                token_expires_at = $4,
                scope = COALESCE($5, scope),
                updated_at = NOW()
            WHERE user_id = $1 AND refresh_token = $6
            """,
            user_id,
            tokens.access_token,
            tokens.refresh_token,
            tokens.expires_at,
            tokens.scope,
            previous_refresh_token,
        )
        return _rows_affected(status) > 0

    async def touch_fitbit_last_sync(self, user_id: UUID, at: datetime) -> None:
        await self._execute(
            "UPDATE fitbit_credentials SET last_sync_at = $2, updated_at = NOW() WHERE user_id = $1",
            user_id,
            at,
        )

    async def delete_fitbit_credential(self, user_id: UUID) -> bool:
        status = await self._execute(
            "DELETE FROM fitbit_credentials WHERE user_id = $1", user_id
        )
        return _rows_affected(status) > 0

    async def list_fitbit_credentials(self) -> list[FitbitCredential]:
        rows = await self._fetch("SELECT * FROM fitbit_credentials ORDER BY connected_at")
        return [_fitbit_credential(r) for r in rows]

    # -- FatSecret credentials ------------------------------------------

    async def get_fatsecret_credential(self, user_id: UUID) -> FatSecretCredential | None:
        row = await self._fetchrow(
            "SELECT * FROM fatsecret_credentials WHERE user_id = $1", user_id
        )
        return _fatsecret_credential(row) if row else None

    async def upsert_fatsecret_credential(self, credential: FatSecretCredential) -> None:
        await self._execute(
            _FATSECRET_CREDENTIAL_UPSERT,
            credential.user_id,
            credential.fatsecret_user_id,
            credential.oauth_token,
            credential.oauth_secret,
            credential.connected_at,
        )

    async def touch_fatsecret_last_sync(self, user_id: UUID, at: datetime) -> None:
        await self._execute(
            "UPDATE fatsecret_credentials SET last_sync_at = $2, updated_at = NOW() WHERE user_id = $1",
            user_id,
            at,
        )

    async def delete_fatsecret_credential(self, user_id: UUID) -> bool:
        status = await self._execute(
            "DELETE FROM fatsecret_credentials WHERE user_id = $1", user_id
        )
        return _rows_affected(status) > 0

    async def list_fatsecret_credentials(self) -> list[FatSecretCredential]:
        rows = await self._fetch("SELECT * FROM fatsecret_credentials ORDER BY connected_at")
        return [_fatsecret_credential(r) for r in rows]

    # -- Authorization states -------------------------------------------

    async def save_authorization_state(self, state: AuthorizationState) -> None:
        await self._execute(
            """
            INSERT INTO oauth_states (user_id, provider, state, request_token_secret, created_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            state.user_id,
            state.provider.value,
            state.state,
            state.request_token_secret,
            state.created_at,
        )

    async def get_authorization_state(
        self, user_id: UUID, provider: Provider, state: str
    ) -> AuthorizationState | None:
        row = await self._fetchrow(
            """
            SELECT * FROM oauth_states
            WHERE user_id = $1 AND provider = $2 AND state = $3
            """,
            user_id,
            provider.value,
            state,
        )
        return _authorization_state(row) if row else None

    async def delete_authorization_state(
        self, user_id: UUID, provider: Provider, state: str
    ) -> None:
        await self._execute(
            "DELETE FROM oauth_states WHERE user_id = $1 AND provider = $2 AND state = $3",
            user_id,
            provider.value,
            state,
        )

    async def delete_authorization_states(self, user_id: UUID, provider: Provider) -> int:
        status = await self._execute(
            "DELETE FROM oauth_states WHERE user_id = $1 AND provider = $2",
            user_id,
            provider.value,
        )
        return _rows_affected(status)

    async def purge_authorization_states(self, created_before: datetime) -> int:
        status = await self._execute(
            "DELETE FROM oauth_states WHERE created_at < $1", created_before
        )
        return _rows_affected(status)

    # -- Backfill jobs --------------------------------------------------

    async def get_backfill_job(self, user_id: UUID) -> BackfillJob | None:
        row = await self._fetchrow(
            "SELECT * FROM fitbit_sync_progress WHERE user_id = $1", user_id
        )
        return _backfill_job(row) if row else None

    async def create_backfill_job(
        self, user_id: UUID, total_days: int, started_at: datetime
    ) -> BackfillJob | None:
        row = await self._fetchrow(
            """
            INSERT INTO fitbit_sync_progress
                (user_id, total_days, days_synced, current_day_offset, status, started_at)
            VALUES ($1, $2, 0, 0, 'in_progress', $3)
            ON CONFLICT (user_id) DO UPDATE SET
                total_days = EXCLUDED.total_days,
                days_synced = 0,
                current_day_offset = 0,
                status = 'in_progress',
                started_at = EXCLUDED.started_at,
                last_sync_at = NULL,
                completed_at = NULL,
                error_message = NULL
            WHERE fitbit_sync_progress.status <> 'in_progress'
            RETURNING *
            """,
            user_id,
            total_days,
            started_at,
        )
        return _backfill_job(row) if row else None

    async def list_active_backfill_jobs(self) -> list[BackfillJob]:
        rows = await self._fetch(
            """
            SELECT * FROM fitbit_sync_progress
            WHERE status = 'in_progress'
            ORDER BY last_sync_at ASC NULLS FIRST, started_at ASC
            """
        )
        return [_backfill_job(r) for r in rows]

    async def advance_backfill_job(
        self, user_id: UUID, days: int, at: datetime
    ) -> BackfillJob | None:
        # right-hand column references see the pre-update row
        row = await self._fetchrow(
            """
            UPDATE fitbit_sync_progress SET
                days_synced = LEAST(days_synced + $2, total_days),
                current_day_offset = current_day_offset + $2,
                last_sync_at = $3,
                status = CASE WHEN days_synced + $2 >= total_days
                              THEN 'completed' ELSE status END,
                completed_at = CASE WHEN days_synced + $2 >= total_days
                                    THEN $3 ELSE completed_at END
            WHERE user_id = $1 AND status = 'in_progress'
            RETURNING *
            """,
            user_id,
            days,
            at,
        )
        return _backfill_job(row) if row else None

    async def fail_backfill_job(self, user_id: UUID, message: str, at: datetime) -> None:
        await self._execute(
            """
            UPDATE fitbit_sync_progress
            SET status = 'error', error_message = $2, last_sync_at = $3
            WHERE user_id = $1 AND status = 'in_progress'
            """,
            user_id,
            message,
            at,
        )

    # -- Synced data ----------------------------------------------------

    async def upsert_daily_log(self, record: DailyLogRecord) -> None:
        metrics = record.metrics()
        await self._execute(
            _DAILY_LOG_UPSERT,
            record.user_id,
            record.log_date,
            *(metrics[col] for col in DailyLogRecord.METRIC_COLUMNS),
            True,
        )

    async def upsert_sleep_log(self, record: SleepRecord) -> None:
        await self._execute(
            _SLEEP_LOG_UPSERT,
            record.user_id,
            record.date,
            record.duration_minutes,
            record.efficiency,
            record.score,
            record.deep_minutes,
            record.rem_minutes,
            record.light_minutes,
            record.wake_minutes,
            record.start_time,
            record.end_time,
            json.dumps(record.raw),
        )

    async def replace_food_entries(
        self, user_id: UUID, log_date: date, entries: list[FoodLogEntry]
    ) -> int:
        placeholders = ", ".join(f"${i + 1}" for i in range(len(_FOOD_LOG_COLUMNS)))
        insert = (
            f"INSERT INTO food_logs ({', '.join(_FOOD_LOG_COLUMNS)}) VALUES ({placeholders})"
        )
        async with self._conn() as conn:
            # manual entries have no fatsecret_food_id and are left alone
            await conn.execute(
                """
                DELETE FROM food_logs
                WHERE user_id = $1 AND log_date = $2 AND fatsecret_food_id IS NOT NULL
                """,
                user_id,
                log_date,
            )
            if entries:
                await conn.executemany(
                    insert,
                    [
                        (
                            user_id,
                            log_date,
                            e.food_name,
                            e.brand,
                            e.meal_type,
                            e.fatsecret_food_id,
                            e.serving_description,
                            e.calories,
                            e.protein_g,
                            e.carbs_g,
                            e.fat_g,
                            e.fiber_g,
                            e.quantity,
                        )
                        for e in entries
                    ],
                )
        return len(entries)

    # -- Sync log -------------------------------------------------------

    async def append_sync_log(self, entry: SyncLogEntry) -> None:
        await self._execute(
            """
            INSERT INTO fitbit_sync_logs (user_id, sync_date, status, message, created_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            entry.user_id,
            entry.sync_date,
            entry.status.value,
            entry.message,
            entry.created_at,
        )

    async def list_sync_logs(self, user_id: UUID, limit: int = 50) -> list[SyncLogEntry]:
        rows = await self._fetch(
            """
            SELECT * FROM fitbit_sync_logs
            WHERE user_id = $1
            ORDER BY created_at DESC
            LIMIT $2
            """,
            user_id,
            limit,
        )
        return [_sync_log_entry(r) for r in rows]
