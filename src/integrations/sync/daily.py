"""Single-date Fitbit sync.

One call to ``sync_day`` reads the activity summary (required) and the
weight, body-fat and sleep logs (each optional and individually failable)
for one user and date, upserts what it got, and appends exactly one entry
to the sync log whatever the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.base import (
    FitbitCredential,
    SleepRecord,
    SyncLogEntry,
    SyncStatus,
    utc_now,
)
from src.integrations.errors import IntegrationError, NotConnectedError, ProviderApiError
from src.integrations.sync.store import SyncStore
from src.integrations.sync.tokens import TokenRefresher

logger = logging.getLogger("groofit.integrations.sync.daily")


@dataclass
class DailySyncResult:
    """What one ``sync_day`` call captured.

    Attributes:
        date:          The synced date.
        steps:         Step count, None if Fitbit did not report it.
        calories_out:  Calories burned.
        weight:        Weight in kg, None if not logged or not retrieved.
        body_fat:      Body-fat percentage.
        sleep_minutes: Main sleep duration.
        skipped:       Optional fields whose fetch failed (e.g. ["weight"]).
    """

    date: date
    steps: int | None = None
    calories_out: int | None = None
    weight: float | None = None
    body_fat: float | None = None
    sleep_minutes: int | None = None
    skipped: list[str] = field(default_factory=list)

    def summary(self) -> str:
        parts = [f"Synced {self.steps or 0} steps", f"{self.calories_out or 0} calories"]
        if self.weight is not None:
            parts.append(f"{self.weight} kg")
        if self.body_fat is not None:
            parts.append(f"{self.body_fat}% fat")
        if self.sleep_minutes is not None:
            parts.append(f"{self.sleep_minutes} min sleep")
        message = ", ".join(parts)
        if self.skipped:
            message += f" (skipped: {', '.join(self.skipped)})"
        return message


@dataclass
class SleepSyncResult:
    date: date
    has_data: bool
    duration_minutes: int | None = None
    score: int | None = None


def _describe(exc: Exception) -> str:
    if isinstance(exc, IntegrationError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


class DailySyncExecutor:
    """Sync one user's Fitbit data for one calendar date."""

    def __init__(
        self,
        store: SyncStore,
        adapter: FitbitAdapter,
        refresher: TokenRefresher,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._refresher = refresher

    async def sync_day(
        self,
        user_id: UUID,
        target_date: date,
        credential: FitbitCredential | None = None,
        access_token: str | None = None,
        include_sleep: bool = True,
    ) -> DailySyncResult:
        """Fetch and upsert one date, logging the outcome.

        Args:
            user_id:       Owner of the data.
            target_date:   Calendar date to sync.
            credential:    Pre-loaded credential; read from the store if omitted.
            access_token:  A token the caller has already validated.  Skips the
                           credential lookup and token check entirely.
            include_sleep: Also fetch and upsert the sleep log.

        Raises:
            NotConnectedError: No Fitbit credential.
            TokenRefreshError: The token needed a refresh and Fitbit refused.
            ProviderApiError:  The activity summary could not be read.
        """
        try:
            result = await self._sync(
                user_id, target_date, credential, access_token, include_sleep
            )
        except Exception as exc:
            await self._log(user_id, target_date, SyncStatus.ERROR, _describe(exc))
            raise

        await self._log(user_id, target_date, SyncStatus.SUCCESS, result.summary())
        logger.info("Fitbit sync %s for user %s: %s", target_date, user_id, result.summary())
        return result

    async def sync_sleep(self, user_id: UUID, target_date: date) -> SleepSyncResult:
        """Fetch and upsert only the sleep log for one date.

        Raises:
            NotConnectedError: No Fitbit credential.
            TokenRefreshError: The token needed a refresh and Fitbit refused.
            ProviderApiError:  The sleep log could not be read.
        """
        try:
            access_token = await self._access_token(user_id, None)
            raw = await self._adapter.get_sleep_log(access_token, target_date)
            record = self._adapter.normalize_sleep(user_id, target_date, raw)
            if record is not None:
                await self._store.upsert_sleep_log(record)
        except Exception as exc:
            await self._log(user_id, target_date, SyncStatus.ERROR, _describe(exc))
            raise

        if record is None:
            await self._log(user_id, target_date, SyncStatus.SUCCESS, "No sleep data")
            return SleepSyncResult(date=target_date, has_data=False)

        await self._log(
            user_id,
            target_date,
            SyncStatus.SUCCESS,
            f"Synced {record.duration_minutes} min sleep",
        )
        return SleepSyncResult(
            date=target_date,
            has_data=True,
            duration_minutes=record.duration_minutes,
            score=record.score,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _access_token(
        self, user_id: UUID, credential: FitbitCredential | None
    ) -> str:
        if credential is None:
            credential = await self._store.get_fitbit_credential(user_id)
        if credential is None:
            raise NotConnectedError("Fitbit not connected", provider="fitbit")
        return await self._refresher.ensure_valid_access_token(credential)

    async def _sync(
        self,
        user_id: UUID,
        target_date: date,
        credential: FitbitCredential | None,
        access_token: str | None,
        include_sleep: bool,
    ) -> DailySyncResult:
        if access_token is None:
            access_token = await self._access_token(user_id, credential)

        # Required: a failure here fails the whole day
        activity = await self._adapter.get_activity_summary(access_token, target_date)
        record = self._adapter.normalize_activity(user_id, target_date, activity)
        result = DailySyncResult(
            date=target_date, steps=record.steps, calories_out=record.calorie_burn
        )

        # Optional: each fetch may fail on its own
        try:
            record.weight = self._adapter.extract_weight(
                await self._adapter.get_weight_log(access_token, target_date)
            )
        except ProviderApiError as exc:
            logger.warning("Weight fetch failed for %s on %s: %s", user_id, target_date, exc)
            result.skipped.append("weight")

        try:
            record.body_fat_percentage = self._adapter.extract_body_fat(
                await self._adapter.get_body_fat_log(access_token, target_date)
            )
        except ProviderApiError as exc:
            logger.warning("Body fat fetch failed for %s on %s: %s", user_id, target_date, exc)
            result.skipped.append("body_fat")

        sleep: SleepRecord | None = None
        if include_sleep:
            try:
                sleep = self._adapter.normalize_sleep(
                    user_id,
                    target_date,
                    await self._adapter.get_sleep_log(access_token, target_date),
                )
            except ProviderApiError as exc:
                logger.warning("Sleep fetch failed for %s on %s: %s", user_id, target_date, exc)
                result.skipped.append("sleep")

        await self._store.upsert_daily_log(record)
        if sleep is not None:
            await self._store.upsert_sleep_log(sleep)
        await self._store.touch_fitbit_last_sync(user_id, utc_now())

        result.weight = record.weight
        result.body_fat = record.body_fat_percentage
        result.sleep_minutes = sleep.duration_minutes if sleep else None
        return result

    async def _log(
        self, user_id: UUID, target_date: date, status: SyncStatus, message: str
    ) -> None:
        await self._store.append_sync_log(
            SyncLogEntry(
                user_id=user_id, sync_date=target_date, status=status, message=message
            )
        )
