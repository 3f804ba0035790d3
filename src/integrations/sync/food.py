"""FatSecret food diary import.

Each sync replaces the user's FatSecret-sourced ``food_logs`` rows for one
date with what the diary currently holds, so edits and deletions made in
FatSecret propagate.  Manually entered rows are never touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from src.integrations.adapters.fatsecret import FatSecretAdapter
from src.integrations.base import FatSecretCredential, utc_now
from src.integrations.errors import NotConnectedError
from src.integrations.sync.store import SyncStore

logger = logging.getLogger("groofit.integrations.sync.food")


@dataclass
class FoodSyncResult:
    user_id: UUID
    date: date
    synced: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class FoodDiarySync:
    def __init__(self, store: SyncStore, adapter: FatSecretAdapter) -> None:
        self._store = store
        self._adapter = adapter

    async def sync_user_food(
        self,
        user_id: UUID,
        target_date: date | None = None,
        credential: FatSecretCredential | None = None,
    ) -> FoodSyncResult:
        """Import one diary date (default today) for one user.

        Raises:
            NotConnectedError: No FatSecret credential.
            ProviderApiError:  The diary could not be read.
        """
        target_date = target_date or date.today()
        if credential is None:
            credential = await self._store.get_fatsecret_credential(user_id)
        if credential is None:
            raise NotConnectedError("FatSecret not connected", provider="fatsecret")

        raw = await self._adapter.get_food_entries(
            credential.oauth_token, credential.oauth_secret, target_date
        )
        entries = self._adapter.normalize_food_entries(raw)
        synced = await self._store.replace_food_entries(user_id, target_date, entries)
        await self._store.touch_fatsecret_last_sync(user_id, utc_now())

        logger.info("FatSecret sync %s for user %s: %d entries", target_date, user_id, synced)
        return FoodSyncResult(user_id=user_id, date=target_date, synced=synced)

    async def sync_all_users(self, target_date: date | None = None) -> list[FoodSyncResult]:
        """Import one diary date for every connected user, collecting failures."""
        target_date = target_date or date.today()
        results: list[FoodSyncResult] = []
        for credential in await self._store.list_fatsecret_credentials():
            try:
                results.append(
                    await self.sync_user_food(credential.user_id, target_date, credential)
                )
            except Exception as exc:
                logger.warning("FatSecret sync failed for user %s: %s", credential.user_id, exc)
                results.append(
                    FoodSyncResult(user_id=credential.user_id, date=target_date, error=str(exc))
                )
        return results
