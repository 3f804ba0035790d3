"""Scheduler-driven sync of every connected Fitbit user.

Invoked by the external cron (``POST /api/v1/cron/fitbit/auto-sync``) to
keep "today" and "yesterday" current for all users, independent of any
historical backfill.  Users are processed one after another; a failure for
one user or date is recorded and the run moves on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable
from uuid import UUID

from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.errors import NotConnectedError, TokenRefreshError
from src.integrations.sync.backfill import DayOutcome
from src.integrations.sync.daily import DailySyncExecutor
from src.integrations.sync.store import SyncStore

logger = logging.getLogger("groofit.integrations.sync.scheduler")


@dataclass
class UserSyncResult:
    """Result of the auto-sync for one user.

    Attributes:
        user_id:  The user.
        outcomes: One entry per date attempted, newest first.
        error:    Set when the user's run was cut short (token failure).
    """

    user_id: UUID
    outcomes: list[DayOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def status(self) -> str:
        if self.error or not self.outcomes:
            return "error"
        if all(o.success for o in self.outcomes):
            return "success"
        if any(o.success for o in self.outcomes):
            return "partial"
        return "error"


class AutoSyncScheduler:
    """Sync the most recent days for every user with a Fitbit credential."""

    def __init__(
        self,
        store: SyncStore,
        executor: DailySyncExecutor,
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._executor = executor
        self._config = config or get_sync_config()
        self._sleep = sleep

    def target_dates(self, today: date) -> list[date]:
        """Dates covered by one run, newest first."""
        return [today - timedelta(days=i) for i in range(self._config.auto_sync.lookback_days)]

    async def sync_all_connected(self, today: date | None = None) -> list[UserSyncResult]:
        dates = self.target_dates(today or date.today())
        delay = self._config.auto_sync.request_delay_ms / 1000.0
        credentials = await self._store.list_fitbit_credentials()
        logger.info("Auto-sync: %d connected user(s), dates %s", len(credentials), dates)

        results: list[UserSyncResult] = []
        for credential in credentials:
            result = UserSyncResult(user_id=credential.user_id)
            for day in dates:
                try:
                    await self._executor.sync_day(credential.user_id, day, credential=credential)
                    result.outcomes.append(DayOutcome(date=day, success=True))
                except (TokenRefreshError, NotConnectedError) as exc:
                    # no usable token; the remaining dates would fail the same way
                    result.outcomes.append(DayOutcome(date=day, success=False, error=exc.message))
                    result.error = exc.message
                    break
                except Exception as exc:
                    logger.warning(
                        "Auto-sync %s failed for user %s: %s", day, credential.user_id, exc
                    )
                    result.outcomes.append(DayOutcome(date=day, success=False, error=str(exc)))
                if delay:
                    await self._sleep(delay)
            results.append(result)

        logger.info(
            "Auto-sync finished: %d ok, %d with failures",
            sum(1 for r in results if r.status == "success"),
            sum(1 for r in results if r.status != "success"),
        )
        return results
