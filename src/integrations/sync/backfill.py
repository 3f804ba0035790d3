"""Resumable Fitbit historical backfill.

A backfill job imports ``total_days`` of history, walking backwards from
today.  Fitbit allows 150 requests per user per hour, so the work is spread
across scheduled ticks: each tick advances every in-progress job by at most
``daily_quota`` days and persists the cursor.  The cursor lives in the
database, so progress survives restarts and missed ticks.

Usage::

    orchestrator = BackfillOrchestrator(store, executor, refresher)
    await orchestrator.start(user_id, days=365)       # user request
    results = await orchestrator.tick()               # hourly scheduler
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable
from uuid import UUID

from src.integrations.base import BackfillJob, BackfillStatus, utc_now
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.errors import NotConnectedError, TokenRefreshError
from src.integrations.sync.daily import DailySyncExecutor
from src.integrations.sync.store import SyncStore
from src.integrations.sync.tokens import TokenRefresher

logger = logging.getLogger("groofit.integrations.sync.backfill")


@dataclass
class DayOutcome:
    date: date
    success: bool
    error: str | None = None


@dataclass
class BackfillStartResult:
    """Outcome of a backfill request.

    Attributes:
        job:                        The job now (or already) running.
        created:                    False when an in-progress job was returned as-is.
        estimated_completion_hours: Hours until completion at the configured tick cadence.
    """

    job: BackfillJob
    created: bool
    estimated_completion_hours: float


@dataclass
class BackfillTickResult:
    """Per-job report from one tick.

    Attributes:
        user_id:  Job owner.
        status:   'advanced', 'completed', 'aborted' (left in progress) or 'error'.
        outcomes: One entry per day attempted, in processing order.
        job:      Job state after the tick, when it could be read back.
        error:    Why the tick did not advance the job, if it did not.
    """

    user_id: UUID
    status: str
    outcomes: list[DayOutcome] = field(default_factory=list)
    job: BackfillJob | None = None
    error: str | None = None

    @property
    def days_processed(self) -> int:
        return len(self.outcomes)

    @property
    def days_failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


class BackfillOrchestrator:
    """Create backfill jobs and advance them one bounded tick at a time.

    Days within a tick are processed strictly sequentially, newest first,
    with a pause between them; there is no fan-out.
    """

    def __init__(
        self,
        store: SyncStore,
        executor: DailySyncExecutor,
        refresher: TokenRefresher,
        config: SyncConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._executor = executor
        self._refresher = refresher
        self._config = config or get_sync_config()
        self._sleep = sleep

    def estimate_hours(self, remaining_days: int) -> float:
        cfg = self._config.backfill
        ticks = math.ceil(remaining_days / cfg.daily_quota)
        return round(ticks * cfg.tick_interval_minutes / 60, 1)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(
        self, user_id: UUID, days: int | None = None, now: datetime | None = None
    ) -> BackfillStartResult:
        """Start a backfill, or report the one already running.

        Args:
            user_id: Job owner.
            days:    Horizon; defaults to ``backfill.default_days`` and is
                     clamped to ``[1, backfill.max_days]``.

        Raises:
            NotConnectedError: The user has no Fitbit credential.
        """
        cfg = self._config.backfill
        requested = cfg.default_days if days is None else days
        total_days = max(1, min(requested, cfg.max_days))

        if await self._store.get_fitbit_credential(user_id) is None:
            raise NotConnectedError("Fitbit not connected", provider="fitbit")

        existing = await self._store.get_backfill_job(user_id)
        if existing and existing.status == BackfillStatus.IN_PROGRESS:
            logger.info("Backfill already in progress for user %s", user_id)
            return BackfillStartResult(
                job=existing,
                created=False,
                estimated_completion_hours=self.estimate_hours(existing.remaining_days),
            )

        job = await self._store.create_backfill_job(user_id, total_days, now or utc_now())
        if job is None:
            # lost a race with a concurrent start; report the winner
            job = await self._store.get_backfill_job(user_id)
            if job is None:
                raise RuntimeError(f"Backfill job for user {user_id} vanished during start")
            return BackfillStartResult(
                job=job,
                created=False,
                estimated_completion_hours=self.estimate_hours(job.remaining_days),
            )

        logger.info("Backfill started for user %s: %d days", user_id, total_days)
        return BackfillStartResult(
            job=job,
            created=True,
            estimated_completion_hours=self.estimate_hours(total_days),
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(
        self, today: date | None = None, now: datetime | None = None
    ) -> list[BackfillTickResult]:
        """Advance every in-progress job by at most one quota of days.

        A failure in one job never stops the others.
        """
        jobs = await self._store.list_active_backfill_jobs()
        logger.info("Backfill tick: %d active job(s)", len(jobs))

        results: list[BackfillTickResult] = []
        for job in jobs:
            try:
                result = await self._advance(job, today, now)
            except Exception as exc:
                logger.exception("Backfill tick failed for user %s", job.user_id)
                result = BackfillTickResult(
                    user_id=job.user_id, status="aborted", job=job, error=str(exc)
                )
            results.append(result)
        return results

    async def _advance(
        self, job: BackfillJob, today: date | None, now: datetime | None
    ) -> BackfillTickResult:
        cfg = self._config.backfill
        today = today or date.today()
        now = now or utc_now()
        user_id = job.user_id

        credential = await self._store.get_fitbit_credential(user_id)
        if credential is None:
            message = "Fitbit not connected. Reconnect Fitbit to resume the import."
            await self._store.fail_backfill_job(user_id, message, now)
            logger.warning("Backfill for user %s failed: credential missing", user_id)
            return BackfillTickResult(user_id=user_id, status="error", job=job, error=message)

        outcomes: list[DayOutcome] = []
        abort_error: TokenRefreshError | NotConnectedError | None = None
        days_to_process = min(cfg.daily_quota, job.remaining_days)

        try:
            access_token = await self._refresher.ensure_valid_access_token(credential, now=now)
        except (TokenRefreshError, NotConnectedError) as exc:
            return await self._abort(job, exc, outcomes, now)

        for i in range(days_to_process):
            if i and i % cfg.token_check_every_days == 0:
                try:
                    access_token = await self._refresher.ensure_valid_access_token(
                        credential, now=now
                    )
                except (TokenRefreshError, NotConnectedError) as exc:
                    abort_error = exc
                    break

            day = today - timedelta(days=job.current_day_offset + i)
            try:
                await self._executor.sync_day(user_id, day, access_token=access_token)
                outcomes.append(DayOutcome(date=day, success=True))
            except Exception as exc:
                logger.warning("Backfill day %s failed for user %s: %s", day, user_id, exc)
                outcomes.append(DayOutcome(date=day, success=False, error=str(exc)))

            if cfg.request_delay_ms and i < days_to_process - 1:
                await self._sleep(cfg.request_delay_ms / 1000.0)

        if abort_error is not None:
            return await self._abort(job, abort_error, outcomes, now)

        updated = await self._store.advance_backfill_job(user_id, len(outcomes), now)
        status = (
            "completed" if updated and updated.status == BackfillStatus.COMPLETED else "advanced"
        )
        logger.info(
            "Backfill %s for user %s: %d day(s), %d failed, %s/%s synced",
            status,
            user_id,
            len(outcomes),
            sum(1 for o in outcomes if not o.success),
            updated.days_synced if updated else "?",
            job.total_days,
        )
        return BackfillTickResult(user_id=user_id, status=status, outcomes=outcomes, job=updated)

    async def _abort(
        self,
        job: BackfillJob,
        exc: TokenRefreshError | NotConnectedError,
        outcomes: list[DayOutcome],
        now: datetime | None,
    ) -> BackfillTickResult:
        """Stop this job's tick after a token failure.

        Days already attempted still count.  A rejected refresh token or a
        missing token means the user must reconnect, so the job moves to error;
        anything else is retried on the next tick.
        """
        at = now or utc_now()
        updated = job
        if outcomes:
            updated = await self._store.advance_backfill_job(job.user_id, len(outcomes), at) or job

        if isinstance(exc, NotConnectedError) or exc.rejected:
            message = "Fitbit authorization was revoked. Reconnect Fitbit to resume the import."
            await self._store.fail_backfill_job(job.user_id, message, at)
            logger.warning("Backfill for user %s failed: %s", job.user_id, exc.message)
            return BackfillTickResult(
                user_id=job.user_id, status="error", outcomes=outcomes, job=updated, error=message
            )

        logger.warning("Backfill tick aborted for user %s: %s", job.user_id, exc.message)
        return BackfillTickResult(
            user_id=job.user_id,
            status="aborted",
            outcomes=outcomes,
            job=updated,
            error=exc.message,
        )
