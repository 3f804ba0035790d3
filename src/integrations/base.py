"""Domain models and the shared provider adapter base for Groofit integrations.

These dataclasses are the single representation of credentials, handshake
state, backfill jobs and synced records passed between adapters, the sync
services and the storage layer.  Storage rows are mapped into them in
``src.integrations.sync.store``; nothing above the store sees raw rows.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any
from uuid import UUID

import httpx

logger = logging.getLogger("groofit.integrations")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Provider(str, Enum):
    FITBIT = "fitbit"
    FATSECRET = "fatsecret"


class BackfillStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


# ---------------------------------------------------------------------------
# OAuth tokens and credentials
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """OAuth2 token set returned by a code exchange or a refresh.

    Attributes:
        access_token:     Bearer token for API calls.
        refresh_token:    Token used to obtain the next access token.  Fitbit
                          rotates it on every refresh.
        expires_at:       UTC instant the access token stops working.
        token_type:       Usually "Bearer".
        scope:            Space-separated granted scopes.
        provider_user_id: The provider's own id for the user.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None
    provider_user_id: str | None = None


@dataclass
class OAuth1Tokens:
    """An OAuth 1.0a token/secret pair (request token or access token)."""

    token: str
    secret: str


@dataclass
class FitbitCredential:
    """Stored Fitbit OAuth2 credential, one per user."""

    user_id: UUID
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None = None
    fitbit_user_id: str | None = None
    scope: str | None = None
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None

    def apply_tokens(self, tokens: OAuthTokens) -> None:
        """Update this credential in place after a refresh."""
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token or self.refresh_token
        self.token_expires_at = tokens.expires_at
        if tokens.scope:
            self.scope = tokens.scope


@dataclass
class FatSecretCredential:
    """Stored FatSecret OAuth 1.0a access token, one per user.  Never expires."""

    user_id: UUID
    oauth_token: str
    oauth_secret: str
    fatsecret_user_id: str | None = None
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None


@dataclass
class AuthorizationState:
    """Transient record correlating a handshake start with its callback.

    For Fitbit ``state`` is the random CSRF token.  For FatSecret ``state`` is
    the request token and ``request_token_secret`` its paired secret.
    """

    user_id: UUID
    provider: Provider
    state: str
    request_token_secret: str | None = None
    created_at: datetime = field(default_factory=utc_now)

    def is_expired(self, ttl: timedelta, now: datetime | None = None) -> bool:
        return (now or utc_now()) - self.created_at > ttl


# ---------------------------------------------------------------------------
# Backfill jobs
# ---------------------------------------------------------------------------


@dataclass
class BackfillJob:
    """Resumable historical import for one user.

    Attributes:
        user_id:            Owner of the job.
        total_days:         Requested horizon.
        days_synced:        Days consumed so far.  Never exceeds total_days.
        current_day_offset: Cursor: days before "today" already consumed.
        status:             in_progress | completed | error.
        started_at:         When the job was created.
        last_sync_at:       When the last tick advanced it.
        completed_at:       Set once, when status becomes completed.
        error_message:      Reason for status == error.
    """

    user_id: UUID
    total_days: int
    days_synced: int = 0
    current_day_offset: int = 0
    status: BackfillStatus = BackfillStatus.IN_PROGRESS
    started_at: datetime = field(default_factory=utc_now)
    last_sync_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @property
    def remaining_days(self) -> int:
        return max(self.total_days - self.days_synced, 0)

    @property
    def pct_complete(self) -> float:
        if self.total_days == 0:
            return 100.0
        return round(self.days_synced / self.total_days * 100, 1)


# ---------------------------------------------------------------------------
# Synced records
# ---------------------------------------------------------------------------


@dataclass
class DailyLogRecord:
    """Activity and body metrics for one user and date.

    ``None`` means "not retrieved"; the store never overwrites an existing
    value with ``None``.
    """

    user_id: UUID
    log_date: date
    steps: int | None = None
    calorie_burn: int | None = None
    weight: float | None = None
    body_fat_percentage: float | None = None
    resting_heart_rate: int | None = None
    heart_rate_fat_burn_minutes: int | None = None
    heart_rate_cardio_minutes: int | None = None
    heart_rate_peak_minutes: int | None = None
    active_minutes_lightly: int | None = None
    active_minutes_fairly: int | None = None
    active_minutes_very: int | None = None
    distance_km: float | None = None

    METRIC_COLUMNS = (
        "steps",
        "calorie_burn",
        "weight",
        "body_fat_percentage",
        "resting_heart_rate",
        "heart_rate_fat_burn_minutes",
        "heart_rate_cardio_minutes",
        "heart_rate_peak_minutes",
        "active_minutes_lightly",
        "active_minutes_fairly",
        "active_minutes_very",
        "distance_km",
    )

    def metrics(self) -> dict[str, Any]:
        return {col: getattr(self, col) for col in self.METRIC_COLUMNS}


@dataclass
class SleepRecord:
    """Main sleep period ending on ``date``."""

    user_id: UUID
    date: date
    duration_minutes: int | None = None
    efficiency: int | None = None
    score: int | None = None
    deep_minutes: int | None = None
    rem_minutes: int | None = None
    light_minutes: int | None = None
    wake_minutes: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class FoodLogEntry:
    """One FatSecret food diary entry normalized to a food_logs row."""

    food_name: str
    meal_type: str
    fatsecret_food_id: str | None
    brand: str | None = None
    serving_description: str | None = None
    calories: float = 0.0
    protein_g: float = 0.0
    carbs_g: float = 0.0
    fat_g: float = 0.0
    fiber_g: float = 0.0
    quantity: float = 1.0


@dataclass
class SyncLogEntry:
    """Append-only outcome of one sync attempt."""

    user_id: UUID
    sync_date: date
    status: SyncStatus
    message: str
    created_at: datetime = field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Adapter base
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Shared plumbing for provider adapters.

    Holds the optional injected ``httpx.AsyncClient`` (tests pass a mock) and
    the lenient coercion helpers used by the normalizers.
    """

    #: Provider slug, also used in log lines and error payloads.
    SOURCE_ID: str = "unknown"
    DISPLAY_NAME: str = "Unknown Provider"

    #: Seconds before an outbound provider request is abandoned.
    REQUEST_TIMEOUT: float = 30.0

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._http_client = http_client

    @abstractmethod
    def ensure_configured(self) -> None:
        """Raise ConfigurationError if the provider's app credentials are missing."""

    async def _http_get(self, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client:
            return await self._http_client.get(url, **kwargs)
        async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT) as client:
            return await client.get(url, **kwargs)

    async def _http_post(self, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client:
            return await self._http_client.post(url, **kwargs)
        async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT) as client:
            return await client.post(url, **kwargs)

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(float(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        """Safely coerce a value to float, returning None on failure."""
        if value is None or value == "":
            return None
        try:
            return float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 timestamp.

        Fitbit sleep timestamps are device-local and carry no offset; they are
        returned naive.  Offset-aware strings are converted to UTC.
        """
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp: %r", value)
            return None
        if dt.tzinfo is not None:
            dt = dt.astimezone(timezone.utc)
        return dt
