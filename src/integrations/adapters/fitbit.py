"""Fitbit Web API adapter.

Uses OAuth2 authorization-code grant with HTTP Basic client authentication
for both the code exchange and refresh.  Fitbit rotates the refresh token on
every refresh; the new one must be persisted or the connection is lost.

Environment variables:
    FITBIT_CLIENT_ID: OAuth2 client ID
    FITBIT_CLIENT_SECRET: OAuth2 client secret

API base: https://api.fitbit.com

Endpoints used:
    /1/user/-/activities/date/{date}.json: Daily activity summary
    /1/user/-/body/log/weight/date/{date}.json: Weight log
    /1/user/-/body/log/fat/date/{date}.json: Body fat log
    /1.2/user/-/sleep/date/{date}.json: Sleep log
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta
from urllib.parse import quote, urlencode
from uuid import UUID

import httpx

from src.integrations.base import (
    DailyLogRecord,
    OAuthTokens,
    ProviderAdapter,
    SleepRecord,
    utc_now,
)
from src.integrations.errors import (
    ConfigurationError,
    HandshakeError,
    ProviderApiError,
    TokenRefreshError,
)

logger = logging.getLogger("groofit.integrations.fitbit")

_FITBIT_AUTH_URL = "https://www.fitbit.com/oauth2/authorize"
_FITBIT_TOKEN_URL = "https://api.fitbit.com/oauth2/token"
_FITBIT_API_BASE = "https://api.fitbit.com"

FITBIT_SCOPES: tuple[str, ...] = (
    "activity",
    "nutrition",
    "profile",
    "settings",
    "weight",
    "heartrate",
    "sleep",
)

# Fitbit access tokens default to 8 hours when expires_in is absent
_DEFAULT_EXPIRES_IN = 28800

# heartRateZones[].name → daily_logs column
_HEART_RATE_ZONE_COLUMNS: dict[str, str] = {
    "Fat Burn": "heart_rate_fat_burn_minutes",
    "Cardio": "heart_rate_cardio_minutes",
    "Peak": "heart_rate_peak_minutes",
}


class FitbitAdapter(ProviderAdapter):
    """Fitbit OAuth2 handshake, token refresh and per-date data reads."""

    SOURCE_ID = "fitbit"
    DISPLAY_NAME = "Fitbit"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Fitbit adapter.

        Args:
            client_id:     OAuth2 client ID (FITBIT_CLIENT_ID env var).
            client_secret: OAuth2 client secret (FITBIT_CLIENT_SECRET env var).
            http_client:   Optional pre-configured httpx client (for testing).
        """
        super().__init__(http_client)
        self._client_id = client_id or os.environ.get("FITBIT_CLIENT_ID", "")
        self._client_secret = client_secret or os.environ.get("FITBIT_CLIENT_SECRET", "")

    def ensure_configured(self) -> None:
        if not self._client_id or not self._client_secret:
            raise ConfigurationError(
                "Fitbit client credentials are not configured",
                provider=self.SOURCE_ID,
                key="FITBIT_CLIENT_ID" if not self._client_id else "FITBIT_CLIENT_SECRET",
            )

    # ------------------------------------------------------------------
    # OAuth2
    # ------------------------------------------------------------------

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        """Build the Fitbit consent-screen URL.

        Args:
            redirect_uri: Where Fitbit sends the user back (must be registered).
            state:        Opaque CSRF token persisted by the caller.
        """
        self.ensure_configured()
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": " ".join(FITBIT_SCOPES),
            "state": state,
        }
        return f"{_FITBIT_AUTH_URL}?{urlencode(params, quote_via=quote)}"

    async def exchange_code(
        self, code: str, redirect_uri: str, now: datetime | None = None
    ) -> OAuthTokens:
        """Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: Client credentials missing.
            HandshakeError:     Fitbit did not return HTTP 200.
        """
        self.ensure_configured()
        try:
            response = await self._http_post(
                _FITBIT_TOKEN_URL,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                },
                auth=(self._client_id, self._client_secret),
            )
        except httpx.HTTPError as exc:
            raise HandshakeError(
                f"Fitbit token exchange failed: {exc}", provider=self.SOURCE_ID
            ) from exc

        if response.status_code != 200:
            logger.warning("Fitbit token exchange rejected: HTTP %d", response.status_code)
            raise HandshakeError(
                f"Fitbit token exchange failed [{response.status_code}]",
                provider=self.SOURCE_ID,
            )
        try:
            return self._parse_tokens(response.json(), now)
        except (ValueError, KeyError) as exc:
            raise HandshakeError(
                "Fitbit token exchange returned no access token", provider=self.SOURCE_ID
            ) from exc

    async def refresh_token(
        self, refresh_token: str, now: datetime | None = None
    ) -> OAuthTokens:
        """Exchange a refresh token for a new token pair.

        Raises:
            ConfigurationError: Client credentials missing.
            TokenRefreshError:  Fitbit did not return HTTP 200 (``status`` set)
                                or the request could not be sent.
        """
        self.ensure_configured()
        try:
            response = await self._http_post(
                _FITBIT_TOKEN_URL,
                data={"grant_type": "refresh_token", "refresh_token": refresh_token},
                auth=(self._client_id, self._client_secret),
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(
                f"Fitbit token refresh failed: {exc}", provider=self.SOURCE_ID
            ) from exc

        if response.status_code != 200:
            logger.warning("Fitbit token refresh rejected: HTTP %d", response.status_code)
            raise TokenRefreshError(
                f"Fitbit token refresh failed [{response.status_code}]",
                provider=self.SOURCE_ID,
                status=response.status_code,
            )
        try:
            return self._parse_tokens(response.json(), now, fallback_refresh=refresh_token)
        except (ValueError, KeyError) as exc:
            raise TokenRefreshError(
                "Fitbit token refresh returned no access token",
                provider=self.SOURCE_ID,
                status=response.status_code,
            ) from exc

    @staticmethod
    def _parse_tokens(
        data: dict, now: datetime | None, fallback_refresh: str | None = None
    ) -> OAuthTokens:
        expires_in = int(data.get("expires_in") or _DEFAULT_EXPIRES_IN)
        return OAuthTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=(now or utc_now()) + timedelta(seconds=expires_in),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope"),
            provider_user_id=data.get("user_id"),
        )

    # ------------------------------------------------------------------
    # Data endpoints
    # ------------------------------------------------------------------

    async def get_activity_summary(self, access_token: str, target_date: date) -> dict:
        return await self._api_get(
            f"/1/user/-/activities/date/{target_date.isoformat()}.json", access_token
        )

    async def get_weight_log(self, access_token: str, target_date: date) -> dict:
        return await self._api_get(
            f"/1/user/-/body/log/weight/date/{target_date.isoformat()}.json", access_token
        )

    async def get_body_fat_log(self, access_token: str, target_date: date) -> dict:
        return await self._api_get(
            f"/1/user/-/body/log/fat/date/{target_date.isoformat()}.json", access_token
        )

    async def get_sleep_log(self, access_token: str, target_date: date) -> dict:
        return await self._api_get(
            f"/1.2/user/-/sleep/date/{target_date.isoformat()}.json", access_token
        )

    async def _api_get(self, path: str, access_token: str) -> dict:
        """Authenticated GET against the Fitbit Web API.

        Raises:
            ProviderApiError: Non-200 response or transport failure.
        """
        url = f"{_FITBIT_API_BASE}{path}"
        try:
            response = await self._http_get(
                url, headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as exc:
            raise ProviderApiError(
                f"Fitbit request failed: {exc}", provider=self.SOURCE_ID, endpoint=path
            ) from exc

        if response.status_code != 200:
            logger.warning("Fitbit API error: GET %s → %d", path, response.status_code)
            raise ProviderApiError(
                f"Fitbit API error [{response.status_code}]",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=path,
            )
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Fitbit API returned a non-JSON body: GET %s", path)
            raise ProviderApiError(
                "Fitbit API returned an unreadable response",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=path,
            ) from exc

    # ------------------------------------------------------------------
    # Normalization (pure)
    # ------------------------------------------------------------------

    def normalize_activity(
        self, user_id: UUID, target_date: date, raw: dict
    ) -> DailyLogRecord:
        """Map an activity summary response onto a DailyLogRecord.

        Fields absent from the response stay ``None``; an explicit zero is kept.
        """
        summary = raw.get("summary") or {}
        record = DailyLogRecord(
            user_id=user_id,
            log_date=target_date,
            steps=self._safe_int(summary.get("steps")),
            calorie_burn=self._safe_int(summary.get("caloriesOut")),
            resting_heart_rate=self._safe_int(summary.get("restingHeartRate")),
            active_minutes_lightly=self._safe_int(summary.get("lightlyActiveMinutes")),
            active_minutes_fairly=self._safe_int(summary.get("fairlyActiveMinutes")),
            active_minutes_very=self._safe_int(summary.get("veryActiveMinutes")),
        )

        for entry in summary.get("distances") or []:
            if entry.get("activity") == "total":
                record.distance_km = self._safe_float(entry.get("distance"))
                break

        for zone in summary.get("heartRateZones") or []:
            column = _HEART_RATE_ZONE_COLUMNS.get(zone.get("name", ""))
            if column:
                setattr(record, column, self._safe_int(zone.get("minutes")))

        return record

    def extract_weight(self, raw: dict) -> float | None:
        """Return the latest weight (kg) logged on the day, if any."""
        entries = raw.get("weight") or []
        return self._safe_float(entries[-1].get("weight")) if entries else None

    def extract_body_fat(self, raw: dict) -> float | None:
        """Return the latest body-fat percentage logged on the day, if any."""
        entries = raw.get("fat") or []
        return self._safe_float(entries[-1].get("fat")) if entries else None

    def normalize_sleep(
        self, user_id: UUID, target_date: date, raw: dict
    ) -> SleepRecord | None:
        """Map a sleep log response onto a SleepRecord.

        Picks the entry flagged ``isMainSleep``, falling back to the first.
        Returns None when no sleep was logged for the date.
        """
        logs = raw.get("sleep") or []
        if not logs:
            return None
        main = next((log for log in logs if log.get("isMainSleep")), logs[0])

        stages = (main.get("levels") or {}).get("summary") or {}

        def _stage(*names: str) -> int | None:
            for name in names:
                if name in stages:
                    return self._safe_int((stages[name] or {}).get("minutes"))
            return None

        duration_ms = self._safe_int(main.get("duration"))
        efficiency = self._safe_int(main.get("efficiency"))
        return SleepRecord(
            user_id=user_id,
            date=target_date,
            duration_minutes=duration_ms // 60000 if duration_ms is not None else None,
            efficiency=efficiency,
            score=efficiency,
            deep_minutes=_stage("deep"),
            rem_minutes=_stage("rem"),
            light_minutes=_stage("light"),
            wake_minutes=_stage("wake", "awake"),
            start_time=self._parse_iso_datetime(main.get("startTime")),
            end_time=self._parse_iso_datetime(main.get("endTime")),
            raw=main,
        )
