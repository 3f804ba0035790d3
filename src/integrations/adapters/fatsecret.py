"""FatSecret Platform API adapter.

Two authentication schemes are in play:

* OAuth 1.0a three-legged (HMAC-SHA1) for the user's food diary.  Signing is
  delegated to authlib's ``AsyncOAuth1Client``.  Access tokens never expire.
* OAuth2 client-credentials for anonymous food search and lookup.  The bearer
  token is cached process-wide in a ``ClientCredentialsCache``.

Environment variables:
    FATSECRET_CONSUMER_KEY: OAuth consumer key / OAuth2 client ID
    FATSECRET_CONSUMER_SECRET: OAuth consumer secret / OAuth2 client secret

Endpoints used:
    https://www.fatsecret.com/oauth/request_token: OAuth1 step 1
    https://www.fatsecret.com/oauth/authorize: OAuth1 step 2 (browser)
    https://authentication.fatsecret.com/oauth/access_token: OAuth1 step 3
    https://oauth.fatsecret.com/connect/token: OAuth2 client credentials
    https://platform.fatsecret.com/rest/server.api: food_entries.get.v2
    https://platform.fatsecret.com/rest/foods/search/v1: food search
    https://platform.fatsecret.com/rest/food/v4: food lookup
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from urllib.parse import urlencode

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth1Client
from authlib.oauth1 import SIGNATURE_TYPE_BODY

from src.integrations.base import FoodLogEntry, OAuth1Tokens, ProviderAdapter, utc_now
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.errors import ConfigurationError, HandshakeError, ProviderApiError

logger = logging.getLogger("groofit.integrations.fatsecret")

_REQUEST_TOKEN_URL = "https://www.fatsecret.com/oauth/request_token"
_AUTHORIZE_URL = "https://www.fatsecret.com/oauth/authorize"
_ACCESS_TOKEN_URL = "https://authentication.fatsecret.com/oauth/access_token"
_CLIENT_TOKEN_URL = "https://oauth.fatsecret.com/connect/token"
_PLATFORM_API = "https://platform.fatsecret.com/rest"

_EPOCH = date(1970, 1, 1)

_MEAL_TYPES = ("breakfast", "lunch", "dinner")


def days_since_epoch(target_date: date) -> int:
    """FatSecret diary methods address dates as days since 1970-01-01."""
    return (target_date - _EPOCH).days


def map_meal_type(meal: str | None) -> str:
    """Map a FatSecret meal name onto breakfast/lunch/dinner, else snack."""
    name = (meal or "").lower()
    for meal_type in _MEAL_TYPES:
        if meal_type in name:
            return meal_type
    return "snack"


# ---------------------------------------------------------------------------
# Client-credentials token cache
# ---------------------------------------------------------------------------


@dataclass
class CachedAccessToken:
    access_token: str
    expires_at: datetime

    def is_fresh(self, buffer: timedelta, now: datetime | None = None) -> bool:
        return self.expires_at - (now or utc_now()) > buffer


class ClientCredentialsCache:
    """Holds the client-credentials bearer token used for food search.

    One instance is shared per process (``get_client_credentials_cache``);
    tests construct their own and pre-seed it with ``set``.
    """

    def __init__(self) -> None:
        self._token: CachedAccessToken | None = None

    def get(self, buffer: timedelta, now: datetime | None = None) -> str | None:
        """Return the cached token unless it expires within ``buffer``."""
        if self._token and self._token.is_fresh(buffer, now):
            return self._token.access_token
        return None

    def set(self, token: CachedAccessToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


_shared_cache = ClientCredentialsCache()


def get_client_credentials_cache() -> ClientCredentialsCache:
    return _shared_cache


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class FatSecretAdapter(ProviderAdapter):
    """FatSecret OAuth1 handshake, food diary reads and anonymous food search."""

    SOURCE_ID = "fatsecret"
    DISPLAY_NAME = "FatSecret"

    def __init__(
        self,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        search_scope: str = "premier",
        token_cache: ClientCredentialsCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the FatSecret adapter.

        Args:
            consumer_key:    Consumer key (FATSECRET_CONSUMER_KEY env var).
            consumer_secret: Consumer secret (FATSECRET_CONSUMER_SECRET env var).
            search_scope:    OAuth2 scope requested for search tokens.
            token_cache:     Client-credentials cache; defaults to the shared one.
            http_client:     Optional pre-configured httpx client for the
                             bearer-token REST calls (for testing).
            config:          Sync config; defaults to the global singleton.
        """
        super().__init__(http_client)
        self._consumer_key = consumer_key or os.environ.get("FATSECRET_CONSUMER_KEY", "")
        self._consumer_secret = consumer_secret or os.environ.get(
            "FATSECRET_CONSUMER_SECRET", ""
        )
        self._search_scope = search_scope
        self._token_cache = token_cache or get_client_credentials_cache()
        self._config = config or get_sync_config()

    def ensure_configured(self) -> None:
        if not self._consumer_key or not self._consumer_secret:
            raise ConfigurationError(
                "FatSecret consumer credentials are not configured",
                provider=self.SOURCE_ID,
                key=(
                    "FATSECRET_CONSUMER_KEY"
                    if not self._consumer_key
                    else "FATSECRET_CONSUMER_SECRET"
                ),
            )

    def _oauth1_client(self, **kwargs) -> AsyncOAuth1Client:
        return AsyncOAuth1Client(
            client_id=self._consumer_key,
            client_secret=self._consumer_secret,
            timeout=self.REQUEST_TIMEOUT,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # OAuth 1.0a three-legged flow
    # ------------------------------------------------------------------

    async def fetch_request_token(self, callback_url: str) -> OAuth1Tokens:
        """Obtain a short-lived request token bound to ``callback_url``.

        Raises:
            ConfigurationError: Consumer credentials missing.
            HandshakeError:     FatSecret refused or returned no token.
        """
        self.ensure_configured()
        try:
            async with self._oauth1_client(redirect_uri=callback_url) as client:
                token = await client.fetch_request_token(_REQUEST_TOKEN_URL)
        except (AuthlibBaseError, ValueError, httpx.HTTPError) as exc:
            logger.warning("FatSecret request token failed: %s", exc)
            raise HandshakeError(
                f"FatSecret request token failed: {exc}", provider=self.SOURCE_ID
            ) from exc

        oauth_token = token.get("oauth_token")
        oauth_secret = token.get("oauth_token_secret")
        if not oauth_token or not oauth_secret:
            raise HandshakeError(
                "FatSecret returned no request token", provider=self.SOURCE_ID
            )
        return OAuth1Tokens(token=oauth_token, secret=oauth_secret)

    def authorization_url(self, request_token: str) -> str:
        return f"{_AUTHORIZE_URL}?{urlencode({'oauth_token': request_token})}"

    async def fetch_access_token(
        self, request_token: str, request_token_secret: str, verifier: str
    ) -> OAuth1Tokens:
        """Trade an authorized request token for a long-lived access token.

        The request-token secret is the token-secret half of the signing key.

        Raises:
            ConfigurationError: Consumer credentials missing.
            HandshakeError:     FatSecret refused or returned no token.
        """
        self.ensure_configured()
        try:
            async with self._oauth1_client(
                token=request_token,
                token_secret=request_token_secret,
                signature_type=SIGNATURE_TYPE_BODY,
            ) as client:
                token = await client.fetch_access_token(_ACCESS_TOKEN_URL, verifier=verifier)
        except (AuthlibBaseError, ValueError, httpx.HTTPError) as exc:
            logger.warning("FatSecret access token exchange failed: %s", exc)
            raise HandshakeError(
                f"FatSecret access token exchange failed: {exc}", provider=self.SOURCE_ID
            ) from exc

        oauth_token = token.get("oauth_token")
        oauth_secret = token.get("oauth_token_secret")
        if not oauth_token or not oauth_secret:
            raise HandshakeError(
                "FatSecret returned no access token", provider=self.SOURCE_ID
            )
        return OAuth1Tokens(token=oauth_token, secret=oauth_secret)

    # ------------------------------------------------------------------
    # Food diary (OAuth1-signed)
    # ------------------------------------------------------------------

    async def get_food_entries(
        self, oauth_token: str, oauth_secret: str, target_date: date
    ) -> dict:
        """Call ``food_entries.get.v2`` for one diary date.

        Raises:
            ProviderApiError: Non-200, an API-level error object, or transport failure.
        """
        self.ensure_configured()
        endpoint = "food_entries.get.v2"
        try:
            async with self._oauth1_client(
                token=oauth_token,
                token_secret=oauth_secret,
                signature_type=SIGNATURE_TYPE_BODY,
            ) as client:
                response = await client.post(
                    f"{_PLATFORM_API}/server.api",
                    data={
                        "method": endpoint,
                        "format": "json",
                        "date": str(days_since_epoch(target_date)),
                    },
                )
        except (AuthlibBaseError, httpx.HTTPError) as exc:
            raise ProviderApiError(
                f"FatSecret request failed: {exc}", provider=self.SOURCE_ID, endpoint=endpoint
            ) from exc

        if response.status_code != 200:
            logger.warning("FatSecret API error: %s → %d", endpoint, response.status_code)
            raise ProviderApiError(
                f"FatSecret API error [{response.status_code}]",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=endpoint,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderApiError(
                "FatSecret returned an unreadable response",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=endpoint,
            ) from exc
        if isinstance(data, dict) and "error" in data:
            error = data["error"] or {}
            raise ProviderApiError(
                f"FatSecret API error {error.get('code')}: {error.get('message')}",
                provider=self.SOURCE_ID,
                endpoint=endpoint,
            )
        return data

    def normalize_food_entries(self, raw: dict) -> list[FoodLogEntry]:
        """Normalize a ``food_entries.get.v2`` response.

        FatSecret returns a bare object instead of a list when a day has a
        single entry, and omits ``food_entries`` entirely for an empty day.
        """
        entries = ((raw or {}).get("food_entries") or {}).get("food_entry")
        if not entries:
            return []
        if isinstance(entries, dict):
            entries = [entries]

        result: list[FoodLogEntry] = []
        for entry in entries:
            result.append(
                FoodLogEntry(
                    food_name=entry.get("food_entry_name") or entry.get("food_name") or "Unknown",
                    brand=entry.get("brand_name") or None,
                    meal_type=map_meal_type(entry.get("meal")),
                    fatsecret_food_id=str(entry.get("food_id") or ""),
                    serving_description=entry.get("serving_description") or None,
                    calories=self._safe_float(entry.get("calories")) or 0.0,
                    protein_g=self._safe_float(entry.get("protein")) or 0.0,
                    carbs_g=self._safe_float(entry.get("carbohydrate")) or 0.0,
                    fat_g=self._safe_float(entry.get("fat")) or 0.0,
                    fiber_g=self._safe_float(entry.get("fiber")) or 0.0,
                    quantity=self._safe_float(entry.get("number_of_units")) or 1.0,
                )
            )
        return result

    # ------------------------------------------------------------------
    # Food search (OAuth2 client credentials)
    # ------------------------------------------------------------------

    async def search_foods(self, query: str, page: int = 0) -> dict:
        """Search the FatSecret food database.

        Args:
            query: Free-text search; trimmed and capped in length.
            page:  Zero-based page, clamped to the configured maximum.

        Raises:
            ValueError:       Empty query.
            ProviderApiError: FatSecret did not return HTTP 200.
        """
        cfg = self._config.food_search
        expression = (query or "").strip()[: cfg.max_query_length]
        if not expression:
            raise ValueError("Search query is required")
        page_number = max(0, min(int(page), cfg.max_page))

        return await self._platform_get(
            "/foods/search/v1",
            {
                "search_expression": expression,
                "page_number": page_number,
                "max_results": cfg.max_results,
                "format": "json",
            },
        )

    async def get_food(self, food_id: str | int) -> dict:
        """Look up one food by id.

        Raises:
            ValueError:       ``food_id`` contains no digits.
            ProviderApiError: FatSecret did not return HTTP 200.
        """
        digits = re.sub(r"\D", "", str(food_id))
        if not digits:
            raise ValueError("Invalid food id")
        return await self._platform_get(
            "/food/v4",
            {"food_id": digits, "format": "json", "include_food_attributes": "true"},
        )

    async def _platform_get(self, path: str, params: dict) -> dict:
        access_token = await self._client_access_token()
        try:
            response = await self._http_get(
                f"{_PLATFORM_API}{path}",
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise ProviderApiError(
                f"FatSecret request failed: {exc}", provider=self.SOURCE_ID, endpoint=path
            ) from exc

        if response.status_code == 401:
            # token revoked server-side; next call fetches a new one
            self._token_cache.clear()
        if response.status_code != 200:
            logger.warning("FatSecret API error: GET %s → %d", path, response.status_code)
            raise ProviderApiError(
                f"FatSecret API error [{response.status_code}]",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=path,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderApiError(
                "FatSecret returned an unreadable response",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint=path,
            ) from exc

    async def _client_access_token(self, now: datetime | None = None) -> str:
        """Return a cached client-credentials token, fetching a new one if stale."""
        now = now or utc_now()
        buffer = timedelta(seconds=self._config.food_search.token_buffer_seconds)
        cached = self._token_cache.get(buffer, now)
        if cached:
            return cached

        self.ensure_configured()
        try:
            response = await self._http_post(
                _CLIENT_TOKEN_URL,
                data={"grant_type": "client_credentials", "scope": self._search_scope},
                auth=(self._consumer_key, self._consumer_secret),
            )
        except httpx.HTTPError as exc:
            raise ProviderApiError(
                f"FatSecret token request failed: {exc}",
                provider=self.SOURCE_ID,
                endpoint="connect/token",
            ) from exc

        if response.status_code != 200:
            logger.error("FatSecret client token request failed: HTTP %d", response.status_code)
            raise ProviderApiError(
                f"FatSecret token request failed [{response.status_code}]",
                provider=self.SOURCE_ID,
                status=response.status_code,
                endpoint="connect/token",
            )

        try:
            data = response.json()
            token = CachedAccessToken(
                access_token=data["access_token"],
                expires_at=now + timedelta(seconds=int(data.get("expires_in", 86400))),
            )
        except (ValueError, KeyError) as exc:
            raise ProviderApiError(
                "FatSecret token response has no access token",
                provider=self.SOURCE_ID,
                endpoint="connect/token",
            ) from exc
        self._token_cache.set(token)
        return token.access_token
