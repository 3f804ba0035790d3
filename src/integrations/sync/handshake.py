"""OAuth handshakes for Fitbit (OAuth2) and FatSecret (OAuth 1.0a).

Starting a handshake persists a transient ``AuthorizationState``; completing
it must find that exact state, exchange it with the provider, store the
credential, and clean the state up.  A state is single-use: a replayed
callback finds nothing and fails without touching the credential.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from uuid import UUID

from src.integrations.adapters.fatsecret import FatSecretAdapter
from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.base import (
    AuthorizationState,
    FatSecretCredential,
    FitbitCredential,
    Provider,
    utc_now,
)
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.errors import (
    InvalidRedirectError,
    InvalidStateError,
    InvalidTokenError,
)
from src.integrations.sync.store import SyncStore

logger = logging.getLogger("groofit.integrations.sync.handshake")


class HandshakeService:
    """Start and complete provider authorization flows for a user."""

    def __init__(
        self,
        store: SyncStore,
        fitbit: FitbitAdapter,
        fatsecret: FatSecretAdapter,
        allowed_redirect_origins: list[str],
        config: SyncConfig | None = None,
    ) -> None:
        self._store = store
        self._fitbit = fitbit
        self._fatsecret = fatsecret
        self._allowed_origins = [o.rstrip("/") for o in allowed_redirect_origins]
        self._config = config or get_sync_config()

    def _check_redirect(self, url: str) -> None:
        for origin in self._allowed_origins:
            if url == origin or url.startswith(origin + "/"):
                return
        raise InvalidRedirectError(f"Redirect URL is not allowed: {url}")

    # ------------------------------------------------------------------
    # Fitbit (OAuth2)
    # ------------------------------------------------------------------

    async def start_fitbit_authorization(self, user_id: UUID, redirect_url: str) -> str:
        """Persist a random state and return the Fitbit consent URL.

        Raises:
            InvalidRedirectError: ``redirect_url`` is not allow-listed.
            ConfigurationError:   Fitbit client credentials missing.
        """
        self._check_redirect(redirect_url)
        self._fitbit.ensure_configured()

        state = secrets.token_urlsafe(32)
        await self._store.save_authorization_state(
            AuthorizationState(user_id=user_id, provider=Provider.FITBIT, state=state)
        )
        logger.info("Fitbit handshake started for user %s", user_id)
        return self._fitbit.authorization_url(redirect_url, state)

    async def complete_fitbit_authorization(
        self,
        user_id: UUID,
        code: str,
        state: str,
        redirect_url: str,
        now: datetime | None = None,
    ) -> FitbitCredential:
        """Validate ``state``, exchange ``code`` and store the credential.

        Raises:
            InvalidStateError: No live state matches (user, fitbit, state).
            HandshakeError:    Fitbit refused the code exchange.
        """
        now = now or utc_now()
        record = await self._store.get_authorization_state(user_id, Provider.FITBIT, state)
        if record is None or record.is_expired(self._config.oauth_states.ttl, now):
            logger.warning("Fitbit callback with unknown or expired state for user %s", user_id)
            raise InvalidStateError("Invalid state token", provider=Provider.FITBIT.value)

        tokens = await self._fitbit.exchange_code(code, redirect_url, now=now)
        credential = FitbitCredential(
            user_id=user_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            fitbit_user_id=tokens.provider_user_id,
            scope=tokens.scope,
            connected_at=now,
            last_sync_at=None,
        )
        await self._store.upsert_fitbit_credential(credential)
        await self._store.delete_authorization_state(user_id, Provider.FITBIT, state)
        logger.info("Fitbit connected for user %s", user_id)
        return credential

    # ------------------------------------------------------------------
    # FatSecret (OAuth 1.0a)
    # ------------------------------------------------------------------

    async def start_fatsecret_authorization(self, user_id: UUID, callback_url: str) -> str:
        """Obtain a request token, persist it with its secret, return the consent URL.

        Raises:
            InvalidRedirectError: ``callback_url`` is not allow-listed.
            ConfigurationError:   FatSecret consumer credentials missing.
            HandshakeError:       FatSecret refused the request-token call.
        """
        self._check_redirect(callback_url)
        request_token = await self._fatsecret.fetch_request_token(callback_url)
        await self._store.save_authorization_state(
            AuthorizationState(
                user_id=user_id,
                provider=Provider.FATSECRET,
                state=request_token.token,
                request_token_secret=request_token.secret,
            )
        )
        logger.info("FatSecret handshake started for user %s", user_id)
        return self._fatsecret.authorization_url(request_token.token)

    async def complete_fatsecret_authorization(
        self,
        user_id: UUID,
        oauth_token: str,
        oauth_verifier: str,
        now: datetime | None = None,
    ) -> FatSecretCredential:
        """Exchange the authorized request token and store the access token.

        Raises:
            InvalidTokenError: No live state holds ``oauth_token``.
            HandshakeError:    FatSecret refused the access-token exchange.
        """
        now = now or utc_now()
        record = await self._store.get_authorization_state(
            user_id, Provider.FATSECRET, oauth_token
        )
        if (
            record is None
            or not record.request_token_secret
            or record.is_expired(self._config.oauth_states.ttl, now)
        ):
            logger.warning("FatSecret callback with unknown request token for user %s", user_id)
            raise InvalidTokenError(
                "No matching request token found", provider=Provider.FATSECRET.value
            )

        access = await self._fatsecret.fetch_access_token(
            oauth_token, record.request_token_secret, oauth_verifier
        )
        credential = FatSecretCredential(
            user_id=user_id,
            oauth_token=access.token,
            oauth_secret=access.secret,
            connected_at=now,
        )
        await self._store.upsert_fatsecret_credential(credential)
        removed = await self._store.delete_authorization_states(user_id, Provider.FATSECRET)
        logger.info(
            "FatSecret connected for user %s (%d pending state(s) cleared)", user_id, removed
        )
        return credential

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def purge_stale_states(self, now: datetime | None = None) -> int:
        """Delete handshake states older than the configured TTL, for all users."""
        cutoff = (now or utc_now()) - self._config.oauth_states.ttl
        removed = await self._store.purge_authorization_states(cutoff)
        logger.info("Purged %d stale OAuth state(s) created before %s", removed, cutoff)
        return removed
