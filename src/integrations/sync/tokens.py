"""Fitbit access-token lifecycle.

``ensure_valid_access_token`` is the only way sync code obtains a Fitbit
access token.  It returns the stored token when it is safely in the future,
otherwise refreshes it, persists the rotated pair, and updates the
credential object in place so the caller never holds a stale token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.base import FitbitCredential, utc_now
from src.integrations.config_loader import SyncConfig, get_sync_config
from src.integrations.errors import NotConnectedError
from src.integrations.sync.store import SyncStore

logger = logging.getLogger("groofit.integrations.sync.tokens")


class TokenRefresher:
    """Return a currently-valid Fitbit access token for a stored credential."""

    def __init__(
        self,
        store: SyncStore,
        adapter: FitbitAdapter,
        config: SyncConfig | None = None,
    ) -> None:
        self._store = store
        self._adapter = adapter
        self._config = config or get_sync_config()

    @property
    def margin(self) -> timedelta:
        return self._config.tokens.refresh_margin

    def needs_refresh(self, credential: FitbitCredential, now: datetime | None = None) -> bool:
        """True if the token expires within the safety margin (or has no expiry)."""
        if credential.token_expires_at is None:
            return True
        return credential.token_expires_at - (now or utc_now()) <= self.margin

    async def ensure_valid_access_token(
        self, credential: FitbitCredential, now: datetime | None = None
    ) -> str:
        """Return a usable access token, refreshing at most once.

        Args:
            credential: The user's stored credential.  Mutated in place on refresh.
            now:        Clock override for tests.

        Returns:
            The access token to use for the next provider call.

        Raises:
            NotConnectedError:  The credential has no tokens, or was deleted
                                while the refresh was in flight.
            TokenRefreshError:  Fitbit rejected the refresh.  The stored
                                credential is left untouched.
        """
        if not credential.access_token or not credential.refresh_token:
            raise NotConnectedError(
                "Fitbit tokens are missing. User needs to reconnect.", provider="fitbit"
            )

        now = now or utc_now()
        if not self.needs_refresh(credential, now):
            return credential.access_token

        logger.info("Refreshing Fitbit token for user %s", credential.user_id)
        previous = credential.refresh_token
        tokens = await self._adapter.refresh_token(previous, now=now)
        if await self._store.update_fitbit_tokens(credential.user_id, tokens, previous):
            credential.apply_tokens(tokens)
            return tokens.access_token

        # another invocation rotated the pair first; the stored one is current
        stored = await self._store.get_fitbit_credential(credential.user_id)
        if stored is None or not stored.access_token:
            raise NotConnectedError(
                "Fitbit was disconnected during token refresh", provider="fitbit"
            )
        logger.info("Fitbit token for user %s was rotated concurrently", credential.user_id)
        credential.access_token = stored.access_token
        credential.refresh_token = stored.refresh_token
        credential.token_expires_at = stored.token_expires_at
        credential.scope = stored.scope
        return stored.access_token
