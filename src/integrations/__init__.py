"""Groofit provider integrations.

Connects a user's Fitbit and FatSecret accounts, keeps their OAuth
credentials valid, and imports activity, body, sleep and food diary data
into Groofit's tables, including a paced, resumable historical backfill.

Subpackages:
    adapters/  Provider API clients (Fitbit OAuth2, FatSecret OAuth 1.0a)
    sync/      Storage, token refresh, handshakes, daily sync, backfill, auto-sync

Core modules:
    base          Domain dataclasses and the ProviderAdapter base
    errors        IntegrationError taxonomy with HTTP mapping
    config_loader Load/validate/hot-reload sync_config.yaml
"""

from src.integrations.base import (
    AuthorizationState,
    BackfillJob,
    BackfillStatus,
    DailyLogRecord,
    FatSecretCredential,
    FitbitCredential,
    OAuthTokens,
    Provider,
    ProviderAdapter,
    SyncLogEntry,
)
from src.integrations.config_loader import SyncConfig, get_sync_config

__all__ = [
    "ProviderAdapter",
    "Provider",
    "FitbitCredential",
    "FatSecretCredential",
    "AuthorizationState",
    "OAuthTokens",
    "BackfillJob",
    "BackfillStatus",
    "DailyLogRecord",
    "SyncLogEntry",
    "SyncConfig",
    "get_sync_config",
]
