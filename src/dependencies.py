"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.integrations.adapters.fatsecret import FatSecretAdapter
from src.integrations.adapters.fitbit import FitbitAdapter
from src.integrations.sync.store import PostgresSyncStore, SyncStore

logger = logging.getLogger("groofit.auth")


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from the Supabase JWT."""

    user_id: uuid.UUID  # auth.users.id (the token's ``sub`` claim)
    email: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class SchedulerContext:
    """An authenticated scheduler invocation (cron job or service role)."""

    credential: str  # "cron_secret" | "service_role"


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The Supabase auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


async def require_scheduler(
    request: Request, settings: Annotated[Settings, Depends(get_settings)]
) -> SchedulerContext:
    """Accept the cron secret or the service-role key as a bearer token.

    Scheduler routes are skipped by the user auth middleware, so this is the
    only gate in front of them.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    token = auth_header.removeprefix("Bearer ").strip().encode()

    candidates = (
        ("cron_secret", settings.cron_secret),
        ("service_role", settings.supabase_service_role_key),
    )
    for name, secret in candidates:
        if secret and hmac.compare_digest(token, secret.encode()):
            return SchedulerContext(credential=name)

    logger.warning("Rejected scheduler call to %s", request.url.path)
    raise HTTPException(status_code=401, detail="Invalid scheduler credentials")


# ---------- Storage and provider clients ----------


async def get_user_store(user: Annotated[AuthContext, Depends(get_current_user)]) -> SyncStore:
    """Store bound to the caller; every statement runs under RLS."""
    return PostgresSyncStore(user_id=user.user_id)


async def get_elevated_store(
    _: Annotated[SchedulerContext, Depends(require_scheduler)],
) -> SyncStore:
    """Store that bypasses RLS; only reachable by the scheduler principal."""
    return PostgresSyncStore(elevated=True)


def get_fitbit_adapter(settings: Annotated[Settings, Depends(get_settings)]) -> FitbitAdapter:
    return FitbitAdapter(
        client_id=settings.fitbit_client_id,
        client_secret=settings.fitbit_client_secret,
    )


def get_fatsecret_adapter(
    settings: Annotated[Settings, Depends(get_settings)],
) -> FatSecretAdapter:
    return FatSecretAdapter(
        consumer_key=settings.fatsecret_consumer_key,
        consumer_secret=settings.fatsecret_consumer_secret,
        search_scope=settings.fatsecret_search_scope,
    )


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
SchedulerPrincipal = Annotated[SchedulerContext, Depends(require_scheduler)]
AppSettings = Annotated[Settings, Depends(get_settings)]
UserStore = Annotated[SyncStore, Depends(get_user_store)]
ElevatedStore = Annotated[SyncStore, Depends(get_elevated_store)]
Fitbit = Annotated[FitbitAdapter, Depends(get_fitbit_adapter)]
FatSecret = Annotated[FatSecretAdapter, Depends(get_fatsecret_adapter)]
