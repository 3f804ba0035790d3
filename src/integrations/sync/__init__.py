"""Groofit integration sync infrastructure.

Modules:
    store     Storage contract and asyncpg implementation
    dedup     Upsert query builder (idempotent writes)
    tokens    Fitbit access-token refresh
    handshake OAuth handshake start/complete for Fitbit and FatSecret
    daily     Single-date Fitbit sync
    backfill  Resumable historical backfill (bounded per tick)
    scheduler Auto-sync of all connected users
    food      FatSecret food diary import
"""
