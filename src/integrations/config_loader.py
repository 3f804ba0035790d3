"""Load, validate, and hot-reload the Groofit sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is loaded
once on first use and cached.  Call ``reload_sync_config()`` to re-read from
disk without a restart.

Usage::

    from src.integrations.config_loader import get_sync_config

    config = get_sync_config()
    quota = config.backfill.daily_quota                 # 30
    margin = config.tokens.refresh_margin               # timedelta(minutes=5)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("groofit.integrations.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class TokenConfig:
    refresh_margin_seconds: int

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(seconds=self.refresh_margin_seconds)


@dataclass
class BackfillConfig:
    """Historical backfill pacing.

    Attributes:
        daily_quota:            Days processed per job per tick.
        token_check_every_days: Re-validate the access token after this many
                                days within one tick.
        tick_interval_minutes:  Cadence of the external scheduler; used only
                                for completion estimates.
        default_days:           Horizon when the caller does not give one.
        max_days:               Largest horizon accepted.
        request_delay_ms:       Pause between days inside a tick.
    """

    daily_quota: int
    token_check_every_days: int
    tick_interval_minutes: int
    default_days: int
    max_days: int
    request_delay_ms: int


@dataclass
class AutoSyncConfig:
    lookback_days: int
    request_delay_ms: int


@dataclass
class OAuthStateConfig:
    ttl_minutes: int

    @property
    def ttl(self) -> timedelta:
        return timedelta(minutes=self.ttl_minutes)


@dataclass
class FoodSearchConfig:
    max_results: int
    max_page: int
    max_query_length: int
    token_buffer_seconds: int


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    This is the single in-memory representation of sync_config.yaml.
    """

    version: str
    tokens: TokenConfig
    backfill: BackfillConfig
    auto_sync: AutoSyncConfig
    oauth_states: OAuthStateConfig
    food_search: FoodSearchConfig
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Every integer setting must be present-or-defaulted and positive
    (request delays may be zero).  All problems are collected and reported
    together.

    Raises:
        ConfigValidationError: If any value is missing, non-numeric or out of range.
    """
    errors: list[str] = []

    def _int(section: dict, key: str, path: str, default: int, minimum: int = 1) -> int:
        value: Any = section.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{path}.{key} must be an integer, got {value!r}")
            return default
        if number < minimum:
            errors.append(f"{path}.{key} = {number} must be >= {minimum}")
        return number

    def _section(name: str) -> dict:
        value = raw.get(name) or {}
        if not isinstance(value, dict):
            errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    version = str(raw.get("version", "1.0"))

    tk_raw = _section("tokens")
    tokens = TokenConfig(
        refresh_margin_seconds=_int(tk_raw, "refresh_margin_seconds", "tokens", 300, minimum=0),
    )

    bf_raw = _section("backfill")
    backfill = BackfillConfig(
        daily_quota=_int(bf_raw, "daily_quota", "backfill", 30),
        token_check_every_days=_int(bf_raw, "token_check_every_days", "backfill", 10),
        tick_interval_minutes=_int(bf_raw, "tick_interval_minutes", "backfill", 60),
        default_days=_int(bf_raw, "default_days", "backfill", 365),
        max_days=_int(bf_raw, "max_days", "backfill", 3650),
        request_delay_ms=_int(bf_raw, "request_delay_ms", "backfill", 300, minimum=0),
    )
    if backfill.default_days > backfill.max_days:
        errors.append(
            f"backfill.default_days ({backfill.default_days}) exceeds "
            f"backfill.max_days ({backfill.max_days})"
        )

    as_raw = _section("auto_sync")
    auto_sync = AutoSyncConfig(
        lookback_days=_int(as_raw, "lookback_days", "auto_sync", 2),
        request_delay_ms=_int(as_raw, "request_delay_ms", "auto_sync", 300, minimum=0),
    )

    os_raw = _section("oauth_states")
    oauth_states = OAuthStateConfig(
        ttl_minutes=_int(os_raw, "ttl_minutes", "oauth_states", 30),
    )

    fs_raw = _section("food_search")
    food_search = FoodSearchConfig(
        max_results=_int(fs_raw, "max_results", "food_search", 20),
        max_page=_int(fs_raw, "max_page", "food_search", 50, minimum=0),
        max_query_length=_int(fs_raw, "max_query_length", "food_search", 200),
        token_buffer_seconds=_int(fs_raw, "token_buffer_seconds", "food_search", 60, minimum=0),
    )

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        tokens=tokens,
        backfill=backfill,
        auto_sync=auto_sync,
        oauth_states=oauth_states,
        food_search=food_search,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_sync_config()`` to refresh after YAML changes.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the sync config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_sync_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
