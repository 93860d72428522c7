"""Unified configuration schema for quote_sync.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote endpoint, sync behaviour, local storage, and
logging.  Includes adapter functions that flatten the validated config
into fallback values for ``load_config()`` and into the ``Config``
dataclass.

Usage:
    from quote_sync.config_schema import (
        UnifiedConfig, build_config, to_fallbacks, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .sync.models import ConflictStrategy

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class RemoteConfig(BaseModel):
    """Remote endpoint settings.

    With no ``url`` the engine runs against the in-memory simulated
    remote.
    """

    url: str | None = Field(default=None, description="Remote endpoint URL")
    format: Literal["records", "posts"] = Field(
        default="records",
        description="Payload format: 'records' or JSONPlaceholder 'posts'",
    )
    timeout: float = Field(
        default=30.0, gt=0, description="Request timeout in seconds"
    )
    simulate_updates: bool = Field(
        default=False,
        description="Let the simulated remote add and edit quotes on its own",
    )

    model_config = {"frozen": True}


class SyncSettings(BaseModel):
    """Sync behaviour.

    Keys are accepted in snake_case or camelCase (``syncIntervalMs``).
    """

    sync_interval_ms: int = Field(
        default=30_000, gt=0, description="Period between automatic syncs"
    )
    auto_sync_enabled: bool = Field(
        default=True, description="Run the periodic sync timer"
    )
    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.REMOTE_WINS,
        description="Conflict resolution policy",
    )
    sync_log_limit: int = Field(
        default=100, ge=1, description="Sync log entries kept"
    )
    max_backoff_ms: int = Field(
        default=300_000, gt=0, description="Upper bound for failure backoff"
    )

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class StorageConfig(BaseModel):
    """Local storage settings.

    Attributes:
        data_dir: Directory holding the JSON state files.
    """

    data_dir: str | None = Field(
        default=None, description="Directory for persisted sync data"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully -- anything absent gets defaults.
    Sections that are present but empty (``sync:`` with no keys) are
    treated as absent.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    cleaned = {k: v for k, v in raw_data.items() if v is not None}
    return UnifiedConfig(**cleaned)


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


def to_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten a ``UnifiedConfig`` into ``load_config()`` fallback values.

    Only values that differ from ``None`` are included, so unset YAML keys
    never mask built-in defaults.
    """
    flat: dict[str, Any] = {
        "remote_url": unified.remote.url,
        "remote_format": unified.remote.format,
        "remote_timeout": unified.remote.timeout,
        "simulate_server_updates": unified.remote.simulate_updates,
        "data_dir": unified.storage.data_dir,
        "sync_interval_ms": unified.sync.sync_interval_ms,
        "auto_sync_enabled": unified.sync.auto_sync_enabled,
        "conflict_strategy": unified.sync.conflict_strategy.value,
        "sync_log_limit": unified.sync.sync_log_limit,
        "max_backoff_ms": unified.sync.max_backoff_ms,
        "log_level": unified.logging.level,
        "log_file": unified.logging.file,
    }
    return {k: v for k, v in flat.items() if v is not None}


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Convert a ``UnifiedConfig`` into the ``Config`` dataclass, applying
    CLI overrides on top.

    The precedence applied here is:
        CLI override > unified config value > built-in default

    Environment variables are *not* consulted; use ``load_config()`` for
    the full precedence chain.

    Args:
        unified: The unified config produced by ``build_config()``.
        cli_overrides: Optional dict keyed like ``Config`` fields.

    Returns:
        ``Config`` dataclass instance (NOT validated -- caller should run
        ``validate_config()`` separately if needed).
    """
    # Import here to avoid circular imports (config.py imports config_schema)
    from .config import Config

    values = to_fallbacks(unified)
    values.update(
        {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    )
    known = Config.__dataclass_fields__.keys()
    return Config(**{k: v for k, v in values.items() if k in known})
