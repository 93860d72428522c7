"""Configuration for the quote sync engine.

Reads settings from CLI args, environment variables, .env files, and YAML
config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    QUOTE_SYNC_REMOTE_URL: Remote endpoint (optional; in-memory remote when unset)
    QUOTE_SYNC_REMOTE_FORMAT: 'records' or 'posts' (optional, default: records)
    QUOTE_SYNC_DATA_DIR: Directory for persisted data (optional, default: .quote_sync/data)
    QUOTE_SYNC_INTERVAL_MS: Period between automatic syncs (optional, default: 30000)
    QUOTE_SYNC_AUTO: Enable the periodic timer (optional, default: true)
    QUOTE_SYNC_STRATEGY: Conflict strategy (optional, default: remote-wins)
    QUOTE_SYNC_SIMULATE_SERVER: Let the simulated remote change quotes on its own
        (optional, default: false)
    QUOTE_SYNC_CONFIG: Explicit YAML config path (see config_loader)
"""

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .config_loader import discover_config_files, load_hierarchical_config
from .config_schema import build_config, to_fallbacks
from .sync.models import ConflictStrategy

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = ".quote_sync/data"
_VALID_FORMATS = ("records", "posts")


@dataclass
class Config:
    remote_url: str | None = None
    remote_format: str = "records"
    remote_timeout: float = 30.0
    data_dir: str = DEFAULT_DATA_DIR
    sync_interval_ms: int = 30_000
    auto_sync_enabled: bool = True
    conflict_strategy: str = ConflictStrategy.REMOTE_WINS.value
    sync_log_limit: int = 100
    max_backoff_ms: int = 300_000
    simulate_server_updates: bool = False
    debug: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    @property
    def strategy(self) -> ConflictStrategy:
        return ConflictStrategy(self.conflict_strategy)


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If the remote URL, format, strategy or a numeric
            setting is invalid.
    """
    if config.remote_url is not None:
        config.remote_url = config.remote_url.strip()
        if not config.remote_url.startswith(("http://", "https://")):
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': must start with http:// or https://"
            )
        if not urlparse(config.remote_url).hostname:
            raise ValueError(
                f"Invalid remote URL '{config.remote_url}': URL must include a hostname"
            )
        config.remote_url = config.remote_url.removesuffix("/")

    if config.remote_format not in _VALID_FORMATS:
        raise ValueError(
            f"Invalid remote format '{config.remote_format}': must be one of {list(_VALID_FORMATS)}"
        )

    valid_strategies = [s.value for s in ConflictStrategy]
    if config.conflict_strategy not in valid_strategies:
        raise ValueError(
            f"Invalid conflict strategy '{config.conflict_strategy}': must be one of {valid_strategies}"
        )

    if config.sync_interval_ms <= 0:
        raise ValueError(
            f"Invalid sync interval {config.sync_interval_ms}: must be a positive number of milliseconds"
        )
    if config.max_backoff_ms <= 0:
        raise ValueError(
            f"Invalid max backoff {config.max_backoff_ms}: must be a positive number of milliseconds"
        )
    if config.sync_log_limit < 1:
        raise ValueError(
            f"Invalid sync log limit {config.sync_log_limit}: must be at least 1"
        )
    if config.remote_timeout <= 0:
        raise ValueError(
            f"Invalid remote timeout {config.remote_timeout}: must be positive"
        )

    if not config.data_dir.strip():
        raise ValueError(
            "Data directory cannot be empty. Set QUOTE_SYNC_DATA_DIR environment variable."
        )

    if config.max_backoff_ms < config.sync_interval_ms:
        logger.warning(
            "max_backoff_ms (%d) is below sync_interval_ms (%d); backoff is capped at %d ms",
            config.max_backoff_ms,
            config.sync_interval_ms,
            config.max_backoff_ms,
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def _get_int_env(key: str) -> int | None:
    """Return an int from env var, or None if unset."""
    raw = os.getenv(key)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValueError(
            f"Invalid {key} '{raw}': must be a whole number"
        ) from None


def load_config(
    remote_url: str | None = None,
    data_dir: str | None = None,
    strategy: str | None = None,
    interval_ms: int | None = None,
    auto_sync: bool | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``
    (``load_config_from_sources()`` does this).

    Args:
        remote_url: Override remote endpoint URL.
        data_dir: Override data directory.
        strategy: Override conflict strategy.
        interval_ms: Override sync interval.
        auto_sync: Override the periodic timer switch.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of values from the YAML config
            (see ``config_schema.to_fallbacks``).

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If any value is invalid after checking all sources.
    """
    fb = yaml_fallbacks or {}

    # --- String fields: CLI > env > YAML > default ---

    final_url = (
        remote_url or os.getenv("QUOTE_SYNC_REMOTE_URL") or fb.get("remote_url")
    )
    final_format = (
        os.getenv("QUOTE_SYNC_REMOTE_FORMAT")
        or fb.get("remote_format")
        or "records"
    )
    final_data_dir = (
        data_dir
        or os.getenv("QUOTE_SYNC_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )
    final_strategy = (
        strategy
        or os.getenv("QUOTE_SYNC_STRATEGY")
        or fb.get("conflict_strategy")
        or ConflictStrategy.REMOTE_WINS.value
    )

    # --- Boolean fields: CLI > env > YAML > default ---

    if auto_sync is not None:
        final_auto = auto_sync
    else:
        env_auto = _get_bool_env("QUOTE_SYNC_AUTO")
        if env_auto is not None:
            final_auto = env_auto
        else:
            final_auto = bool(fb.get("auto_sync_enabled", True))

    env_simulate = _get_bool_env("QUOTE_SYNC_SIMULATE_SERVER")
    if env_simulate is not None:
        final_simulate = env_simulate
    else:
        final_simulate = bool(fb.get("simulate_server_updates", False))

    if debug:
        final_debug = True
    else:
        final_debug = bool(_get_bool_env("QUOTE_SYNC_DEBUG"))

    # --- Numeric fields: CLI > env > YAML > default ---

    if interval_ms is not None:
        final_interval = interval_ms
    else:
        env_interval = _get_int_env("QUOTE_SYNC_INTERVAL_MS")
        if env_interval is not None:
            final_interval = env_interval
        else:
            final_interval = int(fb.get("sync_interval_ms", 30_000))

    config = Config(
        remote_url=final_url.strip() if final_url else None,
        remote_format=final_format.strip(),
        remote_timeout=float(fb.get("remote_timeout", 30.0)),
        data_dir=os.path.expanduser(final_data_dir.strip()),
        sync_interval_ms=final_interval,
        auto_sync_enabled=final_auto,
        conflict_strategy=final_strategy.strip(),
        sync_log_limit=int(fb.get("sync_log_limit", 100)),
        max_backoff_ms=int(fb.get("max_backoff_ms", 300_000)),
        simulate_server_updates=final_simulate,
        debug=final_debug,
        log_level=str(fb.get("log_level", "INFO")).upper(),
        log_file=fb.get("log_file"),
    )

    validate_config(config)

    return config


def load_config_from_sources(
    overrides: dict | None = None,
) -> tuple[Config, list[str]]:
    """Load ``.env``, the YAML config hierarchy and env vars into a Config.

    Shared by the CLI and the MCP server.

    Args:
        overrides: CLI values keyed like ``load_config()`` parameters.

    Returns:
        ``(config, sources)`` where *sources* describes what contributed.

    Raises:
        ValueError: If the YAML config or any resolved value is invalid.
    """
    # .env first, so ${VAR} interpolation in YAML can use its values
    load_dotenv()

    sources: list[str] = []
    yaml_fallbacks: dict | None = None
    config_files = discover_config_files()
    if config_files:
        try:
            unified = build_config(load_hierarchical_config())
        except (ValidationError, yaml.YAMLError) as exc:
            raise ValueError(f"Invalid config file: {exc}") from exc
        yaml_fallbacks = to_fallbacks(unified)
        sources.append(f"config file: {config_files[0]}")

    overrides = overrides or {}
    config = load_config(
        remote_url=overrides.get("remote_url"),
        data_dir=overrides.get("data_dir"),
        strategy=overrides.get("strategy"),
        interval_ms=overrides.get("interval_ms"),
        auto_sync=overrides.get("auto_sync"),
        debug=overrides.get("debug", False),
        yaml_fallbacks=yaml_fallbacks,
    )

    if any(v is not None for v in overrides.values()):
        sources.append("CLI arguments")
    sources.append("environment variables")
    logger.info("Configuration loaded from: %s", ", ".join(sources))
    return config, sources
