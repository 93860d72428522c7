"""
YAML config file discovery and layering for quote_sync.

Config files are looked up by convention (explicit path, project
directory, user config directory), loaded lowest precedence first, and
layered section by section.  ``${VAR}`` references are expanded once the
layers are combined, so a project file can refer to a variable that only
the global file documents.

Usage:
    from quote_sync.config_loader import load_hierarchical_config

    sections = load_hierarchical_config()
    remote = sections.get("remote", {})
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "QUOTE_SYNC_CONFIG"
PROJECT_DIR = ".quote_sync"
CONFIG_NAMES = ("config.yml", "config.yaml")

# ${NAME} or ${NAME:-fallback}
_VAR_REF = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")

_STARTER_CONFIG = """\
# quote-sync configuration
#
# Settings can also be supplied via environment variables:
#   QUOTE_SYNC_REMOTE_URL, QUOTE_SYNC_DATA_DIR, QUOTE_SYNC_INTERVAL_MS,
#   QUOTE_SYNC_AUTO, QUOTE_SYNC_STRATEGY, QUOTE_SYNC_SIMULATE_SERVER
#
# remote:
#   url: https://jsonplaceholder.typicode.com/posts
#   format: posts          # records | posts
#   timeout: 30
#   simulate_updates: false   # simulated remote only: random server edits
#
# sync:
#   syncIntervalMs: 30000
#   autoSyncEnabled: true
#   conflictStrategy: remote-wins   # remote-wins | local-wins | manual | merge-keep-both
#   syncLogLimit: 100
#   maxBackoffMs: 300000
#
# storage:
#   data_dir: .quote_sync/data
#
# logging:
#   level: INFO
#   file: null
"""


def interpolate_env_vars(value: str) -> str:
    """Expand ``${NAME}`` and ``${NAME:-fallback}`` references in *value*.

    An unset or empty variable expands to its fallback, or to ``""`` when
    there is none.  Text that only looks like the start of a reference
    (``${`` without a closing brace) is kept as is.
    """
    return _VAR_REF.sub(_expand_reference, value)


def _expand_reference(ref: re.Match) -> str:
    name, fallback = ref.group(1), ref.group(2)
    return os.environ.get(name) or fallback or ""


def _interpolate_recursive(node: Any) -> Any:
    """Apply :func:`interpolate_env_vars` to every string inside *node*."""
    if isinstance(node, dict):
        return {key: _interpolate_recursive(item) for key, item in node.items()}
    if isinstance(node, list):
        return [_interpolate_recursive(item) for item in node]
    if isinstance(node, str):
        return interpolate_env_vars(node)
    return node


def _load_yaml(path: Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def _candidate_paths() -> list[Path]:
    """Every location a config file may live in, highest precedence first."""
    candidates: list[Path] = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    project_dir = Path.cwd() / PROJECT_DIR
    candidates.extend(project_dir / name for name in CONFIG_NAMES)
    candidates.append(Path.home() / ".config" / "quote_sync" / CONFIG_NAMES[0])
    return candidates


def discover_config_files() -> list[Path]:
    """Return the config files that exist, highest precedence first.

    Precedence:
        1. the file named by ``QUOTE_SYNC_CONFIG``
        2. ``./.quote_sync/config.yml``
        3. ``./.quote_sync/config.yaml``
        4. ``~/.config/quote_sync/config.yml``
    """
    return [path for path in _candidate_paths() if path.is_file()]


def resolve_config_path() -> Path:
    """Path of the config file in effect, or where a new one should go.

    Nothing is created; see :func:`ensure_config`.
    """
    found = discover_config_files()
    return found[0] if found else Path.cwd() / PROJECT_DIR / CONFIG_NAMES[0]


def ensure_config(target: Path | None = None) -> Path:
    """Make sure a config file exists and return its path.

    An existing file (any discovered one) is left untouched.  Otherwise the
    commented starter template is written to *target*, or to
    :func:`resolve_config_path` when no target is given.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config file %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Wrote starter config to %s", path)
    return path


def load_hierarchical_config() -> dict[str, Any]:
    """Combine every discovered config file into one section mapping.

    Files are applied from lowest to highest precedence.  A section
    (top-level key) from a higher file replaces the whole section from a
    lower one; sections are not merged key by key.  Files whose root is not
    a mapping are ignored with a warning, and an empty result (``{}``)
    means every setting falls back to its default.

    Raises:
        yaml.YAMLError: If a discovered file is not valid YAML.
    """
    layers = discover_config_files()
    if not layers:
        logger.debug("No config files found; using defaults")
        return {}

    sections: dict[str, Any] = {}
    for path in reversed(layers):
        try:
            document = _load_yaml(path)
        except yaml.YAMLError:
            logger.error("Could not parse config file %s", path)
            raise
        if document is None:
            continue
        if not isinstance(document, dict):
            logger.warning(
                "Ignoring config file %s: expected a mapping, got %s",
                path,
                type(document).__name__,
            )
            continue
        logger.debug("Applied config file %s", path)
        sections.update(document)

    return _interpolate_recursive(sections)
