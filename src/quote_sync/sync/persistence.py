"""Durable persistence collaborators.

The engine persists four keys -- ``records``, ``pending``, ``sync_state``
and ``sync_log`` (plus ``server`` for the simulated remote) -- through a
tiny synchronous key/value contract.  Values are plain JSON-compatible
structures (lists and dicts); the caller owns (de)serialisation of models.

Key design choices:

* **Atomic writes** -- ``JsonFileStore.save()`` writes to a temp file then
  calls ``os.replace()`` so readers never see partial data.
* **One file per key** -- ``<data_dir>/<key>.json``; a missing file loads
  as ``None`` so a fresh install starts empty.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

RECORDS_KEY = "records"
PENDING_KEY = "pending"
SYNC_STATE_KEY = "sync_state"
SYNC_LOG_KEY = "sync_log"
SERVER_KEY = "server"

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Protocol for the durable storage the engine writes through."""

    def load(self, key: str) -> Any | None:
        """Return the stored value for *key*, or ``None`` if absent."""
        ...  # pragma: no cover

    def save(self, key: str, value: Any) -> None:
        """Persist *value* under *key*, replacing any previous value."""
        ...  # pragma: no cover


class MemoryKeyValueStore:
    """In-process store.  Values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    def load(self, key: str) -> Any | None:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    def save(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """Store each key as a JSON document under *data_dir*.

    Args:
        data_dir: Directory holding the ``<key>.json`` files.  Created on
            first save.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def load(self, key: str) -> Any | None:
        """Load the value stored for *key*.

        Returns:
            The decoded JSON value, or ``None`` if the file does not exist.
        """
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def save(self, key: str, value: Any) -> None:
        """Persist *value* atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``data_dir`` if it does not exist.
        """
        self._data_dir.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._data_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug("Saved %s to %s", key, target)

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: '{key}'")
        return self._data_dir / f"{key}.json"
