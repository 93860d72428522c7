"""Tool registration and permission gating for the MCP server.

Every tool the server can expose is described by a ``ToolSpec``: the MCP
``Tool`` definition, the permissions an operator must grant for it to be
listed, and the coroutine that serves it.  ``ToolRegistry`` keeps the
subset of specs allowed by the operator (``--read-only`` or a
``--permissions-file``) and turns engine exceptions into error results,
so handlers can simply raise.

Permissions:

- ``QUOTE_VIEW`` / ``QUOTE_MODIFY``: read and edit the local collection.
- ``SYNC_VIEW``: inspect status, log and pending conflicts.
- ``SYNC_RUN``: start a sync cycle.
- ``SYNC_RESOLVE``: answer a conflict batch under the manual strategy.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

import mcp.types as types

from ...sync.engine import SyncEngine
from ...sync.errors import SyncError
from .errors import build_error_response, translate_sync_error

logger = logging.getLogger(__name__)

QUOTE_VIEW = "QUOTE_VIEW"
QUOTE_MODIFY = "QUOTE_MODIFY"
SYNC_VIEW = "SYNC_VIEW"
SYNC_RUN = "SYNC_RUN"
SYNC_RESOLVE = "SYNC_RESOLVE"

ALL_PERMISSIONS = frozenset(
    {QUOTE_VIEW, QUOTE_MODIFY, SYNC_VIEW, SYNC_RUN, SYNC_RESOLVE}
)
READ_ONLY_PERMISSIONS = frozenset({QUOTE_VIEW, SYNC_VIEW})

ToolHandler = Callable[[SyncEngine, dict], Awaitable[types.CallToolResult]]


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """One MCP tool together with its access requirement and handler.

    Attributes:
        tool: Name, description and input schema advertised to clients.
        permissions: Every permission needed to expose the tool.  An empty
            set makes the tool unconditional.
        handler: Coroutine called as ``handler(engine, arguments)``.
    """

    tool: types.Tool
    permissions: frozenset[str]
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.tool.name

    def allowed_by(self, granted: frozenset[str] | None) -> bool:
        """True if *granted* covers this tool (``None`` grants everything)."""
        return granted is None or self.permissions <= granted


class ToolRegistry:
    """The tools one server instance exposes, keyed by name.

    Specs whose permissions are not covered by *allowed_permissions* are
    dropped at construction; to a client they simply do not exist.
    """

    def __init__(
        self,
        specs: Iterable[ToolSpec],
        allowed_permissions: frozenset[str] | None = None,
    ):
        self._specs: dict[str, ToolSpec] = {}
        hidden: list[str] = []
        for spec in specs:
            if spec.allowed_by(allowed_permissions):
                self._specs[spec.name] = spec
            else:
                hidden.append(spec.name)
        if hidden:
            logger.debug("Tools hidden by permissions: %s", ", ".join(hidden))

    def list_tools(self) -> list[types.Tool]:
        return [spec.tool for spec in self._specs.values()]

    def tool_count(self) -> int:
        return len(self._specs)

    async def call_tool(
        self,
        name: str,
        arguments: dict | None,
        engine: SyncEngine,
    ) -> types.CallToolResult:
        """Run the handler registered under *name* against *engine*.

        Engine errors, argument errors and unexpected failures all come back
        as ``isError`` results carrying a corrective action.

        Raises:
            ValueError: If *name* is not registered here, either because it
                does not exist or because permissions hid it.
        """
        try:
            spec = self._specs[name]
        except KeyError:
            raise ValueError(f"Unknown tool: {name}") from None

        try:
            return await spec.handler(engine, arguments or {})
        except SyncError as e:
            logger.warning("%s failed: %s", name, e)
            return translate_sync_error(e)
        except ValueError as e:
            return build_error_response(
                "validation_error", str(e), "Fix the arguments and call again."
            )
        except Exception as e:
            logger.exception("Unhandled error in tool %s", name)
            return build_error_response(
                "server_error", str(e), "See the server log; retry later."
            )


def load_permissions_file(path: str | Path) -> frozenset[str]:
    """Read the permissions granted to this server from *path*.

    The file lists one permission name per line.  Blank lines and lines
    starting with ``#`` (after indentation) are ignored::

        # browse only
        QUOTE_VIEW
        SYNC_VIEW

    Raises:
        FileNotFoundError: If *path* does not exist.
        ValueError: If a line names an unknown permission, or the file
            grants nothing.
    """
    path = Path(path)
    granted: set[str] = set()
    for lineno, raw in enumerate(path.read_text().splitlines(), start=1):
        entry = raw.strip()
        if not entry or entry.startswith("#"):
            continue
        if entry not in ALL_PERMISSIONS:
            known = ", ".join(sorted(ALL_PERMISSIONS))
            raise ValueError(
                f"Invalid permission '{entry}' on line {lineno} of {path}; "
                f"known permissions: {known}"
            )
        granted.add(entry)
    if not granted:
        raise ValueError(f"No permissions found in {path}")
    return frozenset(granted)
