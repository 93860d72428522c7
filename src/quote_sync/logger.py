import json
import logging
import os
import sys

DEFAULT_LOG_FILE = "/tmp/quote-sync.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP client chatter is only useful when debugging the gateway.
NOISY_LOGGERS = ("urllib3", "requests")

_MODE_DEFAULT_LEVEL = {"mcp": "WARNING", "cli": "INFO"}


class JsonFormatter(logging.Formatter):
    """Render each record as one line of JSON.

    Keys are ``ts``, ``level``, ``logger`` and ``msg``; a formatted
    traceback is added under ``exc`` for records carrying exception info.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = dict(
            ts=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            msg=record.getMessage(),
        )
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def resolve_level(mode: str, debug: bool = False, level: str | None = None) -> int:
    """Pick the root log level.

    ``debug`` wins, then the ``LOG_LEVEL`` environment variable, then the
    *level* from the config file, then the mode default (WARNING for the
    MCP server, INFO for the CLI).  Unknown names fall back to INFO.
    """
    if debug:
        return logging.DEBUG
    name = os.getenv("LOG_LEVEL") or level or _MODE_DEFAULT_LEVEL.get(mode, "INFO")
    resolved = logging.getLevelName(name.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _formatter(debug_format: str, include_logger: bool) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    name_field = " %(name)s" if include_logger else ""
    return logging.Formatter(
        f"[%(asctime)s] [%(levelname)s]{name_field} %(message)s",
        datefmt=DATE_FORMAT,
    )


def _cli_handlers(log_file: str | None, debug_format: str) -> list[logging.Handler]:
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_formatter(debug_format, include_logger=False))
    handlers: list[logging.Handler] = [console]
    if log_file:
        to_file = logging.FileHandler(log_file, mode="a")
        to_file.setFormatter(_formatter(debug_format, include_logger=True))
        handlers.append(to_file)
    return handlers


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure root logging for the CLI or the MCP server.

    The MCP server talks JSON-RPC over stdout, so in ``mcp`` mode records
    only go to a file: *log_file*, else ``$LOG_FILE``, else
    ``DEFAULT_LOG_FILE``.  In ``cli`` mode records go to stderr, and also
    to *log_file* when one is given.

    Args:
        mode: "mcp" or "cli".
        debug: Force DEBUG regardless of other settings.
        log_file: Log file path (see above).
        debug_format: "text" or "json" for the CLI handlers.
        level: Level name from the config file.
    """
    log_level = resolve_level(mode, debug, level)

    if mode == "mcp":
        logging.basicConfig(
            level=log_level,
            format="[%(asctime)s] [%(levelname)s] %(message)s",
            datefmt=DATE_FORMAT,
            filename=log_file or os.getenv("LOG_FILE", DEFAULT_LOG_FILE),
            filemode="a",
        )
    else:
        logging.basicConfig(
            level=log_level, handlers=_cli_handlers(log_file, debug_format)
        )

    if log_level != logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
