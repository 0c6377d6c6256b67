"""structlog setup: one JSON object per line in the moodlog log file."""

import os
from pathlib import Path
from typing import Any, Optional

import structlog


DEFAULT_LOG_FILE = Path.home() / ".cache" / "moodlog" / "logs" / "moodlog.log"
LOG_LEVEL_ENV = "MOODLOG_LOG_LEVEL"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _log_level() -> str:
    level = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
    return level if level in LOG_LEVELS else "INFO"


def configure_logging(log_file: Optional[Path] = None) -> None:
    """
    Route all moodlog loggers to a JSON-lines file.

    ``MOODLOG_LOG_LEVEL`` picks the threshold (INFO when unset or unknown).
    At DEBUG every SSE payload, forwarded token and state change is logged;
    INFO covers request lifecycle and commits; WARNING covers skipped events,
    extraction misses and disconnected clients.

    Pipeline code binds ``request_id`` and ``scenario`` with
    ``structlog.contextvars``, so every line of one request can be pulled out
    with ``jq 'select(.request_id == "...")'``.

    Args:
        log_file: Destination (default ~/.cache/moodlog/logs/moodlog.log)
    """
    log_file = log_file or DEFAULT_LOG_FILE
    log_file.parent.mkdir(parents=True, exist_ok=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_log_level()),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=open(log_file, "a", encoding="utf-8")),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """Module logger; call sites log an event name plus keyword fields."""
    return structlog.get_logger(name)
