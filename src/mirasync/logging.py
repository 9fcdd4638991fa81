"""Structured logging configuration for Mirasync.

Two rotating log files are written under the log directory:

- ``mirasync.log`` - human-readable, every event
- ``sync.log`` - JSON lines, only events from ``mirasync.sync.*`` loggers

When ``console`` is enabled, events are also rendered to stderr.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

MAIN_LOG_FILE = "mirasync.log"
SYNC_LOG_FILE = "sync.log"

_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5
_QUIET_LOGGERS = ("aiosqlite", "asyncio")

_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]


def log_file(log_dir: Path, *, sync: bool = False) -> Path:
    """Path of the main log, or of the JSON sync log when *sync* is set."""
    return log_dir / (SYNC_LOG_FILE if sync else MAIN_LOG_FILE)


def _rotating(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: str = "info",
    log_dir: Path | None = None,
    *,
    console: bool = False,
) -> None:
    """Configure structlog on top of stdlib logging.

    Parameters
    ----------
    log_level:
        Python log-level name (``debug``, ``info``, ``warning``, etc.).
    log_dir:
        Directory for log files.  When *None* no file handlers are created
        (useful for testing).
    console:
        Also render events to stderr.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        root.addHandler(
            _rotating(
                log_file(log_dir),
                structlog.stdlib.ProcessorFormatter(
                    processor=structlog.dev.ConsoleRenderer(colors=False),
                    foreign_pre_chain=_shared_processors,
                ),
            )
        )
        sync_handler = _rotating(
            log_file(log_dir, sync=True),
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.processors.JSONRenderer(),
                foreign_pre_chain=_shared_processors,
            ),
        )
        sync_handler.addFilter(logging.Filter("mirasync.sync"))
        root.addHandler(sync_handler)

    if console:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
                foreign_pre_chain=_shared_processors,
            )
        )
        root.addHandler(stderr_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    def _excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: object,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
            return
        logging.getLogger("mirasync").critical(
            "Unhandled exception",
            exc_info=(exc_type, exc_value, exc_tb),
        )

    sys.excepthook = _excepthook  # type: ignore[assignment]
