"""Structured logging for Ensemble.

Two rotating streams are written under the log directory:

- ``app.log``: every event, rendered for people reading a terminal
- ``sync.log``: JSON lines from ``ensemble.sync.*`` only, one per event

Events emitted while a sync runs carry the ``sync_id`` and
``scoped_providers`` bound by :func:`sync_context`, so a single run can be
followed through ``sync.log`` across the service and the catalog client.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_BACKUP_COUNT = 5

APP_LOG = "app.log"
SYNC_LOG = "sync.log"
SYNC_LOGGER = "ensemble.sync"

_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _plain_values(
    logger: object, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Turn media-type enums and provider sets into JSON-friendly values."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (set, frozenset)):
            event_dict[key] = sorted(str(v) for v in value)
    return event_dict


_shared_processors: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.ExtraAdder(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
    _plain_values,
]


@contextmanager
def sync_context(scoped_providers: Sequence[str] | None = None) -> Iterator[str]:
    """Bind a fresh ``sync_id`` (and the provider scope) to every event logged inside."""
    sync_id = uuid.uuid4().hex[:8]
    with structlog.contextvars.bound_contextvars(
        sync_id=sync_id,
        scoped_providers=list(scoped_providers) if scoped_providers else None,
    ):
        yield sync_id


def _rotating_handler(
    path: Path,
    formatter: logging.Formatter,
    only: str | None = None,
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    if only is not None:
        handler.addFilter(logging.Filter(only))
    return handler


def setup_logging(log_level: str = "info", log_dir: Path | None = None) -> None:
    """Configure structlog on top of stdlib logging.

    Parameters
    ----------
    log_level:
        Python log-level name (``debug``, ``info``, ``warning``, etc.).
    log_dir:
        Directory for the log files.  When *None* no file handlers are
        installed.
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
        human = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=_shared_processors,
        )
        machine = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=_shared_processors,
        )
        root.addHandler(_rotating_handler(log_dir / APP_LOG, human))
        root.addHandler(_rotating_handler(log_dir / SYNC_LOG, machine, only=SYNC_LOGGER))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    def _excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_tb: object,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)  # type: ignore[arg-type]
            return
        logging.getLogger("ensemble").critical(
            "Unhandled exception",
            exc_info=(exc_type, exc_value, exc_tb),
        )

    sys.excepthook = _excepthook  # type: ignore[assignment]
