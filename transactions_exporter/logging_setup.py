"""Process-wide logging for the exporter.

Entry points call :func:`configure_logging` once; every other module asks
:func:`get_logger` for ``"transactions_exporter.<module>"`` and logs through
it. Nothing is printed until an entry point has configured the package
logger.

The HTTP client logs one INFO line per request, which repeats the
enrichment fetcher's own "Fetching order page" line, so its loggers are held
at WARNING unless DEBUG output was asked for.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

_PKG_LOGGER_NAME = "transactions_exporter"
_ENV_LEVEL = "TXN_EXPORTER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"
_HTTP_CLIENT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")
_CONFIGURED = False


def _resolve_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    text = (level if level is not None else os.getenv(_ENV_LEVEL, "")).strip().upper()
    if not text:
        return logging.INFO
    if text.isdigit():
        return int(text)
    # "Level FOO" (a str) comes back for names logging does not know.
    numeric = logging.getLevelName(text)
    return numeric if isinstance(numeric, int) else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Send package log records to ``stream``; later calls are no-ops.

    ``level`` wins over ``TXN_EXPORTER_LOG_LEVEL``; INFO applies when neither
    is usable.
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = _resolve_level(level)
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    pkg_logger.handlers = [
        h for h in pkg_logger.handlers if not isinstance(h, logging.NullHandler)
    ]

    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))
    pkg_logger.addHandler(handler)
    pkg_logger.setLevel(resolved)
    pkg_logger.propagate = False

    if resolved > logging.DEBUG:
        for name in _HTTP_CLIENT_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger"]
