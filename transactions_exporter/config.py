"""Runtime settings resolved from the environment.

Entry points load ``.env`` (python-dotenv, without overriding variables that
are already set) before calling :func:`load_settings`.

Variables
---------
``TXN_EXPORTER_BASE_URL``           base of the order-detail URL template
``TXN_EXPORTER_TRANSACTIONS_URL``   page opened by the browser capture
``TXN_EXPORTER_STATE_DIR``          directory of the file-backed session slot
``DATABASE_URL``                    store the session in SQL instead of a file
``TXN_EXPORTER_ENRICH_DELAY``       seconds between order-detail requests
``TXN_EXPORTER_TRANSITION_TIMEOUT`` page transition deadline, seconds
``TXN_EXPORTER_SETTLE_DELAY``       pause after a transition, seconds
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .enrichment import DEFAULT_DELAY_SECONDS, DEFAULT_URL_TEMPLATE
from .logging_setup import get_logger
from .pagination import DEFAULT_SETTLE_DELAY, DEFAULT_TRANSITION_TIMEOUT
from .store import get_state_dir

_logger = get_logger("transactions_exporter.config")

DEFAULT_BASE_URL = "https://www.amazon.com"
DEFAULT_TRANSACTIONS_PATH = "/cpe/yourpayments/transactions"


@dataclass(frozen=True, slots=True)
class Settings:
    base_url: str
    transactions_url: str
    state_dir: Path
    database_url: str | None
    order_url_template: str
    enrich_delay: float
    transition_timeout: float
    settle_delay: float


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        _logger.warning("Ignoring %s=%r: not a number; using %s", name, raw, default)
        return default
    if value < 0:
        _logger.warning("Ignoring %s=%r: negative; using %s", name, raw, default)
        return default
    return value


def load_settings(*, database_url: str | None = None) -> Settings:
    base_url = (os.getenv("TXN_EXPORTER_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
    return Settings(
        base_url=base_url,
        transactions_url=os.getenv("TXN_EXPORTER_TRANSACTIONS_URL")
        or f"{base_url}{DEFAULT_TRANSACTIONS_PATH}",
        state_dir=get_state_dir(),
        database_url=database_url or os.getenv("DATABASE_URL") or None,
        order_url_template=DEFAULT_URL_TEMPLATE,
        enrich_delay=_env_float("TXN_EXPORTER_ENRICH_DELAY", DEFAULT_DELAY_SECONDS),
        transition_timeout=_env_float(
            "TXN_EXPORTER_TRANSITION_TIMEOUT", DEFAULT_TRANSITION_TIMEOUT
        ),
        settle_delay=_env_float("TXN_EXPORTER_SETTLE_DELAY", DEFAULT_SETTLE_DELAY),
    )


__all__ = ["DEFAULT_BASE_URL", "Settings", "load_settings"]
