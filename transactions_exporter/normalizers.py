"""Date and amount normalization for text scraped from transaction pages.

Dates are matched strictly against a fixed, ordered list of formats and
rendered as ``YYYY-MM-DD``. Amounts are reduced to their sign, digits and
separators and parsed as ``float``; text that does not form a well-grouped
number yields ``NaN`` so the caller can count the item as failed.
"""

from __future__ import annotations

import math
import re
from datetime import datetime

from .logging_setup import get_logger

_logger = get_logger("transactions_exporter.normalizers")

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

# Tried in order; first strict match wins.
DATE_FORMATS: tuple[str, ...] = (
    "%B %d, %Y",  # August 24, 2025
    "%d %B %Y",  # 24 August 2025
    "%b %d, %Y",  # Aug 24, 2025
    "%d %b %Y",  # 24 Aug 2025
    "%Y-%m-%d",  # 2025-08-24
)

CANONICAL_DATE_FORMAT = "%Y-%m-%d"


def normalize_date(date_text: object) -> str | None:
    """Return ``date_text`` as ``YYYY-MM-DD``.

    - Non-string or blank input is an extraction failure: logged, ``None``.
    - Text matching none of :data:`DATE_FORMATS` is returned trimmed and
      unchanged (logged as a normalization miss).
    """

    if not isinstance(date_text, str) or not date_text.strip():
        _logger.error("Invalid date text provided: %r", date_text)
        return None

    s = date_text.strip()
    for fmt in DATE_FORMATS:
        try:
            dt = datetime.strptime(s, fmt)
        except ValueError:
            continue
        return dt.strftime(CANONICAL_DATE_FORMAT)

    _logger.warning("Failed to parse transaction date with known formats: %r", s)
    return s


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

CURRENCY_SYMBOLS: dict[str, str] = {"$": "USD", "€": "EUR", "£": "GBP"}
DEFAULT_CURRENCY = "USD"

_NON_NUMERIC_RE = re.compile(r"[^0-9.,\-]")
# Plain: -1234.56 / .5 ; grouped: -1,234,567.89
_PLAIN_NUMBER_RE = re.compile(r"-?(?:\d+(?:\.\d+)?|\.\d+)")
_GROUPED_NUMBER_RE = re.compile(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?")


def infer_currency(amount_text: str) -> str:
    """Map the leading currency symbol to an ISO code (``USD`` when unknown).

    A leading sign or opening parenthesis is skipped so ``-€5.00`` is EUR.
    """

    s = amount_text.strip().lstrip("+-( ").lstrip()
    if s:
        return CURRENCY_SYMBOLS.get(s[0], DEFAULT_CURRENCY)
    return DEFAULT_CURRENCY


def _to_float(amount_text: str) -> float:
    cleaned = _NON_NUMERIC_RE.sub("", amount_text)
    if _PLAIN_NUMBER_RE.fullmatch(cleaned) or _GROUPED_NUMBER_RE.fullmatch(cleaned):
        return float(cleaned.replace(",", ""))
    return math.nan


def parse_amount(amount_text: str) -> tuple[float, str]:
    """Parse display text such as ``"-$27.91"`` into ``(amount, currency)``.

    The amount is ``NaN`` when the numeric part is malformed, including a
    comma used as the decimal separator (``"€15,50"``).
    """

    amount = _to_float(amount_text)
    if math.isnan(amount):
        _logger.debug("Unparseable amount text: %r", amount_text)
    return amount, infer_currency(amount_text)


__all__ = [
    "DATE_FORMATS",
    "CANONICAL_DATE_FORMAT",
    "CURRENCY_SYMBOLS",
    "DEFAULT_CURRENCY",
    "normalize_date",
    "infer_currency",
    "parse_amount",
]
