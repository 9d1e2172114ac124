"""CSV and JSON renderings of a capture session.

Both functions are pure: they read the session and never mutate it.
"""

from __future__ import annotations

import csv
from io import StringIO

from .models import CaptureSession
from .store import dump_session

CSV_BASE_HEADERS: tuple[str, ...] = (
    "Date",
    "PaymentMethod",
    "Amount",
    "Currency",
    "OrderId",
    "Status",
)


def format_amount(amount: float) -> str:
    """Shortest round-trip text for ``amount`` without a trailing ``.0``."""

    s = repr(amount)
    return s[:-2] if s.endswith(".0") else s


def to_csv(session: CaptureSession) -> str:
    """Render one row per record with ``Item1..ItemN`` columns; ``""`` when empty.

    ``N`` is the largest item count of any record; every cell is quoted.
    """

    records = list(session.records.values())
    if not records:
        return ""

    max_items = max(len(r.items) for r in records)
    headers = [*CSV_BASE_HEADERS, *(f"Item{i}" for i in range(1, max_items + 1))]

    with StringIO() as buf:
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(headers)
        for r in records:
            items = list(r.items) + [""] * (max_items - len(r.items))
            writer.writerow(
                [
                    r.date,
                    r.payment_method,
                    format_amount(r.amount),
                    r.currency,
                    r.external_reference,
                    r.status,
                    *items,
                ]
            )
        return buf.getvalue().rstrip("\n")


def to_json(session: CaptureSession) -> str:
    """Render the whole session exactly as it is persisted."""

    return dump_session(session)


__all__ = ["CSV_BASE_HEADERS", "format_amount", "to_csv", "to_json"]
