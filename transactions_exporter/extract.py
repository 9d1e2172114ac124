"""Turn transaction page HTML into :class:`TransactionRecord` objects.

Page shape
----------
The transactions page lists date groups in document order. Each group is a
``.apx-transaction-date-container`` whose first ``span`` holds the date text,
immediately followed by a sibling element containing the group's
``.apx-transactions-line-item-component-container`` line items.

A line item carries, inside its first ``.a-row``, the payment method
(``.a-span9 .a-text-bold``) and the amount (``.a-span3 .a-text-bold``). An
optional ``a[href*="orderID="]`` link gives the external reference, with
status text in ``.a-color-base``; merchant text sits in a plain
``span.a-size-base``.
"""

from __future__ import annotations

import math
import re
import time
import uuid
from collections.abc import Iterator
from dataclasses import dataclass

from bs4 import BeautifulSoup, Tag

from .errors import ExtractionError
from .logging_setup import get_logger
from .models import TransactionRecord
from .normalizers import normalize_date, parse_amount

_logger = get_logger("transactions_exporter.extract")

DATE_GROUP_SELECTOR = ".apx-transaction-date-container"
LINE_ITEM_SELECTOR = ".apx-transactions-line-item-component-container"
FIRST_ROW_SELECTOR = ".a-row"
PAYMENT_METHOD_SELECTOR = ".a-span9 .a-text-bold"
AMOUNT_SELECTOR = ".a-span3 .a-text-bold"
REFERENCE_PARAM = "orderID"
REFERENCE_LINK_SELECTOR = f"a[href*='{REFERENCE_PARAM}=']"
STATUS_SELECTOR = ".a-color-base"
MERCHANT_SELECTOR = "span.a-size-base:not(.a-text-bold):not(.a-color-base)"

_REFERENCE_RE = re.compile(rf"{REFERENCE_PARAM}=([^&#]+)")


@dataclass(frozen=True, slots=True)
class DateGroup:
    """One date heading and the line items listed under it.

    ``date`` is ``None`` when the heading had no usable date text; the items
    of such a group cannot be extracted.
    """

    date_text: str
    date: str | None
    line_items: tuple[Tag, ...]


def parse_document(html: str | BeautifulSoup) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html, "html.parser")


def iter_date_groups(doc: BeautifulSoup) -> Iterator[DateGroup]:
    """Yield date groups in document order."""

    for container in doc.select(DATE_GROUP_SELECTOR):
        items_container = container.find_next_sibling()
        line_items: tuple[Tag, ...] = ()
        if items_container is not None:
            line_items = tuple(items_container.select(LINE_ITEM_SELECTOR))

        span = container.find("span")
        date_text = _text(span)
        if span is None:
            _logger.info("No date span found in date container")
            date = None
        else:
            date = normalize_date(date_text)
        yield DateGroup(date_text=date_text, date=date, line_items=line_items)


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ").split())


def make_record_id(date: str, external_reference: str) -> str:
    """Opaque store key: date, reference (or a timestamp) and a random suffix."""

    anchor = external_reference or str(time.time_ns() // 1_000_000)
    return f"{date}_{anchor}_{uuid.uuid4().hex[:9]}"


def extract_reference(line_item: Tag) -> tuple[str, str]:
    """Return ``(external_reference, status)``; both empty without a link."""

    link = line_item.select_one(REFERENCE_LINK_SELECTOR)
    if link is None:
        return "", ""
    href = str(link.get("href") or "")
    m = _REFERENCE_RE.search(href)
    reference = m.group(1) if m else ""
    status = _text(line_item.select_one(STATUS_SELECTOR))
    return reference, status


def extract_record(line_item: Tag, date: str) -> TransactionRecord:
    """Build a record from one line item; ``items`` is left empty for enrichment.

    Raises :class:`ExtractionError` when the first row or the amount is
    missing, or when the amount text is not a number.
    """

    first_row = line_item.select_one(FIRST_ROW_SELECTOR)
    if first_row is None:
        raise ExtractionError("no first row found in line item")

    payment_method = _text(first_row.select_one(PAYMENT_METHOD_SELECTOR))

    amount_node = first_row.select_one(AMOUNT_SELECTOR)
    if amount_node is None:
        raise ExtractionError("no amount found in line item")
    amount_text = _text(amount_node)
    amount, currency = parse_amount(amount_text)
    if math.isnan(amount):
        raise ExtractionError(f"unparseable amount: {amount_text!r}")

    reference, status = extract_reference(line_item)
    merchant = _text(line_item.select_one(MERCHANT_SELECTOR))

    return TransactionRecord(
        id=make_record_id(date, reference),
        date=date,
        payment_method=payment_method,
        amount=amount,
        currency=currency,
        external_reference=reference,
        status=status,
        merchant=merchant,
    )


__all__ = [
    "DATE_GROUP_SELECTOR",
    "LINE_ITEM_SELECTOR",
    "DateGroup",
    "parse_document",
    "iter_date_groups",
    "make_record_id",
    "extract_reference",
    "extract_record",
]
