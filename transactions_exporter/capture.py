"""Capture every line item of one transactions page.

Items are processed strictly in document order, one at a time: extraction,
then enrichment, then the duplicate check. Per-item problems only move
counters; a page never aborts because of one item. New records are committed
to the accumulator store once the whole page has been walked.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Protocol, TypeAlias

from bs4 import BeautifulSoup, Tag

from .errors import ExtractionError
from .extract import extract_record, iter_date_groups, parse_document
from .logging_setup import get_logger
from .models import ItemOutcome, MultiPageRun, NaturalKey, ProgressSnapshot, TransactionRecord
from .store import AccumulatorStore

_logger = get_logger("transactions_exporter.capture")


class ItemsFetcher(Protocol):
    async def fetch_items(self, reference: str) -> list[str]: ...


ProgressSink: TypeAlias = Callable[[ProgressSnapshot], None]


@dataclass(slots=True)
class PageCaptureResult:
    progress: ProgressSnapshot
    outcomes: list[ItemOutcome] = field(default_factory=list)
    new_records: list[TransactionRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def captured_any(self) -> bool:
        return bool(self.new_records)


class PageCaptureCoordinator:
    """Walk a page's date groups and line items into the accumulator store."""

    def __init__(
        self,
        store: AccumulatorStore,
        fetcher: ItemsFetcher,
        *,
        on_progress: ProgressSink | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.on_progress = on_progress

    def _emit(self, progress: ProgressSnapshot) -> None:
        if self.on_progress is not None:
            self.on_progress(replace(progress))

    async def capture_page(
        self,
        document: str | BeautifulSoup,
        *,
        page_info: MultiPageRun | None = None,
    ) -> PageCaptureResult:
        """Capture one page; ``page_info`` marks a page of a multi-page run."""

        doc = parse_document(document)
        groups = list(iter_date_groups(doc))
        progress = ProgressSnapshot(
            total=sum(len(g.line_items) for g in groups),
            current_page=page_info.current_page if page_info else 1,
            total_pages=page_info.total_pages if page_info else 1,
            multi_page=page_info is not None,
        )
        result = PageCaptureResult(progress=progress)

        if not groups:
            _logger.info("No transaction date containers found on page")
            self._emit(progress)
            return result

        pending: list[TransactionRecord] = []
        pending_keys: set[NaturalKey] = set()

        for group in groups:
            for line_item in group.line_items:
                if group.date is None:
                    outcome = ItemOutcome.FAILED
                else:
                    outcome = await self._capture_item(line_item, group.date, pending, pending_keys)

                result.outcomes.append(outcome)
                if outcome is ItemOutcome.CAPTURED:
                    progress.captured += 1
                elif outcome is ItemOutcome.SKIPPED:
                    progress.skipped += 1
                else:
                    progress.failed += 1
                self._emit(progress)

        if pending:
            self.store.merge(pending)
            result.new_records = pending
            total_items = sum(len(r.items) for r in pending)
            _logger.info(
                "Captured %d new transactions with %d total items", len(pending), total_items
            )
        _logger.info(progress.status_line(done=True))
        return result

    async def _capture_item(
        self,
        line_item: Tag,
        date: str,
        pending: list[TransactionRecord],
        pending_keys: set[NaturalKey],
    ) -> ItemOutcome:
        try:
            record = _extract(line_item, date)
        except ExtractionError as exc:
            _logger.info("Line item not captured: %s", exc.reason)
            return ItemOutcome.FAILED

        items = await self.fetcher.fetch_items(record.external_reference)
        record = replace(record, items=tuple(items))

        key = record.natural_key
        if key in pending_keys or self.store.find_duplicate(record) is not None:
            return ItemOutcome.SKIPPED
        pending.append(record)
        pending_keys.add(key)
        return ItemOutcome.CAPTURED


def _extract(line_item: Tag, date: str) -> TransactionRecord:
    # Unexpected markup shapes count as a failed item, never a failed page.
    try:
        return extract_record(line_item, date)
    except ExtractionError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        _logger.exception("Error processing transaction line item")
        raise ExtractionError(f"unexpected line item shape: {exc}") from exc


__all__ = [
    "ItemsFetcher",
    "ProgressSink",
    "PageCaptureResult",
    "PageCaptureCoordinator",
]
