"""Data models for ``transactions_exporter``.

Domain objects are plain dataclasses; the persisted session slot is described
by strict pydantic DTOs so a malformed slot is rejected on load instead of
leaking half-valid state into a capture.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, field_validator

# Bump only when the on-disk session JSON shape changes.
SCHEMA_VERSION: int = 1

# Bounds of the user-configurable page count.
MIN_PAGES_TO_CAPTURE = 1
MAX_PAGES_TO_CAPTURE = 50

# The original page layout shows about twenty transactions per page; used only
# for the multi-page progress estimate.
ITEMS_PER_PAGE_ESTIMATE = 20


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class NaturalKey(NamedTuple):
    """Fields that identify one logical transaction regardless of capture order."""

    date: str
    external_reference: str
    amount: float
    payment_method: str


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """A single captured payment transaction.

    ``id`` is an opaque store key (date, reference and a random suffix) and is
    never used for equality between captures; use :attr:`natural_key`.
    ``date`` is ``YYYY-MM-DD`` when the page text matched a known format and
    the trimmed raw text otherwise.
    """

    id: str
    date: str
    payment_method: str
    amount: float
    currency: str
    external_reference: str = ""
    status: str = ""
    merchant: str = ""
    items: tuple[str, ...] = ()

    @property
    def natural_key(self) -> NaturalKey:
        return NaturalKey(self.date, self.external_reference, self.amount, self.payment_method)


class ItemOutcome(StrEnum):
    """Per line-item result, reported to the host so it can flag the item."""

    CAPTURED = "captured"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class MultiPageRun:
    """Position of an active multi-page traversal (1-based ``current_page``)."""

    current_page: int
    total_pages: int


@dataclass(slots=True)
class CaptureSession:
    """Accumulated captures plus the traversal settings that survive a restart.

    Mutated only by the accumulator store and the pagination state machine;
    both persist it through a storage port after every change.
    """

    records: dict[str, TransactionRecord] = field(default_factory=dict)
    total_count: int = 0
    capture_run_count: int = 0
    last_update: str | None = None
    pages_to_capture: int = MIN_PAGES_TO_CAPTURE
    multi_page_run: MultiPageRun | None = None
    stop_requested: bool = False

    @property
    def total_items(self) -> int:
        """Number of enrichment item descriptions across all records."""

        return sum(len(r.items) for r in self.records.values())


@dataclass(slots=True)
class ProgressSnapshot:
    """Live counters for one page capture, pushed to the progress sink."""

    captured: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    current_page: int = 1
    total_pages: int = 1
    multi_page: bool = False

    @property
    def processed(self) -> int:
        return self.captured + self.failed + self.skipped

    @property
    def estimated_total(self) -> int:
        return self.total_pages * ITEMS_PER_PAGE_ESTIMATE if self.multi_page else self.total

    def status_line(self, *, done: bool = False) -> str:
        tail = "" if done else ". Fetching items..."
        counts = f"{self.failed} failed, {self.skipped} skipped{tail}"
        if self.multi_page:
            overall = (self.current_page - 1) * ITEMS_PER_PAGE_ESTIMATE + self.captured
            return (
                f"Page {self.current_page}/{self.total_pages}: "
                f"{overall}/{self.estimated_total} transactions captured, {counts}"
            )
        return f"{self.captured}/{self.total} transactions captured, {counts}"


# ---------------------------------------------------------------------------
# DTOs for the persisted session slot
# ---------------------------------------------------------------------------


class StoredRecord(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    id: str
    date: str
    payment_method: str
    amount: float
    currency: str
    external_reference: str = ""
    status: str = ""
    merchant: str = ""
    items: list[str] = []


class StoredMultiPageRun(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    current_page: int
    total_pages: int


class SessionStateFile(BaseModel):
    """Top-level schema of the serialized :class:`CaptureSession`."""

    model_config = ConfigDict(strict=True, extra="forbid")

    schema_version: int
    records: dict[str, StoredRecord]
    total_count: int
    capture_run_count: int
    last_update: str | None = None
    pages_to_capture: int = MIN_PAGES_TO_CAPTURE
    multi_page_run: StoredMultiPageRun | None = None
    stop_requested: bool = False

    @field_validator("schema_version")
    @classmethod
    def _known_schema(cls, v: int) -> int:
        if v != SCHEMA_VERSION:
            raise ValueError(f"unsupported session schema_version: {v}")
        return v


__all__ = [
    "SCHEMA_VERSION",
    "MIN_PAGES_TO_CAPTURE",
    "MAX_PAGES_TO_CAPTURE",
    "ITEMS_PER_PAGE_ESTIMATE",
    "NaturalKey",
    "TransactionRecord",
    "ItemOutcome",
    "MultiPageRun",
    "CaptureSession",
    "ProgressSnapshot",
    "StoredRecord",
    "StoredMultiPageRun",
    "SessionStateFile",
]
