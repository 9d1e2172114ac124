"""Public interface for the ``transactions_exporter`` package.

Symbol re-exports only. The Playwright host lives in
``transactions_exporter.browser`` and the SQL slot in
``transactions_exporter.db``; both are imported on demand because they pull
optional dependencies.
"""

from .api import CaptureEngine, SessionSummary, Timings, clamp_pages
from .capture import PageCaptureCoordinator, PageCaptureResult
from .enrichment import NoItemsFetcher, OrderItemsFetcher, parse_order_items
from .errors import (
    CaptureInProgressError,
    ExporterError,
    ExtractionError,
    NavigationError,
    SessionStateError,
)
from .exporters import to_csv, to_json
from .extract import extract_record, iter_date_groups
from .host import PageHost, StaticHtmlHost
from .models import (
    CaptureSession,
    ItemOutcome,
    MultiPageRun,
    NaturalKey,
    ProgressSnapshot,
    TransactionRecord,
)
from .navigation import ControlHandle, find_next_page_control
from .normalizers import normalize_date, parse_amount
from .pagination import PaginationStateMachine, RunResult, RunState
from .race import RaceWinner, first_of
from .store import AccumulatorStore, FileSlot, MemorySlot, SessionStorage

__all__ = [
    # API
    "CaptureEngine",
    "SessionSummary",
    "Timings",
    "clamp_pages",
    # Engine parts
    "PageCaptureCoordinator",
    "PageCaptureResult",
    "PaginationStateMachine",
    "RunResult",
    "RunState",
    "first_of",
    "RaceWinner",
    "find_next_page_control",
    "ControlHandle",
    "extract_record",
    "iter_date_groups",
    "normalize_date",
    "parse_amount",
    "OrderItemsFetcher",
    "NoItemsFetcher",
    "parse_order_items",
    "to_csv",
    "to_json",
    # Hosts / storage
    "PageHost",
    "StaticHtmlHost",
    "AccumulatorStore",
    "SessionStorage",
    "MemorySlot",
    "FileSlot",
    # Models / errors
    "TransactionRecord",
    "NaturalKey",
    "ItemOutcome",
    "MultiPageRun",
    "CaptureSession",
    "ProgressSnapshot",
    "ExporterError",
    "ExtractionError",
    "NavigationError",
    "CaptureInProgressError",
    "SessionStateError",
]
