"""Public facade over the capture engine.

:class:`CaptureEngine` owns one session slot and wires the store,
coordinator and pagination state machine for each trigger. The persisted
session is reloaded at the start of every operation. Only one capture may be
in flight per engine; a second trigger raises
:class:`~transactions_exporter.errors.CaptureInProgressError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from .capture import ItemsFetcher, PageCaptureCoordinator, PageCaptureResult, ProgressSink
from .errors import CaptureInProgressError
from .host import PageHost
from .logging_setup import get_logger
from .models import (
    MAX_PAGES_TO_CAPTURE,
    MIN_PAGES_TO_CAPTURE,
    CaptureSession,
    MultiPageRun,
    ProgressSnapshot,
)
from .pagination import (
    DEFAULT_SETTLE_DELAY,
    DEFAULT_TRANSITION_TIMEOUT,
    UNWATCHED_TRANSITION_DELAY,
    PaginationStateMachine,
    RunResult,
    RunState,
    discard_stale_run,
)
from .store import AccumulatorStore, SessionStorage

_logger = get_logger("transactions_exporter.api")


@dataclass(frozen=True, slots=True)
class SessionSummary:
    total_transactions: int
    total_items: int
    pages_captured: int
    last_update: str | None
    pages_to_capture: int
    multi_page_run: MultiPageRun | None = None

    @property
    def multi_page_active(self) -> bool:
        return self.multi_page_run is not None


@dataclass(frozen=True, slots=True)
class Timings:
    transition_timeout: float = DEFAULT_TRANSITION_TIMEOUT
    settle_delay: float = DEFAULT_SETTLE_DELAY
    unwatched_delay: float = UNWATCHED_TRANSITION_DELAY


def clamp_pages(value: int) -> int:
    return max(MIN_PAGES_TO_CAPTURE, min(MAX_PAGES_TO_CAPTURE, value))


class CaptureEngine:
    def __init__(
        self,
        storage: SessionStorage,
        fetcher: ItemsFetcher,
        *,
        timings: Timings = Timings(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.storage = storage
        self.fetcher = fetcher
        self.timings = timings
        self._sleep = sleep
        self._busy = False
        # Loaded lazily so an unreadable slot can still be cleared.
        self.session = CaptureSession()

    def reload(self) -> CaptureSession:
        self.session = self.storage.load()
        return self.session

    def startup(self) -> bool:
        """Load the session and discard any multi-page run left by a restart."""

        return discard_stale_run(self.reload(), self.storage)

    async def capture_page(
        self, host: PageHost, *, on_progress: ProgressSink | None = None
    ) -> PageCaptureResult:
        """Capture the host's current page outside of any multi-page run.

        Host or page failures are logged and reported through
        ``PageCaptureResult.error`` instead of being raised.
        """

        with self._serialized():
            session = self.reload()
            coordinator = PageCaptureCoordinator(
                AccumulatorStore(session, self.storage), self.fetcher, on_progress=on_progress
            )
            result: PageCaptureResult | None = None
            try:
                result = await coordinator.capture_page(await host.snapshot())
                await host.mark_items(result.outcomes)
            except Exception as exc:  # noqa: BLE001
                _logger.exception("Error during page capture")
                if result is None:
                    result = PageCaptureResult(progress=ProgressSnapshot())
                result.error = f"error during page capture: {exc}"
            return result

    async def capture_pages(
        self,
        host: PageHost,
        pages: int | None = None,
        *,
        on_progress: ProgressSink | None = None,
        on_state: Callable[[RunState], None] | None = None,
    ) -> RunResult:
        """Capture ``pages`` pages (default: the persisted setting), navigating between them."""

        with self._serialized():
            session = self.reload()
            total = clamp_pages(pages if pages is not None else session.pages_to_capture)
            coordinator = PageCaptureCoordinator(
                AccumulatorStore(session, self.storage), self.fetcher, on_progress=on_progress
            )
            machine = PaginationStateMachine(
                host,
                coordinator,
                session,
                self.storage,
                transition_timeout=self.timings.transition_timeout,
                settle_delay=self.timings.settle_delay,
                unwatched_delay=self.timings.unwatched_delay,
                sleep=self._sleep,
                on_state=on_state,
            )
            return await machine.run(total)

    def set_pages_to_capture(self, pages: int) -> int:
        session = self.reload()
        session.pages_to_capture = clamp_pages(pages)
        self.storage.save(session)
        return session.pages_to_capture

    def request_stop(self) -> None:
        session = self.reload()
        session.stop_requested = True
        self.storage.save(session)
        _logger.info("Stop requested; the run ends before its next page")

    def clear(self) -> None:
        """Destroy all captured data (explicit user action)."""

        self.storage.clear()
        self.session = CaptureSession()
        _logger.info("Cleared all captured transaction data")

    def summary(self) -> SessionSummary:
        s = self.reload()
        return SessionSummary(
            total_transactions=s.total_count,
            total_items=s.total_items,
            pages_captured=s.capture_run_count,
            last_update=s.last_update,
            pages_to_capture=s.pages_to_capture,
            multi_page_run=s.multi_page_run,
        )

    @contextmanager
    def _serialized(self) -> Iterator[None]:
        if self._busy:
            raise CaptureInProgressError("a capture is already in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False


__all__ = [
    "SessionSummary",
    "Timings",
    "clamp_pages",
    "CaptureEngine",
]
