"""Multi-page traversal: capture, navigate, confirm the transition, repeat.

States::

    Idle -> CapturingPage -> AwaitingTransition -> CapturingPage ... -> Completed
                                     \\-> Aborted

After capturing page *k* of *N* (k < N) the machine subscribes to content
changes, locates and activates the next-page control, then races the change
notification against a fixed deadline. Either winner counts as "advanced":
the page counter is persisted and, after a settle delay, the next capture
starts. A missing control, a stop request or any page-level error ends the
run in ``Aborted``; pages captured so far stay committed. ``multi_page_run``
is cleared from the session on every exit path.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from .capture import PageCaptureCoordinator
from .errors import NavigationError
from .extract import parse_document
from .host import PageHost
from .logging_setup import get_logger
from .models import CaptureSession, MultiPageRun
from .navigation import DEFAULT_STRATEGIES, LookupStrategy, find_next_page_control
from .race import RaceWinner, first_of
from .store import SessionStorage

_logger = get_logger("transactions_exporter.pagination")

DEFAULT_TRANSITION_TIMEOUT = 10.0
DEFAULT_SETTLE_DELAY = 1.0
# Used when the host offers nothing to watch after activating the control.
UNWATCHED_TRANSITION_DELAY = 3.0


class RunState(StrEnum):
    IDLE = "idle"
    CAPTURING_PAGE = "capturing_page"
    AWAITING_TRANSITION = "awaiting_transition"
    ABORTED = "aborted"
    COMPLETED = "completed"


@dataclass(slots=True)
class RunResult:
    """Outcome of one traversal. ``state`` is ``COMPLETED`` or ``ABORTED``."""

    state: RunState
    total_pages: int
    pages_captured: int = 0
    new_records: int = 0
    transitions: list[RaceWinner] = field(default_factory=list)
    reason: str | None = None

    def summary(self) -> str:
        if self.state is RunState.COMPLETED:
            return f"Multi-page capture completed! Processed {self.total_pages} pages."
        return (
            f"Multi-page capture stopped after {self.pages_captured}/{self.total_pages} pages: "
            f"{self.reason}"
        )


def discard_stale_run(session: CaptureSession, storage: SessionStorage) -> bool:
    """Drop a ``multi_page_run`` left behind by an interrupted process.

    The control that drove the old run cannot be recovered after a restart,
    so the run is never resumed. Returns ``True`` when state was cleared.
    """

    if session.multi_page_run is None:
        return False
    _logger.info("Detected incomplete multi-page capture state - cleaning up")
    session.multi_page_run = None
    storage.save(session)
    return True


class PaginationStateMachine:
    """Drive ``total_pages`` sequential page captures on one host."""

    def __init__(
        self,
        host: PageHost,
        coordinator: PageCaptureCoordinator,
        session: CaptureSession,
        storage: SessionStorage,
        *,
        strategies: Sequence[LookupStrategy] = DEFAULT_STRATEGIES,
        transition_timeout: float = DEFAULT_TRANSITION_TIMEOUT,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        unwatched_delay: float = UNWATCHED_TRANSITION_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_state: Callable[[RunState], None] | None = None,
    ) -> None:
        self.host = host
        self.coordinator = coordinator
        self.session = session
        self.storage = storage
        self.strategies = tuple(strategies)
        self.transition_timeout = transition_timeout
        self.settle_delay = settle_delay
        self.unwatched_delay = unwatched_delay
        self._sleep = sleep
        self._on_state = on_state
        self.state = RunState.IDLE

    def _enter(self, state: RunState) -> None:
        _logger.debug("State %s -> %s", self.state, state)
        self.state = state
        if self._on_state is not None:
            self._on_state(state)

    def discard_stale_run(self) -> bool:
        cleared = discard_stale_run(self.session, self.storage)
        if cleared:
            self._enter(RunState.IDLE)
        return cleared

    def _stop_requested(self) -> bool:
        # Another process may have set the flag in the persisted slot.
        persisted = self.storage.load().stop_requested
        return self.session.stop_requested or persisted

    async def run(self, total_pages: int) -> RunResult:
        if total_pages < 1:
            raise ValueError("total_pages must be a positive integer")

        result = RunResult(state=RunState.IDLE, total_pages=total_pages)
        run = MultiPageRun(current_page=1, total_pages=total_pages)
        self.session.multi_page_run = run
        # A stop left over from before this run does not apply to it.
        self.session.stop_requested = False
        self.storage.save(self.session, keep_stop_request=False)

        try:
            while run.current_page <= total_pages:
                if self._stop_requested():
                    return self._abort(result, "stop requested")

                self._enter(RunState.CAPTURING_PAGE)
                _logger.info("Capturing page %d of %d...", run.current_page, total_pages)
                html = await self.host.snapshot()
                page = await self.coordinator.capture_page(
                    html,
                    page_info=MultiPageRun(run.current_page, total_pages),
                )
                await self.host.mark_items(page.outcomes)
                result.pages_captured += 1
                result.new_records += len(page.new_records)
                _logger.info(
                    "Page %d capture completed, captured new data: %s",
                    run.current_page,
                    page.captured_any,
                )

                if run.current_page == total_pages:
                    break

                self._enter(RunState.AWAITING_TRANSITION)
                winner = await self._advance(html)
                result.transitions.append(winner)
                run.current_page += 1
                self.storage.save(self.session)
                await self._sleep(self.settle_delay)
        except NavigationError as exc:
            _logger.info("Navigation failed, ending multi-page capture")
            return self._abort(result, str(exc))
        except Exception as exc:  # noqa: BLE001
            # Page-level failures end the run; they never propagate to the host.
            _logger.exception("Error during page capture")
            return self._abort(result, f"error during page capture: {exc}")

        return self._finish(result, RunState.COMPLETED)

    async def _advance(self, html: str) -> RaceWinner:
        """Activate the next-page control and wait for the transition race."""

        control = find_next_page_control(parse_document(html), self.strategies)
        subscription = await self.host.subscribe_changes()
        if subscription is None:
            _logger.warning("Could not find transaction container to watch")
            await self.host.activate(control)
            await self._sleep(self.unwatched_delay)
            return RaceWinner.DEADLINE

        try:
            await self.host.activate(control)
            winner = await first_of(
                subscription.wait(), deadline=self.transition_timeout, sleep=self._sleep
            )
        finally:
            await subscription.close()

        if winner is RaceWinner.EVENT:
            _logger.info("Transaction content changed, continuing to next page")
        else:
            # A deadline may also mean navigation silently failed; it is still
            # counted as an advance.
            _logger.info("Watcher timeout, forcing next page processing")
        return winner

    def _abort(self, result: RunResult, reason: str) -> RunResult:
        result.reason = reason
        return self._finish(result, RunState.ABORTED)

    def _finish(self, result: RunResult, state: RunState) -> RunResult:
        self.session.multi_page_run = None
        self.session.stop_requested = False
        self.storage.save(self.session, keep_stop_request=False)
        result.state = state
        self._enter(state)
        _logger.info(result.summary())
        self._enter(RunState.IDLE)
        return result


__all__ = [
    "DEFAULT_TRANSITION_TIMEOUT",
    "DEFAULT_SETTLE_DELAY",
    "UNWATCHED_TRANSITION_DELAY",
    "RunState",
    "RunResult",
    "discard_stale_run",
    "PaginationStateMachine",
]
