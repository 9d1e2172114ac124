import asyncio

import pytest

from tests.helpers.pages import (
    NEXT_PAGE_BY_NAME,
    SleepRecorder,
    date_group,
    line_item,
    scenario_a_page,
    transactions_page,
)
from transactions_exporter.capture import PageCaptureCoordinator
from transactions_exporter.enrichment import NoItemsFetcher
from transactions_exporter.host import StaticHtmlHost
from transactions_exporter.models import ItemOutcome, MultiPageRun
from transactions_exporter.pagination import (
    PaginationStateMachine,
    RunState,
    discard_stale_run,
)
from transactions_exporter.race import RaceWinner
from transactions_exporter.store import AccumulatorStore, MemorySlot, SessionStorage


def _page(n: int, *, next_page: bool = True) -> str:
    items = [line_item(reference=f"{n}00-{i}") for i in range(2)]
    pager = NEXT_PAGE_BY_NAME if next_page else None
    return transactions_page(date_group("August 24, 2025", *items), next_page=pager)


def _machine(host, *, storage=None, sleep=None, states=None, **kw):
    storage = storage or SessionStorage(MemorySlot())
    session = storage.load()
    coordinator = PageCaptureCoordinator(AccumulatorStore(session, storage), NoItemsFetcher())
    machine = PaginationStateMachine(
        host,
        coordinator,
        session,
        storage,
        sleep=sleep or SleepRecorder(block_on=[10.0]),
        on_state=states.append if states is not None else None,
        **kw,
    )
    return machine, storage


def test_three_pages_complete_with_event_transitions():
    host = StaticHtmlHost([_page(1), _page(2), _page(3, next_page=False)])
    states: list[RunState] = []
    machine, storage = _machine(host, states=states)

    result = asyncio.run(machine.run(3))

    assert result.state is RunState.COMPLETED
    assert result.pages_captured == 3
    assert result.new_records == 6
    assert result.transitions == [RaceWinner.EVENT, RaceWinner.EVENT]
    assert len(host.activations) == 2
    session = storage.load()
    assert session.total_count == 6
    assert session.multi_page_run is None
    assert states[-2:] == [RunState.COMPLETED, RunState.IDLE]
    assert machine.state is RunState.IDLE
    assert result.summary() == "Multi-page capture completed! Processed 3 pages."


def test_scenario_c_missing_control_aborts_after_page_one():
    host = StaticHtmlHost([_page(1, next_page=False), _page(2), _page(3)])
    states: list[RunState] = []
    machine, storage = _machine(host, states=states)

    result = asyncio.run(machine.run(3))

    assert result.state is RunState.ABORTED
    assert result.pages_captured == 1
    assert host.activations == []
    session = storage.load()
    assert {r.external_reference for r in session.records.values()} == {"100-0", "100-1"}
    assert session.multi_page_run is None
    assert states[-2:] == [RunState.ABORTED, RunState.IDLE]
    assert "next-page control" in result.reason


def test_missing_control_on_later_page_keeps_earlier_pages():
    host = StaticHtmlHost([_page(1), _page(2, next_page=False), _page(3)])
    machine, storage = _machine(host)

    result = asyncio.run(machine.run(3))

    assert result.state is RunState.ABORTED
    assert result.pages_captured == 2
    assert storage.load().total_count == 4
    assert storage.load().multi_page_run is None


def test_deadline_counts_as_advance_when_no_notification():
    host = StaticHtmlHost([_page(1), _page(2, next_page=False)], notify=False)
    sleep = SleepRecorder()
    machine, storage = _machine(host, sleep=sleep, transition_timeout=10.0, settle_delay=1.0)

    result = asyncio.run(machine.run(2))

    assert result.state is RunState.COMPLETED
    assert result.transitions == [RaceWinner.DEADLINE]
    assert sleep.calls == [10.0, 1.0]
    assert storage.load().total_count == 4


def test_unwatched_host_waits_fixed_delay():
    host = StaticHtmlHost([_page(1), _page(2, next_page=False)], watchable=False)
    sleep = SleepRecorder()
    machine, _ = _machine(host, sleep=sleep, unwatched_delay=3.0, settle_delay=1.0)

    result = asyncio.run(machine.run(2))

    assert result.state is RunState.COMPLETED
    assert result.transitions == [RaceWinner.DEADLINE]
    assert sleep.calls == [3.0, 1.0]


def test_page_counter_is_persisted_after_each_transition():
    seen: list[int] = []

    class RecordingSlot(MemorySlot):
        def write(self, payload: str) -> None:
            super().write(payload)
            run = SessionStorage(MemorySlot(payload)).load().multi_page_run
            if run is not None:
                seen.append(run.current_page)

    host = StaticHtmlHost([_page(1), _page(2), _page(3, next_page=False)])
    machine, _ = _machine(host, storage=SessionStorage(RecordingSlot()))
    asyncio.run(machine.run(3))

    assert seen[0] == 1
    assert 2 in seen and 3 in seen
    assert seen == sorted(seen)


def test_stop_request_ends_run_before_next_page():
    host = StaticHtmlHost([_page(1), _page(2), _page(3, next_page=False)])
    storage = SessionStorage(MemorySlot())
    machine, _ = _machine(host, storage=storage)

    async def go():
        def on_progress(_snapshot) -> None:
            # Another process asks to stop while page 1 is being captured.
            other = storage.load()
            other.stop_requested = True
            storage.save(other)

        machine.coordinator.on_progress = on_progress
        return await machine.run(3)

    result = asyncio.run(go())

    assert result.state is RunState.ABORTED
    assert result.reason == "stop requested"
    assert result.pages_captured == 1
    assert storage.load().stop_requested is False


def test_marks_are_reported_per_page():
    page = transactions_page(
        date_group("August 24, 2025", line_item(reference="1"), line_item(amount=None))
    )
    host = StaticHtmlHost([page])
    machine, _ = _machine(host)

    asyncio.run(machine.run(1))

    assert host.marks == [[ItemOutcome.CAPTURED, ItemOutcome.FAILED]]


def test_scenario_a_through_single_page_run():
    host = StaticHtmlHost([scenario_a_page()])
    machine, storage = _machine(host)

    result = asyncio.run(machine.run(1))

    assert result.state is RunState.COMPLETED
    assert result.transitions == []
    assert storage.load().total_count == 2


def test_host_failure_aborts_and_clears_run():
    class BrokenHost(StaticHtmlHost):
        async def snapshot(self) -> str:
            raise RuntimeError("page crashed")

    machine, storage = _machine(BrokenHost([_page(1)]))
    result = asyncio.run(machine.run(2))

    assert result.state is RunState.ABORTED
    assert "page crashed" in result.reason
    assert storage.load().multi_page_run is None


def test_run_rejects_non_positive_page_count():
    machine, _ = _machine(StaticHtmlHost([_page(1)]))
    with pytest.raises(ValueError):
        asyncio.run(machine.run(0))


def test_stale_run_is_discarded():
    storage = SessionStorage(MemorySlot())
    session = storage.load()
    session.multi_page_run = MultiPageRun(current_page=2, total_pages=5)
    storage.save(session)

    reloaded = storage.load()
    assert discard_stale_run(reloaded, storage) is True
    assert storage.load().multi_page_run is None
    assert discard_stale_run(reloaded, storage) is False
