import asyncio

import httpx

from tests.helpers.pages import (
    date_group,
    instant_sleep,
    line_item,
    order_detail_page,
    scenario_a_page,
    transactions_page,
)
from transactions_exporter.capture import PageCaptureCoordinator
from transactions_exporter.enrichment import OrderItemsFetcher
from transactions_exporter.models import ItemOutcome
from transactions_exporter.store import AccumulatorStore, MemorySlot, SessionStorage


class FakeFetcher:
    """Items keyed by reference; records every lookup."""

    def __init__(self, items: dict[str, list[str]] | None = None) -> None:
        self.items = items or {}
        self.calls: list[str] = []

    async def fetch_items(self, reference: str) -> list[str]:
        self.calls.append(reference)
        return list(self.items.get(reference, []))


def _coordinator(storage=None, fetcher=None, progress=None):
    storage = storage or SessionStorage(MemorySlot())
    store = AccumulatorStore(storage.load(), storage)
    sink = progress.append if progress is not None else None
    return PageCaptureCoordinator(store, fetcher or FakeFetcher(), on_progress=sink), storage


def test_scenario_a_two_captured_one_failed():
    coordinator, storage = _coordinator()
    result = asyncio.run(coordinator.capture_page(scenario_a_page()))

    p = result.progress
    assert (p.captured, p.failed, p.skipped, p.total) == (2, 1, 0, 3)
    assert result.outcomes == [ItemOutcome.CAPTURED, ItemOutcome.CAPTURED, ItemOutcome.FAILED]
    assert storage.load().total_count == 2


def test_scenario_b_rerun_skips_everything_already_stored():
    storage = SessionStorage(MemorySlot())
    first, _ = _coordinator(storage)
    asyncio.run(first.capture_page(scenario_a_page()))
    before = storage.load()

    second, _ = _coordinator(storage)
    result = asyncio.run(second.capture_page(scenario_a_page()))

    p = result.progress
    assert (p.captured, p.failed, p.skipped) == (0, 1, 2)
    assert not result.captured_any
    after = storage.load()
    assert after.records == before.records
    assert after.capture_run_count == before.capture_run_count


def test_counters_conserve_total_and_progress_is_emitted_per_item():
    progress: list = []
    coordinator, _ = _coordinator(progress=progress)
    result = asyncio.run(coordinator.capture_page(scenario_a_page()))

    assert [s.processed for s in progress] == [1, 2, 3]
    assert [(s.captured, s.failed, s.skipped) for s in progress] == [
        (1, 0, 0),
        (2, 0, 0),
        (2, 1, 0),
    ]
    assert all(s.total == 3 for s in progress)
    assert result.progress.processed == result.progress.total


def test_enrichment_items_attached_and_failures_isolated():
    fetcher = FakeFetcher({"111-0000001-0000001": ["Coffee Beans 2lb", "Filter Papers"]})
    coordinator, storage = _coordinator(fetcher=fetcher)
    asyncio.run(coordinator.capture_page(scenario_a_page()))

    by_ref = {r.external_reference: r for r in storage.load().records.values()}
    assert by_ref["111-0000001-0000001"].items == ("Coffee Beans 2lb", "Filter Papers")
    assert by_ref["111-0000002-0000002"].items == ()
    # The failed third item never reaches enrichment.
    assert fetcher.calls == ["111-0000001-0000001", "111-0000002-0000002"]


def test_network_failure_during_enrichment_keeps_the_record():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["id"] == "111-0000001-0000001":
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, text=order_detail_page("Paper Towels, 12 Rolls"))

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = OrderItemsFetcher(
                client, base_url="https://shop.example", sleep=instant_sleep
            )
            coordinator, storage = _coordinator(fetcher=fetcher)
            return await coordinator.capture_page(scenario_a_page()), storage

    result, storage = asyncio.run(go())

    assert result.outcomes[:2] == [ItemOutcome.CAPTURED, ItemOutcome.CAPTURED]
    by_ref = {r.external_reference: r for r in storage.load().records.values()}
    assert by_ref["111-0000001-0000001"].items == ()
    assert by_ref["111-0000002-0000002"].items == ("Paper Towels, 12 Rolls",)


def test_same_page_duplicates_are_skipped():
    html = transactions_page(
        date_group("August 24, 2025", line_item(reference="1"), line_item(reference="1"))
    )
    coordinator, storage = _coordinator()
    result = asyncio.run(coordinator.capture_page(html))

    assert result.outcomes == [ItemOutcome.CAPTURED, ItemOutcome.SKIPPED]
    assert storage.load().total_count == 1


def test_items_without_reference_are_captured_without_lookup():
    html = transactions_page(date_group("August 24, 2025", line_item(reference=None)))
    fetcher = FakeFetcher()
    coordinator, storage = _coordinator(fetcher=fetcher)
    result = asyncio.run(coordinator.capture_page(html))

    assert result.outcomes == [ItemOutcome.CAPTURED]
    (record,) = storage.load().records.values()
    assert record.external_reference == ""
    assert fetcher.calls == [""]


def test_group_without_date_counts_items_as_failed():
    html = transactions_page(
        date_group(None, line_item(reference="1"), line_item(reference="2")),
        date_group("August 22, 2025", line_item(reference="3")),
    )
    coordinator, storage = _coordinator()
    result = asyncio.run(coordinator.capture_page(html))

    p = result.progress
    assert (p.captured, p.failed, p.skipped, p.total) == (1, 2, 0, 3)
    assert storage.load().total_count == 1


def test_page_without_date_groups_is_a_no_op():
    slot = MemorySlot()
    progress: list = []
    coordinator, _ = _coordinator(SessionStorage(slot), progress=progress)
    result = asyncio.run(coordinator.capture_page("<html><body><p>Sign in</p></body></html>"))

    assert result.progress.total == 0
    assert result.outcomes == []
    assert slot.writes == 0
    assert len(progress) == 1


def test_malformed_amount_counts_as_failed():
    html = transactions_page(
        date_group("August 24, 2025", line_item(amount="€15,50"), line_item(reference="2"))
    )
    coordinator, _ = _coordinator()
    result = asyncio.run(coordinator.capture_page(html))

    assert result.outcomes == [ItemOutcome.FAILED, ItemOutcome.CAPTURED]


def test_status_line_single_page():
    coordinator, _ = _coordinator()
    result = asyncio.run(coordinator.capture_page(scenario_a_page()))

    assert result.progress.status_line(done=True) == (
        "2/3 transactions captured, 1 failed, 0 skipped"
    )
