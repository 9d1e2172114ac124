import asyncio

from tests.helpers.pages import SleepRecorder
from transactions_exporter.race import RaceWinner, first_of


def test_event_before_deadline_wins_and_cancels_timer():
    sleep = SleepRecorder(block_on=[10.0])

    async def go():
        event = asyncio.Event()
        asyncio.get_running_loop().call_soon(event.set)
        return await first_of(event.wait(), deadline=10.0, sleep=sleep)

    assert asyncio.run(go()) is RaceWinner.EVENT
    assert sleep.calls == [10.0]


def test_deadline_wins_when_event_never_fires():
    cancelled: list[bool] = []

    async def never() -> None:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    async def go():
        return await first_of(never(), deadline=0.01)

    assert asyncio.run(go()) is RaceWinner.DEADLINE
    assert cancelled == [True]


def test_failed_event_falls_back_to_deadline():
    async def broken() -> None:
        raise RuntimeError("observer detached")

    async def go():
        return await first_of(broken(), deadline=0.01)

    assert asyncio.run(go()) is RaceWinner.DEADLINE
