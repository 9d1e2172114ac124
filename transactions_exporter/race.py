"""First-of {event, deadline} race used to confirm a page transition."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum

from .logging_setup import get_logger

_logger = get_logger("transactions_exporter.race")


class RaceWinner(StrEnum):
    EVENT = "event"
    DEADLINE = "deadline"


async def first_of(
    event: Awaitable[object],
    *,
    deadline: float,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RaceWinner:
    """Await ``event`` and a ``deadline``-second timer; report which finished first.

    The loser is cancelled before returning. If ``event`` fails, the failure is
    logged and the race is decided by the deadline.
    """

    event_task = asyncio.ensure_future(event)
    deadline_task = asyncio.ensure_future(sleep(deadline))
    try:
        done, _ = await asyncio.wait(
            {event_task, deadline_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if event_task in done:
            exc = None if event_task.cancelled() else event_task.exception()
            if exc is None and not event_task.cancelled():
                return RaceWinner.EVENT
            _logger.warning("Change notification failed; waiting for deadline: %r", exc)
            await deadline_task
        return RaceWinner.DEADLINE
    finally:
        for task in (event_task, deadline_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(event_task, deadline_task, return_exceptions=True)


__all__ = ["RaceWinner", "first_of"]
