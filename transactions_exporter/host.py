"""Ports to the page that hosts the transactions list.

The capture engine never touches a browser directly. It reads HTML
snapshots, activates a located control, subscribes to content changes and
reports per-item outcomes through :class:`PageHost`.
:class:`StaticHtmlHost` implements the port over a fixed list of documents,
for saved pages and tests; ``transactions_exporter.browser`` implements it
over a live Playwright page.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol

from .logging_setup import get_logger
from .models import ItemOutcome
from .navigation import ControlHandle

_logger = get_logger("transactions_exporter.host")


class ChangeSubscription(Protocol):
    """Fires once when new transaction content appears in the watched region."""

    async def wait(self) -> None: ...

    async def close(self) -> None: ...


class PageHost(Protocol):
    async def snapshot(self) -> str: ...

    async def activate(self, control: ControlHandle) -> None: ...

    async def subscribe_changes(self) -> ChangeSubscription | None:
        """Start watching for content changes; ``None`` when nothing is watchable."""
        ...

    async def mark_items(self, outcomes: Sequence[ItemOutcome]) -> None:
        """Flag line items of the current page, in document order."""
        ...


class _EventSubscription:
    def __init__(self, host: StaticHtmlHost) -> None:
        self._host = host
        self.event = asyncio.Event()

    async def wait(self) -> None:
        await self.event.wait()

    async def close(self) -> None:
        self._host._subscribers.discard(self)


class StaticHtmlHost:
    """Serve ``pages`` in order; activating a control advances to the next one.

    ``notify`` controls whether an advance fires change subscriptions (when
    ``False`` every transition is decided by the deadline); ``watchable=False``
    makes :meth:`subscribe_changes` return ``None``.
    """

    def __init__(
        self,
        pages: Sequence[str],
        *,
        notify: bool = True,
        watchable: bool = True,
    ) -> None:
        if not pages:
            raise ValueError("StaticHtmlHost needs at least one page")
        self.pages = list(pages)
        self.index = 0
        self.notify = notify
        self.watchable = watchable
        self.activations: list[ControlHandle] = []
        self.marks: list[list[ItemOutcome]] = []
        self._subscribers: set[_EventSubscription] = set()

    async def snapshot(self) -> str:
        return self.pages[self.index]

    async def activate(self, control: ControlHandle) -> None:
        self.activations.append(control)
        if self.index + 1 >= len(self.pages):
            _logger.info("Control %s activated on the last page; content unchanged", control)
            return
        self.index += 1
        if self.notify:
            # Fire after the caller has resumed, like an asynchronous DOM update.
            asyncio.get_running_loop().call_soon(self._fire)

    def _fire(self) -> None:
        for sub in list(self._subscribers):
            sub.event.set()

    async def subscribe_changes(self) -> ChangeSubscription | None:
        if not self.watchable:
            return None
        sub = _EventSubscription(self)
        self._subscribers.add(sub)
        return sub

    async def mark_items(self, outcomes: Sequence[ItemOutcome]) -> None:
        self.marks.append(list(outcomes))


__all__ = ["ChangeSubscription", "PageHost", "StaticHtmlHost"]
