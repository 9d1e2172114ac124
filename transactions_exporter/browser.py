"""Live page host over a Playwright (async) browser page.

Requires the ``browser`` extra (``pip install transactions-exporter[browser]``)
and an installed Chromium (``playwright install chromium``).

Content changes are detected in the page with a ``MutationObserver`` over the
transactions region; the observer calls back into Python through a function
exposed with :meth:`Page.expose_function`. A full document load after the
next-page control is activated also counts as a change.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import NavigationError
from .extract import DATE_GROUP_SELECTOR, LINE_ITEM_SELECTOR
from .logging_setup import get_logger
from .models import ItemOutcome
from .navigation import ControlHandle

_logger = get_logger("transactions_exporter.browser")

WATCH_REGION_SELECTORS: tuple[str, ...] = ('form[action*="transactions"]', ".pmts-widget-section")
CHANGE_BINDING = "__txnExporterChanged"

OUTCOME_BORDERS: dict[ItemOutcome, str] = {
    ItemOutcome.CAPTURED: "2px solid #00aa00",
    ItemOutcome.SKIPPED: "2px solid #ffa500",
    ItemOutcome.FAILED: "2px solid #ff0000",
}

_OBSERVE_JS = """
([regionSelectors, watched, binding]) => {
    const region = regionSelectors.map((s) => document.querySelector(s)).find(Boolean);
    if (!region) return false;
    if (window.__txnExporterObserver) window.__txnExporterObserver.disconnect();
    const observer = new MutationObserver((mutations) => {
        const changed = mutations.some((m) =>
            m.type === 'childList' && (
                m.target.querySelector?.(watched) ||
                Array.from(m.addedNodes).some((n) =>
                    n.nodeType === Node.ELEMENT_NODE &&
                    (n.matches?.(watched) || n.querySelector?.(watched)))
            ));
        if (changed) {
            observer.disconnect();
            window[binding]();
        }
    });
    observer.observe(region, {childList: true, subtree: true});
    window.__txnExporterObserver = observer;
    return true;
}
"""

_DISCONNECT_JS = """
() => {
    if (window.__txnExporterObserver) window.__txnExporterObserver.disconnect();
    window.__txnExporterObserver = undefined;
}
"""

_MARK_JS = """
([selector, borders]) => {
    const items = document.querySelectorAll(selector);
    borders.forEach((border, i) => { if (items[i]) items[i].style.border = border; });
}
"""


class _ObserverSubscription:
    def __init__(self, host: PlaywrightPageHost) -> None:
        self._host = host
        self.event = asyncio.Event()

    async def wait(self) -> None:
        await self.event.wait()

    async def close(self) -> None:
        self._host._subscription = None
        self._host.page.remove_listener("domcontentloaded", self._host._on_load)
        try:
            await self._host.page.evaluate(_DISCONNECT_JS)
        except PlaywrightError as exc:
            # The document that held the observer may already be gone.
            _logger.debug("Observer disconnect skipped: %s", exc)


class PlaywrightPageHost:
    """:class:`~transactions_exporter.host.PageHost` driving a Playwright page."""

    def __init__(self, page: Page) -> None:
        self.page = page
        self._binding_installed = False
        self._subscription: _ObserverSubscription | None = None

    async def snapshot(self) -> str:
        return await self.page.content()

    async def activate(self, control: ControlHandle) -> None:
        _logger.info("Clicking next page control (%s): %s", control.strategy, control.selector)
        await self.page.click(control.selector)

    def _notify(self) -> None:
        if self._subscription is not None:
            self._subscription.event.set()

    def _on_load(self, _page: Page) -> None:
        self._notify()

    async def subscribe_changes(self) -> _ObserverSubscription | None:
        if not self._binding_installed:
            await self.page.expose_function(CHANGE_BINDING, self._notify)
            self._binding_installed = True

        watched = f"{LINE_ITEM_SELECTOR}, {DATE_GROUP_SELECTOR}"
        installed = await self.page.evaluate(
            _OBSERVE_JS, [list(WATCH_REGION_SELECTORS), watched, CHANGE_BINDING]
        )
        if not installed:
            return None

        sub = _ObserverSubscription(self)
        self._subscription = sub
        self.page.on("domcontentloaded", self._on_load)
        return sub

    async def mark_items(self, outcomes: Sequence[ItemOutcome]) -> None:
        borders = [OUTCOME_BORDERS[o] for o in outcomes]
        await self.page.evaluate(_MARK_JS, [LINE_ITEM_SELECTOR, borders])

    async def cookies(self, url: str) -> httpx.Cookies:
        """Cookies of the browser context for ``url``, for same-origin enrichment."""

        return cookies_to_httpx(await self.page.context.cookies(url))


def cookies_to_httpx(cookies: Sequence[dict]) -> httpx.Cookies:
    jar = httpx.Cookies()
    for c in cookies:
        jar.set(c["name"], c["value"], domain=c.get("domain", ""), path=c.get("path", "/"))
    return jar


async def _save_storage_state(context: BrowserContext, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    await context.storage_state(path=str(path))
    _logger.info("Saved browser storage state to %s", path)


@asynccontextmanager
async def browser_session(
    url: str,
    *,
    storage_state: Path | None = None,
    headless: bool = False,
    ready_timeout: float = 300.0,
) -> AsyncIterator[PlaywrightPageHost]:
    """Open ``url`` and yield a host once the transactions list is visible.

    A headed browser leaves time to sign in by hand; the wait for the first
    date group lasts ``ready_timeout`` seconds. When ``storage_state`` is
    given it seeds the context (if the file exists) and is rewritten on exit
    so the next run starts signed in.
    """

    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless)
        seed = str(storage_state) if storage_state and storage_state.exists() else None
        context = await browser.new_context(storage_state=seed)
        try:
            page = await context.new_page()
            _logger.info("Opening %s", url)
            await page.goto(url, wait_until="domcontentloaded")
            try:
                await page.wait_for_selector(DATE_GROUP_SELECTOR, timeout=ready_timeout * 1000)
            except PlaywrightTimeoutError as exc:
                raise NavigationError(
                    f"transactions list did not appear within {ready_timeout:g}s at {url}"
                ) from exc
            yield PlaywrightPageHost(page)
            if storage_state is not None:
                await _save_storage_state(context, storage_state)
        finally:
            await context.close()
            await browser.close()


__all__ = [
    "WATCH_REGION_SELECTORS",
    "OUTCOME_BORDERS",
    "PlaywrightPageHost",
    "cookies_to_httpx",
    "browser_session",
]
