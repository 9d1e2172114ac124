"""Secondary lookup of the item descriptions behind a transaction.

Each record with an external reference triggers one ``GET`` of the related
order-detail document. Product names are read from image ``alt`` text; the
lookup never fails its parent record: any transport error or non-success
status is logged and yields an empty list.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from .logging_setup import get_logger

_logger = get_logger("transactions_exporter.enrichment")

DEFAULT_URL_TEMPLATE = "{base}/order-detail?id={reference}"
DEFAULT_DELAY_SECONDS = 0.25

# Alt texts that name a payment instrument rather than a product.
KNOWN_PAYMENT_LABELS: tuple[str, ...] = ("Amazon Visa", "American Express")
# Brand-only alt texts shorter than this are treated as site chrome.
_BRAND_LABEL = "amazon"
_BRAND_LABEL_MAX_LEN = 10
_CHROME_MARKERS: tuple[str, ...] = ("logo", "icon")


def _is_product_label(alt: str) -> bool:
    lowered = alt.lower()
    if any(p.lower() in lowered for p in KNOWN_PAYMENT_LABELS):
        return False
    if _BRAND_LABEL in lowered and len(alt) < _BRAND_LABEL_MAX_LEN:
        return False
    return not any(marker in lowered for marker in _CHROME_MARKERS)


def parse_order_items(html: str) -> list[str]:
    """Return product descriptions found in an order-detail document, in order."""

    soup = BeautifulSoup(html, "html.parser")
    items: list[str] = []
    for img in soup.select("img[alt]"):
        alt = str(img.get("alt") or "").strip()
        if alt and _is_product_label(alt):
            items.append(alt)
    return items


class OrderItemsFetcher:
    """Fetch and parse order-detail documents through a shared ``httpx`` client.

    The client is owned by the caller so cookies of the logged-in host session
    (same-origin credentials) can be attached once. No per-request timeout is
    set here; the client's own default applies.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        url_template: str = DEFAULT_URL_TEMPLATE,
        delay: float = DEFAULT_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._url_template = url_template
        self._delay = delay
        self._sleep = sleep
        self.requests_made = 0

    def detail_url(self, reference: str) -> str:
        return self._url_template.format(
            base=self._base_url, reference=quote(reference, safe="")
        )

    async def fetch_items(self, reference: str) -> list[str]:
        """Return item descriptions for ``reference`` (``[]`` on any failure).

        An empty reference returns immediately without a request. Otherwise the
        fixed inter-request delay is awaited after the lookup, whatever its
        outcome, to bound the request rate.
        """

        if not reference:
            return []

        url = self.detail_url(reference)
        try:
            items = await self._lookup(url, reference)
        finally:
            if self._delay > 0:
                await self._sleep(self._delay)
        return items

    async def _lookup(self, url: str, reference: str) -> list[str]:
        _logger.info("Fetching order page: %s", url)
        self.requests_made += 1
        try:
            response = await self._client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            _logger.error("Error fetching order %s: %s", reference, exc)
            return []

        if not response.is_success:
            _logger.error(
                "Failed to fetch order page: %s %s", response.status_code, response.reason_phrase
            )
            return []

        items = parse_order_items(response.text)
        _logger.info("Found %d items for order %s", len(items), reference)
        return items


class NoItemsFetcher:
    """Skip enrichment: every record keeps an empty item list."""

    async def fetch_items(self, reference: str) -> list[str]:
        return []


__all__ = [
    "NoItemsFetcher",
    "DEFAULT_URL_TEMPLATE",
    "DEFAULT_DELAY_SECONDS",
    "KNOWN_PAYMENT_LABELS",
    "parse_order_items",
    "OrderItemsFetcher",
]
