"""Locate the next-page control on a transactions page.

Lookup is an ordered tuple of strategies, each a pure function from a parsed
document to an optional :class:`ControlHandle`; the first hit wins. A handle
carries a CSS selector the live host can use to activate the same element.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeAlias

from bs4 import BeautifulSoup, Tag

from .errors import NavigationError
from .logging_setup import get_logger

_logger = get_logger("transactions_exporter.navigation")

NEXT_PAGE_LABEL = "Next Page"
NEXT_PAGE_CONTROL_NAME = "NextPageNavigationEvent"


@dataclass(frozen=True, slots=True)
class ControlHandle:
    """Where the next-page control is and which strategy found it."""

    selector: str
    strategy: str


LookupStrategy: TypeAlias = Callable[[BeautifulSoup], ControlHandle | None]


def css_path(el: Tag) -> str:
    """Build a selector that addresses ``el`` by id or by ``nth-of-type`` steps."""

    el_id = el.get("id")
    if isinstance(el_id, str) and el_id:
        return f'[id="{el_id}"]'

    steps: list[str] = []
    node: Tag | None = el
    while node is not None and node.name not in (None, "[document]"):
        parent = node.parent
        if parent is None:
            break
        index = 1 + len(node.find_previous_siblings(node.name))
        steps.append(f"{node.name}:nth-of-type({index})")
        node = parent if isinstance(parent, Tag) else None
    return " > ".join(reversed(steps))


def by_control_name(doc: BeautifulSoup) -> ControlHandle | None:
    """Match an input whose ``name`` (or ``id``) contains the navigation event name."""

    el = doc.select_one(f'input[name*="{NEXT_PAGE_CONTROL_NAME}"]')
    if el is not None:
        return ControlHandle(selector=f'input[name="{el["name"]}"]', strategy="name")
    el = doc.select_one(f'[id*="{NEXT_PAGE_CONTROL_NAME}"]')
    if el is not None:
        return ControlHandle(selector=css_path(el), strategy="name")
    return None


def _own_label(el: Tag) -> str:
    text = el.get_text(" ", strip=True)
    return text or str(el.get("value") or "")


def by_label_text(doc: BeautifulSoup) -> ControlHandle | None:
    """Match a submit input or button labelled "Next Page" (itself or its parent)."""

    for el in doc.select('input[type="submit"], button'):
        parent_text = el.parent.get_text(" ", strip=True) if el.parent is not None else ""
        if NEXT_PAGE_LABEL in _own_label(el) or NEXT_PAGE_LABEL in parent_text:
            return ControlHandle(selector=css_path(el), strategy="label")
    return None


def by_structure(doc: BeautifulSoup) -> ControlHandle | None:
    """Match the submit input next to a ``span.a-button-text`` reading "Next Page"."""

    for span in doc.select("span.a-button-text"):
        if span.get_text(strip=True) != NEXT_PAGE_LABEL or span.parent is None:
            continue
        submit = span.parent.select_one('input[type="submit"]')
        if submit is not None:
            return ControlHandle(selector=css_path(submit), strategy="structure")
    return None


DEFAULT_STRATEGIES: tuple[LookupStrategy, ...] = (by_control_name, by_label_text, by_structure)


def find_next_page_control(
    doc: BeautifulSoup, strategies: Sequence[LookupStrategy] = DEFAULT_STRATEGIES
) -> ControlHandle:
    """Return the first control any strategy finds; raise :class:`NavigationError` if none."""

    for strategy in strategies:
        handle = strategy(doc)
        if handle is not None:
            _logger.info("Found Next Page control via %s: %s", handle.strategy, handle.selector)
            return handle
    _logger.info("No Next Page control found")
    raise NavigationError("no next-page control found on the current page")


__all__ = [
    "NEXT_PAGE_LABEL",
    "ControlHandle",
    "LookupStrategy",
    "css_path",
    "by_control_name",
    "by_label_text",
    "by_structure",
    "DEFAULT_STRATEGIES",
    "find_next_page_control",
]
