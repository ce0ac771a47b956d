"""Fallback selector chains for Playwright pages.

Every lookup takes an ordered list of candidate selectors; the first one that
works wins. Find operations never raise on a miss (an empty match means the
chain was exhausted), act operations raise `SelectorExhaustedError` once all
candidates failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from storyscout.errors import SelectorExhaustedError


logger = logging.getLogger(__name__)

SelectorList = Union[str, Sequence[str]]

SELECTORS: Dict[str, Tuple[str, ...]] = {
    "feed": ('div[role="feed"]', 'div[data-pagelet="GroupFeed"]', 'div[role="main"]'),
    "post_container": ('div[role="article"]', 'div[data-pagelet^="FeedUnit_"]'),
    "post_text": ('div[data-ad-comet-preview]', 'div[data-ad-preview="message"]', 'div[dir="auto"]'),
    "author_link": ('strong a[href*="facebook.com"]', 'a[href*="/people/"]', 'a[href*="/user/"]'),
    "author_name": ("strong a", "h4 a", 'span a[role="link"]', "h3 a"),
    "see_more": (
        'div[role="button"]:has-text("See more")',
        'div[role="button"]:has-text("ראה עוד")',
        'div[role="button"]:has-text("عرض المزيد")',
        'div[role="button"]:has-text("Ver más")',
        'div[role="button"]:has-text("Voir plus")',
    ),
    "loading_placeholder": ('[aria-busy="true"]', '[data-visualcompletion="loading-state"]'),
    "login_wall": ('input[name="email"]', 'text="Log into Facebook"', 'text="Log in to Facebook"'),
    "message_button": ('[aria-label="Message"]', 'button:has-text("Message")', 'a[href*="messages"]'),
    "message_box": ('[role="textbox"]', "textarea"),
}


def as_list(selectors: SelectorList) -> List[str]:
    if isinstance(selectors, str):
        return [selectors]
    return list(selectors)


@dataclass
class SelectorMatch:
    selector: Optional[str] = None
    handle: Any = None
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.handle is not None


@dataclass
class SelectorMatches:
    selector: Optional[str] = None
    handles: List[Any] = field(default_factory=list)
    errors: List[Tuple[str, BaseException]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.handles)


async def find_first(root: Any, selectors: SelectorList) -> SelectorMatch:
    """First candidate resolving to an element under `root` (Page or ElementHandle)."""
    result = SelectorMatch()
    for selector in as_list(selectors):
        try:
            handle = await root.query_selector(selector)
        except Exception as e:
            result.errors.append((selector, e))
            continue
        if handle is not None:
            result.selector = selector
            result.handle = handle
            return result
    return result


async def query_all(root: Any, selectors: SelectorList) -> SelectorMatches:
    """All elements for the first candidate that matches anything."""
    result = SelectorMatches()
    for selector in as_list(selectors):
        try:
            handles = await root.query_selector_all(selector)
        except Exception as e:
            result.errors.append((selector, e))
            continue
        if handles:
            result.selector = selector
            result.handles = list(handles)
            return result
    return result


async def wait_for_first(page: Any, selectors: SelectorList, *, timeout_ms: int = 10_000) -> SelectorMatch:
    """Wait on each candidate in turn.

    Only timeouts fall through to the next candidate; any other error means
    the page itself is broken and is raised immediately.
    """
    errors: List[Tuple[str, BaseException]] = []
    for selector in as_list(selectors):
        try:
            handle = await page.wait_for_selector(selector, timeout=timeout_ms)
        except (PlaywrightTimeoutError, asyncio.TimeoutError) as e:
            errors.append((selector, e))
            continue
        if handle is not None:
            return SelectorMatch(selector=selector, handle=handle, errors=errors)
    raise SelectorExhaustedError("find", errors)


async def click_first(page: Any, selectors: SelectorList, *, timeout_ms: int = 5_000) -> str:
    errors: List[Tuple[str, BaseException]] = []
    for selector in as_list(selectors):
        try:
            await page.click(selector, timeout=timeout_ms)
            return selector
        except Exception as e:
            errors.append((selector, e))
    raise SelectorExhaustedError("click", errors)


async def fill_first(page: Any, selectors: SelectorList, value: str, *, timeout_ms: int = 5_000) -> str:
    errors: List[Tuple[str, BaseException]] = []
    for selector in as_list(selectors):
        try:
            await page.fill(selector, value, timeout=timeout_ms)
            return selector
        except Exception as e:
            errors.append((selector, e))
    raise SelectorExhaustedError("fill", errors)
