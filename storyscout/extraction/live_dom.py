"""Live-DOM source: walk a group feed in a logged-in browser and emit RawItems.

The browser session itself (login, 2FA) is created elsewhere; this module
only consumes a saved Playwright storage-state file.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from playwright.async_api import async_playwright

from storyscout.errors import SelectorExhaustedError
from storyscout.extraction.fulltext import InterceptedTextCache, attach_interception, capture_full_text
from storyscout.extraction.selectors import SELECTORS, find_first, query_all, wait_for_first
from storyscout.ingestion.batch_api import group_url
from storyscout.ingestion.identity import is_profile_link, resolve_post_id
from storyscout.ingestion.post_types import RawItem, SourceTag


logger = logging.getLogger(__name__)

MIN_CONTAINER_TEXT = 30

# (strategy name, selector) tried in order; hrefs must pass is_profile_link.
AUTHOR_LINK_STRATEGIES: Sequence[Tuple[str, str]] = (
    ("profile photo", 'a[href*="facebook.com"]:has(svg[role="img"]), a[aria-label][href*="facebook.com"]:has(img)'),
    ("header link", "h2 a[href], h3 a[href], h4 a[href]"),
    ("aria-label link", "a[aria-label][href]"),
    ("selector chain", ", ".join(SELECTORS["author_link"])),
    ("strong link", "strong a[href], b a[href]"),
    ("id pattern", 'a[href*="/user/"], a[href*="profile.php?id="], a[href*="/people/"]'),
)


async def _is_loading_placeholder(container: Any) -> bool:
    placeholder = await find_first(container, SELECTORS["loading_placeholder"])
    if placeholder.found:
        return True
    try:
        text = (await container.text_content()) or ""
    except Exception as e:
        logger.debug(f"[LiveDOM] placeholder check failed, continuing: {e}")
        return False
    return len(text.strip()) < MIN_CONTAINER_TEXT


async def extract_author_href(container: Any) -> Optional[str]:
    for name, selector in AUTHOR_LINK_STRATEGIES:
        try:
            links = await container.query_selector_all(selector)
        except Exception as e:
            logger.debug(f"[LiveDOM] author strategy '{name}' failed: {e}")
            continue
        for link in links:
            try:
                href = await link.get_attribute("href")
            except Exception:
                continue
            if is_profile_link(href):
                logger.debug(f"[LiveDOM] author strategy '{name}' matched {href}")
                return href
    return None


async def extract_author_name(container: Any) -> Optional[str]:
    match = await find_first(container, SELECTORS["author_name"])
    if not match.found:
        return None
    try:
        name = ((await match.handle.inner_text()) or "").strip()
    except Exception:
        return None
    return name or None


async def extract_raw_items(page: Any, cache: InterceptedTextCache, *, group_id: Optional[str] = None, limit: int = 50) -> List[RawItem]:
    """Turn every rendered post container on `page` into a RawItem."""
    containers = await query_all(page, SELECTORS["post_container"])
    if not containers.found:
        logger.info("[LiveDOM] no post containers found")
        return []

    items: List[RawItem] = []
    for i, container in enumerate(containers.handles):
        if len(items) >= limit:
            break
        if await _is_loading_placeholder(container):
            logger.debug(f"[LiveDOM] container {i + 1}: skipping loading placeholder")
            continue
        try:
            structured_id = await container.get_attribute("data-ft")
            fallback_id = await container.get_attribute("id")
        except Exception as e:
            logger.debug(f"[LiveDOM] container {i + 1}: id attributes unavailable: {e}")
            structured_id, fallback_id = None, None

        # Intercepted bodies are keyed by post id, not by the raw data-ft blob.
        item_id = resolve_post_id(structured_id, fallback_id, "") if (structured_id or fallback_id) else None
        text = await capture_full_text(container, item_id, cache)
        if len(text.strip()) < MIN_CONTAINER_TEXT:
            continue

        items.append(
            RawItem(
                source=SourceTag.LIVE_DOM,
                text=text,
                structured_id=structured_id,
                fallback_id=fallback_id,
                author_href=await extract_author_href(container),
                author_name=await extract_author_name(container),
                group_id=group_id,
            )
        )
    logger.info(f"[LiveDOM] extracted {len(items)} items from {len(containers.handles)} containers")
    return items


async def _scroll_feed(page: Any, iterations: int, *, enough: int = 20) -> None:
    for i in range(iterations):
        await page.evaluate("window.scrollBy(0, 1000)")
        await asyncio.sleep(1.5)
        loaded = await query_all(page, SELECTORS["post_container"])
        logger.debug(f"[LiveDOM] scroll {i + 1}/{iterations}, containers loaded: {len(loaded.handles)}")
        if len(loaded.handles) >= enough:
            break


async def scrape_live_group(
    group_id: str,
    *,
    storage_state: str,
    headless: bool = True,
    timeout_ms: int = 90_000,
    scroll_iterations: int = 8,
    limit: int = 50,
) -> List[RawItem]:
    """Open the group feed with a saved session and extract its posts.

    Returns an empty list when the session is missing or the page shows a
    login wall; navigation errors propagate to the caller.
    """
    if not os.path.exists(storage_state):
        logger.warning(f"[LiveDOM] storage state {storage_state} missing; live scrape skipped")
        return []

    cache = InterceptedTextCache()
    started = datetime.now(timezone.utc)
    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=headless)
        try:
            context = await browser.new_context(storage_state=storage_state)
            page = await context.new_page()
            attach_interception(page, cache)
            await page.goto(group_url(group_id), wait_until="domcontentloaded", timeout=timeout_ms)

            login_wall = await find_first(page, SELECTORS["login_wall"])
            if login_wall.found:
                logger.warning(f"[LiveDOM] login wall on group {group_id} ({login_wall.selector}); session expired?")
                return []

            try:
                await wait_for_first(page, SELECTORS["feed"], timeout_ms=min(timeout_ms, 30_000))
            except SelectorExhaustedError as e:
                logger.warning(f"[LiveDOM] feed never appeared for group {group_id}: {e}")
                return []

            await _scroll_feed(page, scroll_iterations)
            items = await extract_raw_items(page, cache, group_id=group_id, limit=limit)
        finally:
            cache.clear()
            await browser.close()

    elapsed = (datetime.now(timezone.utc) - started).total_seconds()
    logger.info(f"[LiveDOM] group {group_id}: {len(items)} items in {elapsed:.1f}s")
    return items
