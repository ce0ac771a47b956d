"""Recover untruncated post text.

Feed items are usually truncated behind a "See more" affordance. Two
sources can supply the complete text:

- the platform's GraphQL responses, observed passively while the feed loads
  and cached here per item id (authoritative when present)
- the DOM after expanding the item
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Optional, Tuple

from storyscout.extraction.selectors import SELECTORS, as_list, query_all


logger = logging.getLogger(__name__)

MAX_SEARCH_DEPTH = 20
MIN_MESSAGE_LENGTH = 30
MIN_LOOSE_TEXT_LENGTH = 50
PREFIX_KEY_LENGTH = 50
PREFIX_MATCH_LENGTH = 30

_MESSAGE_FIELDS = ("message", "text", "body", "content", "story")
_ID_FIELDS = ("post_id", "top_level_post_id", "story_id", "id")


@dataclass
class _Entry:
    text: str
    stored_at: float


class InterceptedTextCache:
    """Item id -> full text, bounded in size and age.

    Entries are also indexed by a lowercased text prefix so a DOM snippet can
    find its network counterpart when the DOM carries no usable id.
    """

    def __init__(self, *, max_entries: int = 500, max_age_seconds: float = 600.0, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        self._by_id: "OrderedDict[str, _Entry]" = OrderedDict()
        self._by_prefix: "OrderedDict[str, _Entry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._by_id)

    @staticmethod
    def prefix_key(text: str) -> str:
        return text.strip()[:PREFIX_KEY_LENGTH].lower().strip()

    def _put(self, index: "OrderedDict[str, _Entry]", key: str, text: str, now: float) -> None:
        current = index.get(key)
        if current is not None and now - current.stored_at <= self.max_age_seconds and len(current.text) >= len(text):
            return
        index[key] = _Entry(text=text, stored_at=now)
        index.move_to_end(key)
        while len(index) > self.max_entries:
            index.popitem(last=False)

    def put(self, item_id: Optional[str], text: str) -> None:
        if not text:
            return
        now = self._clock()
        if item_id:
            self._put(self._by_id, str(item_id), text, now)
        if len(text.strip()) >= MIN_MESSAGE_LENGTH:
            self._put(self._by_prefix, self.prefix_key(text), text, now)

    def _fresh(self, index: "OrderedDict[str, _Entry]", key: str) -> Optional[str]:
        entry = index.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.max_age_seconds:
            del index[key]
            return None
        return entry.text

    def get(self, item_id: Optional[str]) -> Optional[str]:
        if not item_id:
            return None
        return self._fresh(self._by_id, str(item_id))

    def match_prefix(self, dom_text: str) -> Optional[str]:
        """Newest cached text whose opening agrees with `dom_text`.

        A truncated DOM snippet ends in an ellipsis and "See more", so only the
        first PREFIX_MATCH_LENGTH characters of either side are compared.
        """
        if not dom_text or len(dom_text.strip()) < MIN_MESSAGE_LENGTH:
            return None
        search = self.prefix_key(dom_text)
        head = search[:PREFIX_MATCH_LENGTH]
        now = self._clock()
        for key in reversed(list(self._by_prefix)):
            entry = self._by_prefix[key]
            if now - entry.stored_at > self.max_age_seconds:
                del self._by_prefix[key]
                continue
            if key.startswith(head) or search.startswith(key[:PREFIX_MATCH_LENGTH]):
                return entry.text
        return None

    def clear(self) -> None:
        self._by_id.clear()
        self._by_prefix.clear()


def _id_of(obj: dict) -> str:
    for key in _ID_FIELDS:
        value = obj.get(key)
        if isinstance(value, (str, int)) and str(value):
            return str(value)
    return ""


def _dig(obj: Any, *path: str) -> Any:
    # Payload shapes vary; any non-dict along the way ends the lookup.
    for name in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(name)
    return obj


def _walk(obj: Any, depth: int = 0) -> Iterator[Tuple[str, str]]:
    if depth > MAX_SEARCH_DEPTH:
        return
    if isinstance(obj, list):
        for item in obj:
            yield from _walk(item, depth + 1)
        return
    if not isinstance(obj, dict):
        return

    story_text = _dig(obj, "comet_sections", "content", "story", "message", "text")
    if isinstance(story_text, str) and len(story_text) > MIN_MESSAGE_LENGTH:
        yield _id_of(obj), story_text

    for name in _MESSAGE_FIELDS:
        value = obj.get(name)
        if isinstance(value, dict) and isinstance(value.get("text"), str):
            if len(value["text"]) > MIN_MESSAGE_LENGTH:
                yield _id_of(obj), value["text"]
        elif isinstance(value, str) and len(value) > MIN_LOOSE_TEXT_LENGTH:
            yield _id_of(obj), value

    for value in obj.values():
        if isinstance(value, (dict, list)):
            yield from _walk(value, depth + 1)


def extract_intercepted_posts(body: str) -> List[Tuple[str, str]]:
    """Parse a (possibly newline-delimited) GraphQL body into (post_id, text) pairs."""
    found: List[Tuple[str, str]] = []
    for line in (body or "").split("\n"):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            data = json.loads(line)
        except ValueError:
            continue
        found.extend(_walk(data))
    return found


def attach_interception(page: Any, cache: InterceptedTextCache) -> Callable[[Any], Any]:
    """Observe GraphQL responses on `page` and feed their post bodies into `cache`.

    The observer only reads responses; requests are never rerouted or modified.
    Returns the registered handler so the caller can detach it.
    """

    async def on_response(response: Any) -> None:
        if "/api/graphql" not in (response.url or ""):
            return
        try:
            body = await response.text()
        except Exception as e:
            logger.debug(f"[FullText] could not read GraphQL body: {e}")
            return
        stored = 0
        for post_id, text in extract_intercepted_posts(body):
            cache.put(post_id or None, text)
            stored += 1
        if stored:
            logger.debug(f"[FullText] intercepted {stored} post bodies")

    page.on("response", on_response)
    return on_response


async def expand_truncated(container: Any, *, settle_seconds: float = 0.5) -> int:
    """Click every "see more" affordance inside `container`. Returns the click count."""
    clicked = 0
    for selector in as_list(SELECTORS["see_more"]):
        try:
            buttons = await container.query_selector_all(selector)
        except Exception as e:
            logger.debug(f"[FullText] see-more lookup failed for {selector}: {e}")
            continue
        for button in buttons:
            try:
                tag = await button.evaluate("el => el.tagName.toLowerCase()")
                if tag == "a":
                    continue
                await button.click(timeout=2_000)
                clicked += 1
            except Exception as e:
                logger.debug(f"[FullText] see-more click failed: {e}")
    if clicked:
        await asyncio.sleep(settle_seconds)
    return clicked


async def _inner_text(handle: Any) -> str:
    try:
        return ((await handle.inner_text()) or "").strip()
    except Exception:
        return ""


async def read_dom_text(container: Any) -> str:
    """Longest text among the post-text chain, then any long `div[dir=auto]` block."""
    best = ""
    matches = await query_all(container, SELECTORS["post_text"])
    for handle in matches.handles:
        text = await _inner_text(handle)
        if len(text) > len(best):
            best = text
    if len(best) < MIN_LOOSE_TEXT_LENGTH:
        try:
            blocks = await container.query_selector_all('div[dir="auto"]')
        except Exception:
            blocks = []
        for handle in blocks:
            text = await _inner_text(handle)
            if len(text) > len(best):
                best = text
    return best


async def capture_full_text(container: Any, item_id: Optional[str], cache: InterceptedTextCache) -> str:
    await expand_truncated(container)
    cached = cache.get(item_id)
    dom_text = await read_dom_text(container)
    if cached:
        return cached
    by_prefix = cache.match_prefix(dom_text)
    if by_prefix and len(by_prefix) > len(dom_text):
        return by_prefix
    return dom_text
