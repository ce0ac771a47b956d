"""Normalize tagged raw items from each source into CanonicalPost records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from storyscout.ingestion.identity import (
    canonicalize_author_link,
    content_fingerprint,
    post_id_from_url,
    resolve_post_id,
)
from storyscout.ingestion.post_types import CanonicalPost, RawItem, SourceTag
from storyscout.ingestion.text_cleaning import clean_post_text


logger = logging.getLogger(__name__)

MIN_LIVE_TEXT_LENGTH = 30


def _build(raw: RawItem, text: str, fallback_id: Optional[str], scraped_at: datetime) -> CanonicalPost:
    author_link = canonicalize_author_link(raw.author_href)
    author_name = (raw.author_name or "").strip() or None
    return CanonicalPost(
        id=resolve_post_id(raw.structured_id, fallback_id, text, author_link),
        fingerprint=content_fingerprint(text, author_link),
        text=text,
        scraped_at=scraped_at,
        author_link=author_link,
        author_name=author_name,
        group_id=raw.group_id,
        source=raw.source.value,
    )


def normalize_live_item(raw: RawItem, scraped_at: datetime) -> Optional[CanonicalPost]:
    """Live-DOM items carry browser chrome and need the full cleaning pass."""
    text = clean_post_text(raw.text)
    if len(text) < MIN_LIVE_TEXT_LENGTH:
        return None
    return _build(raw, text, raw.fallback_id, scraped_at)


def normalize_batch_item(raw: RawItem, scraped_at: datetime) -> Optional[CanonicalPost]:
    text = clean_post_text(raw.text)
    if not text:
        return None
    fallback_id = raw.fallback_id or post_id_from_url(raw.post_url)
    return _build(raw, text, fallback_id, scraped_at)


NORMALIZERS: Dict[SourceTag, Callable[[RawItem, datetime], Optional[CanonicalPost]]] = {
    SourceTag.LIVE_DOM: normalize_live_item,
    SourceTag.BATCH_API: normalize_batch_item,
}


def normalize_item(raw: RawItem, scraped_at: Optional[datetime] = None) -> Optional[CanonicalPost]:
    """Dispatch on the item's source tag. Returns None for items with no usable text."""
    normalizer = NORMALIZERS[SourceTag(raw.source)]
    return normalizer(raw, scraped_at or datetime.now(timezone.utc))


def normalize_items(items: Iterable[RawItem], scraped_at: Optional[datetime] = None) -> List[CanonicalPost]:
    when = scraped_at or datetime.now(timezone.utc)
    out: List[CanonicalPost] = []
    skipped = 0
    for raw in items:
        post = normalize_item(raw, when)
        if post is None:
            skipped += 1
            continue
        out.append(post)
    if skipped:
        logger.debug(f"[Normalize] skipped {skipped} items without usable text")
    return out


def dedupe_posts(posts: Iterable[CanonicalPost]) -> List[CanonicalPost]:
    """Drop repeats by id or by fingerprint, keeping the first occurrence."""
    seen_ids = set()
    seen_fingerprints = set()
    out: List[CanonicalPost] = []
    for post in posts:
        if post.id in seen_ids or post.fingerprint in seen_fingerprints:
            continue
        seen_ids.add(post.id)
        seen_fingerprints.add(post.fingerprint)
        out.append(post)
    return out
