"""Batch-scraping API source (Apify Facebook posts actor).

Runs the actor synchronously for one group and maps each dataset item to a
`RawItem` tagged `batch-api`. Normalization happens later in `normalize.py`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from storyscout.ingestion.identity import PLATFORM_BASE_URL, post_id_from_url
from storyscout.ingestion.post_types import RawItem, SourceTag


logger = logging.getLogger(__name__)


def group_url(group_id: str) -> str:
    return f"{PLATFORM_BASE_URL}/groups/{group_id}"


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class ApifyIngestor:
    token: str
    actor: str = "apify~facebook-posts-scraper"
    endpoint: str = "https://api.apify.com/v2/acts/{actor}/run-sync-get-dataset-items"
    timeout_seconds: int = 300

    name: str = "apify"

    def fetch(self, group_id: str, *, limit: int = 20) -> List[RawItem]:
        payload = {
            "startUrls": [{"url": group_url(group_id)}],
            "resultsLimit": max(1, int(limit)),
            "maxRequestRetries": 3,
        }
        logger.info(f"[Apify] starting scrape for group {group_id} (limit: {payload['resultsLimit']})")
        resp = requests.post(
            self.endpoint.format(actor=self.actor),
            params={"token": self.token},
            json=payload,
            headers={"User-Agent": "StoryScout/1.0"},
            timeout=self.timeout_seconds,
        )
        resp.raise_for_status()
        data = resp.json() or []
        if not isinstance(data, list):
            logger.warning(f"[Apify] unexpected dataset payload type {type(data).__name__}")
            return []

        out: List[RawItem] = []
        for item in data:
            raw = self.to_raw_item(item, group_id)
            if raw is not None:
                out.append(raw)
        logger.info(f"[Apify] group {group_id}: {len(data)} dataset items, {len(out)} usable")
        return out

    def to_raw_item(self, item: Any, group_id: str) -> Optional[RawItem]:
        if not isinstance(item, dict):
            return None
        text = _str_or_none(item.get("text"))
        if not text:
            return None
        post_url = _str_or_none(item.get("postUrl") or item.get("url"))
        raw: Dict[str, Any] = dict(item)
        return RawItem(
            source=SourceTag.BATCH_API,
            text=text,
            structured_id=_str_or_none(item.get("postId")),
            fallback_id=post_id_from_url(post_url),
            post_url=post_url,
            author_href=_str_or_none(item.get("userUrl") or item.get("pageUrl")),
            author_name=_str_or_none(item.get("userName") or item.get("pageName")),
            group_id=group_id,
            raw=raw,
        )
