#!/usr/bin/env python3
"""Group ingestion worker.

Runs one ingestion cycle (or scheduled) per configured group:
- batch scraping API first (Apify)
- live browser session as fallback when the API yields nothing or fails

Items are normalized, deduplicated and inserted into Postgres (insert-if-absent).
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import List, Optional

import requests
import schedule

from storyscout.config import Settings, configure_logging
from storyscout.extraction.live_dom import scrape_live_group
from storyscout.ingestion.batch_api import ApifyIngestor
from storyscout.ingestion.normalize import dedupe_posts, normalize_items
from storyscout.ingestion.post_types import RawItem
from storyscout.storage.postgres_repo import PostgresRepo
from storyscout.storage.postgres_schema import ensure_postgres_schema


logger = logging.getLogger(__name__)


def fetch_batch_items(settings: Settings, group_id: str, ingestor: Optional[ApifyIngestor] = None) -> List[RawItem]:
    if ingestor is None:
        if not settings.apify_token:
            return []
        ingestor = ApifyIngestor(
            token=settings.apify_token,
            actor=settings.apify_actor,
            timeout_seconds=settings.apify_timeout_seconds,
        )
    try:
        return ingestor.fetch(group_id, limit=settings.apify_results_limit)
    except requests.RequestException as e:
        logger.warning(f"[ingest] batch API failed for group {group_id}: {e}")
        return []


async def collect_group(settings: Settings, group_id: str, ingestor: Optional[ApifyIngestor] = None) -> List[RawItem]:
    items = await asyncio.to_thread(fetch_batch_items, settings, group_id, ingestor)
    if items:
        return items
    logger.info(f"[ingest] group {group_id}: falling back to live browser")
    try:
        return await scrape_live_group(
            group_id,
            storage_state=settings.browser_storage_state,
            headless=settings.headless,
            timeout_ms=settings.page_timeout_ms,
            scroll_iterations=settings.scroll_iterations,
        )
    except Exception as e:
        logger.error(f"[ingest] live scrape failed for group {group_id}: {e}")
        return []


async def ingest(settings: Settings, repo) -> int:
    if not settings.group_ids:
        logger.warning("[ingest] GROUP_IDS is empty; nothing to scrape")
        return 0

    scraped_at = datetime.now(timezone.utc)
    raw_items: List[RawItem] = []
    for group_id in settings.group_ids:
        raw_items.extend(await collect_group(settings, group_id))

    posts = dedupe_posts(normalize_items(raw_items, scraped_at))
    inserted = await asyncio.to_thread(repo.insert_posts, posts)
    message = f"Scraped {len(raw_items)} items from {len(settings.group_ids)} groups; {len(posts)} distinct, {inserted} new"
    logger.info(f"[ingest] {message}")
    await asyncio.to_thread(repo.log_event, "scrape", message)
    return inserted


def run_once() -> None:
    settings = Settings.from_env()
    ensure_postgres_schema(settings.pg_dsn)
    repo = PostgresRepo(settings.pg_dsn)
    try:
        asyncio.run(ingest(settings, repo))
    except Exception as e:
        logger.exception(f"[ingest] cycle failed: {e}")
        try:
            repo.log_event("error", f"Scrape failed: {e}")
        except Exception as log_error:
            logger.error(f"[ingest] could not record failure event: {log_error}")


def run_scheduled() -> None:
    settings = Settings.from_env()
    schedule.every(settings.ingest_interval_minutes).minutes.do(run_once)
    run_once()
    while True:
        schedule.run_pending()
        time.sleep(5)


if __name__ == "__main__":
    configure_logging()
    mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled()
    else:
        run_once()
