#!/usr/bin/env python3
"""Classification / quality-rating worker.

JOB=classify|rate|all selects which batch jobs run; each runs under its own
named lock so overlapping invocations skip instead of double-processing.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import List

import schedule

from storyscout.ai.completion import OpenAICompletionClient
from storyscout.concurrency.locks import LockManager, PostgresLockStore
from storyscout.config import Settings, configure_logging
from storyscout.pipeline.classification import ClassificationJob
from storyscout.pipeline.jobs import JobRun, run_job
from storyscout.pipeline.rating import RatingJob
from storyscout.ratelimit.limiter import FixedWindowLimiter
from storyscout.resilience.retry import RetryPolicy
from storyscout.storage.postgres_repo import PostgresRepo
from storyscout.storage.postgres_schema import ensure_postgres_schema


logger = logging.getLogger(__name__)

CLASSIFY_LOCK = "classify"
RATING_LOCK = "quality-rating"


def build_ai_limiter(settings: Settings) -> FixedWindowLimiter:
    return FixedWindowLimiter(
        "ai",
        window_ms=settings.ai_rate_window_ms,
        max_requests=settings.ai_rate_max,
        message="AI call budget exhausted for this window.",
    )


def build_classification_job(settings: Settings, store, client, limiter=None) -> ClassificationJob:
    return ClassificationJob(
        store,
        client,
        model=settings.classifier_model,
        batch_size=settings.classify_batch_size,
        policy=RetryPolicy.from_settings(settings),
        limiter=limiter,
    )


def build_rating_job(settings: Settings, store, client, limiter=None) -> RatingJob:
    return RatingJob(
        store,
        client,
        model=settings.rating_model,
        batch_size=settings.rating_batch_size,
        policy=RetryPolicy.from_settings(settings),
        limiter=limiter,
        min_confidence=settings.min_rating_confidence,
    )


async def run_jobs(settings: Settings, which: str, store, lock_manager: LockManager, client, limiter=None) -> List[JobRun]:
    runs: List[JobRun] = []
    if which in ("classify", "all"):
        job = build_classification_job(settings, store, client, limiter)
        runs.append(await run_job(lock_manager, CLASSIFY_LOCK, job, store))
    if which in ("rate", "rating", "all"):
        job = build_rating_job(settings, store, client, limiter)
        runs.append(await run_job(lock_manager, RATING_LOCK, job, store))
    for r in runs:
        logger.info(f"[worker] {r.name}: {r.status.value}")
    return runs


class Worker:
    def __init__(self, settings: Settings):
        self.settings = settings
        ensure_postgres_schema(settings.pg_dsn)
        self.repo = PostgresRepo(settings.pg_dsn)
        self.locks = LockManager(PostgresLockStore(settings.pg_dsn), ttl_seconds=settings.lock_ttl_seconds)
        self.client = OpenAICompletionClient.from_settings(settings)
        # Process-wide, so consecutive scheduled runs share one window.
        self.ai_limiter = build_ai_limiter(settings)

    def run_once(self, which: str) -> List[JobRun]:
        return asyncio.run(run_jobs(self.settings, which, self.repo, self.locks, self.client, self.ai_limiter))


def run_scheduled(worker: Worker, which: str) -> None:
    s = worker.settings
    if which in ("classify", "all"):
        schedule.every(s.classify_interval_minutes).minutes.do(worker.run_once, "classify")
    if which in ("rate", "rating", "all"):
        schedule.every(s.rating_interval_minutes).minutes.do(worker.run_once, "rate")
    worker.run_once(which)
    while True:
        schedule.run_pending()
        time.sleep(5)


if __name__ == "__main__":
    configure_logging()
    settings = Settings.from_env()
    if not settings.openai_api_key:
        raise SystemExit("OPENAI_API_KEY is required")
    worker = Worker(settings)
    which = (os.environ.get("JOB") or "all").lower().strip()
    mode = (os.environ.get("CLASSIFY_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled(worker, which)
    else:
        worker.run_once(which)
