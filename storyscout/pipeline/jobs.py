"""Run a batch job under its single-flight lock."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from storyscout.concurrency.locks import LockManager
from storyscout.pipeline.batch import BatchJob, BatchReport
from storyscout.storage.post_store import PostStore


logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class JobRun:
    name: str
    status: JobStatus
    report: Optional[BatchReport] = None
    error: Optional[str] = None


async def _record_failure(store: PostStore, label: str, message: str) -> None:
    try:
        await asyncio.to_thread(store.log_event, "error", message)
    except Exception as log_error:
        logger.error(f"[{label}] could not record failure event: {log_error}")


async def run_job(lock_manager: LockManager, name: str, job: BatchJob, store: PostStore) -> JobRun:
    """Acquire `name`, run `job`, always release.

    Contention is a quiet skip. An unexpected error, including one raised by
    the lock store itself, is logged and recorded as an `error` audit event
    instead of propagating to the scheduler.
    """
    try:
        acquired = await asyncio.to_thread(lock_manager.acquire, name)
    except Exception as e:
        logger.error(f"[{job.label}] lock '{name}' unavailable: {e}")
        await _record_failure(store, job.label, f"{job.label} lock unavailable: {e}")
        return JobRun(name=name, status=JobStatus.FAILED, error=str(e))
    if not acquired:
        logger.debug(f"[{job.label}] another instance is running, skipping")
        return JobRun(name=name, status=JobStatus.SKIPPED)

    try:
        report = await job.run()
        return JobRun(name=name, status=JobStatus.COMPLETED, report=report)
    except Exception as e:
        logger.exception(f"[{job.label}] job failed: {e}")
        await _record_failure(store, job.label, f"{job.label} failed: {e}")
        return JobRun(name=name, status=JobStatus.FAILED, error=str(e))
    finally:
        try:
            await asyncio.to_thread(lock_manager.release, name)
        except Exception as e:
            # The lease expires on its own once its TTL runs out.
            logger.error(f"[{job.label}] could not release lock '{name}': {e}")
