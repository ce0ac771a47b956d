"""Shared batch loop for AI-backed jobs.

Per item: (optional) AI limiter -> AI call with retry -> JSON parse ->
contract validation -> insert-if-absent. An item failure is logged, counted by
kind and skipped; it never stops the rest of the batch. A limiter refusal does
stop the batch, since every later item would be refused as well.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from storyscout.ai.completion import CompletionClient, CompletionRequest
from storyscout.ai.contracts import parse_json_content
from storyscout.errors import ResponseParseError, ResponseValidationError
from storyscout.ingestion.post_types import CanonicalPost
from storyscout.ratelimit.limiter import FixedWindowLimiter
from storyscout.resilience.retry import RetryPolicy, execute_with_retry
from storyscout.storage.post_store import PostStore


logger = logging.getLogger(__name__)


class ItemOutcome(str, Enum):
    VALIDATED = "validated"
    PARSE_FAILURE = "parse-failure"
    VALIDATION_FAILURE = "validation-failure"
    CALL_FAILURE = "call-failure"


@dataclass
class BatchReport:
    job: str
    selected: int = 0
    succeeded: int = 0
    failures: Dict[str, int] = field(default_factory=dict)
    throttled: bool = False

    @property
    def failed(self) -> int:
        return sum(self.failures.values())

    def record(self, outcome: ItemOutcome) -> None:
        if outcome is ItemOutcome.VALIDATED:
            self.succeeded += 1
        else:
            self.failures[outcome.value] = self.failures.get(outcome.value, 0) + 1


class BatchJob:
    name = "batch"
    label = "Batch"

    def __init__(
        self,
        store: PostStore,
        client: CompletionClient,
        *,
        model: str,
        batch_size: int = 10,
        policy: Optional[RetryPolicy] = None,
        limiter: Optional[FixedWindowLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.client = client
        self.model = model
        self.batch_size = batch_size
        self.policy = policy or RetryPolicy()
        self.limiter = limiter
        self._sleep = sleep

    # Subclass hooks

    def fetch_pending(self) -> List[CanonicalPost]:
        raise NotImplementedError

    def build_request(self, post: CanonicalPost) -> CompletionRequest:
        raise NotImplementedError

    def parse(self, post: CanonicalPost, data: Any):
        raise NotImplementedError

    def persist(self, result) -> bool:
        raise NotImplementedError

    def summary(self, report: BatchReport) -> str:
        return f"{self.label}: {report.succeeded}/{report.selected} succeeded"

    # Loop

    async def select(self) -> List[CanonicalPost]:
        return await asyncio.to_thread(self.fetch_pending)

    async def process_item(self, post: CanonicalPost) -> ItemOutcome:
        request = self.build_request(post)
        try:
            content = await execute_with_retry(
                lambda: self.client.complete(request),
                self.policy,
                operation=f"[{self.label}] post {post.id}",
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(f"[{self.label}] AI call failed for post {post.id}: {e}")
            return ItemOutcome.CALL_FAILURE

        try:
            data = parse_json_content(content)
        except ResponseParseError as e:
            logger.error(f"[{self.label}] unparseable response for post {post.id}: {e}")
            return ItemOutcome.PARSE_FAILURE

        try:
            result = self.parse(post, data)
        except ResponseValidationError as e:
            logger.error(f"[{self.label}] invalid response for post {post.id}: {e}")
            return ItemOutcome.VALIDATION_FAILURE

        try:
            created = await asyncio.to_thread(self.persist, result)
        except Exception as e:
            logger.error(f"[{self.label}] could not store result for post {post.id}: {e}")
            return ItemOutcome.CALL_FAILURE
        if not created:
            logger.info(f"[{self.label}] post {post.id} already had a stored result")
        return ItemOutcome.VALIDATED

    async def run(self) -> BatchReport:
        report = BatchReport(job=self.name)
        posts = await self.select()
        report.selected = len(posts)
        if not posts:
            logger.debug(f"[{self.label}] nothing pending")
            return report

        logger.info(f"[{self.label}] processing {len(posts)} posts")
        for post in posts:
            if self.limiter is not None:
                decision = self.limiter.check(self.name)
                if not decision.allowed:
                    report.throttled = True
                    logger.info(
                        f"[{self.label}] AI rate limit reached; stopping batch, retry in {decision.retry_after_seconds}s"
                    )
                    break
            report.record(await self.process_item(post))

        logger.info(
            f"[{self.label}] done: selected={report.selected} succeeded={report.succeeded} failures={report.failures}"
        )
        if report.succeeded > 0:
            await asyncio.to_thread(self.store.log_event, self.name, self.summary(report))
        return report
