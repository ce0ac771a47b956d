"""Classify unclassified posts as historic / not historic."""

from __future__ import annotations

from typing import Any, List

from storyscout.ai.completion import CompletionRequest
from storyscout.ai.contracts import (
    CLASSIFICATION_RESPONSE_FORMAT,
    CLASSIFICATION_SYSTEM_PROMPT,
    ClassificationResult,
    parse_classification,
    sanitize_for_prompt,
)
from storyscout.ingestion.post_types import CanonicalPost
from storyscout.pipeline.batch import BatchJob, BatchReport


class ClassificationJob(BatchJob):
    name = "classify"
    label = "Classify"

    def fetch_pending(self) -> List[CanonicalPost]:
        # Oldest first, ties by id, so the backlog drains in a fixed order.
        return self.store.fetch_unclassified(self.batch_size)

    def build_request(self, post: CanonicalPost) -> CompletionRequest:
        return CompletionRequest(
            model=self.model,
            system_prompt=CLASSIFICATION_SYSTEM_PROMPT,
            user_content=f"Classify this post:\n\n{sanitize_for_prompt(post.text)}",
            response_schema=CLASSIFICATION_RESPONSE_FORMAT,
            temperature=0.3,
        )

    def parse(self, post: CanonicalPost, data: Any) -> ClassificationResult:
        return parse_classification(post.id, data)

    def persist(self, result: ClassificationResult) -> bool:
        return self.store.create_classification(result)

    def summary(self, report: BatchReport) -> str:
        return f"Classified {report.succeeded} posts ({report.failed} failed)"
