"""Quality-rate posts already classified historic with enough confidence."""

from __future__ import annotations

from typing import Any, List

from storyscout.ai.completion import CompletionRequest
from storyscout.ai.contracts import (
    RATING_RESPONSE_FORMAT,
    RATING_SYSTEM_PROMPT,
    QualityRating,
    parse_rating,
    sanitize_for_prompt,
)
from storyscout.ingestion.post_types import CanonicalPost
from storyscout.pipeline.batch import BatchJob, BatchReport


DEFAULT_MIN_CONFIDENCE = 75


class RatingJob(BatchJob):
    name = "rating"
    label = "Quality Rating"

    def __init__(self, *args, min_confidence: int = DEFAULT_MIN_CONFIDENCE, **kwargs):
        super().__init__(*args, **kwargs)
        self.min_confidence = min_confidence

    def fetch_pending(self) -> List[CanonicalPost]:
        return self.store.fetch_unrated(self.min_confidence, self.batch_size)

    def build_request(self, post: CanonicalPost) -> CompletionRequest:
        return CompletionRequest(
            model=self.model,
            system_prompt=RATING_SYSTEM_PROMPT,
            user_content=f"Post content:\n{sanitize_for_prompt(post.text)}",
            response_schema=RATING_RESPONSE_FORMAT,
            temperature=0.3,
            max_tokens=200,
        )

    def parse(self, post: CanonicalPost, data: Any) -> QualityRating:
        return parse_rating(post.id, data)

    def persist(self, result: QualityRating) -> bool:
        return self.store.create_rating(result)

    def summary(self, report: BatchReport) -> str:
        return f"Rated {report.succeeded} posts"
