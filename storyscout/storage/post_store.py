"""Persistence collaborator interface and an in-memory implementation."""

from __future__ import annotations

import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from storyscout.ai.contracts import ClassificationResult, QualityRating
from storyscout.ingestion.post_types import CanonicalPost


class PostStore(Protocol):
    def insert_posts(self, posts: Sequence[CanonicalPost]) -> int: ...

    def find_post(self, post_id: str) -> Optional[CanonicalPost]: ...

    def find_by_fingerprint(self, fingerprint: str) -> Optional[CanonicalPost]: ...

    def fetch_unclassified(self, limit: int) -> List[CanonicalPost]: ...

    def fetch_unrated(self, min_confidence: int, limit: int) -> List[CanonicalPost]: ...

    def create_classification(self, result: ClassificationResult) -> bool: ...

    def create_rating(self, rating: QualityRating) -> bool: ...

    def log_event(self, event_type: str, message: str) -> None: ...

    def recent_posts(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]: ...

    def get_classification(self, post_id: str) -> Optional[ClassificationResult]: ...

    def get_rating(self, post_id: str) -> Optional[QualityRating]: ...

    def stats(self) -> Dict[str, int]: ...


def post_to_dict(post: CanonicalPost) -> Dict[str, Any]:
    d = asdict(post)
    d["scraped_at"] = post.scraped_at.isoformat() if post.scraped_at else None
    return d


class InMemoryPostStore:
    """Dict-backed store for tests and dry runs. Same ordering rules as PostgresRepo."""

    def __init__(self):
        self._mutex = threading.Lock()
        self.posts: Dict[str, CanonicalPost] = {}
        self.classifications: Dict[str, ClassificationResult] = {}
        self.ratings: Dict[str, QualityRating] = {}
        self.events: List[Dict[str, Any]] = []

    def insert_posts(self, posts: Sequence[CanonicalPost]) -> int:
        inserted = 0
        with self._mutex:
            fingerprints = {p.fingerprint for p in self.posts.values()}
            for post in posts:
                if post.id in self.posts or post.fingerprint in fingerprints:
                    continue
                self.posts[post.id] = post
                fingerprints.add(post.fingerprint)
                inserted += 1
        return inserted

    def find_post(self, post_id: str) -> Optional[CanonicalPost]:
        return self.posts.get(post_id)

    def find_by_fingerprint(self, fingerprint: str) -> Optional[CanonicalPost]:
        for post in self.posts.values():
            if post.fingerprint == fingerprint:
                return post
        return None

    def fetch_unclassified(self, limit: int) -> List[CanonicalPost]:
        pending = [p for p in self.posts.values() if p.id not in self.classifications]
        pending.sort(key=lambda p: (p.scraped_at, p.id))
        return pending[: max(0, limit)]

    def fetch_unrated(self, min_confidence: int, limit: int) -> List[CanonicalPost]:
        eligible = []
        for post_id, c in self.classifications.items():
            if not c.is_historic or c.confidence < min_confidence or post_id in self.ratings:
                continue
            post = self.posts.get(post_id)
            if post is not None:
                eligible.append(post)
        # Most recent first; ties by id ascending.
        eligible.sort(key=lambda p: p.id)
        eligible.sort(key=lambda p: p.scraped_at, reverse=True)
        return eligible[: max(0, limit)]

    def create_classification(self, result: ClassificationResult) -> bool:
        with self._mutex:
            if result.post_id in self.classifications:
                return False
            self.classifications[result.post_id] = result
            return True

    def create_rating(self, rating: QualityRating) -> bool:
        with self._mutex:
            if rating.post_id in self.ratings:
                return False
            self.ratings[rating.post_id] = rating
            return True

    def log_event(self, event_type: str, message: str) -> None:
        self.events.append({"type": event_type, "message": message, "created_at": datetime.now(timezone.utc)})

    def recent_posts(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        ordered = sorted(self.posts.values(), key=lambda p: (p.scraped_at, p.id), reverse=True)
        out = []
        for post in ordered[offset: offset + limit]:
            d = post_to_dict(post)
            c = self.classifications.get(post.id)
            r = self.ratings.get(post.id)
            d["is_historic"] = c.is_historic if c else None
            d["confidence"] = c.confidence if c else None
            d["rating"] = r.rating if r else None
            out.append(d)
        return out

    def get_classification(self, post_id: str) -> Optional[ClassificationResult]:
        return self.classifications.get(post_id)

    def get_rating(self, post_id: str) -> Optional[QualityRating]:
        return self.ratings.get(post_id)

    def stats(self) -> Dict[str, int]:
        return {
            "posts": len(self.posts),
            "classified": len(self.classifications),
            "historic": sum(1 for c in self.classifications.values() if c.is_historic),
            "rated": len(self.ratings),
        }
