"""Postgres repository for posts, classifications, ratings and audit events.

Plain psycopg + SQL. Inserts are insert-if-absent (`ON CONFLICT DO NOTHING`);
nothing here ever overwrites a stored post or result.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import psycopg
from psycopg.types.json import Jsonb

from storyscout.ai.contracts import RATING_FACTORS, ClassificationResult, QualityRating
from storyscout.ingestion.post_types import CanonicalPost


_POST_COLUMNS = "p.id, p.fingerprint, p.text, p.scraped_at, p.author_link, p.author_name, p.group_id, p.source"


def _row_to_post(row: Sequence[Any]) -> CanonicalPost:
    return CanonicalPost(
        id=row[0],
        fingerprint=row[1],
        text=row[2],
        scraped_at=row[3],
        author_link=row[4],
        author_name=row[5],
        group_id=row[6],
        source=row[7],
    )


class PostgresRepo:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    def _fetch_posts(self, sql: str, params: Sequence[Any]) -> List[CanonicalPost]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return [_row_to_post(r) for r in cur.fetchall()]

    def insert_posts(self, posts: Sequence[CanonicalPost]) -> int:
        """Insert posts not yet known by id or fingerprint. Returns the number inserted."""
        if not posts:
            return 0
        inserted = 0
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                for post in posts:
                    cur.execute(
                        """
                        INSERT INTO posts (id, fingerprint, text, author_link, author_name, group_id, source, scraped_at)
                        VALUES (%(id)s, %(fingerprint)s, %(text)s, %(author_link)s, %(author_name)s, %(group_id)s, %(source)s, %(scraped_at)s)
                        ON CONFLICT DO NOTHING
                        """,
                        {
                            "id": post.id,
                            "fingerprint": post.fingerprint,
                            "text": post.text,
                            "author_link": post.author_link,
                            "author_name": post.author_name,
                            "group_id": post.group_id,
                            "source": post.source,
                            "scraped_at": post.scraped_at,
                        },
                    )
                    inserted += cur.rowcount
        return inserted

    def find_post(self, post_id: str) -> Optional[CanonicalPost]:
        rows = self._fetch_posts(f"SELECT {_POST_COLUMNS} FROM posts p WHERE p.id = %s", (post_id,))
        return rows[0] if rows else None

    def find_by_fingerprint(self, fingerprint: str) -> Optional[CanonicalPost]:
        rows = self._fetch_posts(f"SELECT {_POST_COLUMNS} FROM posts p WHERE p.fingerprint = %s", (fingerprint,))
        return rows[0] if rows else None

    def fetch_unclassified(self, limit: int) -> List[CanonicalPost]:
        return self._fetch_posts(
            f"""
            SELECT {_POST_COLUMNS}
            FROM posts p
            LEFT JOIN post_classifications c ON c.post_id = p.id
            WHERE c.post_id IS NULL
            ORDER BY p.scraped_at ASC, p.id ASC
            LIMIT %s
            """,
            (limit,),
        )

    def fetch_unrated(self, min_confidence: int, limit: int) -> List[CanonicalPost]:
        return self._fetch_posts(
            f"""
            SELECT {_POST_COLUMNS}
            FROM posts p
            JOIN post_classifications c ON c.post_id = p.id
            LEFT JOIN quality_ratings r ON r.post_id = p.id
            WHERE c.is_historic AND c.confidence >= %s AND r.post_id IS NULL
            ORDER BY p.scraped_at DESC, p.id ASC
            LIMIT %s
            """,
            (min_confidence, limit),
        )

    def create_classification(self, result: ClassificationResult) -> bool:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO post_classifications (post_id, is_historic, confidence, reason)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (post_id) DO NOTHING
                    """,
                    (result.post_id, result.is_historic, result.confidence, result.reason),
                )
                return cur.rowcount == 1

    def create_rating(self, rating: QualityRating) -> bool:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO quality_ratings (post_id, rating, factors)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (post_id) DO NOTHING
                    """,
                    (rating.post_id, rating.rating, Jsonb(rating.factors)),
                )
                return cur.rowcount == 1

    def log_event(self, event_type: str, message: str) -> None:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("INSERT INTO system_logs (type, message) VALUES (%s, %s)", (event_type, message))

    def recent_posts(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_POST_COLUMNS}, c.is_historic, c.confidence, r.rating
                    FROM posts p
                    LEFT JOIN post_classifications c ON c.post_id = p.id
                    LEFT JOIN quality_ratings r ON r.post_id = p.id
                    ORDER BY p.scraped_at DESC, p.id DESC
                    LIMIT %s OFFSET %s
                    """,
                    (limit, offset),
                )
                rows = cur.fetchall()
        out = []
        for row in rows:
            post = _row_to_post(row[:8])
            out.append(
                {
                    "id": post.id,
                    "fingerprint": post.fingerprint,
                    "text": post.text,
                    "scraped_at": post.scraped_at.isoformat() if post.scraped_at else None,
                    "author_link": post.author_link,
                    "author_name": post.author_name,
                    "group_id": post.group_id,
                    "source": post.source,
                    "is_historic": row[8],
                    "confidence": row[9],
                    "rating": row[10],
                }
            )
        return out

    def get_classification(self, post_id: str) -> Optional[ClassificationResult]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT post_id, is_historic, confidence, reason FROM post_classifications WHERE post_id = %s",
                    (post_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return ClassificationResult(post_id=row[0], is_historic=row[1], confidence=row[2], reason=row[3])

    def get_rating(self, post_id: str) -> Optional[QualityRating]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT post_id, rating, factors FROM quality_ratings WHERE post_id = %s", (post_id,))
                row = cur.fetchone()
        if not row:
            return None
        factors = row[2] or {}
        return QualityRating(post_id=row[0], rating=row[1], factors={k: int(factors.get(k, 0)) for k in RATING_FACTORS})

    def stats(self) -> Dict[str, int]:
        with psycopg.connect(self.pg_dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT
                      (SELECT COUNT(*) FROM posts),
                      (SELECT COUNT(*) FROM post_classifications),
                      (SELECT COUNT(*) FROM post_classifications WHERE is_historic),
                      (SELECT COUNT(*) FROM quality_ratings)
                    """
                )
                row = cur.fetchone() or (0, 0, 0, 0)
        return {
            "posts": int(row[0] or 0),
            "classified": int(row[1] or 0),
            "historic": int(row[2] or 0),
            "rated": int(row[3] or 0),
        }
