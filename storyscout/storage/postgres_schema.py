"""Postgres schema management for storyscout.

Schema creation is idempotent (CREATE IF NOT EXISTS) so every worker can call
`ensure_postgres_schema` on start-up.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    # Canonical posts (insert-if-absent, never updated)
    """
    CREATE TABLE IF NOT EXISTS posts (
      id TEXT PRIMARY KEY,
      fingerprint TEXT NOT NULL UNIQUE,
      text TEXT NOT NULL,
      author_link TEXT,
      author_name TEXT,
      group_id TEXT,
      source TEXT NOT NULL,
      scraped_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_posts_scraped_at ON posts (scraped_at, id);",
    "CREATE INDEX IF NOT EXISTS idx_posts_group_id ON posts (group_id);",
    # One classification per post
    """
    CREATE TABLE IF NOT EXISTS post_classifications (
      post_id TEXT PRIMARY KEY REFERENCES posts(id) ON DELETE CASCADE,
      is_historic BOOLEAN NOT NULL,
      confidence INTEGER NOT NULL CHECK (confidence BETWEEN 0 AND 100),
      reason TEXT NOT NULL,
      classified_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_post_classifications_historic ON post_classifications (is_historic, confidence);",
    # One quality rating per post
    """
    CREATE TABLE IF NOT EXISTS quality_ratings (
      post_id TEXT PRIMARY KEY REFERENCES posts(id) ON DELETE CASCADE,
      rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
      factors JSONB NOT NULL,
      rated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Audit events
    """
    CREATE TABLE IF NOT EXISTS system_logs (
      id BIGSERIAL PRIMARY KEY,
      type TEXT NOT NULL,
      message TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_system_logs_created_at ON system_logs (created_at DESC);",
    # Job locks
    """
    CREATE TABLE IF NOT EXISTS job_locks (
      name TEXT PRIMARY KEY,
      holder_token TEXT NOT NULL,
      expires_at TIMESTAMPTZ NOT NULL,
      acquired_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
