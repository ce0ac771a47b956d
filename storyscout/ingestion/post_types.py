"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SourceTag(str, Enum):
    LIVE_DOM = "live-dom"
    BATCH_API = "batch-api"


@dataclass(frozen=True)
class RawItem:
    """One scraped post before normalization.

    `source` decides which normalizer handles it; the remaining fields are
    whatever that source could provide and are not interpreted elsewhere.
    """

    source: SourceTag
    text: str
    structured_id: Optional[str] = None
    fallback_id: Optional[str] = None
    post_url: Optional[str] = None
    author_href: Optional[str] = None
    author_name: Optional[str] = None
    group_id: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class CanonicalPost:
    """Normalized, deduplicated post record (immutable once stored)."""

    id: str
    fingerprint: str
    text: str
    scraped_at: datetime
    author_link: Optional[str] = None
    author_name: Optional[str] = None
    group_id: Optional[str] = None
    source: str = SourceTag.BATCH_API.value
