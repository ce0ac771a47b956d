"""Post identity, content fingerprint and author-link canonicalization."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from typing import Iterable, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode, urljoin, urlparse, urlunparse


logger = logging.getLogger(__name__)

PLATFORM_BASE_URL = "https://www.facebook.com"

DEFAULT_STRIP_QUERY_PARAMS = {
    # tracking
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
    "ref",
    "ref_src",
    "ref_url",
    # platform click/notification tracking
    "__cft__",
    "__cft__[0]",
    "__tn__",
    "__xts__",
    "__xts__[0]",
    "comment_id",
    "reply_comment_id",
    "fref",
    "hc_ref",
    "eid",
    "rc",
    "notif_id",
    "notif_t",
    "ref_notif_type",
    "acontext",
    "aref",
    "view_single",
}

FINGERPRINT_LENGTH = 32

# First path segments that name a non-profile resource.
NON_PROFILE_SEGMENTS = {
    "groups",
    "pages",
    "photo",
    "photos",
    "photo.php",
    "events",
    "watch",
    "marketplace",
    "gaming",
    "stories",
    "reels",
    "reel",
    "hashtag",
    "search",
    "share",
    "sharer",
    "sharer.php",
    "permalink.php",
    "story.php",
    "settings",
    "notifications",
    "messages",
    "friends",
    "bookmarks",
    "memories",
    "saved",
    "help",
    "policies",
    "login",
    "login.php",
}

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]+$")

# (name, pattern) in priority order; group 1 is the numeric profile id.
_PROFILE_ID_RULES = [
    ("stories", re.compile(r"/stories/(\d+)/")),
    ("user", re.compile(r"^/user/(\d+)")),
    ("people", re.compile(r"/people/[^/]+/(\d+)")),
    ("group_user", re.compile(r"/groups/[^/]+/user/(\d+)")),
]

_URL_POST_ID_RULES = [
    re.compile(r"/posts/(\d+)"),
    re.compile(r"/permalink/(\d+)"),
    re.compile(r"[?&]story_fbid=(\d+)"),
    re.compile(r"(pfbid[A-Za-z0-9]+)"),
]


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for dedup.

    - Lowercase scheme + hostname
    - Remove fragments
    - Strip common tracking query parameters
    - Preserve order-stable remaining query params
    """
    if not url:
        return ""
    strip = set(strip_params) if strip_params is not None else set(DEFAULT_STRIP_QUERY_PARAMS)
    p = urlparse(url.strip())
    scheme = (p.scheme or "https").lower()
    netloc = (p.netloc or "").lower()
    path = p.path or "/"

    kept = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        if k.lower() in strip:
            continue
        kept.append((k, v))
    kept.sort(key=lambda kv: (kv[0].lower(), kv[1]))
    query = urlencode(kept, doseq=True)

    return urlunparse((scheme, netloc, path, "", query, ""))


def content_fingerprint(text: str, author_link: Optional[str] = None) -> str:
    """Stable dedup key over `(text, author_link)`; sha256 hex truncated to 32 chars."""
    content = f"{text}|{author_link or ''}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def resolve_post_id(
    structured_id: Optional[str],
    fallback_id: Optional[str],
    text: str,
    author_link: Optional[str] = None,
) -> str:
    """Pick the most stable identifier available for a post.

    Priority: `top_level_post_id` in a JSON structured id, then its
    `mf_story_key`, then the structured id verbatim, then `fallback_id`,
    and finally `hash_<fingerprint>` so re-scrapes of id-less posts collide.
    """
    if structured_id:
        try:
            parsed = json.loads(structured_id)
        except (TypeError, ValueError):
            return structured_id
        if isinstance(parsed, dict):
            for key in ("top_level_post_id", "mf_story_key"):
                value = parsed.get(key)
                if value not in (None, ""):
                    return str(value)
        return structured_id

    if fallback_id:
        return fallback_id

    return f"hash_{content_fingerprint(text, author_link)}"


def post_id_from_url(url: Optional[str]) -> Optional[str]:
    """Extract a post id embedded in a permalink, if there is one."""
    if not url:
        return None
    for pattern in _URL_POST_ID_RULES:
        m = pattern.search(url)
        if m:
            return m.group(1)
    return None


def _is_platform_host(hostname: str) -> bool:
    host = hostname.lower()
    return host == "facebook.com" or host.endswith(".facebook.com")


def _profile_url(profile_id: str) -> str:
    return f"{PLATFORM_BASE_URL}/profile.php?id={profile_id}"


def canonicalize_author_link(href: Optional[str]) -> Optional[str]:
    """Reduce any author/profile href to one canonical URL, or None.

    Numeric-id shapes (`/stories/{id}/`, `/user/{id}`, `/profile.php?id=`,
    `/people/{name}/{id}`, `/groups/{g}/user/{id}`) become
    `profile.php?id={id}`; a bare first segment becomes a username URL unless
    it names a group, page, photo or other non-profile resource.
    """
    if not href or not str(href).strip():
        return None
    try:
        absolute = urljoin(PLATFORM_BASE_URL + "/", str(href).strip())
        cleaned = urlparse(canonicalize_url(absolute))
        if not _is_platform_host(cleaned.hostname or ""):
            return None
        path = cleaned.path or "/"
        params = parse_qs(cleaned.query)
    except ValueError as e:
        logger.debug(f"Author link normalization failed for {href}: {e}")
        return None

    for name, pattern in _PROFILE_ID_RULES[:2]:
        m = pattern.search(path)
        if m:
            return _profile_url(m.group(1))

    if path.rstrip("/").endswith("/profile.php"):
        ids = params.get("id") or []
        if ids and ids[0].strip():
            return _profile_url(ids[0].strip())
        return None

    for name, pattern in _PROFILE_ID_RULES[2:]:
        m = pattern.search(path)
        if m:
            return _profile_url(m.group(1))

    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    username = segments[0]
    lowered = username.lower()
    if lowered in NON_PROFILE_SEGMENTS:
        return None
    if not _USERNAME_RE.match(username):
        return None
    return f"{PLATFORM_BASE_URL}/{username}"


def is_profile_link(href: Optional[str]) -> bool:
    """Cheap pre-filter for candidate author hrefs found in the DOM."""
    if not href:
        return False
    excluded = ("/posts/", "/comments/", "/photos/", "/photo/", "/events/", "/watch/", "/permalink/", "/share", "/hashtag/")
    if any(pattern in href for pattern in excluded) and "/user/" not in href:
        return False
    if "/groups/" in href and "/user/" not in href:
        return False
    return canonicalize_author_link(href) is not None
