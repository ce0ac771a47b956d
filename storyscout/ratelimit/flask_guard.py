"""Wire flask_limiter into the storyscout API."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional

from flask import Flask, jsonify, request
from flask_limiter import Limiter

from storyscout.ratelimit.limiter import limit_string


logger = logging.getLogger(__name__)

DEFAULT_REFUSAL_MESSAGE = "Too many requests, please try again later."


def caller_key(trust_proxy: bool = False) -> str:
    """Identify the caller of the current request.

    `X-Forwarded-For` is client-controlled unless a trusted proxy overwrites
    it, so it is only honoured when `trust_proxy` is set.
    """
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.remote_addr or "unknown"


def make_caller_key(trust_proxy: bool = False) -> Callable[[], str]:
    def key_func() -> str:
        return caller_key(trust_proxy)

    return key_func


def create_http_limiter(app: Flask, settings) -> Limiter:
    """Apply the API limit to every request; exempt routes opt out with `@limiter.exempt`.

    Outside production, callers in `rate_limit_exempt_ips` are never counted.
    """
    key_func = make_caller_key(settings.trust_proxy)
    limiter = Limiter(
        key_func=key_func,
        application_limits=[limit_string(settings.api_rate_max, settings.api_rate_window_ms)],
        strategy="fixed-window",
        storage_uri="memory://",
        headers_enabled=False,
    )
    limiter.init_app(app)

    if not settings.is_production:
        exempt_ips = frozenset(settings.rate_limit_exempt_ips)

        @limiter.request_filter
        def _exempt_local_callers():
            return key_func() in exempt_ips

    return limiter


def retry_after_seconds(limiter: Limiter) -> int:
    """Seconds until the limit that refused the current request resets (at least 1)."""
    current = limiter.current_limit
    if current is None:
        return 1
    return max(1, math.ceil(current.window.reset_time - time.time()))


def refusal_response(message: Optional[str], retry_after: int):
    response = jsonify({"success": False, "message": message or DEFAULT_REFUSAL_MESSAGE})
    response.status_code = 429
    response.headers["Retry-After"] = str(retry_after)
    return response


def refusal_message(error) -> str:
    """The route's `error_message` when the refusing limit has one."""
    limit = getattr(error, "limit", None)
    message = getattr(limit, "error_message", None)
    if callable(message):
        message = message()
    return message or DEFAULT_REFUSAL_MESSAGE
