"""HTTP network layer instrumentation.

Logs one ``http.request`` record per physical request made by a client,
including retries and login sub-requests, with method, redacted URL,
status, attempt number and elapsed time.
"""

import logging
import time
from typing import Any
from urllib.parse import urlparse, urlunparse

logger = logging.getLogger(__name__)

#: Request extension key carrying the physical attempt number.
ATTEMPT_EXTENSION = "sling_attempt"

#: Request extension key carrying the ``perf_counter`` value taken when the request was sent.
START_TIME_EXTENSION = "sling_start_time"


def create_http_event_hooks() -> dict:
    """Create HTTPX event hooks timing every physical request.

    Returns:
        Dict with 'request' and 'response' hooks for HTTPX client

    Usage:
        >>> import httpx
        >>> hooks = create_http_event_hooks()
        >>> client = httpx.Client(event_hooks=hooks)
    """

    def on_request(request: Any) -> None:
        request.extensions[START_TIME_EXTENSION] = time.perf_counter()

    def on_response(response: Any) -> None:
        request = response.request
        start_time = request.extensions.get(START_TIME_EXTENSION)
        if start_time is None:
            return
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "http.request",
            extra={
                "method": request.method,
                "url_redacted": _redact_url(str(request.url)),
                "status": response.status_code,
                "attempt": _get_attempt_number(request),
                "elapsed_ms": round(elapsed_ms, 3),
            },
        )

    return {
        "request": [on_request],
        "response": [on_response],
    }


def _redact_url(url: str) -> str:
    """Keep only scheme, host and path; credentials and query strings are dropped."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "[URL_REDACTION_FAILED]"
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    return urlunparse((parsed.scheme, netloc, parsed.path, "", "", ""))


def _get_attempt_number(request: Any) -> int:
    extensions = getattr(request, "extensions", None) or {}
    return int(extensions.get(ATTEMPT_EXTENSION, 1))


__all__ = [
    "ATTEMPT_EXTENSION",
    "START_TIME_EXTENSION",
    "create_http_event_hooks",
]
