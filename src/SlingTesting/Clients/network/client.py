# === NAVMAP v1 ===
# {
#   "module": "SlingTesting.Clients.network.client",
#   "purpose": "HTTPX client construction for Sling test clients",
#   "sections": [
#     {"id": "build-timeout", "name": "build_timeout", "anchor": "function-build-timeout", "kind": "function"},
#     {"id": "create-http-client", "name": "create_http_client", "anchor": "function-create-http-client", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""HTTPX client construction.

Every :class:`~SlingTesting.Clients.client.SlingClient` owns one
``httpx.Client``; clients adapted from it share it.  The factory applies the
timeout budget, pooling limits and instrumentation hooks from
:mod:`SlingTesting.Clients.network.policy`.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .instrumentation import create_http_event_hooks
from .policy import (
    FOLLOW_REDIRECTS,
    HTTP_CONNECT_TIMEOUT,
    HTTP_POOL_TIMEOUT,
    HTTP_READ_TIMEOUT,
    HTTP_WRITE_TIMEOUT,
    KEEPALIVE_EXPIRY,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
)

logger = logging.getLogger(__name__)


def build_timeout(connection_timeout: Optional[float] = None) -> httpx.Timeout:
    """Per-phase timeouts, or ``connection_timeout`` seconds for every phase."""

    if connection_timeout is not None:
        return httpx.Timeout(connection_timeout)
    return httpx.Timeout(
        connect=HTTP_CONNECT_TIMEOUT,
        read=HTTP_READ_TIMEOUT,
        write=HTTP_WRITE_TIMEOUT,
        pool=HTTP_POOL_TIMEOUT,
    )


def create_http_client(
    *,
    connection_timeout: Optional[float] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Create the HTTPX client used by one Sling test client.

    Configuration:
    - Timeouts: per-phase, or a single override in seconds
    - Connection pooling: bounded per client
    - Redirects: disabled (callers assert on 302 themselves)
    - Hooks: DEBUG instrumentation of every physical request

    Args:
        connection_timeout: Replaces every timeout phase when given.
        transport: Transport override, e.g. ``httpx.MockTransport`` in tests.

    Returns:
        Configured httpx.Client
    """
    timeout = build_timeout(connection_timeout)
    client = httpx.Client(
        transport=transport,
        timeout=timeout,
        limits=httpx.Limits(
            max_connections=MAX_CONNECTIONS,
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
            keepalive_expiry=KEEPALIVE_EXPIRY,
        ),
        follow_redirects=FOLLOW_REDIRECTS,
        event_hooks=create_http_event_hooks(),
    )
    logger.debug(
        "HTTP client created",
        extra={
            "connect_timeout": timeout.connect,
            "read_timeout": timeout.read,
            "custom_transport": transport is not None,
        },
    )
    return client


__all__ = ["build_timeout", "create_http_client"]
