"""HTTP transport layer of the Sling test clients.

Bundles the pieces that sit directly on top of HTTPX:

- ``policy``: timeout budgets, pooling limits and protocol constants
- ``client``: the ``httpx.Client`` factory
- ``retry``: the retry decision and its Tenacity controller
- ``instrumentation``: DEBUG logging of every physical request

Example:
    >>> from SlingTesting.Clients.network import RetryPolicy, create_http_client
    >>> http = create_http_client(connection_timeout=10.0)
    >>> http.timeout.read
    10.0
"""

from .client import build_timeout, create_http_client
from .instrumentation import create_http_event_hooks
from .retry import RetryPolicy, RetryStrategy, create_http_retry_policy, log_retry

__all__ = [
    # Client
    "build_timeout",
    "create_http_client",
    # Retry
    "RetryPolicy",
    "RetryStrategy",
    "create_http_retry_policy",
    "log_retry",
    # Instrumentation
    "create_http_event_hooks",
]
