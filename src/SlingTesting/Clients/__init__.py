# === NAVMAP v1 ===
# {
#   "module": "SlingTesting.Clients",
#   "purpose": "Public API of the Sling integration-test clients",
#   "sections": []
# }
# === /NAVMAP ===

"""Public API of the Sling integration-test clients.

The package wraps HTTPX with the pieces integration tests against a Sling
instance need: a fixed-interval retry policy for transient server errors,
a bounded polling engine for eventually-consistent state, session
interceptors (form login, user agent, request delay, impersonation) and
thin domain clients for the OSGi console, the query servlet and async
indexing.

Example:
    >>> from SlingTesting.Clients import OsgiConsoleClient
    >>> osgi = OsgiConsoleClient.create("http://localhost:4502", "admin", "admin")
    >>> osgi.wait_bundle_started("org.apache.sling.api", 30_000, 500)  # doctest: +SKIP
"""

from .cancellation import CancellationToken, CancellationTokenGroup
from .client import SlingClient
from .config import ClientConfig, ClientExtensions
from .errors import (
    ClientError,
    OperationCancelled,
    PollTimeoutError,
    SetupError,
    TransportError,
    UnexpectedStatusError,
    ValidationError,
)
from .executor import RequestAttempt, RequestExecutor
from .indexing import IndexingClient
from .interceptors import (
    DelayRequestInterceptor,
    FormBasedAuthInterceptor,
    Interceptor,
    InterceptorContext,
    UserAgentInterceptor,
)
from .logging_utils import setup_logging
from .network.retry import RetryPolicy, RetryStrategy
from .osgi import OsgiConsoleClient
from .polling import FatalProbeError, PollOutcome, Polling, ProbeResult, wait_until
from .query import QueryClient, QueryType
from .session import SessionState
from .settings import ClientSettings, RetryConfiguration, load_settings
from .user_agent import UserAgent, custom_user_agent, reset_user_agent, set_user_agent

__version__ = "0.1.0"

__all__ = [
    # Clients
    "SlingClient",
    "OsgiConsoleClient",
    "QueryClient",
    "QueryType",
    "IndexingClient",
    # Configuration
    "ClientConfig",
    "ClientExtensions",
    "ClientSettings",
    "RetryConfiguration",
    "load_settings",
    # Retry & execution
    "RetryPolicy",
    "RetryStrategy",
    "RequestAttempt",
    "RequestExecutor",
    # Polling
    "Polling",
    "PollOutcome",
    "ProbeResult",
    "FatalProbeError",
    "wait_until",
    # Session & interceptors
    "SessionState",
    "Interceptor",
    "InterceptorContext",
    "FormBasedAuthInterceptor",
    "UserAgentInterceptor",
    "DelayRequestInterceptor",
    "UserAgent",
    "custom_user_agent",
    "set_user_agent",
    "reset_user_agent",
    # Cancellation
    "CancellationToken",
    "CancellationTokenGroup",
    # Errors
    "ClientError",
    "TransportError",
    "UnexpectedStatusError",
    "PollTimeoutError",
    "SetupError",
    "ValidationError",
    "OperationCancelled",
    # Logging
    "setup_logging",
]
