# === NAVMAP v1 ===
# {
#   "module": "SlingTesting.Clients.network.policy",
#   "purpose": "HTTP policy constants and defaults.",
#   "sections": []
# }
# === /NAVMAP ===

"""HTTP policy constants and defaults.

Timeout budgets, pooling limits and identification defaults for the HTTPX
client shared by every Sling test client.  The values suit a test server on
the local network or a CI sidecar; ``SLING_IT_CLIENT_CONNECTION_TIMEOUT``
replaces all timeout phases at once for slower environments.
"""

# ============================================================================
# Timeout Budgets (seconds)
# ============================================================================

#: Connection establishment timeout
HTTP_CONNECT_TIMEOUT = 5.0

#: Read timeout; generous because some console endpoints render slowly
HTTP_READ_TIMEOUT = 30.0

#: Write timeout (time to send request body, e.g. content imports)
HTTP_WRITE_TIMEOUT = 15.0

#: Pool timeout (acquiring a connection from the pool)
HTTP_POOL_TIMEOUT = 5.0


# ============================================================================
# Connection Pooling
# ============================================================================

#: Maximum concurrent connections per client
MAX_CONNECTIONS = 20

#: Maximum idle connections kept for reuse
MAX_KEEPALIVE_CONNECTIONS = 10

#: How long to keep idle connections alive (seconds)
KEEPALIVE_EXPIRY = 5.0


# ============================================================================
# Redirects
# ============================================================================

#: Redirects are surfaced to callers; tests assert on 302 responses directly
FOLLOW_REDIRECTS = False


# ============================================================================
# User-Agent Construction
# ============================================================================

#: Product token of the library default user agent
USER_AGENT_TITLE = "sling-testing-clients"

#: Library version embedded in the default user agent
USER_AGENT_VERSION = "0.1.0"


# ============================================================================
# Authentication
# ============================================================================

#: Form login endpoint, resolved against the request URL
LOGIN_PATH = "j_security_check"

#: Form field names used by the login POST
LOGIN_USERNAME_FIELD = "j_username"
LOGIN_PASSWORD_FIELD = "j_password"

#: Default impersonation cookie
SUDO_COOKIE_NAME = "sling.sudo"
