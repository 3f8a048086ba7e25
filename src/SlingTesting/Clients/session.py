"""Per-client session state shared by interceptors.

:class:`SessionState` owns the cookie store (the ``httpx.Cookies`` of the
client's ``httpx.Client``, whose ``http.cookiejar.CookieJar`` serialises
access with its own lock), the credentials, the auth scheme built from them
and a small thread-safe value map for interceptors that need to remember
something between requests.  It lives exactly as long as the client; two
clients never share a session unless one was adapted from the other.
"""

from __future__ import annotations

import base64
import http.cookiejar
import logging
import threading
import time
from typing import Any, Dict, Generator, Optional

import httpx

logger = logging.getLogger(__name__)

__all__ = ["ChallengeBasicAuth", "SessionState", "build_auth"]


class ChallengeBasicAuth(httpx.Auth):
    """Basic auth sent only after the server challenges with a 401.

    Once a challenged request succeeds the scheme is cached and later
    requests carry the credentials up front.
    """

    def __init__(self, username: str, password: str) -> None:
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        self._header = f"Basic {token}"
        self._cached = threading.Event()

    @property
    def cached(self) -> bool:
        return self._cached.is_set()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if self._cached.is_set():
            request.headers["Authorization"] = self._header
            yield request
            return

        response = yield request
        challenge = response.headers.get("WWW-Authenticate", "")
        if response.status_code != 401 or not challenge.lower().startswith("basic"):
            return

        request.headers["Authorization"] = self._header
        response = yield request
        if response.status_code != 401:
            self._cached.set()


def build_auth(user: Optional[str], password: Optional[str], *, preemptive: bool) -> Optional[httpx.Auth]:
    """Return the auth scheme for ``user``; ``None`` means anonymous access."""

    if user is None:
        return None
    if preemptive:
        return httpx.BasicAuth(user, password or "")
    return ChallengeBasicAuth(user, password or "")


class SessionState:
    """Cookies, credentials and interceptor values of one client."""

    def __init__(
        self,
        cookies: Optional[httpx.Cookies] = None,
        *,
        user: Optional[str] = None,
        password: Optional[str] = None,
        preemptive_auth: bool = True,
    ) -> None:
        self.cookies = cookies if cookies is not None else httpx.Cookies()
        self.user = user
        self.password = password
        self.auth = build_auth(user, password, preemptive=preemptive_auth)
        self.impersonated_user: Optional[str] = None
        self._values: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def has_credentials(self) -> bool:
        return self.user is not None

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def find_cookie(self, name: str) -> Optional[http.cookiejar.Cookie]:
        """Return the first cookie named ``name`` (case-insensitive) with a value."""

        wanted = name.lower()
        for cookie in list(self.cookies.jar):
            if cookie.name.lower() == wanted and cookie.value:
                return cookie
        return None

    def set_cookie(self, name: str, value: str, *, domain: str = "", path: str = "/") -> None:
        self.cookies.set(name, value, domain=domain, path=path)

    def remove_cookie(self, name: str) -> None:
        self.cookies.delete(name)

    def expire_cookie(self, name: str) -> bool:
        """Give every cookie named ``name`` a past expiry and purge it.

        Returns:
            True if at least one cookie was expired.
        """
        wanted = name.lower()
        expired = False
        past = int(time.time()) - 1
        for cookie in list(self.cookies.jar):
            if cookie.name.lower() == wanted:
                cookie.expires = past
                expired = True
        if expired:
            self.cookies.jar.clear_expired_cookies()
            logger.debug("expired session cookie", extra={"cookie": name})
        return expired

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def pop_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.pop(key, default)
