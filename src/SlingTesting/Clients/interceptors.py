"""Request/response interceptors run around every physical HTTP attempt.

An interceptor sees each attempt, retries included, and may mutate the
outgoing :class:`httpx.Request` before it is sent or react to the
:class:`httpx.Response` once it has been read.  ``before_request`` hooks run
in registration order, ``after_response`` hooks in reverse order.  Sub
requests issued through :meth:`InterceptorContext.send_subrequest` bypass
all interceptors, which is what keeps the form login from recursing into
itself.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import httpx

from .config import ClientConfig
from .errors import TransportError, UnexpectedStatusError
from .network.policy import LOGIN_PASSWORD_FIELD, LOGIN_PATH, LOGIN_USERNAME_FIELD
from .session import SessionState
from .user_agent import resolve_user_agent

logger = logging.getLogger(__name__)

__all__ = [
    "DelayRequestInterceptor",
    "FormBasedAuthInterceptor",
    "Interceptor",
    "InterceptorContext",
    "UserAgentInterceptor",
]


@dataclass
class InterceptorContext:
    """What an interceptor may use while handling one logical call.

    Attributes:
        session: Cookies, credentials and values of the issuing client.
        config: Configuration of the issuing client.
        send_subrequest: ``(method, url, **kwargs) -> httpx.Response`` that
            applies the retry policy but no interceptors.
        sleep: Cancellable wait, in seconds.
        user_agent: Explicit per-request user agent, if any.
    """

    session: SessionState
    config: ClientConfig
    send_subrequest: Callable[..., httpx.Response]
    sleep: Callable[[float], None]
    user_agent: Optional[str] = None


class Interceptor:
    """Base class; both hooks default to no-ops."""

    def before_request(self, request: httpx.Request, context: InterceptorContext) -> None:
        return None

    def after_response(self, response: httpx.Response, context: InterceptorContext) -> None:
        return None


class UserAgentInterceptor(Interceptor):
    """Set ``User-Agent``: per-request > ambient override > client > default."""

    def before_request(self, request: httpx.Request, context: InterceptorContext) -> None:
        request.headers["User-Agent"] = resolve_user_agent(context.user_agent, context.config.user_agent)


class DelayRequestInterceptor(Interceptor):
    """Wait a fixed delay before every physical request."""

    def __init__(self, delay_ms: int) -> None:
        if delay_ms < 0:
            raise ValueError("delay_ms must be non-negative")
        self.delay_ms = delay_ms

    def before_request(self, request: httpx.Request, context: InterceptorContext) -> None:
        if self.delay_ms:
            context.sleep(self.delay_ms / 1000.0)


class FormBasedAuthInterceptor(Interceptor):
    """Log in through ``j_security_check`` and keep the login cookie fresh.

    Before a request, if the client has credentials and no cookie named
    ``login_token_name`` holds a value, the credentials are POSTed to the
    login path resolved against the request URL and the resulting cookies
    are attached to the request.  After a 401, the login cookie is expired
    so that the next request logs in again.

    Args:
        login_token_name: Session cookie set by a successful login.
        login_path: Login endpoint, relative to the request URL.
        expected_status: Statuses a login must return; ``None`` accepts any
            response and lets the main request report the failure.
    """

    def __init__(
        self,
        login_token_name: str,
        *,
        login_path: str = LOGIN_PATH,
        expected_status: Optional[Sequence[int]] = None,
    ) -> None:
        self.login_token_name = login_token_name
        self.login_path = login_path
        self.expected_status = tuple(expected_status) if expected_status else None

    def is_login_request(self, request: httpx.Request) -> bool:
        return request.url.path.endswith(self.login_path)

    def before_request(self, request: httpx.Request, context: InterceptorContext) -> None:
        session = context.session
        if self.is_login_request(request) or not session.has_credentials:
            return
        if session.find_cookie(self.login_token_name) is not None:
            return

        login_url = request.url.join(self.login_path)
        logger.debug("performing form login", extra={"login_url": str(login_url), "user": session.user})
        try:
            response = context.send_subrequest(
                "POST",
                login_url,
                data={
                    LOGIN_USERNAME_FIELD: session.user,
                    LOGIN_PASSWORD_FIELD: session.password or "",
                },
                expected_status=self.expected_status,
            )
        except (TransportError, UnexpectedStatusError) as exc:
            raise exc.with_prefix("Form login failed") from exc

        if session.find_cookie(self.login_token_name) is None:
            logger.warning(
                "form login did not set the login cookie",
                extra={"status": response.status_code, "cookie": self.login_token_name},
            )
        if "Cookie" in request.headers:
            del request.headers["Cookie"]
        session.cookies.set_cookie_header(request)

    def after_response(self, response: httpx.Response, context: InterceptorContext) -> None:
        if response.status_code != 401 or self.is_login_request(response.request):
            return
        if context.session.expire_cookie(self.login_token_name):
            logger.info(
                "login cookie expired after 401",
                extra={"cookie": self.login_token_name, "url": str(response.request.url)},
            )
