"""The Sling test client facade.

:class:`SlingClient` ties one :class:`~SlingTesting.Clients.config.ClientConfig`
to an ``httpx.Client``, a :class:`~SlingTesting.Clients.session.SessionState`
and a :class:`~SlingTesting.Clients.executor.RequestExecutor`.  Its request
helpers are deliberately thin; domain clients such as
:class:`~SlingTesting.Clients.osgi.OsgiConsoleClient` build on them and on
:class:`~SlingTesting.Clients.polling.Polling`.

Example:
    >>> from SlingTesting.Clients import SlingClient
    >>> with SlingClient.create("http://localhost:4502", "admin", "admin") as client:
    ...     client.do_get("/content.json", expected_status=200)  # doctest: +SKIP
"""

from __future__ import annotations

import json as jsonlib
import logging
from typing import Any, Callable, List, Mapping, Optional, Sequence, Type, TypeVar, Union

import httpx

from .cancellation import CancellationToken
from .config import ClientConfig
from .errors import ValidationError
from .executor import ExpectedStatus, RequestExecutor
from .interceptors import (
    DelayRequestInterceptor,
    FormBasedAuthInterceptor,
    Interceptor,
    UserAgentInterceptor,
)
from .network.client import create_http_client
from .network.retry import RetryPolicy
from .polling import Polling, Probe
from .session import SessionState

logger = logging.getLogger(__name__)

__all__ = ["SlingClient", "default_interceptors"]

ClientT = TypeVar("ClientT", bound="SlingClient")


def default_interceptors(config: ClientConfig) -> List[Interceptor]:
    """Interceptors every client gets from its configuration."""

    interceptors: List[Interceptor] = [UserAgentInterceptor()]
    if config.request_delay_ms:
        interceptors.append(DelayRequestInterceptor(config.request_delay_ms))
    if config.extensions.login_token_name:
        interceptors.append(FormBasedAuthInterceptor(config.extensions.login_token_name))
    return interceptors


class SlingClient:
    """HTTP client for one Sling instance.

    Args:
        config: Validated client configuration.
        interceptors: Extra interceptors, run after the configured defaults.
        transport: HTTPX transport override (``httpx.MockTransport`` in tests).
        policy: Retry strategy; defaults to retrying server errors.
        cancellation: Token interrupting every wait of this client.
        sleep: Replacement for the retry wait (tests).
        executor: Executor of another client to share; used by :meth:`adapt_to`.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        interceptors: Sequence[Interceptor] = (),
        transport: Optional[httpx.BaseTransport] = None,
        policy: Optional[RetryPolicy] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
        executor: Optional[RequestExecutor] = None,
    ) -> None:
        self.config = config
        if executor is not None:
            self.executor = executor
            self._owns_http = False
            return
        http = create_http_client(connection_timeout=config.connection_timeout, transport=transport)
        session = SessionState(
            http.cookies,
            user=config.user,
            password=config.password,
            preemptive_auth=config.preemptive_auth,
        )
        self.executor = RequestExecutor(
            http,
            config,
            session,
            interceptors=[*default_interceptors(config), *interceptors],
            policy=policy,
            cancellation=cancellation,
            sleep=sleep,
        )
        self._owns_http = True

    @classmethod
    def create(
        cls: Type[ClientT],
        url: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        *,
        interceptors: Sequence[Interceptor] = (),
        transport: Optional[httpx.BaseTransport] = None,
        policy: Optional[RetryPolicy] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
        **config_overrides: Any,
    ) -> ClientT:
        """Validate ``url`` and build a client; see :meth:`ClientConfig.create`."""

        config = ClientConfig.create(url, user, password, **config_overrides)
        return cls(
            config,
            interceptors=interceptors,
            transport=transport,
            policy=policy,
            cancellation=cancellation,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def session(self) -> SessionState:
        return self.executor.session

    @property
    def http(self) -> httpx.Client:
        return self.executor.http

    @property
    def url(self) -> httpx.URL:
        return self.config.base_url

    @property
    def user(self) -> Optional[str]:
        """The impersonated user while impersonating, else the configured one."""
        return self.session.impersonated_user or self.config.user

    def adapt_to(self, cls: Type[ClientT]) -> ClientT:
        """Return a ``cls`` facade sharing this client's connection, session and interceptors."""

        return cls(self.config, executor=self.executor)

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    def __enter__(self: ClientT) -> ClientT:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def do_request(
        self,
        method: str,
        path: Union[str, httpx.URL],
        *,
        expected_status: ExpectedStatus = None,
        **kwargs: Any,
    ) -> httpx.Response:
        return self.executor.execute(method, path, expected_status=expected_status, **kwargs)

    def do_get(self, path: str, *, expected_status: ExpectedStatus = None, **kwargs: Any) -> httpx.Response:
        return self.do_request("GET", path, expected_status=expected_status, **kwargs)

    def do_post(
        self,
        path: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        expected_status: ExpectedStatus = None,
        **kwargs: Any,
    ) -> httpx.Response:
        return self.do_request("POST", path, data=data, expected_status=expected_status, **kwargs)

    def do_put(self, path: str, *, expected_status: ExpectedStatus = None, **kwargs: Any) -> httpx.Response:
        return self.do_request("PUT", path, expected_status=expected_status, **kwargs)

    def do_delete(self, path: str, *, expected_status: ExpectedStatus = None, **kwargs: Any) -> httpx.Response:
        return self.do_request("DELETE", path, expected_status=expected_status, **kwargs)

    def get_json(self, path: str, *, expected_status: ExpectedStatus = 200, **kwargs: Any) -> Any:
        """GET ``path`` and decode its body as JSON.

        Raises:
            ValidationError: If the body is not valid JSON.
        """
        response = self.do_get(path, expected_status=expected_status, **kwargs)
        return self.parse_json(response)

    @staticmethod
    def parse_json(response: httpx.Response) -> Any:
        try:
            return jsonlib.loads(response.text)
        except ValueError as exc:
            raise ValidationError(
                f"Response of {response.request.method} {response.request.url} is not valid JSON",
                http_status=response.status_code,
                request=response.request,
                response=response,
            ) from exc

    # ------------------------------------------------------------------
    # Content helpers
    # ------------------------------------------------------------------

    def exists(self, path: str) -> bool:
        """Return ``True`` if ``<path>.json`` answers 200."""

        return self.do_get(f"{path}.json").status_code == 200

    def create_node(
        self, path: str, node_type: str, *, expected_status: ExpectedStatus = (200, 201)
    ) -> httpx.Response:
        return self.do_post(path, {"jcr:primaryType": node_type}, expected_status=expected_status)

    def create_node_recursive(
        self, path: str, node_type: str, *, expected_status: ExpectedStatus = (200, 201)
    ) -> None:
        """Create ``path`` and every missing ancestor with ``node_type``."""

        current = ""
        for segment in [part for part in path.split("/") if part]:
            current = f"{current}/{segment}"
            if not self.exists(current):
                self.create_node(current, node_type, expected_status=expected_status)

    def import_content(
        self,
        path: str,
        content_type: str,
        content: Union[str, Mapping[str, Any]],
        *,
        replace: bool = False,
        expected_status: ExpectedStatus = (200, 201),
    ) -> httpx.Response:
        """Import ``content`` below ``path`` through the Sling POST servlet."""

        if not isinstance(content, str):
            content = jsonlib.dumps(content)
        data = {":operation": "import", ":contentType": content_type, ":content": content}
        if replace:
            data[":replace"] = "true"
        return self.do_post(path, data, expected_status=expected_status)

    def set_property_string(
        self, path: str, name: str, value: str, *, expected_status: ExpectedStatus = 200
    ) -> httpx.Response:
        return self.do_post(path, {name: value}, expected_status=expected_status)

    def delete_path(self, path: str, *, expected_status: ExpectedStatus = 200) -> httpx.Response:
        return self.do_post(path, {":operation": "delete"}, expected_status=expected_status)

    # ------------------------------------------------------------------
    # Impersonation
    # ------------------------------------------------------------------

    def impersonate(self, user: Optional[str]) -> "SlingClient":
        """Send requests as ``user`` through the sudo cookie; ``None`` ends it."""

        cookie_name = self.config.extensions.sudo_cookie_name
        if user is None:
            return self.end_impersonation()
        self.session.remove_cookie(cookie_name)
        self.session.set_cookie(cookie_name, user, path="/")
        self.session.impersonated_user = user
        logger.debug("impersonating user", extra={"user": user})
        return self

    def end_impersonation(self) -> "SlingClient":
        self.session.remove_cookie(self.config.extensions.sudo_cookie_name)
        self.session.impersonated_user = None
        return self

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poller(self, probe: Probe, message: Optional[str] = None) -> Polling:
        """Build a :class:`Polling` that waits with this client's cancellable sleep."""

        return Polling(probe, message=message, cancellation=self.executor.cancellation, sleep=self.executor.sleep)
