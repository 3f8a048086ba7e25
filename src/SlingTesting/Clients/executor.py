"""Execute one logical HTTP call under the client's retry policy.

A logical call becomes one or more physical attempts.  Every attempt
builds a fresh :class:`httpx.Request` (so the body is sent at most once per
attempt), runs the interceptors around it and reads the response body in
full before the retry decision is taken.  The Tenacity controller from
:func:`~SlingTesting.Clients.network.retry.create_http_retry_policy`
decides whether to go again; when it stops, the final outcome is
normalised:

- an ``httpx.TransportError`` on the last attempt, an undecodable body or a
  redirect loop (any ``httpx.RequestError``) becomes
  :class:`~SlingTesting.Clients.errors.TransportError`;
- a response outside ``expected_status`` becomes
  :class:`~SlingTesting.Clients.errors.UnexpectedStatusError`;
- anything else is returned to the caller.

Without ``expected_status`` no status is verified and the final response is
returned whatever it is.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import httpx
from tenacity import RetryCallState

from .cancellation import CancellationToken
from .config import ClientConfig
from .errors import CONTENT_EXCERPT_LIMIT, TransportError, UnexpectedStatusError
from .interceptors import Interceptor, InterceptorContext
from .network.instrumentation import ATTEMPT_EXTENSION
from .network.retry import RetryPolicy, create_http_retry_policy
from .session import SessionState

logger = logging.getLogger(__name__)

__all__ = ["ExpectedStatus", "RequestAttempt", "RequestExecutor", "normalize_expected_status"]

ExpectedStatus = Union[None, int, Sequence[int]]
TimeoutTypes = Union[float, httpx.Timeout]

_ABSOLUTE_URL = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


def normalize_expected_status(expected_status: ExpectedStatus) -> Tuple[int, ...]:
    """Turn ``200``, ``[200, 201]`` or ``None`` into an ordered, de-duplicated tuple."""

    if expected_status is None:
        return ()
    if isinstance(expected_status, int):
        return (expected_status,)
    return tuple(dict.fromkeys(int(code) for code in expected_status))


@dataclass
class RequestAttempt:
    """Book-keeping for the physical attempts of one logical call."""

    method: str
    url: str
    expected_status: Tuple[int, ...] = ()
    execution_count: int = 0
    last_request: Optional[httpx.Request] = None
    last_status: Optional[int] = None
    last_body: str = field(default="", repr=False)

    def record(self, response: httpx.Response) -> None:
        self.last_status = response.status_code
        try:
            self.last_body = response.text[:CONTENT_EXCERPT_LIMIT]
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            self.last_body = ""


class RequestExecutor:
    """Send logical calls for one client.

    Args:
        http: The client's ``httpx.Client``.
        config: Client configuration (base URL, retry budget, user agent).
        session: Session state handed to interceptors.
        interceptors: Hooks run around every physical attempt.
        policy: Retry decision strategy.
        cancellation: Token interrupting retry and interceptor waits.
        sleep: Replacement for the wait itself (tests).
    """

    def __init__(
        self,
        http: httpx.Client,
        config: ClientConfig,
        session: SessionState,
        *,
        interceptors: Iterable[Interceptor] = (),
        policy: Optional[RetryPolicy] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.http = http
        self.config = config
        self.session = session
        self.interceptors: List[Interceptor] = list(interceptors)
        self.policy = policy or RetryPolicy()
        self.cancellation = cancellation or CancellationToken()
        self._sleep = sleep

    def resolve(self, path: Union[str, httpx.URL]) -> httpx.URL:
        """Resolve ``path`` against the base URL; absolute URLs pass through."""

        if isinstance(path, httpx.URL):
            return path if path.is_absolute_url else self.config.base_url.join(path)
        if _ABSOLUTE_URL.match(path):
            return httpx.URL(path)
        return self.config.base_url.join(path.lstrip("/"))

    def sleep(self, seconds: float) -> None:
        """Cancellable wait used between attempts and by interceptors."""

        if self._sleep is None:
            self.cancellation.sleep(seconds)
            return
        self.cancellation.raise_if_cancelled()
        self._sleep(seconds)
        self.cancellation.raise_if_cancelled()

    def execute(
        self,
        method: str,
        path: Union[str, httpx.URL],
        *,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        content: Optional[Union[str, bytes]] = None,
        files: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        expected_status: ExpectedStatus = None,
        user_agent: Optional[str] = None,
        timeout: Optional[TimeoutTypes] = None,
        follow_redirects: bool = False,
        use_interceptors: bool = True,
    ) -> httpx.Response:
        """Execute one logical call.

        Args:
            method: HTTP method.
            path: Path relative to the base URL, or an absolute URL.
            params: Query parameters.
            data: Form fields (url-encoded, or multipart with ``files``).
            json: JSON body.
            content: Raw body.
            files: Multipart files.
            headers: Extra request headers.
            expected_status: Acceptable final statuses; never retried.
            user_agent: Per-request user agent override.
            timeout: Per-attempt timeout in seconds (or an ``httpx.Timeout``); the
                client-wide timeouts apply when omitted.
            follow_redirects: Follow redirects within one attempt.
            use_interceptors: Run the client's interceptors (off for sub-requests).

        Returns:
            The final, fully read response.

        Raises:
            TransportError: No usable response could be obtained within the attempt
                budget (connection or read failures, an undecodable body, a redirect loop).
            UnexpectedStatusError: The final status is not in ``expected_status``.
            OperationCancelled: A wait was cancelled.
        """
        method = method.upper()
        url = self.resolve(path)
        expected = normalize_expected_status(expected_status)
        request_headers = httpx.Headers(headers or {})
        attempt = RequestAttempt(method=method, url=str(url), expected_status=expected)
        build_options: dict = {} if timeout is None else {"timeout": timeout}
        context = InterceptorContext(
            session=self.session,
            config=self.config,
            send_subrequest=self._send_subrequest,
            sleep=self.sleep,
            user_agent=user_agent or request_headers.get("User-Agent"),
        )

        def send_once() -> httpx.Response:
            attempt.execution_count += 1
            request = self.http.build_request(
                method,
                url,
                params=params,
                data=data,
                json=json,
                content=content,
                files=files,
                headers=request_headers,
                extensions={ATTEMPT_EXTENSION: attempt.execution_count},
                **build_options,
            )
            attempt.last_request = request
            return self._send(request, context, use_interceptors, follow_redirects)

        retrying = create_http_retry_policy(
            self.config.retry,
            policy=self.policy,
            expected_status=expected,
            sleep=self.sleep,
            before_sleep=self._before_sleep(attempt),
        )
        try:
            response = retrying(send_once)
        except httpx.RequestError as exc:
            raise TransportError(
                f"{method} {url} failed after {attempt.execution_count} attempt(s): {exc!r}",
                attempts=attempt.execution_count,
                request=attempt.last_request,
            ) from exc

        attempt.record(response)
        logger.debug(
            "request completed",
            extra={
                "method": method,
                "url": str(url),
                "status": response.status_code,
                "attempts": attempt.execution_count,
            },
        )
        if expected and response.status_code not in expected:
            raise UnexpectedStatusError.for_response(response, expected, attempts=attempt.execution_count)
        return response

    def _send(
        self,
        request: httpx.Request,
        context: InterceptorContext,
        use_interceptors: bool,
        follow_redirects: bool,
    ) -> httpx.Response:
        if use_interceptors:
            for interceptor in self.interceptors:
                interceptor.before_request(request, context)
        response = self.http.send(request, auth=self.session.auth, follow_redirects=follow_redirects)
        if use_interceptors:
            for interceptor in reversed(self.interceptors):
                interceptor.after_response(response, context)
        return response

    def _send_subrequest(self, method: str, url: Union[str, httpx.URL], **kwargs: Any) -> httpx.Response:
        kwargs.setdefault("follow_redirects", False)
        return self.execute(method, url, use_interceptors=False, **kwargs)

    @staticmethod
    def _before_sleep(attempt: RequestAttempt) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            if outcome is None:
                return
            if outcome.failed:
                logger.info(
                    "retrying after transport error",
                    extra={
                        "method": attempt.method,
                        "url": attempt.url,
                        "attempt": retry_state.attempt_number,
                        "error": repr(outcome.exception()),
                    },
                )
                return
            response = outcome.result()
            attempt.record(response)
            response.close()
            logger.info(
                "retrying after status %s",
                response.status_code,
                extra={"method": attempt.method, "url": attempt.url, "attempt": retry_state.attempt_number},
            )

        return before_sleep
