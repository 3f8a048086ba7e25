"""Exception hierarchy raised by the Sling integration-test clients.

Every failure carries the HTTP context that was available when it was
raised (status, originating request, final response) so that a failing
integration test can be diagnosed from its traceback alone.  Callers are
expected to branch on the category: a :class:`PollTimeoutError` means the
server never converged, an :class:`UnexpectedStatusError` means it returned
a wrong but final answer, and a :class:`TransportError` means no usable
answer came back at all (unreachable, undecodable body, redirect loop).
"""

from __future__ import annotations

import copy
from typing import Optional, Sequence

import httpx

__all__ = [
    "ClientError",
    "TransportError",
    "UnexpectedStatusError",
    "PollTimeoutError",
    "SetupError",
    "ValidationError",
    "OperationCancelled",
    "describe_response",
    "format_expected_status",
]

#: Maximum number of body characters embedded in error descriptions.
CONTENT_EXCERPT_LIMIT = 1000


def format_expected_status(expected: Optional[Sequence[int]]) -> str:
    """Render an expected-status allow-list the way mismatch messages show it."""

    if not expected:
        return ""
    return ", ".join(str(code) for code in expected)


def _content_excerpt(response: httpx.Response) -> str:
    try:
        text = response.text
    except (httpx.ResponseNotRead, httpx.StreamError, UnicodeDecodeError):
        return "<unread>"
    if len(text) > CONTENT_EXCERPT_LIMIT:
        return text[:CONTENT_EXCERPT_LIMIT] + "..."
    return text


def describe_response(response: Optional[httpx.Response]) -> str:
    """Return ``"<status> <reason> <content excerpt>"`` for ``response``."""

    if response is None:
        return "<no response>"
    return f"{response.status_code} {response.reason_phrase} {_content_excerpt(response)}"


class ClientError(RuntimeError):
    """Base exception for every failure surfaced by the client toolkit."""

    def __init__(
        self,
        message: str,
        *,
        http_status: int = -1,
        request: Optional[httpx.Request] = None,
        response: Optional[httpx.Response] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.request = request
        self.response = response

    def __str__(self) -> str:
        if self.http_status == -1:
            return self.message
        return f"{self.message} (return code={self.http_status})"

    def with_prefix(self, prefix: str) -> "ClientError":
        """Return a copy of this error whose message starts with ``prefix``."""

        wrapped = copy.copy(self)
        wrapped.message = f"{prefix}: {self.message}"
        wrapped.args = (wrapped.message,)
        return wrapped

    def describe(self) -> str:
        """Multi-line diagnostic including request line and response excerpt."""

        lines = [str(self)]
        if self.request is not None:
            lines.append(f"Request: {self.request.method} {self.request.url}")
        if self.response is not None:
            lines.append(f"Response: {describe_response(self.response)}")
        return "\n".join(lines)


class TransportError(ClientError):
    """Raised when no usable HTTP response could be obtained within the attempt budget."""

    def __init__(self, message: str, *, attempts: int = 0, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts


class UnexpectedStatusError(ClientError):
    """Raised when the final response status is outside the expected set."""

    def __init__(
        self,
        message: str,
        *,
        expected_status: Sequence[int] = (),
        attempts: int = 0,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.expected_status = tuple(expected_status)
        self.attempts = attempts

    @classmethod
    def for_response(
        cls,
        response: httpx.Response,
        expected_status: Sequence[int],
        *,
        attempts: int = 0,
    ) -> "UnexpectedStatusError":
        """Build the stable mismatch error for ``response``."""

        message = (
            f"Expected HTTP Status: {format_expected_status(expected_status)} . "
            f"Instead {response.status_code} was returned!"
        )
        return cls(
            message,
            expected_status=expected_status,
            attempts=attempts,
            http_status=response.status_code,
            request=response.request,
            response=response,
        )


class PollTimeoutError(ClientError):
    """Raised when a polling probe never converged within the effective timeout."""

    def __init__(
        self,
        message: str,
        *,
        timeout_ms: int,
        delay_ms: int,
        elapsed_ms: int,
        last_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms
        self.delay_ms = delay_ms
        self.elapsed_ms = elapsed_ms
        self.last_error = last_error


class SetupError(ClientError):
    """Raised for caller-side misconfiguration; never retried."""


class ValidationError(ClientError):
    """Raised when a response has the expected status but not the expected shape."""


class OperationCancelled(ClientError):
    """Raised when a retry, poll, or request delay is interrupted by cancellation."""


# === NAVMAP v1 ===
# {
#   "module": "SlingTesting.Clients.errors",
#   "purpose": "Define the typed error taxonomy raised by the HTTP, retry, and polling core",
#   "sections": [
#     {"id": "helpers", "name": "Message Helpers", "anchor": "HLP", "kind": "helpers"},
#     {"id": "base", "name": "ClientError", "anchor": "BAS", "kind": "api"},
#     {"id": "http", "name": "Transport & Status Errors", "anchor": "HTP", "kind": "api"},
#     {"id": "poll", "name": "Polling Errors", "anchor": "POL", "kind": "api"},
#     {"id": "setup", "name": "Setup & Validation Errors", "anchor": "SET", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
