"""Retry decisions for completed HTTP responses, and the Tenacity controller.

The decision is a pure function of the response status, the execution count
and the caller's expected-status allow-list:

- once ``execution_count`` exceeds ``max_retries`` nothing is retried, which
  bounds a logical call to ``max_retries + 1`` physical attempts;
- a status the caller explicitly expects is never retried, even if it is
  also configured as retryable;
- otherwise the status is retried if it is in the configured retry set, or,
  when that set is empty, if it is any 5xx.

The delay between attempts is the fixed configured interval.  Connection
level failures never reach :meth:`RetryPolicy.should_retry`; the controller
built by :func:`create_http_retry_policy` retries them directly under the
same attempt budget.

Example:
    >>> from SlingTesting.Clients.network.retry import RetryPolicy
    >>> from SlingTesting.Clients.settings import RetryConfiguration
    >>> config = RetryConfiguration(max_retries=4, retryable_status_codes="500,503,505")
    >>> RetryPolicy().should_retry(505, 1, (505,), config)
    False
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import httpx
from tenacity import RetryCallState, Retrying, stop_after_attempt, wait_fixed
from tenacity.retry import retry_base

from ..errors import CONTENT_EXCERPT_LIMIT, format_expected_status
from ..settings import RetryConfiguration

logger = logging.getLogger(__name__)


# ============================================================================
# Decision
# ============================================================================


class RetryStrategy(str, enum.Enum):
    """Which statuses a :class:`RetryPolicy` considers transient."""

    #: Configured retry codes, or any 5xx when none are configured
    SERVER_ERROR = "server_error"
    #: Only 503 Service Unavailable
    SERVICE_UNAVAILABLE = "service_unavailable"


@dataclass(frozen=True)
class RetryPolicy:
    """Tagged retry strategy passed to the request executor."""

    strategy: RetryStrategy = RetryStrategy.SERVER_ERROR

    def should_retry(
        self,
        status_code: int,
        execution_count: int,
        expected_status: Optional[Sequence[int]],
        config: RetryConfiguration,
    ) -> bool:
        """Return ``True`` if a response with ``status_code`` should be re-attempted.

        Args:
            status_code: Status of the completed response.
            execution_count: 1-based number of the attempt that produced it.
            expected_status: Caller's allow-list; its members are never retried.
            config: Retry budget and retryable status codes.
        """
        if execution_count > config.max_retries:
            return False
        if expected_status and status_code in expected_status:
            return False
        if self.strategy is RetryStrategy.SERVICE_UNAVAILABLE:
            return status_code == 503
        if config.retryable_status_codes:
            return status_code in config.retryable_status_codes
        return 500 <= status_code < 600

    def retry_delay_ms(self, config: RetryConfiguration) -> int:
        return config.retry_interval_ms

    def evaluate(
        self,
        response: httpx.Response,
        execution_count: int,
        expected_status: Optional[Sequence[int]],
        config: RetryConfiguration,
    ) -> bool:
        """Decide on ``response`` and emit the retry diagnostic when enabled."""
        decision = self.should_retry(response.status_code, execution_count, expected_status, config)
        if decision and config.log_retries:
            log_retry(response, execution_count, expected_status, config)
        return decision


# ============================================================================
# Diagnostics
# ============================================================================


def _format_retry_diagnostic(
    response: httpx.Response,
    execution_count: int,
    expected_status: Optional[Sequence[int]],
    config: RetryConfiguration,
) -> str:
    request = response.request
    retry_codes = ", ".join(str(code) for code in sorted(config.retryable_status_codes))
    headers = "\n".join(f"{name}: {value}" for name, value in response.headers.items())
    body = response.text
    if len(body) > CONTENT_EXCERPT_LIMIT:
        body = body[:CONTENT_EXCERPT_LIMIT] + "..."
    return "\n".join(
        [
            "Request retry condition met: "
            f"[count={execution_count}/{config.max_retries}], "
            f"[expected-codes={format_expected_status(expected_status)}], "
            f"[retry-codes={retry_codes}]",
            f"Request: {request.method} {request.url}",
            f"Response: {response.http_version} {response.status_code} {response.reason_phrase}",
            headers,
            body,
        ]
    )


def log_retry(
    response: httpx.Response,
    execution_count: int,
    expected_status: Optional[Sequence[int]],
    config: RetryConfiguration,
) -> None:
    """Log why ``response`` is being retried; never raises."""
    try:
        message = _format_retry_diagnostic(response, execution_count, expected_status, config)
    except Exception:
        logger.warning("failed to render retry diagnostics", exc_info=True)
        return
    logger.warning(
        message,
        extra={"status": response.status_code, "execution_count": execution_count},
    )


# ============================================================================
# Tenacity controller
# ============================================================================


class _RetryTransportOrStatus(retry_base):
    """Retry on HTTPX transport failures, or on responses the policy rejects."""

    def __init__(
        self,
        policy: RetryPolicy,
        config: RetryConfiguration,
        expected_status: Optional[Sequence[int]],
    ) -> None:
        self._policy = policy
        self._config = config
        self._expected_status = expected_status

    def __call__(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None:
            return False
        if outcome.failed:
            return isinstance(outcome.exception(), httpx.TransportError)
        return self._policy.evaluate(
            outcome.result(), retry_state.attempt_number, self._expected_status, self._config
        )


def _return_last_outcome(retry_state: RetryCallState):
    """Hand back the final response, or re-raise the final transport error."""
    return retry_state.outcome.result()


def create_http_retry_policy(
    config: RetryConfiguration,
    *,
    policy: Optional[RetryPolicy] = None,
    expected_status: Optional[Sequence[int]] = None,
    sleep: Optional[Callable[[float], None]] = None,
    before_sleep: Optional[Callable[[RetryCallState], None]] = None,
) -> Retrying:
    """Create a Tenacity controller for one logical request.

    The controller stops after ``config.max_retries + 1`` attempts, waits the
    fixed retry interval between them and, when the budget runs out, returns
    the last response or re-raises the last ``httpx.TransportError`` instead
    of wrapping it in ``RetryError``.

    Args:
        config: Retry budget of the issuing client.
        policy: Decision strategy; defaults to :class:`RetryPolicy`.
        expected_status: The caller's expected-status allow-list.
        sleep: Replacement for the wait between attempts.
        before_sleep: Callback invoked before each wait.

    Returns:
        Configured ``tenacity.Retrying`` instance.
    """
    policy = policy or RetryPolicy()
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    if before_sleep is not None:
        kwargs["before_sleep"] = before_sleep
    return Retrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_fixed(policy.retry_delay_ms(config) / 1000.0),
        retry=_RetryTransportOrStatus(policy, config, expected_status),
        retry_error_callback=_return_last_outcome,
        **kwargs,
    )


__all__ = [
    "RetryPolicy",
    "RetryStrategy",
    "create_http_retry_policy",
    "log_retry",
]
