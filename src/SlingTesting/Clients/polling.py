"""Bounded fixed-cadence polling for eventually-consistent server state.

Most integration tests need to wait for something the server does in the
background: a bundle starting, a configuration being applied, an index
catching up.  :class:`Polling` repeatedly evaluates a probe until it
converges or the (multiplied) timeout elapses:

``Start -> probe -> converged? -> done | elapsed >= timeout? -> fail | sleep -> probe``

The probe is always evaluated at least once, so ``timeout_ms <= 0`` means
"check exactly once".  Probes may return a ``bool`` or a :class:`ProbeResult`;
an ordinary exception is remembered as ``last_error`` and treated as "not
yet", while :class:`FatalProbeError` and cancellation stop the loop at once.

Example:
    >>> from SlingTesting.Clients.polling import Polling
    >>> calls = iter([False, False, True])
    >>> outcome = Polling(lambda: next(calls), multiplier=1.0).poll(1000, 10)
    >>> outcome.succeeded
    True
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .cancellation import CancellationToken
from .errors import ClientError, OperationCancelled, PollTimeoutError
from .settings import load_settings

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_POLL_MESSAGE",
    "FatalProbeError",
    "PollOutcome",
    "Polling",
    "ProbeResult",
    "get_effective_timeout",
    "wait_until",
]

#: Default timeout message; ``{timeout}`` and ``{delay}`` are filled in on failure.
DEFAULT_POLL_MESSAGE = (
    "Call failed to return true in {timeout} ms (delay {delay} ms). Last exception was: {last_error}"
)


class ProbeResult(enum.Enum):
    """Tri-state answer of a convergence probe."""

    CONVERGED = "converged"
    NOT_YET = "not_yet"
    FATAL = "fatal"


class FatalProbeError(ClientError):
    """Raised by (or on behalf of) a probe to abort polling immediately."""


ProbeOutput = Union[bool, ProbeResult]
Probe = Callable[[], ProbeOutput]


@dataclass(frozen=True)
class PollOutcome:
    """Result of a successful poll."""

    succeeded: bool
    elapsed_ms: int
    last_error: Optional[BaseException] = None


def get_effective_timeout(timeout_ms: int, multiplier: Optional[float] = None) -> int:
    """Scale ``timeout_ms`` by ``multiplier`` (defaults to ``SLING_IT_TIMEOUT_MULTIPLIER``)."""

    if multiplier is None:
        multiplier = load_settings().timeout_multiplier
    return int(timeout_ms * multiplier)


class Polling:
    """Repeatedly evaluate a probe until it converges or time runs out.

    Subclasses may override :meth:`call` instead of passing ``probe`` and
    :meth:`message` to customise the timeout message.

    Args:
        probe: Zero-argument callable returning ``bool`` or :class:`ProbeResult`.
        message: Timeout message template with ``{timeout}`` and ``{delay}``.
        multiplier: Timeout scaling factor; read from settings when ``None``.
        cancellation: Token interrupting the wait between probes.
        sleep: Replacement for the wait between probes (tests).
    """

    def __init__(
        self,
        probe: Optional[Probe] = None,
        *,
        message: Optional[str] = None,
        multiplier: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._probe = probe
        self._message = message
        self._multiplier = multiplier
        self._cancellation = cancellation or CancellationToken()
        self._sleep = sleep
        self.waited_ms = 0
        self.last_error: Optional[BaseException] = None

    def call(self) -> ProbeOutput:
        if self._probe is None:
            raise NotImplementedError("Polling requires a probe or an overridden call()")
        return self._probe()

    def message(self) -> str:
        return self._message or DEFAULT_POLL_MESSAGE

    def poll(self, timeout_ms: int, delay_ms: int) -> PollOutcome:
        """Evaluate the probe every ``delay_ms`` until it converges.

        Returns:
            PollOutcome of the successful poll.

        Raises:
            PollTimeoutError: The probe never converged within the effective timeout.
            FatalProbeError: The probe reported a fatal condition.
            OperationCancelled: The cancellation token fired.
        """
        effective = get_effective_timeout(timeout_ms, self._multiplier)
        self.last_error = None
        start = time.monotonic()

        while True:
            if self._evaluate():
                self.waited_ms = self._elapsed_ms(start)
                return PollOutcome(True, self.waited_ms, self.last_error)
            if self._elapsed_ms(start) >= effective:
                break
            self._wait(delay_ms / 1000.0)
            if self._elapsed_ms(start) >= effective:
                break

        self.waited_ms = self._elapsed_ms(start)
        logger.debug(
            "poll timed out",
            extra={"timeout_ms": effective, "delay_ms": delay_ms, "elapsed_ms": self.waited_ms},
        )
        raise PollTimeoutError(
            self._render_message(effective, delay_ms),
            timeout_ms=effective,
            delay_ms=delay_ms,
            elapsed_ms=self.waited_ms,
            last_error=self.last_error,
        )

    def _evaluate(self) -> bool:
        try:
            result = self.call()
        except (FatalProbeError, OperationCancelled):
            raise
        except Exception as exc:
            self.last_error = exc
            logger.debug("probe not ready", extra={"error": repr(exc)})
            return False
        if result is ProbeResult.FATAL:
            raise FatalProbeError(f"Probe reported a fatal condition. Last exception was: {self.last_error}")
        if isinstance(result, ProbeResult):
            return result is ProbeResult.CONVERGED
        return bool(result)

    def _wait(self, seconds: float) -> None:
        if self._sleep is None:
            self._cancellation.sleep(seconds)
            return
        self._cancellation.raise_if_cancelled()
        self._sleep(seconds)
        self._cancellation.raise_if_cancelled()

    def _render_message(self, timeout_ms: int, delay_ms: int) -> str:
        template = self.message()
        try:
            return template.format(timeout=timeout_ms, delay=delay_ms, last_error=self.last_error)
        except (KeyError, IndexError, ValueError):
            return template

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)


def wait_until(
    probe: Probe,
    timeout_ms: int,
    delay_ms: int,
    *,
    message: Optional[str] = None,
    multiplier: Optional[float] = None,
    cancellation: Optional[CancellationToken] = None,
) -> PollOutcome:
    """Shorthand for ``Polling(probe, ...).poll(timeout_ms, delay_ms)``."""

    return Polling(probe, message=message, multiplier=multiplier, cancellation=cancellation).poll(
        timeout_ms, delay_ms
    )
