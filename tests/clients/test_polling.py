"""Tests for the bounded polling engine."""

from __future__ import annotations

import threading
import time

import pytest

from SlingTesting.Clients import (
    CancellationToken,
    FatalProbeError,
    OperationCancelled,
    PollTimeoutError,
    Polling,
    ProbeResult,
    wait_until,
)
from SlingTesting.Clients.polling import get_effective_timeout


class _Probe:
    """Probe converging on the ``succeed_on``-th call."""

    def __init__(self, succeed_on=None, error=None):
        self.calls = 0
        self.succeed_on = succeed_on
        self.error = error

    def __call__(self):
        self.calls += 1
        if self.succeed_on is not None and self.calls >= self.succeed_on:
            return True
        if self.error is not None:
            raise self.error
        return False


class TestPollBasics:
    def test_zero_timeout_probes_exactly_once_without_sleeping(self):
        probe = _Probe()
        sleeps = []

        with pytest.raises(PollTimeoutError):
            Polling(probe, multiplier=1.0, sleep=sleeps.append).poll(0, 1000)

        assert probe.calls == 1
        assert sleeps == []

    def test_zero_timeout_can_still_succeed(self):
        probe = _Probe(succeed_on=1)
        outcome = Polling(probe, multiplier=1.0).poll(0, 1000)
        assert outcome.succeeded
        assert probe.calls == 1

    def test_negative_timeout_probes_once(self):
        probe = _Probe()
        with pytest.raises(PollTimeoutError):
            Polling(probe, multiplier=1.0).poll(-500, 10)
        assert probe.calls == 1

    def test_success_on_third_call_respects_delay(self):
        probe = _Probe(succeed_on=3)
        delay_ms, timeout_ms = 50, 5000

        started = time.monotonic()
        outcome = Polling(probe, multiplier=1.0).poll(timeout_ms, delay_ms)
        wall_ms = (time.monotonic() - started) * 1000

        assert probe.calls == 3
        assert outcome.succeeded
        assert outcome.elapsed_ms >= 0
        assert wall_ms >= 2 * delay_ms
        assert wall_ms < timeout_ms

    def test_waited_is_recorded(self):
        poller = Polling(_Probe(succeed_on=2), multiplier=1.0)
        outcome = poller.poll(5000, 20)
        assert poller.waited_ms == outcome.elapsed_ms
        assert poller.waited_ms >= 20

    def test_probe_results_tri_state(self):
        answers = iter([ProbeResult.NOT_YET, ProbeResult.NOT_YET, ProbeResult.CONVERGED])
        calls = []

        def probe():
            calls.append(1)
            return next(answers)

        assert Polling(probe, multiplier=1.0, sleep=lambda _: None).poll(1000, 1).succeeded
        assert len(calls) == 3


class TestPollFailures:
    def test_timeout_message_embeds_timeout_and_last_error(self):
        probe = _Probe(error=ValueError("boom"))

        with pytest.raises(PollTimeoutError) as excinfo:
            Polling(probe, multiplier=1.0).poll(0, 10)

        error = excinfo.value
        assert str(error) == "Call failed to return true in 0 ms (delay 10 ms). Last exception was: boom"
        assert isinstance(error.last_error, ValueError)
        assert error.timeout_ms == 0
        assert error.delay_ms == 10
        assert error.elapsed_ms >= 0

    def test_default_message_names_the_delay(self):
        with pytest.raises(PollTimeoutError) as excinfo:
            Polling(lambda: False, multiplier=1.0).poll(0, 250)

        assert str(excinfo.value) == "Call failed to return true in 0 ms (delay 250 ms). Last exception was: None"

    def test_exceptions_are_not_yet(self):
        outcomes = iter([RuntimeError("not ready"), RuntimeError("still not"), True])

        def probe():
            value = next(outcomes)
            if isinstance(value, Exception):
                raise value
            return value

        outcome = Polling(probe, multiplier=1.0, sleep=lambda _: None).poll(1000, 1)

        assert outcome.succeeded
        assert str(outcome.last_error) == "still not"

    def test_times_out_after_effective_timeout(self):
        probe = _Probe()
        started = time.monotonic()

        with pytest.raises(PollTimeoutError) as excinfo:
            Polling(probe, multiplier=1.0).poll(100, 20)

        assert (time.monotonic() - started) * 1000 >= 100
        assert probe.calls >= 2
        assert excinfo.value.elapsed_ms >= 100

    def test_fatal_probe_error_propagates_immediately(self):
        calls = []

        def probe():
            calls.append(1)
            raise FatalProbeError("server is gone")

        with pytest.raises(FatalProbeError):
            Polling(probe, multiplier=1.0).poll(10_000, 1)
        assert len(calls) == 1

    def test_fatal_result_propagates_immediately(self):
        with pytest.raises(FatalProbeError):
            Polling(lambda: ProbeResult.FATAL, multiplier=1.0).poll(10_000, 1)

    def test_custom_message(self):
        poller = Polling(_Probe(), message="Bundle x did not start in {timeout} ms (every {delay} ms)", multiplier=1.0)
        with pytest.raises(PollTimeoutError, match=r"^Bundle x did not start in 0 ms \(every 5 ms\)$"):
            poller.poll(0, 5)

    def test_subclass_hooks(self):
        class CountingPoll(Polling):
            def __init__(self):
                super().__init__(multiplier=1.0)
                self.count = 0

            def call(self):
                self.count += 1
                return self.count == 2

            def message(self):
                return "never reached {timeout}"

        poller = CountingPoll()
        assert poller.poll(1000, 1).succeeded
        assert poller.count == 2

    def test_missing_probe_is_reported_as_last_error(self):
        with pytest.raises(PollTimeoutError) as excinfo:
            Polling(multiplier=1.0).poll(0, 0)
        assert isinstance(excinfo.value.last_error, NotImplementedError)


class TestMultiplier:
    def test_explicit_multiplier(self):
        assert get_effective_timeout(1000, 2.5) == 2500

    def test_multiplier_from_environment(self, monkeypatch):
        monkeypatch.setenv("SLING_IT_TIMEOUT_MULTIPLIER", "3")
        assert get_effective_timeout(1000) == 3000

    def test_default_multiplier_is_one(self):
        assert get_effective_timeout(1234) == 1234

    def test_multiplier_applied_in_message(self):
        with pytest.raises(PollTimeoutError, match="in 0 ms"):
            Polling(_Probe(), multiplier=4.0).poll(0, 1)
        with pytest.raises(PollTimeoutError) as excinfo:
            Polling(_Probe(), multiplier=0.5).poll(40, 10)
        assert excinfo.value.timeout_ms == 20


class TestCancellation:
    def test_cancel_during_sleep_aborts(self):
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        started = time.monotonic()
        try:
            with pytest.raises(OperationCancelled):
                Polling(_Probe(), multiplier=1.0, cancellation=token).poll(10_000, 5_000)
        finally:
            timer.cancel()
        assert time.monotonic() - started < 2.0

    def test_cancel_from_probe_aborts_before_next_probe(self):
        token = CancellationToken()
        calls = []

        def probe():
            calls.append(1)
            token.cancel()
            return False

        with pytest.raises(OperationCancelled):
            Polling(probe, multiplier=1.0, cancellation=token, sleep=lambda _: None).poll(10_000, 1)
        assert len(calls) == 1

    def test_operation_cancelled_raised_by_probe_propagates(self):
        def probe():
            raise OperationCancelled("stop")

        with pytest.raises(OperationCancelled):
            Polling(probe, multiplier=1.0).poll(10_000, 1)


def test_wait_until_shorthand():
    probe = _Probe(succeed_on=2)
    outcome = wait_until(probe, 1000, 1, multiplier=1.0)
    assert outcome.succeeded
    assert probe.calls == 2
