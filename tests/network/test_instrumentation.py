"""Tests for the per-attempt HTTP event hooks.

Tests cover:
- Elapsed time measured from the start stamped on the request itself
- Responses for requests never seen by the request hook are not logged
- Attempts failing with a transport error leave no state behind
"""

import logging
import time

import httpx

from SlingTesting.Clients.network.instrumentation import (
    ATTEMPT_EXTENSION,
    START_TIME_EXTENSION,
    create_http_event_hooks,
)


def _records(caplog):
    return [record for record in caplog.records if record.getMessage() == "http.request"]


class TestEventHooks:
    def setup_method(self):
        hooks = create_http_event_hooks()
        self.on_request = hooks["request"][0]
        self.on_response = hooks["response"][0]

    def test_start_time_is_stamped_on_the_request(self):
        request = httpx.Request("GET", "http://sling.test/content.json")

        self.on_request(request)

        assert isinstance(request.extensions[START_TIME_EXTENSION], float)

    def test_elapsed_time_measured_per_request(self, caplog):
        caplog.set_level(logging.DEBUG, logger="SlingTesting.Clients.network.instrumentation")
        slow = httpx.Request("GET", "http://sling.test/slow?token=x", extensions={ATTEMPT_EXTENSION: 2})
        fast = httpx.Request("GET", "http://sling.test/fast")
        self.on_request(slow)
        self.on_request(fast)
        slow.extensions[START_TIME_EXTENSION] = time.perf_counter() - 0.5

        self.on_response(httpx.Response(200, request=fast))
        self.on_response(httpx.Response(503, request=slow))

        fast_record, slow_record = _records(caplog)
        assert fast_record.elapsed_ms < 500
        assert slow_record.elapsed_ms >= 500
        assert slow_record.status == 503
        assert slow_record.attempt == 2
        assert slow_record.url_redacted == "http://sling.test/slow"

    def test_unseen_request_is_not_logged(self, caplog):
        caplog.set_level(logging.DEBUG, logger="SlingTesting.Clients.network.instrumentation")
        request = httpx.Request("GET", "http://sling.test/content.json")

        self.on_response(httpx.Response(200, request=request))

        assert _records(caplog) == []

    def test_hooks_hold_no_per_request_state(self):
        assert self.on_request.__closure__ is None
        assert self.on_response.__closure__ is None


def test_failed_attempt_leaves_only_its_own_stamp(sling, make_client, caplog):
    sling.route("GET", "/wobbly", httpx.ReadTimeout("slow"), 200)
    client = make_client(max_retries=3)
    caplog.set_level(logging.DEBUG, logger="SlingTesting.Clients.network.instrumentation")

    client.do_get("/wobbly", expected_status=200)

    failed, succeeded = sling.calls("/wobbly")
    assert START_TIME_EXTENSION in failed.extensions
    assert START_TIME_EXTENSION in succeeded.extensions
    assert [record.attempt for record in _records(caplog)] == [2]
