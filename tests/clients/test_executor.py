"""Request executor scenarios against a fake Sling server.

Covers the attempt-count guarantees (``min(max_retries, failures) + 1``), the
status mismatch message, transport failures, path resolution and
cancellation of the retry wait.
"""

from __future__ import annotations

import logging

import httpx
import pytest

from SlingTesting.Clients import (
    CancellationToken,
    OperationCancelled,
    RetryPolicy,
    RetryStrategy,
    TransportError,
    UnexpectedStatusError,
)
from SlingTesting.Clients.executor import normalize_expected_status

UNAVAILABLE = "/test/unavailable/resource"


def test_always_unavailable_exhausts_budget(sling, make_client):
    sling.route("GET", UNAVAILABLE, 503)
    client = make_client(max_retries=4)

    with pytest.raises(UnexpectedStatusError) as excinfo:
        client.do_get(UNAVAILABLE, expected_status=200)

    assert sling.count(UNAVAILABLE) == 5
    error = excinfo.value
    assert "Instead 503 was returned" in str(error)
    assert error.http_status == 503
    assert error.attempts == 5
    assert error.response is not None and error.response.status_code == 503
    assert error.request is not None and error.request.url.path == UNAVAILABLE


def test_recovers_on_third_attempt(sling, make_client):
    sling.route("GET", UNAVAILABLE, 503, 503, 200)
    client = make_client(max_retries=4)

    response = client.do_get(UNAVAILABLE, expected_status=200)

    assert response.status_code == 200
    assert sling.count(UNAVAILABLE) == 3


def test_status_outside_retry_list_is_not_retried(sling, make_client):
    sling.route("GET", UNAVAILABLE, 505)
    client = make_client(max_retries=4, retryable_status_codes="500,503")

    with pytest.raises(UnexpectedStatusError) as excinfo:
        client.do_get(UNAVAILABLE, expected_status=200)

    assert sling.count(UNAVAILABLE) == 1
    assert excinfo.value.http_status == 505


def test_status_in_retry_list_is_retried(sling, make_client):
    sling.route("GET", UNAVAILABLE, 505, 505, 200)
    client = make_client(max_retries=4, retryable_status_codes="500,503,505")

    assert client.do_get(UNAVAILABLE, expected_status=200).status_code == 200
    assert sling.count(UNAVAILABLE) == 3


def test_expected_status_wins_over_retry_list(sling, make_client):
    sling.route("GET", UNAVAILABLE, 505)
    client = make_client(max_retries=4, retryable_status_codes="500,503,505")

    response = client.do_get(UNAVAILABLE, expected_status=505)

    assert response.status_code == 505
    assert sling.count(UNAVAILABLE) == 1


@pytest.mark.parametrize("max_retries", [0, 1, 4, 10])
def test_not_found_is_never_retried(sling, make_client, max_retries):
    sling.route("GET", "/missing", 404)
    client = make_client(max_retries=max_retries)

    with pytest.raises(UnexpectedStatusError):
        client.do_get("/missing", expected_status=200)
    assert sling.count("/missing") == 1


@pytest.mark.parametrize("max_retries", [0, 1, 3])
def test_attempts_bounded_by_budget(sling, make_client, max_retries):
    sling.route("GET", "/flaky", 500)
    client = make_client(max_retries=max_retries)

    with pytest.raises(UnexpectedStatusError):
        client.do_get("/flaky", expected_status=200)
    assert sling.count("/flaky") == max_retries + 1


def test_retry_waits_use_fixed_interval(sling, make_client, sleeps):
    sling.route("GET", "/flaky", 500, 500, 500, 200)
    client = make_client(max_retries=4, retry_interval_ms=250)

    client.do_get("/flaky", expected_status=200)

    assert sleeps == [0.25, 0.25, 0.25]


def test_without_expected_status_final_response_is_returned(sling, make_client):
    sling.route("GET", "/broken", 500)
    client = make_client(max_retries=2)

    response = client.do_get("/broken")

    assert response.status_code == 500
    assert response.text == "status 500"
    assert sling.count("/broken") == 3


def test_mismatch_message_lists_all_expected_codes(sling, make_client):
    sling.route("POST", "/content/node", 404)
    client = make_client()

    with pytest.raises(UnexpectedStatusError) as excinfo:
        client.do_post("/content/node", {"a": "b"}, expected_status=[200, 201])

    assert excinfo.value.message == "Expected HTTP Status: 200, 201 . Instead 404 was returned!"
    assert str(excinfo.value).endswith("(return code=404)")
    assert excinfo.value.expected_status == (200, 201)
    description = excinfo.value.describe()
    assert "Request: POST http://sling.test:4502/content/node" in description
    assert "Response: 404 Not Found status 404" in description


def test_transport_error_after_budget(sling, make_client):
    sling.route("GET", "/down", httpx.ConnectError("connection refused"))
    client = make_client(max_retries=3)

    with pytest.raises(TransportError) as excinfo:
        client.do_get("/down", expected_status=200)

    assert sling.count("/down") == 4
    assert excinfo.value.attempts == 4
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert excinfo.value.response is None
    assert excinfo.value.request is not None


def test_transport_error_recovers(sling, make_client):
    sling.route("GET", "/wobbly", httpx.ReadTimeout("slow"), 200)
    client = make_client(max_retries=3)

    assert client.do_get("/wobbly", expected_status=200).status_code == 200
    assert sling.count("/wobbly") == 2


def test_service_unavailable_strategy_only_retries_503(sling, make_client):
    sling.route("GET", "/a", 500)
    sling.route("GET", "/b", 503, 200)
    client = make_client(max_retries=4, policy=RetryPolicy(RetryStrategy.SERVICE_UNAVAILABLE))

    with pytest.raises(UnexpectedStatusError):
        client.do_get("/a", expected_status=200)
    assert client.do_get("/b", expected_status=200).status_code == 200
    assert sling.count("/a") == 1
    assert sling.count("/b") == 2


def test_body_sent_on_every_attempt(sling, make_client):
    sling.route("POST", "/import", 503, 201)
    client = make_client()

    client.do_post("/import", {":operation": "import"}, expected_status=201)

    bodies = [request.content for request in sling.calls("/import")]
    assert bodies == [b"%3Aoperation=import", b"%3Aoperation=import"]


def test_paths_resolve_against_context_path(sling, make_client):
    sling.route("GET", "/ctx/content.json", 200)
    client = make_client(url="http://sling.test:4502/ctx")

    client.do_get("/content.json", expected_status=200)
    client.do_get("content.json", expected_status=200)

    assert sling.count("/ctx/content.json") == 2


def test_absolute_urls_pass_through(sling, make_client):
    sling.route("GET", "/elsewhere", 200)
    client = make_client(url="http://sling.test:4502/ctx/")

    client.do_get("http://sling.test:4502/elsewhere", expected_status=200)

    assert sling.count("/elsewhere") == 1


def test_relative_path_with_url_in_query_is_resolved(sling, make_client):
    sling.route("GET", "/ctx/bin/redirect.json", 200)
    client = make_client(url="http://sling.test:4502/ctx")

    client.do_get("/bin/redirect.json?target=http://example.org/x", expected_status=200)

    (request,) = sling.calls("/ctx/bin/redirect.json")
    assert request.url.host == "sling.test"
    assert request.url.params["target"] == "http://example.org/x"


def test_per_request_timeout_applies_to_every_attempt(sling, make_client):
    sling.route("GET", "/slow.json", 503, 200)
    client = make_client()

    client.do_get("/slow.json", expected_status=200, timeout=2.0)

    timeouts = [request.extensions["timeout"] for request in sling.calls("/slow.json")]
    assert timeouts == [{"connect": 2.0, "read": 2.0, "write": 2.0, "pool": 2.0}] * 2


def test_client_timeouts_apply_without_per_request_timeout(sling, make_client):
    sling.route("GET", "/fast.json", 200)
    client = make_client()

    client.do_get("/fast.json", expected_status=200)
    client.do_get("/fast.json", expected_status=200, timeout=httpx.Timeout(5.0, read=30.0))

    default, custom = [request.extensions["timeout"] for request in sling.calls("/fast.json")]
    assert default == client.http.timeout.as_dict()
    assert custom == {"connect": 5.0, "read": 30.0, "write": 5.0, "pool": 5.0}


def test_undecodable_body_is_a_transport_error(sling, make_client):
    sling.route(
        "GET",
        "/broken.json",
        lambda request: httpx.Response(
            200, headers={"Content-Encoding": "gzip"}, stream=httpx.ByteStream(b"not gzip")
        ),
    )
    client = make_client(max_retries=3)

    with pytest.raises(TransportError) as excinfo:
        client.do_get("/broken.json", expected_status=200)

    assert isinstance(excinfo.value.__cause__, httpx.DecodingError)
    assert excinfo.value.attempts == 1
    assert excinfo.value.request.url.path == "/broken.json"
    assert sling.count("/broken.json") == 1


def test_redirect_loop_is_a_transport_error(sling, make_client):
    sling.route("GET", "/loop", httpx.Response(302, headers={"Location": "/loop"}))
    client = make_client()

    with pytest.raises(TransportError) as excinfo:
        client.do_get("/loop", expected_status=200, follow_redirects=True)

    assert isinstance(excinfo.value.__cause__, httpx.TooManyRedirects)
    assert excinfo.value.attempts == 1
    assert excinfo.value.request is not None


def test_cancellation_interrupts_retry_wait(sling, make_client):
    token = CancellationToken()

    def _fail_and_cancel(request):
        token.cancel()
        return httpx.Response(503)

    sling.route("GET", "/slow", _fail_and_cancel)
    client = make_client(max_retries=4, retry_interval_ms=10_000, cancellation=token, sleep=None)

    with pytest.raises(OperationCancelled):
        client.do_get("/slow", expected_status=200)
    assert sling.count("/slow") == 1


def test_every_physical_attempt_is_instrumented(sling, make_client, caplog):
    sling.route("GET", "/flaky", 500, 502, 200)
    client = make_client()
    caplog.set_level(logging.DEBUG, logger="SlingTesting.Clients.network.instrumentation")

    client.do_get("/flaky?secret=1", expected_status=200)

    records = [r for r in caplog.records if r.getMessage() == "http.request"]
    assert [r.attempt for r in records] == [1, 2, 3]
    assert [r.status for r in records] == [500, 502, 200]
    assert all(r.url_redacted == "http://sling.test:4502/flaky" for r in records)


@pytest.mark.parametrize(
    "expected, normalized",
    [(None, ()), (200, (200,)), ([200, 201, 200], (200, 201)), ((302,), (302,))],
)
def test_normalize_expected_status(expected, normalized):
    assert normalize_expected_status(expected) == normalized
