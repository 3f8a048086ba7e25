# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures: hermetic fake Sling server and client factories",
#   "sections": [
#     {"id": "fake-sling", "name": "FakeSling", "anchor": "class-fake-sling", "kind": "class"},
#     {"id": "fixtures", "name": "Fixtures", "anchor": "fixtures", "kind": "fixture"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Puts ``src`` on ``sys.path`` for in-tree runs, clears ``SLING_IT_*`` variables
so every test starts from the documented defaults, and provides a fake Sling
server built on ``httpx.MockTransport``.  No test touches the network.
"""

from __future__ import annotations

import json
import os
import sys
from collections import defaultdict
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from SlingTesting.Clients import RetryConfiguration, SlingClient  # noqa: E402

BASE_URL = "http://sling.test:4502/"

Handler = Callable[[httpx.Request], httpx.Response]
Reply = Union[int, httpx.Response, Handler, BaseException]


def _materialize(reply: Reply, request: httpx.Request) -> httpx.Response:
    if isinstance(reply, BaseException):
        raise reply
    if isinstance(reply, int):
        return httpx.Response(reply, text=f"status {reply}")
    if isinstance(reply, httpx.Response):
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)
    return reply(request)


class FakeSling:
    """Route table answering requests by ``(method, path)``.

    A route holds a sequence of replies consumed one per request; the last
    reply repeats.  Replies may be a status code, an ``httpx.Response``, a
    callable taking the request, or an exception to raise.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.requests: List[httpx.Request] = []
        self.fallback: Handler = lambda request: httpx.Response(404, text="not found")

    def route(self, method: str, path: str, *replies: Reply) -> "FakeSling":
        self.routes[(method.upper(), path)] = list(replies)
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return self.fallback(request)
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        return _materialize(reply, request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def calls(self, path: str, method: Optional[str] = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.url.path == path and (method is None or request.method == method)
        ]

    def count(self, path: str, method: Optional[str] = None) -> int:
        return len(self.calls(path, method))

    def counts_by_path(self) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for request in self.requests:
            counts[request.url.path] += 1
        return dict(counts)


def json_response(payload: object, status_code: int = 200, **kwargs) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"), **kwargs)


def form_data(request: httpx.Request) -> Dict[str, List[str]]:
    """Decode an url-encoded request body."""
    from urllib.parse import parse_qs

    return parse_qs(request.content.decode("utf-8"), keep_blank_values=True)


@pytest.fixture(autouse=True)
def clean_sling_env(monkeypatch):
    """Start every test from the documented defaults."""
    for key in list(os.environ):
        if key.upper().startswith("SLING_IT_"):
            monkeypatch.delenv(key, raising=False)
    yield


@pytest.fixture
def sling() -> FakeSling:
    return FakeSling()


@pytest.fixture
def sleeps() -> List[float]:
    """Recorder passed as ``sleep=`` so retry waits return immediately."""
    return []


@pytest.fixture
def make_client(sling, sleeps):
    """Factory building clients wired to the fake server."""
    created: List[SlingClient] = []

    def _make(
        cls=SlingClient,
        *,
        user: Optional[str] = "admin",
        password: Optional[str] = "admin",
        max_retries: int = 4,
        retry_interval_ms: int = 0,
        retryable_status_codes="",
        log_retries: bool = False,
        url: str = BASE_URL,
        **kwargs,
    ):
        retry = RetryConfiguration(
            max_retries=max_retries,
            retry_interval_ms=retry_interval_ms,
            retryable_status_codes=retryable_status_codes,
            log_retries=log_retries,
        )
        kwargs.setdefault("sleep", sleeps.append)
        client = cls.create(url, user, password, transport=sling.transport, retry=retry, **kwargs)
        created.append(client)
        return client

    yield _make
    for client in created:
        client.close()
