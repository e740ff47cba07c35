from __future__ import annotations

from dataclasses import replace
from http import HTTPStatus
import json
import queue
import threading
import time
from typing import Any

import pytest
import requests

from pocketbase_client.auth import AuthStore
from pocketbase_client.client import PocketBase
from pocketbase_client.config import ClientSettings

BASE_URL = "http://pb.test"


def make_response(
    status_code: int = 200,
    body: Any = None,
    reason: str | None = None,
    url: str = f"{BASE_URL}/",
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.reason = HTTPStatus(status_code).phrase if reason is None else reason
    response.url = url
    if body is None:
        content = b""
    elif isinstance(body, bytes):
        content = body
    elif isinstance(body, str):
        content = body.encode("utf-8")
    else:
        content = json.dumps(body).encode("utf-8")
    response._content = content
    response.encoding = "utf-8"
    return response


class FakeStreamResponse:
    """Streamed response whose lines can be pushed while the reader runs."""

    def __init__(self, lines: list[str] | None = None, status_code: int = 200):
        self.status_code = status_code
        self.encoding: str | None = None
        self._lines: queue.Queue = queue.Queue()
        self._closed = threading.Event()
        self._ended = threading.Event()
        self.push(*(lines or []))

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, *lines: str) -> None:
        for line in lines:
            self._lines.put(line)

    def end(self) -> None:
        self._ended.set()

    def iter_lines(self, chunk_size=None, decode_unicode=False):
        while not self._closed.is_set():
            try:
                yield self._lines.get(timeout=0.02)
            except queue.Empty:
                if self._ended.is_set():
                    return

    def close(self) -> None:
        self._closed.set()


class FakeSession:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.requests: list[dict[str, Any]] = []
        self.responses: list[requests.Response] = []
        self.streams: list[FakeStreamResponse] = []
        self.stream_requests: list[dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        with self._lock:
            self.requests.append({"method": method, "url": url, **kwargs})
            if self.responses:
                return self.responses.pop(0)
        return make_response(204)

    def get(self, url: str, **kwargs):
        with self._lock:
            self.stream_requests.append({"url": url, **kwargs})
            if self.streams:
                return self.streams.pop(0)
        return FakeStreamResponse()

    def close(self) -> None:
        self.closed = True

    def realtime_submits(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                request["json"]
                for request in self.requests
                if request["method"] == "POST" and request["url"].endswith("/api/realtime")
            ]


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def pb_connect_lines(client_id: str) -> list[str]:
    return [
        f"id:{client_id}",
        "event:PB_CONNECT",
        f"data:{json.dumps({'clientId': client_id})}",
        "",
    ]


@pytest.fixture
def settings() -> ClientSettings:
    return replace(
        ClientSettings.defaults(BASE_URL),
        connect_timeout_seconds=2.0,
        realtime_reconnect_base_ms=10,
        realtime_reconnect_max_ms=20,
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def auth_store() -> AuthStore:
    return AuthStore()


@pytest.fixture
def pb(settings, session, auth_store):
    client = PocketBase(settings=settings, auth_store=auth_store, session=session)
    yield client
    client.close()
