import json
import threading
import time
from typing import Callable, List, Optional

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from at_proxy.config import ResourceConfig, Settings
from at_proxy.service import ProxyService

START = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = START) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        if not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self._body = body
        self.closed = False

    @property
    def content(self) -> bytes:
        return self._body

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i : i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """Stands in for requests.Session; records calls and can hold them open."""

    def __init__(self, responder: Optional[Callable[[str], FakeResponse]] = None) -> None:
        self.responder = responder or (lambda url: FakeResponse(200, {"data": []}))
        self.calls: List[dict] = []
        self.release = threading.Event()
        self.release.set()
        self._lock = threading.Lock()

    @property
    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]

    def hold(self) -> None:
        self.release.clear()

    def get(self, url, headers=None, timeout=None, stream=False):
        with self._lock:
            self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        if not self.release.wait(timeout=5):
            raise requests.Timeout("held too long")
        result = self.responder(url)
        if isinstance(result, Exception):
            raise result
        return result


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


def make_settings(**overrides) -> Settings:
    values = dict(
        base_url="https://upstream.test",
        api_key="test-key",
        trips_base="https://upstream.test/gtfs/v3/trips",
        routes=ResourceConfig("routes", ttl_sec=600, stale_sec=600),
        trips=ResourceConfig("trips", ttl_sec=5, stale_sec=30),
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def service(session, clock) -> ProxyService:
    return ProxyService(make_settings(), session=session, clock=clock)
