import requests

from at_proxy.outcomes import RateLimited, Success, TransportFailure, UpstreamError
from at_proxy.upstream import UpstreamClient

from conftest import FakeResponse, FakeSession

URL = "https://upstream.test/gtfs/v3/routes"


def make_client(responder, **kwargs):
    session = FakeSession(responder)
    return UpstreamClient("secret", session=session, **kwargs), session


def test_success_returns_body_verbatim():
    client, session = make_client(lambda url: FakeResponse(200, b'{"data": [1, 2]}'))
    assert client.fetch(URL) == Success(b'{"data": [1, 2]}')
    assert session.urls == [URL]


def test_sends_key_and_disables_caching():
    client, session = make_client(lambda url: FakeResponse(200, b"{}"), timeout=(1.0, 2.0))
    client.fetch(URL)
    headers = session.calls[0]["headers"]
    assert headers["Ocp-Apim-Subscription-Key"] == "secret"
    assert headers["Accept"] == "application/json"
    assert headers["Cache-Control"] == "no-cache"
    assert headers["Pragma"] == "no-cache"
    assert session.calls[0]["timeout"] == (1.0, 2.0)


def test_custom_auth_header():
    client, session = make_client(lambda url: FakeResponse(200, b"{}"), auth_header="x-api-key")
    client.fetch(URL)
    assert session.calls[0]["headers"]["x-api-key"] == "secret"


def test_429_is_rate_limited_with_header_value():
    client, _ = make_client(lambda url: FakeResponse(429, b"slow down", {"Retry-After": "30"}))
    assert client.fetch(URL) == RateLimited("30")


def test_429_without_retry_after():
    client, _ = make_client(lambda url: FakeResponse(429, b""))
    assert client.fetch(URL) == RateLimited(None)


def test_error_body_is_truncated():
    client, _ = make_client(lambda url: FakeResponse(503, b"x" * 5000), error_body_cap=500)
    outcome = client.fetch(URL)
    assert outcome == UpstreamError(503, b"x" * 500)


def test_403_is_upstream_error():
    client, _ = make_client(lambda url: FakeResponse(403, b'{"message": "quota"}'))
    outcome = client.fetch(URL)
    assert isinstance(outcome, UpstreamError)
    assert outcome.status == 403
    assert outcome.body == b'{"message": "quota"}'


def test_transport_exception_becomes_failure():
    client, _ = make_client(lambda url: requests.ConnectionError("refused"))
    assert client.fetch(URL) == TransportFailure("ConnectionError")


def test_timeout_becomes_failure():
    client, _ = make_client(lambda url: requests.Timeout("read timed out"))
    assert client.fetch(URL) == TransportFailure("Timeout")


def test_without_key_no_auth_header():
    client = UpstreamClient(None, session=FakeSession())
    assert client.configured is False
    assert "Ocp-Apim-Subscription-Key" not in client.headers()
