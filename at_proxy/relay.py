import json
from typing import Any, Dict, NamedTuple, Optional

from .outcomes import FetchOutcome, RateLimited, Success, TransportFailure, UpstreamError

JSON_TYPE = "application/json"


class RelayResponse(NamedTuple):
    status: int
    headers: Dict[str, str]
    body: bytes


def cache_control(max_age: int, stale_sec: int) -> str:
    value = f"public, max-age={max_age}, s-maxage={max_age}"
    if stale_sec > 0:
        value += f", stale-while-revalidate={stale_sec}"
    return value


def json_response(
    status: int, payload: Any, headers: Optional[Dict[str, str]] = None
) -> RelayResponse:
    out = {"Content-Type": JSON_TYPE}
    out.update(headers or {})
    return RelayResponse(status, out, json.dumps(payload).encode("utf-8"))


def error_response(
    status: int,
    message: str,
    *,
    retry_after: Optional[str] = None,
    body: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> RelayResponse:
    payload: Dict[str, Any] = {"error": message}
    if body is not None:
        payload["body"] = body
    out = {"Cache-Control": "no-store"}
    if retry_after is not None:
        out["Retry-After"] = retry_after
    out.update(headers or {})
    return json_response(status, payload, out)


class ResponseRelay:
    """Maps a fetch outcome onto the outward HTTP response."""

    def __init__(self, ttl_sec: int, stale_sec: int, default_retry_after: int = 15) -> None:
        self.ttl_sec = ttl_sec
        self.stale_sec = stale_sec
        self.default_retry_after = default_retry_after

    def emit(self, outcome: FetchOutcome, cache_status: Optional[str] = None) -> RelayResponse:
        extra: Dict[str, str] = {}
        if cache_status:
            extra["X-Cache"] = cache_status

        if isinstance(outcome, Success):
            headers = {
                "Content-Type": JSON_TYPE,
                "Cache-Control": cache_control(self.ttl_sec, self.stale_sec),
                **extra,
            }
            return RelayResponse(outcome.status, headers, outcome.body)

        if isinstance(outcome, RateLimited):
            retry_after = outcome.retry_after or str(self.default_retry_after)
            if outcome.from_upstream:
                extra["X-Upstream-Status"] = "429"
            return error_response(
                429, "Temporarily rate limited", retry_after=retry_after, headers=extra
            )

        if isinstance(outcome, UpstreamError):
            extra["X-Upstream-Status"] = str(outcome.status)
            return error_response(
                502,
                f"Upstream error: {outcome.status}",
                body=outcome.body.decode("utf-8", errors="replace"),
                headers=extra,
            )

        if isinstance(outcome, TransportFailure):
            return error_response(500, "Upstream request failed", headers=extra)

        raise TypeError(f"Unknown fetch outcome: {outcome!r}")
