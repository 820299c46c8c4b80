import logging
from typing import Dict, Optional, Tuple

import requests

from .outcomes import FetchOutcome, RateLimited, Success, TransportFailure, UpstreamError

log = logging.getLogger(__name__)

# No transport-level caching: freshness is decided by CacheStore alone.
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}


def read_capped(resp: requests.Response, cap: int) -> bytes:
    chunks = []
    size = 0
    try:
        for chunk in resp.iter_content(chunk_size=cap):
            if not chunk:
                continue
            chunks.append(chunk)
            size += len(chunk)
            if size >= cap:
                break
    except requests.RequestException as exc:
        # The status is already known; keep whatever part of the body arrived.
        log.debug("Error body read cut short: %s", type(exc).__name__)
    finally:
        resp.close()
    return b"".join(chunks)[:cap]


class UpstreamClient:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        auth_header: str = "Ocp-Apim-Subscription-Key",
        timeout: Tuple[float, float] = (3.0, 7.0),
        error_body_cap: int = 500,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.auth_header = auth_header
        self.timeout = timeout
        self.error_body_cap = error_body_cap
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", **NO_CACHE_HEADERS}
        if self.api_key:
            headers[self.auth_header] = self.api_key
        return headers

    def fetch(self, url: str) -> FetchOutcome:
        try:
            resp = self.session.get(
                url,
                headers=self.headers(),
                timeout=self.timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            log.warning("Upstream request failed for %s: %s", url, type(exc).__name__)
            return TransportFailure(type(exc).__name__)

        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After")
            resp.close()
            log.warning("Upstream 429 for %s (Retry-After=%r)", url, retry_after)
            return RateLimited(retry_after)

        if not 200 <= resp.status_code <= 299:
            body = read_capped(resp, self.error_body_cap)
            log.warning(
                "Upstream error %s for %s: %s",
                resp.status_code,
                url,
                body.decode("utf-8", errors="replace"),
            )
            return UpstreamError(resp.status_code, body)

        try:
            body = resp.content
        except requests.RequestException as exc:
            log.warning("Upstream body read failed for %s: %s", url, type(exc).__name__)
            return TransportFailure(type(exc).__name__)
        finally:
            resp.close()
        return Success(body)
