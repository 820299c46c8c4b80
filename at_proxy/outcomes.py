"""Results of one upstream fetch, shared by every component of the proxy."""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Success:
    body: bytes
    status: int = 200


@dataclass(frozen=True)
class RateLimited:
    # Raw Retry-After value: seconds or an HTTP-date, None when upstream sent none.
    retry_after: Optional[str]
    from_upstream: bool = True


@dataclass(frozen=True)
class UpstreamError:
    status: int
    body: bytes


@dataclass(frozen=True)
class TransportFailure:
    reason: str


FetchOutcome = Union[Success, RateLimited, UpstreamError, TransportFailure]
