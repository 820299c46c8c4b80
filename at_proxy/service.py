from concurrent.futures import ThreadPoolExecutor
import json
import logging
import threading
import time
from typing import Any, Callable, List, NamedTuple, Optional
from urllib.parse import quote

import requests

from .cache import CacheStore
from .config import ResourceConfig, Settings
from .gate import RateLimitGate
from .outcomes import FetchOutcome, RateLimited, Success, TransportFailure, UpstreamError
from .relay import RelayResponse, ResponseRelay, cache_control, json_response
from .singleflight import CoalescingFetcher
from .upstream import UpstreamClient

log = logging.getLogger(__name__)

Clock = Callable[[], float]


class Resolution(NamedTuple):
    outcome: FetchOutcome
    cache_status: str
    upstream_status: Optional[int] = None


class CachedResource:
    """Request handler for one resource class: gate, cache, then one shared fetch."""

    def __init__(
        self,
        config: ResourceConfig,
        gate: RateLimitGate,
        client: UpstreamClient,
        *,
        lock: threading.Lock,
        clock: Clock = time.time,
        default_retry_after: int = 15,
        max_entries: int = 2000,
    ) -> None:
        self.name = config.name
        self.config = config
        self.gate = gate
        self.client = client
        self.clock = clock
        self.cache = CacheStore(
            config.ttl_sec,
            retain_sec=config.stale_fallback_sec,
            max_entries=max_entries,
            lock=lock,
        )
        self.fetcher = CoalescingFetcher(lock=lock)
        self.relay = ResponseRelay(config.ttl_sec, config.stale_sec, default_retry_after)

    def resolve(self, key: str) -> Resolution:
        now = self.clock()
        wait = self.gate.check(now)
        if wait is not None:
            return Resolution(RateLimited(str(wait), from_upstream=False), "blocked")

        body = self.cache.get(key, now)
        if body is not None:
            log.debug("%s cache hit for %s", self.name, key)
            return Resolution(Success(body), "hit")

        outcome, joined = self.fetcher.fetch_or_join(key, lambda: self._load(key))
        if not isinstance(outcome, Success):
            stale = self._stale_fallback(key, outcome)
            if stale is not None:
                return stale
        return Resolution(outcome, "coalesced" if joined else "miss")

    def handle(self, key: str) -> RelayResponse:
        resolution = self.resolve(key)
        resp = self.relay.emit(resolution.outcome, resolution.cache_status)
        if resolution.upstream_status is not None:
            resp.headers["X-Upstream-Status"] = str(resolution.upstream_status)
        return resp

    def _load(self, key: str) -> FetchOutcome:
        # Another owner may have filled the cache after this caller missed it.
        body = self.cache.get(key, self.clock())
        if body is not None:
            return Success(body)

        # A cooldown may have started for another key while this one waited.
        wait = self.gate.check(self.clock())
        if wait is not None:
            return RateLimited(str(wait), from_upstream=False)

        outcome = self.client.fetch(key)
        now = self.clock()
        if isinstance(outcome, Success):
            self.cache.set(key, outcome.body, now)
        elif isinstance(outcome, RateLimited):
            self.gate.trip(outcome.retry_after, now)
        return outcome

    def _stale_fallback(self, key: str, outcome: FetchOutcome) -> Optional[Resolution]:
        if not self.config.stale_fallback_sec:
            return None
        if isinstance(outcome, RateLimited):
            if not outcome.from_upstream:
                return None
            upstream_status: Optional[int] = 429
        elif isinstance(outcome, UpstreamError):
            upstream_status = outcome.status
        elif isinstance(outcome, TransportFailure):
            upstream_status = None
        else:
            return None
        body = self.cache.get_stale(key, self.clock(), self.config.stale_fallback_sec)
        if body is None:
            return None
        log.info("%s serving stale copy of %s", self.name, key)
        return Resolution(Success(body), "stale-hit", upstream_status)


def merge_trip_body(merged: List[Any], body: bytes, trip_id: str) -> None:
    try:
        payload = json.loads(body)
    except ValueError:
        log.warning("Skipping malformed payload for trip %s", trip_id)
        return
    data = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(data, list):
        merged.extend(data)
    elif data or isinstance(data, dict):
        merged.append(data)
    elif isinstance(payload, list):
        merged.extend(payload)
    else:
        merged.append(payload)


def parse_ids(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class ProxyService:
    """Owns all shared proxy state for the lifetime of one app."""

    def __init__(
        self,
        settings: Settings,
        *,
        session: Optional[requests.Session] = None,
        clock: Clock = time.time,
    ) -> None:
        self.settings = settings
        self.clock = clock
        # Cache, in-flight registry and cooldown form one locked domain.
        self._lock = threading.Lock()
        self.gate = RateLimitGate(self._lock, max_cooldown=settings.max_cooldown_sec)
        self.client = UpstreamClient(
            settings.api_key,
            auth_header=settings.auth_header,
            timeout=settings.timeout,
            error_body_cap=settings.error_body_cap,
            session=session,
        )
        self.routes = self._resource(settings.routes)
        self.trips = self._resource(settings.trips)
        self.realtime = self._resource(settings.realtime)

    def _resource(self, config: ResourceConfig) -> CachedResource:
        return CachedResource(
            config,
            self.gate,
            self.client,
            lock=self._lock,
            clock=self.clock,
            default_retry_after=self.settings.default_retry_after_sec,
            max_entries=self.settings.max_cache,
        )

    @property
    def configured(self) -> bool:
        return self.client.configured

    def routes_url(self, query: str = "") -> str:
        url = self.settings.routes_url
        return f"{url}?{query}" if query else url

    def trip_url(self, trip_id: str) -> str:
        return f"{self.settings.trips_base.rstrip('/')}/{quote(trip_id, safe='')}"

    def get_routes(self, query: str = "") -> RelayResponse:
        return self.routes.handle(self.routes_url(query))

    def get_realtime(self) -> RelayResponse:
        return self.realtime.handle(self.settings.realtime_url)

    def get_trip(self, trip_id: str) -> RelayResponse:
        return self.trips.handle(self.trip_url(trip_id))

    def get_trips(self, ids: List[str]) -> RelayResponse:
        wait = self.gate.check(self.clock())
        if wait is not None:
            return self.trips.relay.emit(RateLimited(str(wait), from_upstream=False), "blocked")
        if not ids:
            return json_response(200, {"data": []})

        workers = min(self.settings.trips_concurrency, len(ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="trips") as pool:
            resolutions = list(pool.map(lambda trip_id: self.trips.resolve(self.trip_url(trip_id)), ids))

        merged: List[Any] = []
        for trip_id, resolution in zip(ids, resolutions):
            outcome = resolution.outcome
            if isinstance(outcome, RateLimited):
                return self.trips.relay.emit(outcome, resolution.cache_status)
            if isinstance(outcome, UpstreamError):
                log.info("Skipping trip %s: upstream %s", trip_id, outcome.status)
                continue
            if isinstance(outcome, TransportFailure):
                log.info("Skipping trip %s: %s", trip_id, outcome.reason)
                continue
            merge_trip_body(merged, outcome.body, trip_id)

        headers = {
            "Cache-Control": cache_control(
                self.settings.trips_aggregate_max_age_sec, self.settings.trips.stale_sec
            )
        }
        return json_response(200, {"data": merged}, headers)
