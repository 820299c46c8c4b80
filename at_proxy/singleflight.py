"""Keyed single-flight: one upstream fetch per key, shared by every caller."""

from concurrent.futures import Future
from dataclasses import dataclass, field
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from .outcomes import FetchOutcome

log = logging.getLogger(__name__)


@dataclass
class InflightRequest:
    key: str
    result: "Future[FetchOutcome]" = field(default_factory=Future)
    waiter_count: int = 0


class CoalescingFetcher:
    def __init__(self, lock: Optional[threading.Lock] = None) -> None:
        self._lock = lock or threading.Lock()
        self._inflight: Dict[str, InflightRequest] = {}

    def in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._inflight

    def fetch_or_join(
        self, key: str, fetch_fn: Callable[[], FetchOutcome]
    ) -> Tuple[FetchOutcome, bool]:
        """Run ``fetch_fn`` for ``key`` unless a fetch is already running.

        Returns the outcome and whether this caller joined someone else's
        fetch. An exception raised by ``fetch_fn`` is re-raised in the owner
        and in every waiter.
        """
        with self._lock:
            inflight = self._inflight.get(key)
            if inflight is not None:
                inflight.waiter_count += 1
                owner = False
            else:
                inflight = InflightRequest(key=key)
                self._inflight[key] = inflight
                owner = True

        if not owner:
            log.debug("Joining in-flight fetch for %s", key)
            return inflight.result.result(), True

        try:
            outcome = fetch_fn()
        except BaseException as exc:
            inflight.result.set_exception(exc)
            raise
        else:
            inflight.result.set_result(outcome)
        finally:
            with self._lock:
                if self._inflight.get(key) is inflight:
                    del self._inflight[key]
            if inflight.waiter_count:
                log.debug("Fetch for %s shared with %d waiter(s)", key, inflight.waiter_count)
        return outcome, False
