"""HTTP client for a remote catalog service.

``HttpCatalogClient`` implements ``CatalogPort`` with ``httpx`` and adds:

- request correlation: the current ``X-Request-ID`` is forwarded;
- a retry loop with exponential backoff on transport errors and 5xx;
- a circuit breaker so a dead catalog fails fast instead of tying up
  request threads.

A 404 from the catalog for a winery's wines means "unknown winery" and is
not a failure of the dependency.
"""

import logging
import threading
import time
from typing import List, Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .catalog import CatalogPort, Wine, Winery

logger = logging.getLogger(__name__)


class CircuitOpen(RuntimeError):
    """The breaker is refusing calls to a failing dependency."""


class CircuitBreaker:
    """CLOSED -> OPEN after ``fail_threshold`` consecutive failures.

    While OPEN every call is refused until ``reset_timeout`` seconds have
    passed; the next call is then let through as a probe (HALF_OPEN) and
    its outcome closes or re-opens the breaker. Only one probe runs at a
    time.
    """

    def __init__(self, name: str, fail_threshold: int = 5, reset_timeout: float = 30.0,
                 clock=time.monotonic):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._probing = False

    @property
    def state(self) -> str:
        with self._lock:
            return self._state()

    def _state(self) -> str:
        if self._opened_at is None:
            return "CLOSED"
        if self._clock() - self._opened_at >= self.reset_timeout:
            return "HALF_OPEN"
        return "OPEN"

    def acquire(self) -> str:
        """Check the breaker before a call; raises CircuitOpen when refused."""
        with self._lock:
            st = self._state()
            if st == "OPEN" or (st == "HALF_OPEN" and self._probing):
                raise CircuitOpen(f"{self.name} circuit {st.lower()}")
            if st == "HALF_OPEN":
                self._probing = True
            return st

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._opened_at = None
            self._probing = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            if self._probing or self._failures >= self.fail_threshold:
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})
                self._opened_at = self._clock()
            self._probing = False


catalog_breaker = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def _headers() -> dict:
    rid = REQUEST_ID_CTX.get()
    return {"X-Request-ID": rid} if rid and rid != "-" else {}


class HttpCatalogClient(CatalogPort):
    """Catalog lookups against ``CATALOG_BASE_URL``."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 breaker: CircuitBreaker = catalog_breaker):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or getattr(settings, "HTTP_TIMEOUT_SECS", 3.0)
        self.breaker = breaker

    def _get(self, path: str) -> Optional[httpx.Response]:
        """GET with retries; returns None on 404.

        Raises:
            CircuitOpen: Breaker refused the call.
            httpx.HTTPError: Transport error or 5xx after the last retry,
                or any other non-2xx answer.
        """
        max_retries = getattr(settings, "HTTP_RETRY_MAX", 3)
        backoff = getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15)
        cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)

        self.breaker.acquire()
        tries = 0
        with httpx.Client(timeout=self.timeout) as client:
            while True:
                try:
                    resp = client.get(f"{self.base_url}{path}", headers=_headers())
                    if resp.status_code == 404:
                        self.breaker.record_success()
                        return None
                    if resp.status_code < 500:
                        resp.raise_for_status()
                        self.breaker.record_success()
                        return resp
                    error: Exception = httpx.HTTPStatusError(
                        f"catalog answered {resp.status_code}", request=resp.request, response=resp
                    )
                except httpx.TransportError as e:
                    error = e
                except httpx.HTTPStatusError:
                    # 4xx other than 404: our request is wrong, not the service
                    self.breaker.record_success()
                    raise

                tries += 1
                if tries > max_retries:
                    self.breaker.record_failure()
                    raise error
                logger.info("catalog call failed, retrying", extra={"path": path, "attempt": tries})
                time.sleep(min(backoff * (2 ** (tries - 1)), cap))

    def list_wineries(self) -> List[Winery]:
        resp = self._get("/wineries")
        return [Winery(id=int(w["id"]), name=w["name"], slug=w.get("slug", "")) for w in (resp.json() if resp else [])]

    def list_wines(self, winery_id: int) -> Optional[List[Wine]]:
        resp = self._get(f"/wineries/{winery_id}/wines")
        if resp is None:
            return None
        return [
            Wine(
                id=int(w["id"]),
                winery_id=int(w.get("winery_id", winery_id)),
                name=w["name"],
                category=w.get("category") or "",
                description=w.get("description") or "",
            )
            for w in resp.json()
        ]
