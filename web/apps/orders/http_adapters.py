"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements the catalog port against the catalog service and a
webhook sink for notifications, both using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
  by the gateway middleware.
- A circuit breaker per downstream service (catalog, notifications), with
  HALF_OPEN probing after a timeout.
- Retries with exponential backoff on transport errors and 5xx. Stock
  mutations are only retried when the request provably never reached the
  service (connect failures) or the service answered 503, so a decrement is
  never applied twice.

Exhausted retries, transport failures and an open circuit surface as
``ServiceUnavailable``.
"""

import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import BucketKey, CatalogPort, ProductNotFound, ProductStock, ServiceUnavailable, VariantLayout
from .notifications import event_payload

NOT_SENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    CLOSED opens after ``fail_threshold`` consecutive failures. OPEN turns
    HALF_OPEN once ``reset_timeout`` seconds have passed; a single probe is
    then let through, closing the circuit on success and reopening it on
    failure. Thread-safe via an internal lock.
    """

    CLOSED, OPEN, HALF_OPEN = "CLOSED", "OPEN", "HALF_OPEN"

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = self.CLOSED
        self._opened_at = 0.0
        self._probing = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == self.OPEN and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = self.HALF_OPEN
                self._probing = False
            return self._state

    def before_call(self) -> str:
        """Admit a call or raise ServiceUnavailable."""
        with self._lock:
            st = self.state
            if st == self.OPEN:
                raise ServiceUnavailable(f"{self.name}: circuit open")
            if st == self.HALF_OPEN:
                if self._probing:
                    raise ServiceUnavailable(f"{self.name}: circuit half-open, probe in flight")
                self._probing = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = self.CLOSED
            self._probing = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == self.HALF_OPEN or (
                self._failures >= self.fail_threshold and self._state != self.OPEN
            ):
                self._state = self.OPEN
                self._opened_at = time.monotonic()
            self._probing = False

    def on_finish(self):
        with self._lock:
            if self._state == self.HALF_OPEN:
                self._probing = False


def _breaker(name: str) -> CircuitBreaker:
    return CircuitBreaker(
        name,
        getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
        getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
    )


# Per-service instances
_catalog_cb = _breaker("catalog")
_notifications_cb = _breaker("notifications")


def breaker_states() -> dict:
    return {"catalog": _catalog_cb.state, "notifications": _notifications_cb.state}


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_attempts, backoff_base, max_sleep)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception], idempotent: bool) -> bool:
    if exc is not None:
        return idempotent or isinstance(exc, NOT_SENT_ERRORS)
    if resp is None:
        return False
    if idempotent:
        return 500 <= resp.status_code < 600
    return resp.status_code == 503


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogPort):
    """HTTP client for the catalog service with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = base_url or settings.CATALOG_BASE_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def get_product(self, product_id: str) -> Optional[ProductStock]:
        resp = self._call("GET", f"/products/{product_id}", idempotent=True, business=(200, 404))
        if resp.status_code == 404:
            return None
        return product_from_json(resp.json())

    def decrement(self, product_id: str, key: BucketKey, quantity: int) -> Optional[int]:
        """Map 200 to the remaining quantity; 409 (guard failed) and 404 to None."""
        payload = {"product_id": product_id, "size": key.size, "color": key.color, "quantity": quantity}
        resp = self._call("POST", "/stock/decrement", json=payload, business=(200, 404, 409))
        if resp.status_code != 200:
            return None
        return int(resp.json()["quantity"])

    def increment(self, product_id: str, key: BucketKey, quantity: int) -> int:
        payload = {"product_id": product_id, "size": key.size, "color": key.color, "quantity": quantity}
        resp = self._call("POST", "/stock/increment", json=payload, business=(200, 404))
        if resp.status_code == 404:
            raise ProductNotFound(product_id)
        return int(resp.json()["quantity"])

    def _call(self, method: str, path: str, json: Optional[dict] = None, idempotent: bool = False,
              business: tuple = (200,)) -> httpx.Response:
        """Send a request through the breaker with the retry policy.

        Statuses in ``business`` are business outcomes: they are returned to
        the caller and count as a healthy call for the breaker.

        Raises:
            ServiceUnavailable: Circuit open, transport failure or 5xx after
                retries, or any other unexpected status.
        """
        max_attempts, backoff, cap = _retry_policy()
        state = _catalog_cb.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
        tries = 0
        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
                        if resp.status_code in business:
                            _catalog_cb.on_success()
                            return resp
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)
                    if tries >= max_attempts or not _should_retry(resp, exc, idempotent):
                        _catalog_cb.on_failure()
                        if exc is not None:
                            raise ServiceUnavailable(f"catalog: {exc}") from exc
                        raise ServiceUnavailable(f"catalog: unexpected status {resp.status_code}")

                    time.sleep(min(backoff * (2 ** (tries - 1)), cap))
        finally:
            _catalog_cb.on_finish()


def product_from_json(data: dict) -> ProductStock:
    buckets = {
        BucketKey(size=b.get("size") or None, color=b.get("color") or None): int(b["quantity"])
        for b in data.get("buckets", [])
    }
    return ProductStock(
        id=str(data["id"]),
        name=data["name"],
        price_cents=int(data["price_cents"]),
        sale_price_cents=data.get("sale_price_cents"),
        image=data.get("image") or None,
        is_active=bool(data.get("is_active", True)),
        variant_layout=VariantLayout(data.get("variant_layout") or VariantLayout.NONE.value),
        buckets=buckets,
    )


# ---------------- Notifications Webhook ---------------- #

class HttpNotificationClient:
    """Notification sink that POSTs events to ``NOTIFICATIONS_WEBHOOK_URL``.

    No retries: redelivery policy belongs to the receiving gateway.
    """

    def __init__(self, url: str | None = None, timeout: float | None = None):
        self.url = url or settings.NOTIFICATIONS_WEBHOOK_URL
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def send(self, event) -> None:
        _notifications_cb.before_call()
        body = {"event": event.kind, "payload": event_payload(event)}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, json=body, headers=_request_headers())
            resp.raise_for_status()
        except httpx.HTTPError:
            _notifications_cb.on_failure()
            raise
        else:
            _notifications_cb.on_success()
        finally:
            _notifications_cb.on_finish()
