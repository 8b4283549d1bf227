"""Fire-and-forget notification delivery.

``NotificationGateway`` implements ``NotifierPort`` for the order service:
it checks the toggle snapshot taken for the current request and defers the
hand-off until the surrounding database transaction commits.
``NotificationDispatcher`` owns a bounded queue drained by a daemon thread
and delivers each event to a sink; delivery failures are logged and never
reach the caller.
"""

import logging
import queue
import threading
from dataclasses import asdict, dataclass
from functools import partial

from django.db import transaction

from .domain import LowStockEvent, NotifierPort, OrderCreatedEvent, OrderStatusChangedEvent
from .models import NotificationSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationPreferences:
    """Snapshot of the admin notification toggles."""

    email_notifications: bool = True
    order_notifications: bool = True
    low_stock_alerts: bool = True

    def allows(self, event) -> bool:
        if not self.email_notifications:
            return False
        if event.category == "stock":
            return self.low_stock_alerts
        return self.order_notifications


def load_preferences() -> NotificationPreferences:
    """Read the toggles from the database, falling back to defaults."""
    row = NotificationSettings.objects.order_by("-updated_at").first()
    if row is None:
        return NotificationPreferences()
    return NotificationPreferences(
        email_notifications=row.email_notifications,
        order_notifications=row.order_notifications,
        low_stock_alerts=row.low_stock_alerts,
    )


def event_payload(event) -> dict:
    """Flatten an event into a JSON-serializable dict."""
    if isinstance(event, OrderCreatedEvent):
        order = event.order
        return {
            "order_number": order.order_number,
            "user_id": order.user_id,
            "total_cents": order.total_cents,
            "currency": order.currency,
            "payment_method": order.payment_method.value,
            "customer": asdict(order.shipping_address),
            "items": [
                {"name": i.name, "quantity": i.quantity, "price_cents": i.unit_price_cents,
                 "size": i.size, "color": i.color}
                for i in order.items
            ],
        }
    if isinstance(event, LowStockEvent):
        return {
            "product_id": event.product_id,
            "product_name": event.product_name,
            "remaining": event.remaining,
            "size": event.size,
            "color": event.color,
        }
    if isinstance(event, OrderStatusChangedEvent):
        return {
            "order_number": event.order_number,
            "old_status": event.old_status.value,
            "new_status": event.new_status.value,
            "tracking_number": event.tracking_number,
        }
    raise TypeError(f"unsupported event {type(event).__name__}")


class LoggingSink:
    """Default sink: writes each event as a structured log record."""

    def send(self, event) -> None:
        logger.info("notification", extra={"event": event.kind, "payload": event_payload(event)})


class NotificationDispatcher:
    """Queue events and deliver them to ``sink`` off the request path.

    Args:
        sink: Object with a ``send(event)`` method.
        background: When False events are delivered inline (still without
            propagating errors), which keeps tests deterministic.
        maxsize: Queue bound; events beyond it are dropped with a warning.
    """

    def __init__(self, sink, background: bool = True, maxsize: int = 1000):
        self.sink = sink
        self.background = background
        self._queue: "queue.Queue" = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._worker = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, event) -> None:
        if not self.background:
            self._deliver(event)
            return
        self._ensure_worker()
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("notification queue full, dropping event", extra={"event": event.kind})

    def drain(self) -> None:
        """Block until every queued event has been handled."""
        self._queue.join()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, name="notifications", daemon=True)
                self._worker.start()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                self._deliver(event)
            finally:
                self._queue.task_done()

    def _deliver(self, event) -> None:
        try:
            self.sink.send(event)
        except Exception:
            logger.exception("notification delivery failed", extra={"event": getattr(event, "kind", None)})


class NotificationGateway(NotifierPort):
    """NotifierPort used by the order service inside a request."""

    def __init__(self, dispatcher: NotificationDispatcher, preferences: NotificationPreferences):
        self.dispatcher = dispatcher
        self.preferences = preferences

    def publish(self, event) -> None:
        try:
            if not self.preferences.allows(event):
                logger.info("notification disabled, skipping", extra={"event": event.kind})
                return
            transaction.on_commit(partial(self.dispatcher.submit, event))
        except Exception:
            logger.exception("notification could not be scheduled", extra={"event": getattr(event, "kind", None)})
