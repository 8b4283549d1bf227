"""Service provider helpers for wiring OrderService with ports.

``get_order_service`` returns an ``OrderService`` built for the current
request. The catalog port is the HTTP client for the catalog service when
``settings.USE_HTTP_ADAPTERS`` is truthy and the in-process ORM adapter
otherwise. Notification toggles are read once per call, so a request works
with a single consistent snapshot.
"""

import threading

from django.conf import settings

from .adapters import OrmCatalog, OrmCouponLedger
from .http_adapters import HttpCatalogClient, HttpNotificationClient
from .notifications import LoggingSink, NotificationDispatcher, NotificationGateway, load_preferences
from .repository import OrderRepository
from .service import OrderService

_dispatcher = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> NotificationDispatcher:
    """Return the process-wide notification dispatcher, creating it lazily.

    Events go to the webhook when ``NOTIFICATIONS_WEBHOOK_URL`` is set and
    to the log otherwise.
    """
    global _dispatcher
    with _dispatcher_lock:
        if _dispatcher is None:
            sink = HttpNotificationClient() if settings.NOTIFICATIONS_WEBHOOK_URL else LoggingSink()
            _dispatcher = NotificationDispatcher(
                sink, background=getattr(settings, "NOTIFICATIONS_BACKGROUND", True)
            )
        return _dispatcher


def reset_dispatcher(dispatcher: NotificationDispatcher = None) -> None:
    """Replace (or drop) the process-wide dispatcher."""
    global _dispatcher
    with _dispatcher_lock:
        _dispatcher = dispatcher


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Returns:
        OrderService: A service wired with the catalog, coupon, order store
        and notification adapters for the current settings.
    """
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        catalog = HttpCatalogClient()
    else:
        catalog = OrmCatalog()

    return OrderService(
        catalog=catalog,
        coupons=OrmCouponLedger(),
        orders=OrderRepository(),
        notifier=NotificationGateway(get_dispatcher(), load_preferences()),
        low_stock_threshold=settings.LOW_STOCK_THRESHOLD,
        currency=settings.STORE_CURRENCY,
    )
