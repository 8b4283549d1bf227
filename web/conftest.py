from datetime import timedelta

import pytest
from django.core.cache import cache
from django.utils import timezone

from apps.catalog.models import ProductModel, StockBucketModel
from apps.orders import providers
from apps.orders.http_adapters import _catalog_cb, _notifications_cb
from apps.orders.models import CouponModel
from apps.orders.notifications import NotificationDispatcher

ADMIN_KEY = "test-admin-key"


class RecordingSink:
    def __init__(self):
        self.events = []

    def send(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture(autouse=True)
def order_settings(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.NOTIFICATIONS_WEBHOOK_URL = ""
    settings.NOTIFICATIONS_BACKGROUND = False
    settings.ADMIN_API_KEY = ADMIN_KEY
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    _catalog_cb.on_success()
    _notifications_cb.on_success()
    cache.clear()  # throttle counters
    yield settings
    providers.reset_dispatcher()


@pytest.fixture
def sink():
    """Deliver notifications inline into a list."""
    recording = RecordingSink()
    providers.reset_dispatcher(NotificationDispatcher(recording, background=False))
    return recording


@pytest.fixture
def admin_headers():
    return {"HTTP_X_ADMIN_KEY": ADMIN_KEY}


@pytest.fixture
def user_headers():
    return {"HTTP_X_USER_ID": "user-1"}


@pytest.fixture
def make_product(db):
    def _make(name="Tee", price_cents=10000, sale_price_cents=None, stock=10, layout="none",
              buckets=(), is_active=True):
        product = ProductModel.objects.create(
            name=name,
            price_cents=price_cents,
            sale_price_cents=sale_price_cents,
            variant_layout=layout,
            is_active=is_active,
        )
        StockBucketModel.objects.create(product=product, quantity=stock, sort_order=0)
        for pos, (size, color, qty) in enumerate(buckets, start=1):
            StockBucketModel.objects.create(product=product, size=size or "", color=color or "",
                                            quantity=qty, sort_order=pos)
        return product
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SAVE10", discount_type="percentage", value=10, **kwargs):
        now = timezone.now()
        kwargs.setdefault("valid_from", now - timedelta(days=1))
        kwargs.setdefault("valid_until", now + timedelta(days=1))
        return CouponModel.objects.create(code=code, discount_type=discount_type, discount_value=value, **kwargs)
    return _make


@pytest.fixture
def stock_of(db):
    def _stock(product, size="", color=""):
        return StockBucketModel.objects.get(product=product, size=size, color=color).quantity
    return _stock
