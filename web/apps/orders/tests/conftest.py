"""In-memory port implementations for domain-level tests."""

import copy
import threading
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from apps.orders.domain import (
    BASE_BUCKET,
    Address,
    CouponTerms,
    DiscountType,
    LineItemRequest,
    ProductNotFound,
    ProductStock,
    VariantLayout,
)
from apps.orders.service import OrderService

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryCatalog:
    """Catalog port over a dict, with guarded decrements under a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._products = {}
        self._stock = {}
        self.fail_decrement_for = set()
        self.fail_increment_for = set()

    def add(self, product_id, stock=10, price_cents=10000, sale_price_cents=None, name=None,
            layout=VariantLayout.NONE, buckets=None, is_active=True):
        self._products[product_id] = ProductStock(
            id=product_id,
            name=name or product_id,
            price_cents=price_cents,
            sale_price_cents=sale_price_cents,
            is_active=is_active,
            variant_layout=layout,
        )
        self._stock[product_id] = {BASE_BUCKET: stock}
        for key, qty in (buckets or {}).items():
            self._stock[product_id][key] = qty

    def remove(self, product_id):
        self._products.pop(product_id, None)
        self._stock.pop(product_id, None)

    def reorder(self, product_id, keys):
        """Change the order buckets are listed in, as an admin edit would."""
        with self._lock:
            stock = self._stock[product_id]
            self._stock[product_id] = {k: stock[k] for k in keys}

    def qty(self, product_id, key=BASE_BUCKET):
        return self._stock[product_id][key]

    def get_product(self, product_id):
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return None
            return ProductStock(**{**product.__dict__, "buckets": dict(self._stock[product_id])})

    def decrement(self, product_id, key, quantity):
        if product_id in self.fail_decrement_for:
            raise RuntimeError("catalog down")
        with self._lock:
            buckets = self._stock.get(product_id)
            if buckets is None or key not in buckets or buckets[key] < quantity:
                return None
            buckets[key] -= quantity
            return buckets[key]

    def increment(self, product_id, key, quantity):
        if product_id in self.fail_increment_for:
            raise RuntimeError("catalog down")
        with self._lock:
            buckets = self._stock.get(product_id)
            if buckets is None or key not in buckets:
                raise ProductNotFound(product_id)
            buckets[key] += quantity
            return buckets[key]


class InMemoryCoupons:
    """Coupon port over a dict; usage claims are guarded under a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self.coupons = {}

    def add(self, code, discount_type=DiscountType.PERCENTAGE, value="10", **kwargs):
        kwargs.setdefault("valid_from", NOW - timedelta(days=1))
        kwargs.setdefault("valid_until", NOW + timedelta(days=1))
        coupon = CouponTerms(id=f"c-{code}", code=code, discount_type=discount_type,
                             discount_value=Decimal(value), **kwargs)
        self.coupons[code] = coupon
        return coupon

    def get_by_code(self, code):
        return self.coupons.get(code)

    def increment_usage(self, coupon_id):
        with self._lock:
            for code, coupon in self.coupons.items():
                if coupon.id != coupon_id:
                    continue
                if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
                    return False
                self.coupons[code] = CouponTerms(**{**coupon.__dict__, "used_count": coupon.used_count + 1})
                return True
            return False

    def release_usage(self, coupon_id):
        with self._lock:
            for code, coupon in self.coupons.items():
                if coupon.id == coupon_id and coupon.used_count > 0:
                    self.coupons[code] = CouponTerms(**{**coupon.__dict__, "used_count": coupon.used_count - 1})


class InMemoryOrders:
    def __init__(self):
        self._lock = threading.Lock()
        self.rows = {}
        self.fail_add = False
        self._seq = 0

    def add(self, order):
        if self.fail_add:
            raise RuntimeError("database down")
        with self._lock:
            self._seq += 1
            order.id = uuid.uuid4()
            order.order_number = f"ORD-TEST-{self._seq:04d}"
            order.created_at = order.updated_at = NOW
            self.rows[order.id] = copy.deepcopy(order)
        return order

    def get(self, order_id):
        with self._lock:
            order = self.rows.get(order_id)
            return copy.deepcopy(order) if order else None

    def update(self, order, expected_status=None):
        with self._lock:
            stored = self.rows.get(order.id)
            if stored is None:
                return False
            if expected_status is not None and stored.status != expected_status:
                return False
            self.rows[order.id] = copy.deepcopy(order)
            return True


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def of_kind(self, kind):
        return [e for e in self.events if e.kind == kind]


@pytest.fixture
def catalog():
    return InMemoryCatalog()


@pytest.fixture
def coupons():
    return InMemoryCoupons()


@pytest.fixture
def orders():
    return InMemoryOrders()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(catalog, coupons, orders, notifier):
    return OrderService(catalog, coupons, orders, notifier, clock=lambda: NOW)


@pytest.fixture
def address():
    return Address(name="Mona", phone="0100", address="1 Nile St", city="Cairo")


@pytest.fixture
def item():
    def _item(product_id, quantity, size=None, color=None):
        return LineItemRequest(product_id=product_id, quantity=quantity, size=size, color=color)
    return _item


@pytest.fixture
def now():
    return NOW
