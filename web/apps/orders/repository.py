"""Repository layer for persisting orders.

This module maps the domain ``Order`` aggregate onto the ``OrderModel`` /
``OrderItemModel`` tables so the domain layer is not coupled to Django ORM
details. Status writes can be guarded on the previously read status, which
lets the service detect a concurrent transition instead of overwriting it.
"""

import random
import time
from dataclasses import asdict
from typing import List, Optional

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from .domain import (
    Address,
    BucketKey,
    Order,
    OrderLine,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ShippingPaymentMethod,
)
from .models import OrderItemModel, OrderModel

ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number() -> str:
    """Return ``ORD-<epoch millis>-<4 random digits>``."""
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 9999):04d}"


def _address_to_json(address: Optional[Address]) -> dict:
    return asdict(address) if address is not None else {}


def _address_from_json(data: Optional[dict]) -> Address:
    data = data or {}
    return Address(
        name=data.get("name") or "",
        phone=data.get("phone") or "",
        address=data.get("address") or "",
        city=data.get("city"),
        postal_code=data.get("postal_code"),
    )


def _buckets_to_json(keys) -> list:
    return [{"size": k.size, "color": k.color} for k in keys]


def _buckets_from_json(data: Optional[list]) -> tuple:
    return tuple(BucketKey(size=b.get("size"), color=b.get("color")) for b in data or [])


def to_domain(obj: OrderModel) -> Order:
    """Build a domain ``Order`` from a model instance (items included)."""
    items = [
        OrderLine(
            product_id=i.product_id,
            name=i.name,
            unit_price_cents=i.unit_price_cents,
            quantity=i.quantity,
            size=i.size,
            color=i.color,
            image=i.image,
            buckets=_buckets_from_json(i.stock_buckets),
        )
        for i in obj.items.all()
    ]
    coupon_code = obj.coupon.code if obj.coupon_id else None
    return Order(
        id=obj.id,
        user_id=obj.user_id,
        items=items,
        shipping_address=_address_from_json(obj.shipping_address),
        billing_address=_address_from_json(obj.billing_address),
        payment_method=PaymentMethod(obj.payment_method),
        order_number=obj.order_number,
        subtotal_cents=obj.subtotal_cents,
        shipping_cents=obj.shipping_cents,
        discount_cents=obj.discount_cents,
        total_cents=obj.total_cents,
        currency=obj.currency,
        coupon_id=str(obj.coupon_id) if obj.coupon_id else None,
        coupon_code=coupon_code,
        shipping_payment_method=(
            ShippingPaymentMethod(obj.shipping_payment_method) if obj.shipping_payment_method else None
        ),
        payment_status=PaymentStatus(obj.payment_status),
        status=OrderStatus(obj.status),
        tracking_number=obj.tracking_number,
        notes=obj.notes,
        cancelled_at=obj.cancelled_at,
        cancelled_reason=obj.cancelled_reason,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM."""

    def add(self, order: Order) -> Order:
        """Insert the order and its lines.

        A fresh order number is generated (retrying on the rare unique
        collision) unless the order already carries one.

        Returns:
            The same Order with ``id``, ``order_number`` and timestamps set.
        """
        for attempt in range(ORDER_NUMBER_ATTEMPTS):
            number = order.order_number if (order.order_number and attempt == 0) else generate_order_number()
            try:
                with transaction.atomic():
                    obj = self._insert(order, number)
                break
            except IntegrityError:
                if attempt == ORDER_NUMBER_ATTEMPTS - 1:
                    raise
        order.id = obj.id
        order.order_number = obj.order_number
        order.created_at = obj.created_at
        order.updated_at = obj.updated_at
        return order

    def get(self, order_id) -> Optional[Order]:
        obj = self._fetch(id=order_id)
        return to_domain(obj) if obj else None

    def get_by_number(self, order_number: str) -> Optional[Order]:
        obj = self._fetch(order_number=order_number)
        return to_domain(obj) if obj else None

    def list_for_user(self, user_id: str, status: Optional[str] = None):
        qs = OrderModel.objects.filter(user_id=user_id).select_related("coupon").prefetch_related("items")
        if status and status != "all":
            qs = qs.filter(status=status.lower())
        return qs.order_by("-created_at")

    def search(self, status: Optional[str] = None, search: Optional[str] = None):
        """Admin listing filtered by status and a free-text term."""
        qs = OrderModel.objects.select_related("coupon").prefetch_related("items")
        if status and status != "all":
            qs = qs.filter(status=status.lower())
        if search:
            qs = qs.filter(
                Q(order_number__icontains=search)
                | Q(user_id__icontains=search)
                | Q(tracking_number__icontains=search)
            )
        return qs.order_by("-created_at")

    def update(self, order: Order, expected_status: Optional[OrderStatus] = None) -> bool:
        """Write the mutable fields back, optionally guarded on the status.

        Returns:
            True if a row was updated.
        """
        qs = OrderModel.objects.filter(id=order.id)
        if expected_status is not None:
            qs = qs.filter(status=expected_status.value)
        updated = qs.update(
            status=order.status.value,
            payment_status=order.payment_status.value,
            tracking_number=order.tracking_number,
            cancelled_at=order.cancelled_at,
            cancelled_reason=order.cancelled_reason,
            updated_at=timezone.now(),
        )
        return updated == 1

    def _insert(self, order: Order, number: str) -> OrderModel:
        obj = OrderModel.objects.create(
            order_number=number,
            user_id=order.user_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method.value,
            shipping_payment_method=(
                order.shipping_payment_method.value if order.shipping_payment_method else None
            ),
            shipping_address=_address_to_json(order.shipping_address),
            billing_address=_address_to_json(order.billing_address),
            subtotal_cents=order.subtotal_cents,
            shipping_cents=order.shipping_cents,
            discount_cents=order.discount_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            coupon_id=order.coupon_id,
            tracking_number=order.tracking_number,
            notes=order.notes,
        )
        items: List[OrderItemModel] = [
            OrderItemModel(
                order=obj,
                product_id=line.product_id,
                name=line.name,
                unit_price_cents=line.unit_price_cents,
                quantity=line.quantity,
                size=line.size,
                color=line.color,
                image=line.image,
                position=pos,
                stock_buckets=_buckets_to_json(line.buckets),
            )
            for pos, line in enumerate(order.items)
        ]
        OrderItemModel.objects.bulk_create(items)
        return obj

    def _fetch(self, **lookup) -> Optional[OrderModel]:
        try:
            return (
                OrderModel.objects.select_related("coupon")
                .prefetch_related("items")
                .get(**lookup)
            )
        except (OrderModel.DoesNotExist, ValidationError, ValueError):
            return None