"""Domain models, errors and ports for the order core.

This module contains the enums and dataclasses used as DTOs across the
order lifecycle, the error hierarchy raised by the domain, the events
handed to the notification gateway, and the protocol definitions (ports)
for the collaborators the core depends on: the catalog store, the coupon
ledger, the order store and the notifier.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Protocol, Tuple


# ---- Enums ----
class OrderStatus(str, Enum):
    """Stored order statuses.

    ``DELIVERED`` and ``CANCELLED`` are terminal.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash_on_delivery"
    INSTAPAY = "instapay"
    VODAFONE = "vodafone"


class ShippingPaymentMethod(str, Enum):
    INSTAPAY = "instapay"
    VODAFONE = "vodafone"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class VariantLayout(str, Enum):
    """How the non-base stock buckets of a product are interpreted.

    ``COMBINATION`` buckets are concrete size x color pairs, ``AXIS``
    buckets track one axis each (size-only or color-only), ``NONE`` means
    the product only has its base stock.
    """

    NONE = "none"
    COMBINATION = "combination"
    AXIS = "axis"


# ---- Catalog DTOs ----
@dataclass(frozen=True)
class BucketKey:
    """Key of a stock bucket. ``BucketKey()`` is the base stock."""

    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def is_base(self) -> bool:
        return self.size is None and self.color is None


BASE_BUCKET = BucketKey()


@dataclass(frozen=True)
class ProductStock:
    """Snapshot of a product as seen by the order core.

    Attributes:
        id: Opaque product identifier.
        name: Display name, snapshotted into order lines.
        price_cents: Regular unit price in minor units.
        sale_price_cents: Sale price, used instead of ``price_cents`` when set.
        image: Primary image reference, snapshotted into order lines.
        is_active: Inactive products cannot be ordered.
        variant_layout: Interpretation of the non-base buckets.
        buckets: Ordered mapping of bucket key to available quantity. The
            base stock lives under ``BASE_BUCKET``.
    """

    id: str
    name: str
    price_cents: int
    sale_price_cents: Optional[int] = None
    image: Optional[str] = None
    is_active: bool = True
    variant_layout: VariantLayout = VariantLayout.NONE
    buckets: dict = field(default_factory=dict)

    @property
    def stock_quantity(self) -> int:
        return self.buckets.get(BASE_BUCKET, 0)

    @property
    def unit_price_cents(self) -> int:
        if self.sale_price_cents is not None:
            return self.sale_price_cents
        return self.price_cents


@dataclass(frozen=True)
class CouponTerms:
    """Coupon record as read from the coupon ledger.

    ``discount_value`` is a percent for percentage coupons and an amount
    in minor units for fixed coupons.
    """

    id: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    valid_from: datetime
    valid_until: datetime
    min_purchase_cents: int = 0
    max_discount_cents: Optional[int] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True

    def is_valid(self, now: datetime) -> bool:
        """Active, inside its validity window, and under its usage limit."""
        return (
            self.is_active
            and self.valid_from <= now <= self.valid_until
            and (self.usage_limit is None or self.used_count < self.usage_limit)
        )


# ---- Order DTOs ----
@dataclass(frozen=True)
class LineItemRequest:
    """A requested line item as submitted at checkout."""

    product_id: str
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class OrderLine:
    """A persisted order line.

    Name, unit price and image are snapshotted at creation time and never
    re-read from the catalog. ``buckets`` records the stock buckets the
    line was drawn from so a cancellation returns units to exactly those
    buckets; it is empty for lines that were never reserved.
    """

    product_id: str
    name: str
    unit_price_cents: int
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    image: Optional[str] = None
    buckets: Tuple[BucketKey, ...] = ()

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class Address:
    name: str = ""
    phone: str = ""
    address: str = ""
    city: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(frozen=True)
class CouponRejection:
    """Why a supplied coupon code was not applied to an order."""

    code: str
    reason: str
    shortfall_cents: Optional[int] = None


@dataclass
class Order:
    """Order aggregate.

    Attributes:
        id: Storage identifier, or None if not yet saved.
        order_number: Human-facing unique number (``ORD-<ms>-<4 digits>``).
        items: Snapshotted order lines.
        subtotal_cents, shipping_cents, discount_cents, total_cents: Money in
            minor units; ``total == subtotal + shipping - discount`` at
            creation time and never re-derived.
        coupon_rejection: Set on the returned order when a supplied coupon
            was not applied. Not persisted.
    """

    id: object
    user_id: str
    items: List[OrderLine]
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    order_number: str = ""
    subtotal_cents: int = 0
    shipping_cents: int = 0
    discount_cents: int = 0
    total_cents: int = 0
    currency: str = "EGP"
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping_payment_method: Optional[ShippingPaymentMethod] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    coupon_rejection: Optional[CouponRejection] = field(default=None, compare=False)


# ---- Events ----
@dataclass(frozen=True)
class OrderCreatedEvent:
    order: Order
    kind: str = "order_created"
    category: str = "order"


@dataclass(frozen=True)
class LowStockEvent:
    product_id: str
    product_name: str
    remaining: int
    size: Optional[str] = None
    color: Optional[str] = None
    kind: str = "low_stock"
    category: str = "stock"


@dataclass(frozen=True)
class OrderStatusChangedEvent:
    order_number: str
    old_status: OrderStatus
    new_status: OrderStatus
    tracking_number: Optional[str] = None
    kind: str = "order_status_changed"
    category: str = "order"


# ---- Errors ----
class OrderError(ValueError):
    """Base class for business-rule failures.

    ``str(err)`` is the stable error code; ``message`` is human readable and
    ``context`` carries structured details for the caller.
    """

    code = "ORDER_ERROR"
    default_message = "Order could not be processed"

    def __init__(self, message: Optional[str] = None, **context):
        super().__init__(self.code)
        self.message = message or self.default_message
        self.context = context

    def as_dict(self) -> dict:
        return {"detail": self.code, "message": self.message, **self.context}


class EmptyCart(OrderError):
    code = "EMPTY_CART"
    default_message = "Items are required"


class InvalidLineItem(OrderError):
    code = "INVALID_ITEM"
    default_message = "Each item needs a product id and a quantity of at least 1"


class InvalidShippingAddress(OrderError):
    code = "INVALID_SHIPPING_ADDRESS"
    default_message = "Shipping address is required"


class ProductNotFound(OrderError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found", product_id=product_id)


class ProductUnavailable(OrderError):
    code = "PRODUCT_UNAVAILABLE"

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} is not available", product_id=product_id)


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, available: int, requested: int,
                 size: Optional[str] = None, color: Optional[str] = None,
                 product_name: Optional[str] = None):
        variant = ", ".join(v for v in (size, color) if v)
        label = product_name or product_id
        if variant:
            label = f"{label} ({variant})"
        super().__init__(
            f"Only {available} of {label} available in stock",
            product_id=product_id,
            size=size,
            color=color,
            available=available,
            requested=requested,
        )


class NegativeTotal(OrderError):
    code = "NEGATIVE_TOTAL"
    default_message = "Order total cannot be negative"


class OrderNotFound(OrderError):
    code = "ORDER_NOT_FOUND"
    default_message = "Order not found"


class InvalidStatus(OrderError):
    code = "INVALID_STATUS"

    def __init__(self, value, valid_values: List[str]):
        super().__init__(
            f"Invalid order status: {value}. Valid values are: {', '.join(valid_values)}",
            value=value,
            valid_values=valid_values,
        )


class InvalidPaymentStatus(OrderError):
    code = "INVALID_PAYMENT_STATUS"

    def __init__(self, value, valid_values: List[str]):
        super().__init__(
            f"Invalid payment status: {value}. Valid values are: {', '.join(valid_values)}",
            value=value,
            valid_values=valid_values,
        )


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"

    def __init__(self, current: OrderStatus, target: OrderStatus):
        super().__init__(
            f"Order is {current.value} and cannot move to {target.value}",
            current=current.value,
            target=target.value,
        )


class ConcurrentUpdate(OrderError):
    code = "CONCURRENT_UPDATE"
    default_message = "Order was modified concurrently, retry the request"


class ServiceUnavailable(Exception):
    """Storage or upstream failure; the caller may retry later."""


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog store operations used by the core."""

    def get_product(self, product_id: str) -> Optional[ProductStock]:
        """Return the product snapshot or None when it does not exist."""
        raise NotImplementedError()

    def decrement(self, product_id: str, key: BucketKey, quantity: int) -> Optional[int]:
        """Guarded decrement of one stock bucket.

        The write must only apply when the bucket currently holds at least
        ``quantity`` units, as a single conditional update.

        Returns:
            The remaining quantity when applied, None when the guard failed
            or the bucket does not exist.
        """
        raise NotImplementedError()

    def increment(self, product_id: str, key: BucketKey, quantity: int) -> int:
        """Add ``quantity`` units back to a bucket and return the new level.

        Raises:
            ProductNotFound: If the product or bucket no longer exists.
        """
        raise NotImplementedError()


class CouponPort(Protocol):
    def get_by_code(self, code: str) -> Optional[CouponTerms]:
        """Look a coupon up by its (already upper-cased) code."""
        raise NotImplementedError()

    def increment_usage(self, coupon_id: str) -> bool:
        """Claim one use of a coupon.

        The write must only apply while ``used_count`` is below
        ``usage_limit`` (or there is no limit), as a single conditional
        update.

        Returns:
            True when the use was claimed, False when the limit was
            already reached or the coupon no longer exists.
        """
        raise NotImplementedError()

    def release_usage(self, coupon_id: str) -> None:
        """Give back a use claimed by an order that was never persisted."""
        raise NotImplementedError()


class OrderStorePort(Protocol):
    def add(self, order: Order) -> Order:
        """Persist a new order, assigning ``id`` and ``order_number``."""
        raise NotImplementedError()

    def get(self, order_id) -> Optional[Order]:
        raise NotImplementedError()

    def update(self, order: Order, expected_status: Optional[OrderStatus] = None) -> bool:
        """Persist the mutable fields of ``order``.

        When ``expected_status`` is given the write only applies if the
        stored status still equals it.

        Returns:
            True if the row was written.
        """
        raise NotImplementedError()


class NotifierPort(Protocol):
    def publish(self, event) -> None:
        """Hand an event over for delivery. Must never raise."""
        raise NotImplementedError()
