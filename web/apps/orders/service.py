"""Order service: checkout, status changes and read-only pre-flight checks.

The service orchestrates the pricing calculator, the inventory reservation
engine and the lifecycle rules over the injected ports. It does no HTTP and
no ORM work of its own.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from .domain import (
    Address,
    CatalogPort,
    ConcurrentUpdate,
    CouponPort,
    CouponRejection,
    EmptyCart,
    InvalidLineItem,
    InvalidShippingAddress,
    LineItemRequest,
    NotifierPort,
    Order,
    OrderCreatedEvent,
    OrderLine,
    OrderNotFound,
    OrderStatus,
    OrderStatusChangedEvent,
    OrderStorePort,
    PaymentMethod,
    ProductNotFound,
    ProductUnavailable,
    ShippingPaymentMethod,
)
from .inventory import LOW_STOCK_THRESHOLD, InventoryReservationEngine
from .lifecycle import normalize_payment_status, normalize_status, plan_transition
from .pricing import CouponQuote, price_order, quote_coupon

logger = logging.getLogger(__name__)

STATUS_WRITE_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ItemStockResult:
    product_id: Optional[str]
    valid: bool
    requested: Optional[int] = None
    available: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class StockReport:
    valid: bool
    results: List[ItemStockResult] = field(default_factory=list)


class OrderService:
    """Domain service for the inventory-aware order lifecycle."""

    def __init__(self, catalog: CatalogPort, coupons: CouponPort, orders: OrderStorePort,
                 notifier: NotifierPort, low_stock_threshold: int = LOW_STOCK_THRESHOLD,
                 currency: str = "EGP", clock: Callable[[], datetime] = _utcnow):
        self.catalog = catalog
        self.coupons = coupons
        self.orders = orders
        self.notifier = notifier
        self.inventory = InventoryReservationEngine(catalog, low_stock_threshold)
        self.currency = currency
        self.clock = clock

    # ---- CreateOrder ----
    def create_order(self, user_id: str, items: Sequence[LineItemRequest], shipping_address: Optional[Address],
                     payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY, shipping_cents: int = 0,
                     coupon_code: Optional[str] = None,
                     shipping_payment_method: Optional[ShippingPaymentMethod] = None,
                     notes: Optional[str] = None, billing_address: Optional[Address] = None) -> Order:
        """Validate, price, reserve stock for and persist a new order.

        Args:
            user_id: Owner of the order.
            items: Requested line items, processed in the given order.
            shipping_address: Delivery address; ``address`` must be non-empty.
            payment_method: How the order is paid.
            shipping_cents: Shipping fee in minor units.
            coupon_code: Optional coupon; an unusable code yields no discount.
            shipping_payment_method: Optional channel for the shipping fee.
            notes: Free text from the customer.
            billing_address: Defaults to the shipping address.

        Returns:
            The persisted Order in ``pending`` status. ``coupon_rejection``
            is set when a supplied coupon was not applied.

        Raises:
            EmptyCart: No items.
            InvalidLineItem: An item without product id or with quantity < 1.
            InvalidShippingAddress: Missing address.
            ProductNotFound: A referenced product does not exist.
            ProductUnavailable: A referenced product is inactive.
            InsufficientStock: A line cannot be served; nothing was changed.
            NegativeTotal: Pricing produced a negative total.
        """
        if not items:
            raise EmptyCart()
        for item in items:
            if not item.product_id or item.quantity is None or item.quantity < 1:
                raise InvalidLineItem(product_id=item.product_id or None)
        if shipping_address is None or not (shipping_address.address or "").strip():
            raise InvalidShippingAddress()

        products = {}
        for item in items:
            if item.product_id in products:
                continue
            product = self.catalog.get_product(item.product_id)
            if product is None:
                raise ProductNotFound(item.product_id)
            if not product.is_active:
                raise ProductUnavailable(item.product_id)
            products[item.product_id] = product

        lines = []
        for item in items:
            product = products[item.product_id]
            self.inventory.ensure_available(product, item.quantity, item.size, item.color)
            lines.append(OrderLine(
                product_id=product.id,
                name=product.name,
                unit_price_cents=product.unit_price_cents,
                quantity=item.quantity,
                size=item.size,
                color=item.color,
                image=product.image,
            ))

        code = coupon_code.strip().upper() if coupon_code and coupon_code.strip() else None
        coupon = self.coupons.get_by_code(code) if code else None
        now = self.clock()
        prices = price_order(lines, shipping_cents, coupon=coupon, coupon_code=code, now=now)

        allocations = self.inventory.reserve([(products[line.product_id], line) for line in lines])
        lines = [replace(line, buckets=a.buckets) for line, a in zip(lines, allocations)]
        claimed = None
        try:
            if prices.coupon is not None:
                if self.coupons.increment_usage(prices.coupon.id):
                    claimed = prices.coupon
                else:
                    # usage limit reached since the coupon was read
                    prices = replace(
                        price_order(lines, shipping_cents, now=now),
                        coupon_rejection=CouponRejection(code=code, reason="COUPON_EXPIRED_OR_EXHAUSTED"),
                    )
            order = self.orders.add(Order(
                id=None,
                user_id=user_id,
                items=lines,
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
                payment_method=payment_method,
                subtotal_cents=prices.subtotal_cents,
                shipping_cents=prices.shipping_cents,
                discount_cents=prices.discount_cents,
                total_cents=prices.total_cents,
                currency=self.currency,
                coupon_id=claimed.id if claimed else None,
                coupon_code=claimed.code if claimed else None,
                shipping_payment_method=shipping_payment_method,
                notes=notes,
            ))
        except Exception:
            if claimed is not None:
                self.coupons.release_usage(claimed.id)
            self.inventory.rollback(allocations)
            raise
        if prices.coupon_rejection is not None:
            logger.info("coupon not applied", extra={
                "coupon_code": code, "reason": prices.coupon_rejection.reason,
            })
        order.coupon_rejection = prices.coupon_rejection

        logger.info("order created", extra={
            "order_number": order.order_number,
            "total_cents": order.total_cents,
            "items": len(order.items),
        })
        self.notifier.publish(OrderCreatedEvent(order=order))
        for event in self.inventory.low_stock_events(allocations):
            self.notifier.publish(event)
        return order

    # ---- UpdateOrderStatus ----
    def update_status(self, order_id, new_status=None, tracking_number: Optional[str] = None,
                      cancellation_reason: Optional[str] = None) -> Order:
        """Apply an admin status change and/or tracking number.

        Only the call that actually moves the order into ``cancelled``
        replenishes stock, and a notification is sent only when the stored
        status changed.

        Raises:
            OrderNotFound: Unknown order.
            InvalidStatus: Unrecognized status value; nothing is changed.
            InvalidTransition: The order is terminal.
            ConcurrentUpdate: The status kept changing underneath the write.
        """
        target = normalize_status(new_status) if new_status is not None else None
        order = self._load(order_id)

        for _ in range(STATUS_WRITE_ATTEMPTS):
            old = order.status
            transition = plan_transition(old, target) if target is not None else None
            if tracking_number is not None:
                order.tracking_number = tracking_number or None
            if transition is not None and transition.changed:
                order.status = transition.new
                if transition.cancels:
                    order.cancelled_at = self.clock()
                    order.cancelled_reason = cancellation_reason or None
            if self.orders.update(order, expected_status=old):
                break
            order = self._load(order_id)
        else:
            raise ConcurrentUpdate()

        if transition is None or not transition.changed:
            return order

        if transition.cancels:
            failed = self.inventory.release(order.items)
            if failed:
                logger.warning("order cancelled with unreplenished lines", extra={
                    "order_number": order.order_number,
                    "failed_products": [line.product_id for line in failed],
                })
        logger.info("order status changed", extra={
            "order_number": order.order_number,
            "old_status": transition.old.value,
            "new_status": transition.new.value,
        })
        self.notifier.publish(OrderStatusChangedEvent(
            order_number=order.order_number,
            old_status=transition.old,
            new_status=transition.new,
            tracking_number=order.tracking_number,
        ))
        return order

    # ---- UpdatePaymentStatus ----
    def update_payment_status(self, order_id, payment_status) -> Order:
        status = normalize_payment_status(payment_status)
        order = self._load(order_id)
        order.payment_status = status
        self.orders.update(order)
        return order

    # ---- Read-only checks ----
    def validate_coupon(self, code: Optional[str], order_amount_cents: Optional[int] = None) -> CouponQuote:
        if not code or not code.strip():
            return CouponQuote(valid=False, error="Coupon code is required", reason="COUPON_CODE_REQUIRED")
        coupon = self.coupons.get_by_code(code.strip().upper())
        return quote_coupon(coupon, order_amount_cents, self.clock())

    def validate_stock(self, items: Sequence[LineItemRequest]) -> StockReport:
        """Check every item against current stock without changing it.

        Raises:
            EmptyCart: No items.
        """
        if not items:
            raise EmptyCart()

        results = []
        for item in items:
            results.append(self._check_item(item))
        return StockReport(valid=all(r.valid for r in results), results=results)

    def _check_item(self, item: LineItemRequest) -> ItemStockResult:
        if not item.product_id:
            return ItemStockResult(product_id=None, valid=False, error="Product ID is required")
        if item.quantity is None or item.quantity < 1:
            return ItemStockResult(product_id=item.product_id, valid=False,
                                   error="Quantity must be at least 1")
        product = self.catalog.get_product(item.product_id)
        if product is None:
            return ItemStockResult(product_id=item.product_id, valid=False, error="Product not found")
        if not product.is_active:
            return ItemStockResult(product_id=item.product_id, valid=False, error="Product is not available")

        check = self.inventory.check(product, item.quantity, item.size, item.color)
        if not check.keys:
            return ItemStockResult(product_id=item.product_id, valid=False, requested=item.quantity,
                                   available=0, error="Selected variant not available")
        if not check.ok:
            return ItemStockResult(product_id=item.product_id, valid=False, requested=item.quantity,
                                   available=check.available,
                                   error=f"Only {check.available} items available in stock")
        return ItemStockResult(product_id=item.product_id, valid=True, requested=item.quantity,
                               available=check.available)

    def _load(self, order_id) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id=str(order_id))
        return order
