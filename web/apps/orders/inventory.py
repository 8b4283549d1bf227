"""Inventory reservation engine.

Resolves the stock bucket(s) a line item draws from, checks availability,
applies guarded decrements for a whole order and compensates on failure,
and replenishes stock when an order is cancelled.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .domain import (
    BASE_BUCKET,
    BucketKey,
    CatalogPort,
    InsufficientStock,
    LowStockEvent,
    OrderLine,
    ProductNotFound,
    ProductStock,
    VariantLayout,
)

logger = logging.getLogger(__name__)

LOW_STOCK_THRESHOLD = 5


@dataclass(frozen=True)
class StockCheck:
    """Result of checking one line item against current stock.

    ``keys`` is empty when a requested size/color has no matching bucket.
    """

    product_id: str
    requested: int
    available: int
    keys: Tuple[BucketKey, ...]
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.keys) and self.requested <= self.available


@dataclass(frozen=True)
class Allocation:
    """Stock actually taken for one line item."""

    product_id: str
    product_name: str
    quantity: int
    size: Optional[str]
    color: Optional[str]
    remaining: Dict[BucketKey, int]

    @property
    def buckets(self) -> Tuple[BucketKey, ...]:
        return tuple(self.remaining)


def resolve_buckets(product: ProductStock, size: Optional[str] = None,
                    color: Optional[str] = None) -> Tuple[BucketKey, ...]:
    """Return the bucket keys a line item for ``product`` draws from.

    An empty tuple means a specific size/color was requested but the product
    has no matching bucket; callers treat that as unavailable.
    """
    if not size and not color:
        return (BASE_BUCKET,)

    if product.variant_layout == VariantLayout.COMBINATION:
        for key in product.buckets:
            if key.is_base:
                continue
            if size and key.size != size:
                continue
            if color and key.color != color:
                continue
            return (key,)
        return ()

    if product.variant_layout == VariantLayout.AXIS:
        keys = []
        if size:
            key = BucketKey(size=size)
            if key not in product.buckets:
                return ()
            keys.append(key)
        if color:
            key = BucketKey(color=color)
            if key not in product.buckets:
                return ()
            keys.append(key)
        return tuple(keys)

    return (BASE_BUCKET,)


def available_quantity(product: ProductStock, keys: Sequence[BucketKey]) -> int:
    if not keys:
        return 0
    return min(product.buckets.get(k, 0) for k in keys)


class InventoryReservationEngine:
    """Validates and commits stock changes through the catalog port.

    Every decrement is a guarded conditional update on the catalog side.
    When one fails part-way through an order, the decrements already applied
    for that order are reverted with compensating increments before the
    error is raised, so no partial reservation stays visible.
    """

    def __init__(self, catalog: CatalogPort, low_stock_threshold: int = LOW_STOCK_THRESHOLD):
        self.catalog = catalog
        self.low_stock_threshold = low_stock_threshold

    def check(self, product: ProductStock, quantity: int, size: Optional[str] = None,
              color: Optional[str] = None) -> StockCheck:
        keys = resolve_buckets(product, size, color)
        return StockCheck(
            product_id=product.id,
            requested=quantity,
            available=available_quantity(product, keys),
            keys=keys,
            size=size,
            color=color,
        )

    def ensure_available(self, product: ProductStock, quantity: int,
                         size: Optional[str] = None, color: Optional[str] = None) -> StockCheck:
        """Check a line item and raise InsufficientStock when it cannot be served."""
        result = self.check(product, quantity, size, color)
        if not result.ok:
            raise InsufficientStock(
                product.id, result.available, quantity,
                size=size, color=color, product_name=product.name,
            )
        return result

    def reserve(self, lines: Sequence[Tuple[ProductStock, OrderLine]]) -> List[Allocation]:
        """Decrement stock for every line, all or nothing.

        Lines are processed in submission order. Bucket resolution uses the
        product snapshot passed in, while the guard is evaluated against the
        live stock by the catalog.

        Args:
            lines: Pairs of (product snapshot, order line) to reserve.

        Returns:
            One Allocation per line, carrying post-decrement bucket levels.

        Raises:
            InsufficientStock: When a guarded decrement fails. Earlier
                decrements of the same call have been reverted.
        """
        applied: List[Tuple[str, BucketKey, int]] = []
        allocations: List[Allocation] = []
        try:
            for product, line in lines:
                keys = resolve_buckets(product, line.size, line.color)
                if not keys:
                    raise InsufficientStock(
                        product.id, 0, line.quantity,
                        size=line.size, color=line.color, product_name=product.name,
                    )
                remaining: Dict[BucketKey, int] = {}
                for key in keys:
                    left = self.catalog.decrement(product.id, key, line.quantity)
                    if left is None:
                        raise InsufficientStock(
                            product.id,
                            self._current_available(product.id, keys),
                            line.quantity,
                            size=line.size,
                            color=line.color,
                            product_name=product.name,
                        )
                    applied.append((product.id, key, line.quantity))
                    remaining[key] = left
                allocations.append(Allocation(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=line.quantity,
                    size=line.size,
                    color=line.color,
                    remaining=remaining,
                ))
        except Exception:
            self._compensate(applied)
            raise
        return allocations

    def rollback(self, allocations: Sequence[Allocation]) -> None:
        """Revert allocations returned by ``reserve``."""
        applied = [
            (a.product_id, key, a.quantity)
            for a in allocations
            for key in a.remaining
        ]
        self._compensate(applied)

    def release(self, lines: Sequence[OrderLine]) -> List[OrderLine]:
        """Put stock of cancelled order lines back.

        Units go back to the buckets recorded on the line at reservation.
        Lines without recorded buckets are resolved again against the live
        product. Each line is replenished independently; failures (product
        deleted, variant removed, catalog error) are logged and skipped.

        Returns:
            The lines that could not be replenished.
        """
        failed: List[OrderLine] = []
        for line in lines:
            try:
                keys = line.buckets or self._resolve_live(line)
                for key in keys:
                    self.catalog.increment(line.product_id, key, line.quantity)
            except Exception:
                logger.warning(
                    "stock replenishment failed",
                    exc_info=True,
                    extra={
                        "product_id": line.product_id,
                        "size": line.size,
                        "color": line.color,
                        "quantity": line.quantity,
                    },
                )
                failed.append(line)
        return failed

    def low_stock_events(self, allocations: Sequence[Allocation]) -> List[LowStockEvent]:
        """Build low-stock events for allocations at or under the threshold.

        The level checked is the lowest post-decrement quantity among the
        buckets the line drew from. For a variant line that is its variant
        bucket(s) and the base stock is not consulted, so a low base level
        alone never alerts for it. For plain lines it is the base stock.
        """
        events = []
        for a in allocations:
            if not a.remaining:
                continue
            level = min(a.remaining.values())
            if level <= self.low_stock_threshold:
                events.append(LowStockEvent(
                    product_id=a.product_id,
                    product_name=a.product_name,
                    remaining=level,
                    size=a.size,
                    color=a.color,
                ))
        return events

    def _resolve_live(self, line: OrderLine) -> Tuple[BucketKey, ...]:
        product = self.catalog.get_product(line.product_id)
        if product is None:
            raise ProductNotFound(line.product_id)
        keys = resolve_buckets(product, line.size, line.color)
        if not keys:
            raise ProductNotFound(line.product_id)
        return keys

    def _current_available(self, product_id: str, keys: Sequence[BucketKey]) -> int:
        product = self.catalog.get_product(product_id)
        if product is None:
            return 0
        return available_quantity(product, keys)

    def _compensate(self, applied: Sequence[Tuple[str, BucketKey, int]]) -> None:
        for product_id, key, quantity in reversed(applied):
            try:
                self.catalog.increment(product_id, key, quantity)
            except Exception:
                logger.error(
                    "compensating increment failed",
                    exc_info=True,
                    extra={
                        "product_id": product_id,
                        "size": key.size,
                        "color": key.color,
                        "quantity": quantity,
                    },
                )
