"""In-process ORM adapters for the catalog and coupon ports.

``OrmCatalog`` implements ``CatalogPort`` on top of the ``apps.catalog``
tables and ``OrmCouponLedger`` implements ``CouponPort`` on ``CouponModel``.
Stock changes are single conditional ``UPDATE`` statements built with
``F()`` expressions, so the guard and the write happen atomically in the
database.
"""

from typing import Optional

from django.core.exceptions import ValidationError
from django.db.models import F, Q

from apps.catalog.models import ProductModel, StockBucketModel

from .domain import (
    BucketKey,
    CatalogPort,
    CouponPort,
    CouponTerms,
    DiscountType,
    ProductNotFound,
    ProductStock,
    VariantLayout,
)
from .models import CouponModel


def _key_from_row(size: str, color: str) -> BucketKey:
    return BucketKey(size=size or None, color=color or None)


def _bucket_filter(product_id: str, key: BucketKey) -> dict:
    return {"product_id": product_id, "size": key.size or "", "color": key.color or ""}


class OrmCatalog(CatalogPort):
    """Catalog store backed by ``ProductModel`` and ``StockBucketModel``."""

    def get_product(self, product_id: str) -> Optional[ProductStock]:
        try:
            obj = ProductModel.objects.prefetch_related("buckets").get(id=product_id)
        except (ProductModel.DoesNotExist, ValidationError, ValueError):
            return None
        buckets = {_key_from_row(b.size, b.color): b.quantity for b in obj.buckets.all()}
        return ProductStock(
            id=str(obj.id),
            name=obj.name,
            price_cents=obj.price_cents,
            sale_price_cents=obj.sale_price_cents,
            image=obj.image or None,
            is_active=obj.is_active,
            variant_layout=VariantLayout(obj.variant_layout),
            buckets=buckets,
        )

    def decrement(self, product_id: str, key: BucketKey, quantity: int) -> Optional[int]:
        """Guarded decrement: ``UPDATE ... SET quantity = quantity - n WHERE quantity >= n``."""
        lookup = _bucket_filter(product_id, key)
        try:
            updated = StockBucketModel.objects.filter(quantity__gte=quantity, **lookup).update(
                quantity=F("quantity") - quantity
            )
        except (ValidationError, ValueError):
            return None
        if updated != 1:
            return None
        return StockBucketModel.objects.filter(**lookup).values_list("quantity", flat=True).first()

    def increment(self, product_id: str, key: BucketKey, quantity: int) -> int:
        lookup = _bucket_filter(product_id, key)
        try:
            updated = StockBucketModel.objects.filter(**lookup).update(quantity=F("quantity") + quantity)
        except (ValidationError, ValueError):
            updated = 0
        if updated != 1:
            raise ProductNotFound(product_id)
        return StockBucketModel.objects.filter(**lookup).values_list("quantity", flat=True).first()


def coupon_terms(obj: CouponModel) -> CouponTerms:
    return CouponTerms(
        id=str(obj.pk),
        code=obj.code,
        discount_type=DiscountType(obj.discount_type),
        discount_value=obj.discount_value,
        valid_from=obj.valid_from,
        valid_until=obj.valid_until,
        min_purchase_cents=obj.min_purchase_cents,
        max_discount_cents=obj.max_discount_cents,
        usage_limit=obj.usage_limit,
        used_count=obj.used_count,
        is_active=obj.is_active,
    )


class OrmCouponLedger(CouponPort):
    """Coupon ledger backed by ``CouponModel``."""

    def get_by_code(self, code: str) -> Optional[CouponTerms]:
        obj = CouponModel.objects.filter(code=code.upper()).first()
        return coupon_terms(obj) if obj else None

    def increment_usage(self, coupon_id: str) -> bool:
        """Guarded claim: ``UPDATE ... SET used_count = used_count + 1 WHERE used_count < usage_limit``."""
        updated = CouponModel.objects.filter(
            Q(usage_limit__isnull=True) | Q(used_count__lt=F("usage_limit")), pk=coupon_id,
        ).update(used_count=F("used_count") + 1)
        return updated == 1

    def release_usage(self, coupon_id: str) -> None:
        CouponModel.objects.filter(pk=coupon_id, used_count__gt=0).update(used_count=F("used_count") - 1)
