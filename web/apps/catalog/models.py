"""Catalog tables used as the in-process catalog store.

Stock is kept in one normalized table keyed by (product, size, color).
Blank size and color stand for "not set", so the base stock of a product is
the bucket with both blank.
"""

import uuid

from django.db import models


class ProductModel(models.Model):
    class VariantLayout(models.TextChoices):
        NONE = "none"
        COMBINATION = "combination"
        AXIS = "axis"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=200)
    price_cents = models.PositiveIntegerField()
    sale_price_cents = models.PositiveIntegerField(null=True, blank=True)
    image = models.CharField(max_length=500, blank=True, default="")
    is_active = models.BooleanField(default=True)
    variant_layout = models.CharField(max_length=16, choices=VariantLayout.choices, default=VariantLayout.NONE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "catalog_products"
        ordering = ["-created_at"]

    def __str__(self):
        return self.name


class StockBucketModel(models.Model):
    product = models.ForeignKey(ProductModel, on_delete=models.CASCADE, related_name="buckets")
    size = models.CharField(max_length=50, blank=True, default="")
    color = models.CharField(max_length=50, blank=True, default="")
    # stock >= 0 is enforced by the database
    quantity = models.PositiveIntegerField(default=0)
    sort_order = models.IntegerField(default=0)

    class Meta:
        db_table = "catalog_stock_buckets"
        ordering = ["sort_order", "id"]
        constraints = [
            models.UniqueConstraint(fields=["product", "size", "color"], name="uniq_stock_bucket"),
        ]

    def __str__(self):
        return f"{self.product_id} [{self.size or '*'}/{self.color or '*'}] = {self.quantity}"
