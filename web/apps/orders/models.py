import uuid

from django.db import models


class CouponModel(models.Model):
    class DiscountType(models.TextChoices):
        PERCENTAGE = "percentage"
        FIXED = "fixed"

    code = models.CharField(max_length=64, unique=True)
    description = models.CharField(max_length=255, blank=True, default="")
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices)
    # percent for percentage coupons, minor units for fixed ones
    discount_value = models.DecimalField(max_digits=12, decimal_places=2)
    min_purchase_cents = models.PositiveIntegerField(default=0)
    max_discount_cents = models.PositiveIntegerField(null=True, blank=True)
    usage_limit = models.PositiveIntegerField(null=True, blank=True)
    used_count = models.PositiveIntegerField(default=0)
    valid_from = models.DateTimeField()
    valid_until = models.DateTimeField()
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "coupons"
        indexes = [models.Index(fields=["is_active", "valid_from", "valid_until"], name="coupons_active_window_idx")]

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.code


class OrderModel(models.Model):
    # UUID PK exposed in the API; order_number is the human-facing reference
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order_number = models.CharField(max_length=32, unique=True)
    user_id = models.CharField(max_length=64, db_index=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        CONFIRMED = "confirmed"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        OUT_FOR_DELIVERY = "out_for_delivery"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentStatus(models.TextChoices):
        PENDING = "pending"
        PAID = "paid"
        FAILED = "failed"
        REFUNDED = "refunded"

    class PaymentMethod(models.TextChoices):
        CASH_ON_DELIVERY = "cash_on_delivery"
        INSTAPAY = "instapay"
        VODAFONE = "vodafone"

    class ShippingPaymentMethod(models.TextChoices):
        INSTAPAY = "instapay"
        VODAFONE = "vodafone"

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING, db_index=True)
    payment_status = models.CharField(max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.PENDING)
    payment_method = models.CharField(max_length=32, choices=PaymentMethod.choices,
                                      default=PaymentMethod.CASH_ON_DELIVERY)
    shipping_payment_method = models.CharField(max_length=16, choices=ShippingPaymentMethod.choices,
                                               null=True, blank=True)

    shipping_address = models.JSONField(default=dict)
    billing_address = models.JSONField(default=dict)

    subtotal_cents = models.PositiveIntegerField(default=0)
    shipping_cents = models.PositiveIntegerField(default=0)
    discount_cents = models.PositiveIntegerField(default=0)
    total_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="EGP")
    coupon = models.ForeignKey(CouponModel, null=True, blank=True, on_delete=models.SET_NULL, related_name="orders")

    tracking_number = models.CharField(max_length=100, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_reason = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]

    def __str__(self):
        return self.order_number


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    # snapshot reference; the catalog may live in another service
    product_id = models.CharField(max_length=64)
    name = models.CharField(max_length=200)
    unit_price_cents = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()
    size = models.CharField(max_length=50, null=True, blank=True)
    color = models.CharField(max_length=50, null=True, blank=True)
    image = models.CharField(max_length=500, null=True, blank=True)
    position = models.PositiveIntegerField(default=0)
    # [{"size": ..., "color": ...}] drawn at reservation; empty on legacy rows
    stock_buckets = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, null=True, blank=True, on_delete=models.SET_NULL)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"


class NotificationSettings(models.Model):
    """Admin-editable notification toggles (single row)."""

    email_notifications = models.BooleanField(default=True)
    order_notifications = models.BooleanField(default=True)
    low_stock_alerts = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "notification_settings"
