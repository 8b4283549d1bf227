import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="CouponModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=64, unique=True)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("discount_type", models.CharField(
                    choices=[("percentage", "Percentage"), ("fixed", "Fixed")], max_length=16)),
                ("discount_value", models.DecimalField(decimal_places=2, max_digits=12)),
                ("min_purchase_cents", models.PositiveIntegerField(default=0)),
                ("max_discount_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("usage_limit", models.PositiveIntegerField(blank=True, null=True)),
                ("used_count", models.PositiveIntegerField(default=0)),
                ("valid_from", models.DateTimeField()),
                ("valid_until", models.DateTimeField()),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "coupons",
                "indexes": [
                    models.Index(fields=["is_active", "valid_from", "valid_until"],
                                 name="coupons_active_window_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="NotificationSettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email_notifications", models.BooleanField(default=True)),
                ("order_notifications", models.BooleanField(default=True)),
                ("low_stock_alerts", models.BooleanField(default=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "notification_settings",
            },
        ),
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("order_number", models.CharField(max_length=32, unique=True)),
                ("user_id", models.CharField(db_index=True, max_length=64)),
                ("status", models.CharField(
                    choices=[
                        ("pending", "Pending"), ("confirmed", "Confirmed"), ("processing", "Processing"),
                        ("shipped", "Shipped"), ("out_for_delivery", "Out For Delivery"),
                        ("delivered", "Delivered"), ("cancelled", "Cancelled"),
                    ],
                    db_index=True, default="pending", max_length=32)),
                ("payment_status", models.CharField(
                    choices=[("pending", "Pending"), ("paid", "Paid"), ("failed", "Failed"),
                             ("refunded", "Refunded")],
                    default="pending", max_length=16)),
                ("payment_method", models.CharField(
                    choices=[("cash_on_delivery", "Cash On Delivery"), ("instapay", "Instapay"),
                             ("vodafone", "Vodafone")],
                    default="cash_on_delivery", max_length=32)),
                ("shipping_payment_method", models.CharField(
                    blank=True, choices=[("instapay", "Instapay"), ("vodafone", "Vodafone")],
                    max_length=16, null=True)),
                ("shipping_address", models.JSONField(default=dict)),
                ("billing_address", models.JSONField(default=dict)),
                ("subtotal_cents", models.PositiveIntegerField(default=0)),
                ("shipping_cents", models.PositiveIntegerField(default=0)),
                ("discount_cents", models.PositiveIntegerField(default=0)),
                ("total_cents", models.PositiveIntegerField(default=0)),
                ("currency", models.CharField(default="EGP", max_length=3)),
                ("tracking_number", models.CharField(blank=True, max_length=100, null=True)),
                ("notes", models.TextField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_reason", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("coupon", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                             related_name="orders", to="orders.couponmodel")),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderItemModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("product_id", models.CharField(max_length=64)),
                ("name", models.CharField(max_length=200)),
                ("unit_price_cents", models.PositiveIntegerField()),
                ("quantity", models.PositiveIntegerField()),
                ("size", models.CharField(blank=True, max_length=50, null=True)),
                ("color", models.CharField(blank=True, max_length=50, null=True)),
                ("image", models.CharField(blank=True, max_length=500, null=True)),
                ("position", models.PositiveIntegerField(default=0)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                            related_name="items", to="orders.ordermodel")),
            ],
            options={
                "db_table": "order_items",
                "ordering": ["position"],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("key", models.CharField(max_length=200, primary_key=True, serialize=False)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                            to="orders.ordermodel")),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
    ]
