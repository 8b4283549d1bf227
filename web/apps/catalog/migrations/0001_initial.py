import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ProductModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("price_cents", models.PositiveIntegerField()),
                ("sale_price_cents", models.PositiveIntegerField(blank=True, null=True)),
                ("image", models.CharField(blank=True, default="", max_length=500)),
                ("is_active", models.BooleanField(default=True)),
                ("variant_layout", models.CharField(
                    choices=[("none", "None"), ("combination", "Combination"), ("axis", "Axis")],
                    default="none", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "catalog_products",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="StockBucketModel",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("size", models.CharField(blank=True, default="", max_length=50)),
                ("color", models.CharField(blank=True, default="", max_length=50)),
                ("quantity", models.PositiveIntegerField(default=0)),
                ("sort_order", models.IntegerField(default=0)),
                ("product", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name="buckets", to="catalog.productmodel")),
            ],
            options={
                "db_table": "catalog_stock_buckets",
                "ordering": ["sort_order", "id"],
                "constraints": [
                    models.UniqueConstraint(fields=("product", "size", "color"), name="uniq_stock_bucket"),
                ],
            },
        ),
    ]
