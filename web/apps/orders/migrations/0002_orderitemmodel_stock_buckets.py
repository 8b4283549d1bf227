from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="orderitemmodel",
            name="stock_buckets",
            field=models.JSONField(blank=True, default=list),
        ),
    ]
