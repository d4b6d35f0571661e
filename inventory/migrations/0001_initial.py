import uuid
from decimal import Decimal

import django.db.models.deletion
import django.db.models.functions.text
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

CURRENCY_CHOICES = [("USD", "US Dollar"), ("PLN", "Polish Zloty"), ("UAH", "Ukrainian Hryvnia"), ("TRY", "Turkish Lira")]
UNIT_CHOICES = [("piece", "Piece"), ("length", "Length")]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("description", models.TextField(blank=True)),
                ("buy_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("sell_price", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=12)),
                ("buy_currency", models.CharField(choices=CURRENCY_CHOICES, default="USD", max_length=3)),
                ("sell_currency", models.CharField(choices=CURRENCY_CHOICES, default="USD", max_length=3)),
                ("stock", models.DecimalField(decimal_places=3, default=Decimal("0"), max_digits=14)),
                ("unit", models.CharField(choices=UNIT_CHOICES, default="piece", max_length=16)),
                (
                    "status",
                    models.CharField(choices=[("active", "Active"), ("passive", "Passive")], default="active", max_length=16),
                ),
                ("attributes", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["name"], name="inv_product_name_idx"),
                    models.Index(fields=["status", "name"], name="inv_product_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Warehouse",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=50)),
                ("is_active", models.BooleanField(default=True)),
                ("has_shelf_system", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        django.db.models.functions.text.Lower("name"),
                        name="inv_warehouse_name_ci_unique",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Shelf",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="shelves",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
                "constraints": [
                    models.UniqueConstraint(fields=("warehouse", "name"), name="inv_shelf_warehouse_name_unique"),
                ],
            },
        ),
        migrations.CreateModel(
            name="StockMovement",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("type", models.CharField(choices=[("entry", "Entry"), ("exit", "Exit")], default="entry", max_length=16)),
                ("quantity", models.DecimalField(decimal_places=3, max_digits=14)),
                ("unit", models.CharField(choices=UNIT_CHOICES, default="piece", max_length=16)),
                ("date", models.DateTimeField(default=django.utils.timezone.now)),
                ("note", models.TextField(blank=True)),
                ("barcodes", models.JSONField(blank=True, default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.product",
                    ),
                ),
                (
                    "shelf",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="movements",
                        to="inventory.shelf",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="movements",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["product", "date"], name="inv_movement_product_idx"),
                    models.Index(fields=["warehouse", "date"], name="inv_movement_warehouse_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Barcode",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=6, unique=True)),
                ("quantity", models.DecimalField(decimal_places=3, default=Decimal("1"), max_digits=14)),
                ("unit", models.CharField(choices=UNIT_CHOICES, default="piece", max_length=16)),
                ("is_used", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="barcode_records",
                        to="inventory.product",
                    ),
                ),
                (
                    "shelf",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="barcode_records",
                        to="inventory.shelf",
                    ),
                ),
                (
                    "stock_movement",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="barcode_records",
                        to="inventory.stockmovement",
                    ),
                ),
                (
                    "warehouse",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="barcode_records",
                        to="inventory.warehouse",
                    ),
                ),
            ],
            options={
                "ordering": ["created_at", "code"],
                "indexes": [
                    models.Index(fields=["product", "is_used"], name="inv_barcode_product_idx"),
                    models.Index(fields=["stock_movement"], name="inv_barcode_movement_idx"),
                ],
            },
        ),
    ]
