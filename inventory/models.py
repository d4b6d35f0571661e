import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models.functions import Lower
from django.utils import timezone


class Currency(models.TextChoices):
    USD = "USD", "US Dollar"
    PLN = "PLN", "Polish Zloty"
    UAH = "UAH", "Ukrainian Hryvnia"
    TRY = "TRY", "Turkish Lira"


class Unit(models.TextChoices):
    PIECE = "piece", "Piece"
    LENGTH = "length", "Length"


class Product(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        PASSIVE = "passive", "Passive"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    buy_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    sell_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    buy_currency = models.CharField(max_length=3, choices=Currency, default=Currency.USD)
    sell_currency = models.CharField(max_length=3, choices=Currency, default=Currency.USD)
    stock = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("0"))
    unit = models.CharField(max_length=16, choices=Unit, default=Unit.PIECE)
    status = models.CharField(max_length=16, choices=Status, default=Status.ACTIVE)
    attributes = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["name"], name="inv_product_name_idx"),
            models.Index(fields=["status", "name"], name="inv_product_status_idx"),
        ]

    def __str__(self):
        return self.name


class Warehouse(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=50)
    is_active = models.BooleanField(default=True)
    has_shelf_system = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(Lower("name"), name="inv_warehouse_name_ci_unique"),
        ]

    def __str__(self):
        return self.name


class Shelf(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    warehouse = models.ForeignKey(Warehouse, on_delete=models.CASCADE, related_name="shelves")
    name = models.CharField(max_length=20)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(fields=["warehouse", "name"], name="inv_shelf_warehouse_name_unique"),
        ]

    def __str__(self):
        return f"{self.warehouse.name}/{self.name}"


class StockMovement(models.Model):
    class Type(models.TextChoices):
        ENTRY = "entry", "Entry"
        EXIT = "exit", "Exit"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="movements")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="movements")
    shelf = models.ForeignKey(Shelf, on_delete=models.SET_NULL, null=True, blank=True, related_name="movements")
    type = models.CharField(max_length=16, choices=Type, default=Type.ENTRY)
    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit = models.CharField(max_length=16, choices=Unit, default=Unit.PIECE)
    date = models.DateTimeField(default=timezone.now)
    note = models.TextField(blank=True)
    # Codes in minting order; written once when the entry is finalised.
    barcodes = models.JSONField(default=list, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["product", "date"], name="inv_movement_product_idx"),
            models.Index(fields=["warehouse", "date"], name="inv_movement_warehouse_idx"),
        ]


class Barcode(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=6, unique=True)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="barcode_records")
    stock_movement = models.ForeignKey(StockMovement, on_delete=models.CASCADE, related_name="barcode_records")
    warehouse = models.ForeignKey(Warehouse, on_delete=models.PROTECT, related_name="barcode_records")
    shelf = models.ForeignKey(Shelf, on_delete=models.SET_NULL, null=True, blank=True, related_name="barcode_records")
    quantity = models.DecimalField(max_digits=14, decimal_places=3, default=Decimal("1"))
    unit = models.CharField(max_length=16, choices=Unit, default=Unit.PIECE)
    is_used = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "code"]
        indexes = [
            models.Index(fields=["product", "is_used"], name="inv_barcode_product_idx"),
            models.Index(fields=["stock_movement"], name="inv_barcode_movement_idx"),
        ]

    def __str__(self):
        return self.code
