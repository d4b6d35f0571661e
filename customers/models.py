import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from inventory.models import Currency


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=50, blank=True)
    address = models.TextField(blank=True)
    currency = models.CharField(max_length=3, choices=Currency, default=Currency.USD)
    # Positive: the customer owes us. Negative: we owe the customer.
    opening_balance = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["name"], name="cust_customer_name_idx"),
        ]

    def __str__(self):
        return f"{self.code} {self.name}"


class CustomerTransaction(models.Model):
    class Type(models.TextChoices):
        SALE = "sale", "Sale"
        PAYMENT = "payment", "Payment"
        RETURN = "return", "Return"
        ADJUSTMENT = "adjustment", "Adjustment"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer = models.ForeignKey(Customer, on_delete=models.CASCADE, related_name="transactions")
    type = models.CharField(max_length=16, choices=Type)
    # Signed only for adjustments; every other type is stored positive.
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    currency = models.CharField(max_length=3, choices=Currency, default=Currency.USD)
    description = models.TextField(blank=True)
    date = models.DateTimeField(default=timezone.now)
    reference = models.CharField(max_length=100, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["customer", "date"], name="cust_txn_customer_date_idx"),
            models.Index(fields=["type"], name="cust_txn_type_idx"),
        ]
