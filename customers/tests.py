from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase
from rest_framework.test import APIClient

from common.errors import DuplicateError, ValidationError
from core.models import AuditLog
from customers.models import Customer, CustomerTransaction
from customers.services import (
    create_customer,
    customer_balance,
    customer_stats,
    next_customer_code,
    record_transaction,
    update_customer,
)


class CustomerCodeTests(TestCase):
    def test_codes_continue_after_the_highest_numeric_code(self):
        Customer.objects.create(code="100005", name="Anna")
        Customer.objects.create(code="100010", name="Borys")
        Customer.objects.create(code="VIP-1", name="Celina")

        self.assertEqual(next_customer_code(), "100011")
        self.assertEqual(create_customer({"name": "Dawid"}).code, "100011")
        self.assertEqual(create_customer({"name": "Ewa", "code": "AUTO_GENERATE"}).code, "100012")

    def test_first_code_starts_at_floor(self):
        self.assertEqual(create_customer({"name": "Anna", "code": ""}).code, "100000")

    def test_manual_code_is_kept_and_must_be_unique(self):
        customer = create_customer({"name": "Anna", "code": " A-17 "})
        self.assertEqual(customer.code, "A-17")

        with self.assertRaises(DuplicateError):
            create_customer({"name": "Borys", "code": "A-17"})

    def test_unique_index_conflict_regenerates(self):
        original_create = Customer.objects.create
        calls = []

        def create(**kwargs):
            calls.append(kwargs["code"])
            if len(calls) == 1:
                raise IntegrityError("duplicate key value violates unique constraint")
            return original_create(**kwargs)

        with patch.object(Customer.objects, "create", side_effect=create):
            customer = create_customer({"name": "Anna"})

        self.assertEqual(calls, ["100000", "100000"])
        self.assertEqual(customer.code, "100000")
        self.assertEqual(Customer.objects.count(), 1)

    def test_name_is_required(self):
        with self.assertRaises(ValidationError):
            create_customer({"name": "  "})

    def test_update_changes_code_and_profile(self):
        customer = create_customer({"name": "Anna"})
        Customer.objects.create(code="B-1", name="Borys")

        updated = update_customer(customer.id, {"name": "Anna K", "code": "A-1", "currency": "PLN"})
        self.assertEqual((updated.name, updated.code, updated.currency), ("Anna K", "A-1", "PLN"))

        with self.assertRaises(DuplicateError):
            update_customer(customer.id, {"code": "B-1"})


class CustomerBalanceTests(TestCase):
    def setUp(self):
        self.customer = create_customer({"name": "Anna", "opening_balance": "100.00"})

    def record(self, transaction_type, amount):
        return record_transaction(self.customer.id, transaction_type=transaction_type, amount=amount)

    def test_balance_is_debt_minus_credit(self):
        self.record("sale", "250.00")
        self.record("payment", "120.00")
        self.record("return", "30.00")

        self.assertEqual(
            customer_balance(self.customer),
            {"total_debt": Decimal("350.00"), "total_credit": Decimal("150.00"), "balance": Decimal("200.00")},
        )

    def test_negative_opening_balance_is_credit(self):
        customer = create_customer({"name": "Borys", "opening_balance": "-40"})
        self.assertEqual(customer_balance(customer)["total_credit"], Decimal("40"))
        self.assertEqual(customer_balance(customer)["balance"], Decimal("-40"))

    def test_adjustments_move_balance_by_sign(self):
        self.record("adjustment", "15.00")
        self.record("adjustment", "-5.00")

        balance = customer_balance(self.customer)
        self.assertEqual(balance["total_debt"], Decimal("115.00"))
        self.assertEqual(balance["total_credit"], Decimal("5.00"))

    def test_amount_rules(self):
        for transaction_type, amount in (("sale", "0"), ("payment", "-3"), ("sale", "abc"), ("gift", "10")):
            with self.assertRaises(ValidationError):
                self.record(transaction_type, amount)
        self.assertFalse(CustomerTransaction.objects.exists())

    def test_stats_rank_top_buyers_by_sales(self):
        big = create_customer({"name": "Big Buyer"})
        record_transaction(big.id, transaction_type="sale", amount="900")
        self.record("sale", "50")

        stats = customer_stats()

        self.assertEqual(stats["total_customers"], 2)
        self.assertEqual(stats["total_debt"], Decimal("1050.00"))
        self.assertEqual(stats["total_credit"], Decimal("0.00"))
        self.assertEqual([entry["customer"].id for entry in stats["top_buyers"]], [big.id, self.customer.id])
        self.assertEqual(stats["top_buyers"][0]["total_sales"], Decimal("900.00"))


class CustomerApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.viewer = user_model.objects.create_user(username="viewer", password="pass1234", role="viewer")
        self.clerk = user_model.objects.create_user(username="clerk", password="pass1234", role="clerk")
        self.admin = user_model.objects.create_user(username="admin", password="pass1234", role="admin")

    def test_create_with_sentinel_and_audit(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/customers/",
            {"name": "Anna", "code": "AUTO_GENERATE", "currency": "UAH"},
            format="json",
            HTTP_X_REQUEST_ID="cust-1",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["code"], "100000")
        self.assertTrue(AuditLog.objects.filter(action="customer.create", request_id="cust-1", actor=self.clerk).exists())
        self.assertEqual(self.client.get("/api/v1/customers/next-code/").json(), {"code": "100001"})

    def test_duplicate_manual_code_is_conflict(self):
        self.client.force_authenticate(user=self.clerk)
        Customer.objects.create(code="A-1", name="Anna")

        response = self.client.post("/api/v1/customers/", {"name": "Borys", "code": "A-1"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate")

    def test_transactions_and_balance(self):
        self.client.force_authenticate(user=self.clerk)
        customer = create_customer({"name": "Anna"})

        response = self.client.post(
            f"/api/v1/customers/{customer.id}/transactions/",
            {"type": "sale", "amount": "80.00", "reference": "INV-1"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.client.post(f"/api/v1/customers/{customer.id}/transactions/", {"type": "payment", "amount": "30"}, format="json")

        listing = self.client.get(f"/api/v1/customers/{customer.id}/transactions/").json()
        self.assertEqual(listing["count"], 2)

        balance = self.client.get(f"/api/v1/customers/{customer.id}/balance/").json()
        self.assertEqual(balance["balance"], "50.00")
        self.assertEqual(balance["total_debt"], "80.00")
        self.assertEqual(balance["currency"], "USD")

        stats = self.client.get("/api/v1/customers/stats/").json()
        self.assertEqual(stats["total_customers"], 1)
        self.assertEqual(stats["top_buyers"][0]["customer"]["code"], customer.code)

    def test_roles(self):
        customer = create_customer({"name": "Anna"})

        self.client.force_authenticate(user=self.viewer)
        self.assertEqual(self.client.get("/api/v1/customers/").status_code, 200)
        self.assertEqual(self.client.post("/api/v1/customers/", {"name": "Borys"}, format="json").status_code, 403)

        self.client.force_authenticate(user=self.clerk)
        self.assertEqual(self.client.delete(f"/api/v1/customers/{customer.id}/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.delete(f"/api/v1/customers/{customer.id}/").status_code, 204)
        self.assertEqual(self.client.get(f"/api/v1/customers/{customer.id}/").status_code, 404)

    def test_search(self):
        self.client.force_authenticate(user=self.viewer)
        create_customer({"name": "Anna Nowak", "phone": "+48 600"})
        create_customer({"name": "Borys"})

        results = self.client.get("/api/v1/customers/", {"search": "nowak"}).json()["results"]

        self.assertEqual([item["name"] for item in results], ["Anna Nowak"])
