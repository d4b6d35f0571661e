from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import TestCase
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import AccessToken

from common.audit import create_audit_log
from core.models import AuditLog
from customers.models import Customer
from inventory.models import Barcode, Product, Warehouse
from labels.models import LabelTemplate


class AuthTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.clerk = self.user_model.objects.create_user(
            username="clerk",
            email="Clerk@Example.com",
            password="pass1234",
            role="clerk",
        )

    def test_email_is_stored_lowercase_and_unique(self):
        self.assertEqual(self.clerk.email, "clerk@example.com")
        with self.assertRaises(IntegrityError), transaction.atomic():
            self.user_model.objects.create_user(username="other", email="CLERK@example.com", password="pass1234")

    def test_token_by_username_or_email_carries_role(self):
        for login in ("clerk", "CLERK@example.com"):
            response = self.client.post("/api/v1/token/", {"username": login, "password": "pass1234"}, format="json")

            self.assertEqual(response.status_code, 200)
            token = AccessToken(response.json()["access"])
            self.assertEqual(token["role"], "clerk")

    def test_bad_credentials_use_error_envelope(self):
        response = self.client.post("/api/v1/token/", {"username": "clerk", "password": "wrong"}, format="json")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(sorted(response.json()), ["code", "errors", "message", "status"])

    def test_me_requires_authentication(self):
        self.assertEqual(self.client.get("/api/v1/me/").status_code, 401)

        access = self.client.post("/api/v1/token/", {"username": "clerk", "password": "pass1234"}, format="json").json()["access"]
        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {access}")
        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "clerk")
        self.assertEqual(response.json()["role"], "clerk")

    def test_new_users_default_to_viewer(self):
        user = self.user_model.objects.create_user(username="fresh", password="pass1234")
        self.assertEqual(user.role, "viewer")


class AuditLogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.clerk = user_model.objects.create_user(username="clerk", password="pass1234", role="clerk")
        self.admin = user_model.objects.create_user(username="admin", password="pass1234", role="admin")
        create_audit_log(actor=self.clerk, action="customer.create", entity="customer", request_id="r-1")
        create_audit_log(actor=self.admin, action="label_template.set_default", entity="label_template", request_id="r-2")

    def test_only_admins_read_audit_logs(self):
        self.client.force_authenticate(user=self.clerk)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))

        self.client.force_authenticate(user=self.admin)
        response = self.client.get("/api/v1/admin/audit-logs/", {"entity": "customer"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([item["action"] for item in results], ["customer.create"])
        self.assertEqual(results[0]["actor_username"], "clerk")

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post("/api/v1/admin/audit-logs/", {"action": "forged"}, format="json")

        self.assertEqual(response.status_code, 405)
        self.assertEqual(AuditLog.objects.count(), 2)

    def test_anonymous_actor_is_dropped(self):
        entry = create_audit_log(actor=None, action="stock_entry.create", entity="stock_movement", entity_id="not-a-uuid")
        self.assertIsNone(entry.actor)
        self.assertIsNone(entry.entity_id)


class HealthTests(TestCase):
    def test_health_and_readiness(self):
        client = APIClient()

        self.assertEqual(client.get("/api/v1/healthz/").json()["status"], "ok")
        self.assertEqual(client.get("/api/v1/readyz/").json()["status"], "ready")


class SeedDemoDataTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", verbosity=0)
        counts = (Product.objects.count(), Barcode.objects.count(), Customer.objects.count())
        call_command("seed_demo_data", verbosity=0)

        self.assertEqual((Product.objects.count(), Barcode.objects.count(), Customer.objects.count()), counts)
        self.assertTrue(get_user_model().objects.filter(username="admin", role="admin").exists())
        self.assertTrue(Warehouse.objects.filter(has_shelf_system=True, shelves__isnull=False).exists())
        self.assertEqual(LabelTemplate.objects.filter(is_default=True).count(), 1)
        self.assertGreater(counts[1], 0)
