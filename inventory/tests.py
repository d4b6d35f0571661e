from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.errors import (
    BarcodeGenerationError,
    ExhaustedAttemptsError,
    InvalidLengthsError,
    InvalidQuantityError,
    OperationTimeoutError,
)
from core.models import AuditLog
from inventory.models import Barcode, Product, Shelf, StockMovement, Warehouse
from inventory.services import adjust_product_stock, create_stock_entry, expand_quantities


class InventoryTestMixin:
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.clerk = self.user_model.objects.create_user(username="clerk", password="pass1234", role="clerk")
        self.viewer = self.user_model.objects.create_user(username="viewer", password="pass1234", role="viewer")
        self.admin = self.user_model.objects.create_user(username="admin", password="pass1234", role="admin")

        self.product = Product.objects.create(name="Oak Plank", sell_price=Decimal("12.50"))
        self.cable = Product.objects.create(name="Copper Cable", unit="length")
        self.warehouse = Warehouse.objects.create(name="Main Depot")


class ExpandQuantitiesTests(TestCase):
    def test_pieces_expand_to_unit_quantities(self):
        self.assertEqual(expand_quantities("piece", quantity=7), [Decimal("1")] * 7)
        self.assertEqual(len(expand_quantities("piece", quantity="3")), 3)

    def test_piece_quantity_must_be_positive_whole_number(self):
        for value in (0, -2, 2.5, "abc", None, True):
            with self.assertRaises(InvalidQuantityError):
                expand_quantities("piece", quantity=value)

    def test_lengths_drop_non_numeric_entries(self):
        self.assertEqual(expand_quantities("length", lengths=["abc", 2, None, "1.25"]), [Decimal("2"), Decimal("1.25")])

    def test_lengths_must_be_positive_and_non_empty(self):
        for value in ([], ["x"], [2, 0], [-1], None):
            with self.assertRaises(InvalidLengthsError):
                expand_quantities("length", lengths=value)

    def test_lengths_are_rounded_to_stored_precision(self):
        self.assertEqual(expand_quantities("length", lengths=["0.0015", 2.0004]), [Decimal("0.002"), Decimal("2.000")])

        for value in ([0.0004], ["0.0004", 2], ["1e30"], ["99999999999.9999"]):
            with self.assertRaises(InvalidLengthsError):
                expand_quantities("length", lengths=value)

    @override_settings(STOCK_ENTRY_MAX_UNITS=5)
    def test_unit_count_is_capped(self):
        self.assertEqual(len(expand_quantities("piece", quantity=5)), 5)
        for value in (6, 10**10):
            with self.assertRaises(InvalidQuantityError):
                expand_quantities("piece", quantity=value)
        with self.assertRaises(InvalidLengthsError):
            expand_quantities("length", lengths=[1] * 6)


class StockEntryFanoutTests(InventoryTestMixin, TestCase):
    def test_piece_entry_creates_one_barcode_per_piece(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "quantity": 7},
            format="json",
            HTTP_X_REQUEST_ID="entry-7",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        movement = StockMovement.objects.get(id=payload["movement"]["id"])
        codes = [item["code"] for item in payload["barcodes"]]

        self.assertEqual(movement.quantity, Decimal("7"))
        self.assertEqual(movement.barcodes, codes)
        self.assertEqual(len(set(codes)), 7)
        self.assertTrue(all(len(code) == 6 and code.isdigit() for code in codes))
        self.assertEqual(Barcode.objects.filter(stock_movement=movement).count(), 7)
        self.assertTrue(all(Decimal(item["quantity"]) == Decimal("1") for item in payload["barcodes"]))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("7"))
        self.assertTrue(AuditLog.objects.filter(action="stock_entry.create", request_id="entry-7").exists())

    def test_length_entry_conserves_total(self):
        result = create_stock_entry(
            product_id=self.cable.id,
            warehouse_id=self.warehouse.id,
            lengths=[3.5, 2.0, 10],
        )

        quantities = [record.quantity for record in result.barcodes]
        self.assertEqual(quantities, [Decimal("3.5"), Decimal("2.0"), Decimal("10")])
        self.assertEqual(result.movement.quantity, Decimal("15.5"))
        self.assertEqual(sum(Barcode.objects.filter(stock_movement=result.movement).values_list("quantity", flat=True)), Decimal("15.5"))
        self.cable.refresh_from_db()
        self.assertEqual(self.cable.stock, Decimal("15.5"))

    def test_sub_millimetre_lengths_match_movement_total(self):
        result = create_stock_entry(product_id=self.cable.id, warehouse_id=self.warehouse.id, lengths=["0.0015", "0.0015"])

        movement = StockMovement.objects.get(id=result.movement.id)
        stored = list(Barcode.objects.filter(stock_movement=movement).values_list("quantity", flat=True))
        self.assertEqual(stored, [Decimal("0.002"), Decimal("0.002")])
        self.assertEqual(movement.quantity, Decimal("0.004"))
        self.assertEqual(sum(stored), movement.quantity)

    def test_rounded_to_zero_length_is_rejected_before_writes(self):
        with self.assertRaises(InvalidLengthsError):
            create_stock_entry(product_id=self.cable.id, warehouse_id=self.warehouse.id, lengths=[0.0004, 2])

        self.assertEqual(StockMovement.objects.count(), 0)
        self.assertEqual(Barcode.objects.count(), 0)

    def test_shelf_required_when_warehouse_uses_shelves(self):
        warehouse = Warehouse.objects.create(name="Racked Depot", has_shelf_system=True)
        Shelf.objects.create(warehouse=warehouse, name="A1")
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": str(warehouse.id), "quantity": 2},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "shelf_required")
        self.assertEqual(StockMovement.objects.count(), 0)

    def test_shelf_system_without_shelves_accepts_entry(self):
        warehouse = Warehouse.objects.create(name="Empty Racks", has_shelf_system=True)

        result = create_stock_entry(product_id=self.product.id, warehouse_id=warehouse.id, quantity=1)

        self.assertIsNone(result.movement.shelf)

    def test_shelf_from_other_warehouse_is_rejected(self):
        other = Warehouse.objects.create(name="Second Depot", has_shelf_system=True)
        foreign_shelf = Shelf.objects.create(warehouse=other, name="B2")
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "shelf": str(foreign_shelf.id), "quantity": 1},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "shelf_not_found")

    def test_shelf_is_copied_to_every_barcode(self):
        warehouse = Warehouse.objects.create(name="Racked", has_shelf_system=True)
        shelf = Shelf.objects.create(warehouse=warehouse, name="C3")

        result = create_stock_entry(product_id=self.product.id, warehouse_id=warehouse.id, shelf_id=shelf.id, quantity=3)

        self.assertEqual({record.shelf_id for record in result.barcodes}, {shelf.id})

    def test_invalid_quantity_returns_error_envelope(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "quantity": 0},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(sorted(response.json().keys()), ["code", "errors", "message", "status"])
        self.assertEqual(response.json()["code"], "invalid_quantity")
        self.assertEqual(Barcode.objects.count(), 0)

    def test_unknown_product_and_warehouse(self):
        self.client.force_authenticate(user=self.clerk)

        missing_product = self.client.post(
            "/api/v1/stock/entries/",
            {"product": "00000000-0000-0000-0000-000000000000", "warehouse": str(self.warehouse.id), "quantity": 1},
            format="json",
        )
        missing_warehouse = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": "00000000-0000-0000-0000-000000000000", "quantity": 1},
            format="json",
        )

        self.assertEqual(missing_product.status_code, 404)
        self.assertEqual(missing_product.json()["code"], "product_not_found")
        self.assertEqual(missing_warehouse.status_code, 404)
        self.assertEqual(missing_warehouse.json()["code"], "warehouse_not_found")

    def test_code_exhaustion_rolls_back_whole_entry(self):
        self.client.force_authenticate(user=self.clerk)

        with patch("common.codes.generate_unique_code", side_effect=ExhaustedAttemptsError()):
            response = self.client.post(
                "/api/v1/stock/entries/",
                {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "quantity": 4},
                format="json",
            )

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["code"], "barcode_generation_failed")
        self.assertEqual(StockMovement.objects.count(), 0)
        self.assertEqual(Barcode.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))

    def test_failure_after_some_barcodes_rolls_back_everything(self):
        minted = ["111111", "222222", ExhaustedAttemptsError()]

        with patch("common.codes.generate_unique_code", side_effect=minted):
            with self.assertRaises(BarcodeGenerationError):
                create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=4)

        self.assertEqual(StockMovement.objects.count(), 0)
        self.assertEqual(Barcode.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))

    def test_timeout_leaves_no_partial_records(self):
        with self.assertRaises(OperationTimeoutError):
            create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=3, timeout=0)

        self.assertEqual(StockMovement.objects.count(), 0)
        self.assertEqual(Barcode.objects.count(), 0)
        self.assertFalse(AuditLog.objects.filter(action="stock_entry.create").exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))

    @override_settings(STOCK_ENTRY_MAX_UNITS=10)
    def test_oversized_entry_returns_invalid_quantity(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(
            "/api/v1/stock/entries/",
            {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "quantity": 10**10},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_quantity")
        self.assertEqual(StockMovement.objects.count(), 0)

    def test_codes_never_repeat_across_entries(self):
        first = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=25)
        second = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=25)

        codes = first.movement.barcodes + second.movement.barcodes
        self.assertEqual(len(set(codes)), 50)

    def test_viewer_cannot_create_stock_entry(self):
        self.client.force_authenticate(user=self.viewer)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post(
                "/api/v1/stock/entries/",
                {"product": str(self.product.id), "warehouse": str(self.warehouse.id), "quantity": 1},
                format="json",
            )

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("permission_denied" in message for message in cm.output))


class StockMovementTests(InventoryTestMixin, TestCase):
    def test_delete_movement_removes_barcodes_and_lowers_stock(self):
        result = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=5)
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/stock/movements/{result.movement.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(StockMovement.objects.filter(id=result.movement.id).exists())
        self.assertEqual(Barcode.objects.count(), 0)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))
        self.assertTrue(AuditLog.objects.filter(action="stock_movement.delete").exists())

    def test_stock_never_goes_negative(self):
        result = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=7)
        adjust_product_stock(self.product.id, Decimal("-4"))

        self.client.force_authenticate(user=self.admin)
        self.client.delete(f"/api/v1/stock/movements/{result.movement.id}/")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, Decimal("0"))

    def test_clerk_cannot_delete_movement(self):
        result = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=1)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.delete(f"/api/v1/stock/movements/{result.movement.id}/")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(StockMovement.objects.filter(id=result.movement.id).exists())

    def test_missing_movement_returns_not_found(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete("/api/v1/stock/movements/00000000-0000-0000-0000-000000000000/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "stock_movement_not_found")

    def test_movement_barcodes_follow_minting_order(self):
        result = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=6)
        self.client.force_authenticate(user=self.viewer)

        response = self.client.get(f"/api/v1/stock/movements/{result.movement.id}/barcodes/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["code"] for item in response.json()], result.movement.barcodes)


class BarcodeApiTests(InventoryTestMixin, TestCase):
    def test_lookup_and_mark_used(self):
        result = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=1)
        code = result.barcodes[0].code
        self.client.force_authenticate(user=self.clerk)

        lookup = self.client.get(f"/api/v1/barcodes/{code}/")
        marked = self.client.post(f"/api/v1/barcodes/{code}/mark-used/", {}, format="json")

        self.assertEqual(lookup.status_code, 200)
        self.assertEqual(lookup.json()["product_name"], "Oak Plank")
        self.assertEqual(marked.status_code, 200)
        self.assertTrue(Barcode.objects.get(code=code).is_used)

    def test_unknown_barcode(self):
        self.client.force_authenticate(user=self.viewer)

        response = self.client.get("/api/v1/barcodes/999999/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "barcode_not_found")

    def test_generate_returns_unused_code(self):
        create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=3)
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/barcodes/generate/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        code = response.json()["code"]
        self.assertRegex(code, r"^\d{6}$")
        self.assertFalse(Barcode.objects.filter(code=code).exists())

    def test_product_barcodes_listing(self):
        create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=2)
        self.client.force_authenticate(user=self.viewer)

        response = self.client.get(f"/api/v1/products/{self.product.id}/barcodes/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)


class CatalogGuardTests(InventoryTestMixin, TestCase):
    def test_product_name_duplicate_is_case_insensitive(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/products/", {"name": "oak plank"}, format="json")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "duplicate")

    def test_identical_attribute_set_is_duplicate(self):
        Product.objects.create(
            name="Blue Chair",
            attributes=[{"attributeId": "color", "name": "Color", "value": "Blue"}, {"attributeId": "size", "name": "Size", "value": "L"}],
        )
        self.client.force_authenticate(user=self.clerk)

        duplicate = self.client.post(
            "/api/v1/products/",
            {
                "name": "Chair Large",
                "attributes": [{"attributeId": "size", "value": "l"}, {"attributeId": "color", "value": "BLUE"}],
            },
            format="json",
        )
        distinct = self.client.post(
            "/api/v1/products/",
            {"name": "Chair Small", "attributes": [{"attributeId": "size", "value": "S"}, {"attributeId": "color", "value": "Blue"}]},
            format="json",
        )

        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(distinct.status_code, 201)

    def test_product_update_keeps_own_name(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.patch(f"/api/v1/products/{self.product.id}/", {"name": "OAK PLANK"}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(AuditLog.objects.filter(action="product.update", entity_id=self.product.id).exists())

    def test_warehouse_name_rules(self):
        self.client.force_authenticate(user=self.clerk)

        duplicate = self.client.post("/api/v1/warehouses/", {"name": "main depot"}, format="json")
        too_short = self.client.post("/api/v1/warehouses/", {"name": "A"}, format="json")
        created = self.client.post("/api/v1/warehouses/", {"name": "North Yard", "has_shelf_system": True}, format="json")

        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(too_short.status_code, 400)
        self.assertEqual(created.status_code, 201)
        self.assertTrue(created.json()["has_shelf_system"])

    def test_shelf_management(self):
        warehouse = Warehouse.objects.create(name="Shelved", has_shelf_system=True)
        self.client.force_authenticate(user=self.clerk)

        first = self.client.post(f"/api/v1/warehouses/{warehouse.id}/shelves/", {"name": "A1"}, format="json")
        duplicate = self.client.post(f"/api/v1/warehouses/{warehouse.id}/shelves/", {"name": "A1"}, format="json")
        too_long = self.client.post(f"/api/v1/warehouses/{warehouse.id}/shelves/", {"name": "X" * 21}, format="json")
        listing = self.client.get(f"/api/v1/warehouses/{warehouse.id}/shelves/")

        self.assertEqual(first.status_code, 201)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(too_long.status_code, 400)
        self.assertEqual([item["name"] for item in listing.json()], ["A1"])

        removed = self.client.delete(f"/api/v1/warehouses/{warehouse.id}/shelves/{first.json()['id']}/")
        self.assertEqual(removed.status_code, 204)
        self.assertFalse(warehouse.shelves.exists())

    def test_shelf_rejected_without_shelf_system(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post(f"/api/v1/warehouses/{self.warehouse.id}/shelves/", {"name": "A1"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")

    def test_disabling_shelf_system_removes_shelves(self):
        warehouse = Warehouse.objects.create(name="Retiring Racks", has_shelf_system=True)
        Shelf.objects.create(warehouse=warehouse, name="Z9")
        self.client.force_authenticate(user=self.clerk)

        response = self.client.patch(f"/api/v1/warehouses/{warehouse.id}/", {"has_shelf_system": False}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["shelves"], [])
        self.assertFalse(Shelf.objects.filter(warehouse=warehouse).exists())

    def test_product_with_movements_cannot_be_deleted(self):
        create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=1)
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/products/{self.product.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertTrue(Product.objects.filter(id=self.product.id).exists())
