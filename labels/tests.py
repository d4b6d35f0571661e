import uuid
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from common.errors import CannotDeleteDefaultError, TemplateNotFoundError, TemplateValidationError, ValidationError
from core.models import AuditLog
from inventory.models import Product, Warehouse
from inventory.services import create_stock_entry
from labels.elements import BARCODE, TEXT, TextElement, element_from_dict, new_element
from labels.layout import (
    Rect,
    clamp_position,
    layout_template,
    mm_to_px,
    move_to_pointer,
    px_to_mm,
    resize_from_handle,
    snap_to_grid,
    zoom_in,
    zoom_out,
)
from labels.models import LabelTemplate
from labels.printing import build_label_data, render_labels_pdf
from labels.services import (
    create_template,
    delete_template,
    duplicate_template,
    export_template,
    import_template,
    set_default,
    update_template,
)
from labels.validation import validate_template


def template_data(**overrides):
    data = {
        "name": "Shelf label",
        "width": 70,
        "height": 30,
        "elements": [
            {"type": "text", "field": "productName", "x": 5, "y": 2, "width": 40, "height": 8, "fontSize": 10, "bold": True},
            {"type": "barcode", "field": "barcode", "x": 5, "y": 12, "width": 50, "height": 12},
        ],
    }
    data.update(overrides)
    return data


class TemplateValidationTests(SimpleTestCase):
    def element(self, **overrides):
        element = {"type": "text", "field": "price", "x": 0, "y": 0, "width": 20, "height": 5}
        element.update(overrides)
        return element

    def test_element_must_fit_inside_template(self):
        too_wide = validate_template(template_data(elements=[self.element(x=55)]))
        flush = validate_template(template_data(elements=[self.element(x=50)]))

        self.assertFalse(too_wide.is_valid)
        self.assertEqual(too_wide.errors, ["Element 1: Extends beyond template width"])
        self.assertTrue(flush.is_valid)
        self.assertEqual(flush.errors, [])

    def test_errors_accumulate(self):
        result = validate_template({"name": "", "width": 5, "height": 30, "elements": []})

        self.assertEqual(
            result.errors,
            [
                "Template name is required",
                "Template width must be between 10mm and 500mm",
                "Template must have at least one element",
            ],
        )

    def test_element_rules(self):
        result = validate_template(
            template_data(
                elements=[
                    self.element(x=-1, field="barcode"),
                    self.element(fontSize=80, align="justify"),
                    {"type": "shape", "field": "logo", "x": 0, "y": 0, "width": 5, "height": 5},
                    self.element(width="wide"),
                ]
            )
        )

        self.assertEqual(
            result.errors,
            [
                "Element 1: Position cannot be negative",
                "Element 1: Field 'barcode' is not valid for type 'text'",
                "Element 2: Font size must be between 4 and 72",
                "Element 2: Alignment must be one of left, center, right",
                "Element 3: Unknown type 'shape'",
                "Element 4: Position and size must be numbers",
            ],
        )

    def test_long_name_is_rejected(self):
        result = validate_template(template_data(name="x" * 101))
        self.assertEqual(result.errors, ["Template name must be at most 100 characters"])

    def test_name_length_ignores_surrounding_spaces(self):
        self.assertTrue(validate_template(template_data(name="x" * 100)).is_valid)
        self.assertTrue(validate_template(template_data(name="  " + "x" * 100 + "  ")).is_valid)


class ElementTests(SimpleTestCase):
    def test_text_element_round_trips_camel_case_keys(self):
        element = element_from_dict({"type": "text", "field": "date", "x": 1, "y": 2.5, "width": 10, "height": 4, "fontSize": 9, "extra": 1})

        self.assertIsInstance(element, TextElement)
        self.assertEqual(
            element.to_dict(),
            {"type": "text", "field": "date", "x": 1, "y": 2.5, "width": 10, "height": 4, "fontSize": 9, "bold": False, "italic": False, "align": "left"},
        )

    def test_string_flags_are_parsed(self):
        element = element_from_dict({"type": "text", "field": "price", "x": 0, "y": 0, "width": 5, "height": 5, "bold": "false", "italic": "true"})

        self.assertIs(element.bold, False)
        self.assertIs(element.italic, True)
        self.assertIs(element_from_dict({"type": "text", "field": "price", "bold": "1"}).bold, True)

    def test_new_element_uses_type_defaults(self):
        element = new_element(BARCODE, x=3, y=4)

        self.assertEqual((element.field, element.width, element.height), ("barcode", 40, 10))
        self.assertEqual(new_element(TEXT).field, "productName")
        with self.assertRaises(ValueError):
            new_element("shape")


class LayoutTests(SimpleTestCase):
    def test_se_resize(self):
        rect = resize_from_handle("se", Rect(10, 10, 20, 20), 40, 40, 70, 50)
        self.assertEqual(rect, Rect(10, 10, 30, 30))

    def test_se_resize_clamps_to_canvas_and_minimum(self):
        self.assertEqual(resize_from_handle("se", Rect(10, 10, 20, 20), 100, 100, 70, 50), Rect(10, 10, 60, 40))
        self.assertEqual(resize_from_handle("se", Rect(10, 10, 20, 20), 0, 0, 70, 50), Rect(10, 10, 5, 5))

    def test_nw_resize_keeps_opposite_corner(self):
        self.assertEqual(resize_from_handle("nw", Rect(10, 10, 20, 20), 3, 4, 70, 50), Rect(5, 5, 25, 25))
        self.assertEqual(resize_from_handle("nw", Rect(10, 10, 20, 20), 40, 40, 70, 50), Rect(25, 25, 5, 5))

    def test_ne_and_sw_mix_both_rules(self):
        self.assertEqual(resize_from_handle("ne", Rect(10, 10, 20, 20), 40, 0, 70, 50), Rect(10, 0, 30, 30))
        self.assertEqual(resize_from_handle("sw", Rect(10, 10, 20, 20), 0, 40, 70, 50), Rect(0, 10, 30, 30))

    def test_unknown_handle(self):
        with self.assertRaises(ValueError):
            resize_from_handle("n", Rect(0, 0, 10, 10), 5, 5, 70, 50)

    def test_snap_rounds_halves_up(self):
        self.assertEqual(snap_to_grid(7.5, 5), 10)
        self.assertEqual(snap_to_grid(7.4, 5), 5)
        self.assertEqual(snap_to_grid(-2.5, 5), 0)
        self.assertEqual(snap_to_grid(3.3, 0), 3.3)

    def test_clamp_position(self):
        self.assertEqual(clamp_position(65, 0, 20, 10, 70, 30), (50, 0))
        self.assertEqual(clamp_position(-4, -1, 20, 10, 70, 30), (0, 0))
        self.assertEqual(clamp_position(10, 5, 80, 10, 70, 30), (0, 5))

    def test_move_follows_pointer_minus_grab_offset(self):
        rect = move_to_pointer(Rect(0, 0, 20, 10), 33, 12, 70, 30, offset_x=2, offset_y=1)
        self.assertEqual(rect, Rect(30, 10, 20, 10))

    def test_zoom_and_unit_conversion(self):
        self.assertAlmostEqual(zoom_in(1.0), 1.2)
        self.assertEqual(zoom_in(2.9), 3.0)
        self.assertEqual(zoom_out(0.35), 0.3)
        self.assertEqual(mm_to_px(10, 1.5), 60)
        self.assertEqual(px_to_mm(60, 1.5), 10)
        with self.assertRaises(ValueError):
            px_to_mm(10, 0)

    def test_layout_resolves_content(self):
        layout = layout_template(template_data(), {"productName": "Oak Plank", "barcode": "123456"}, scale=2)

        self.assertEqual((layout["width"], layout["height"]), (560, 240))
        text, barcode = layout["elements"]
        self.assertEqual(text.box, Rect(40, 16, 320, 64))
        self.assertEqual(text.content, "Oak Plank")
        self.assertEqual(barcode.content, "123456")


class LabelTestMixin:
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.viewer = user_model.objects.create_user(username="viewer", password="pass1234", role="viewer")
        self.clerk = user_model.objects.create_user(username="clerk", password="pass1234", role="clerk")
        self.admin = user_model.objects.create_user(username="admin", password="pass1234", role="admin")


class TemplateServiceTests(LabelTestMixin, TestCase):
    def test_only_one_default(self):
        first = create_template(template_data(name="First", isDefault=True))
        second = create_template(template_data(name="Second", isDefault=True))

        first.refresh_from_db()
        self.assertFalse(first.is_default)
        self.assertTrue(second.is_default)

        set_default(first.id, actor=self.admin, request_id="switch-default")
        self.assertEqual(list(LabelTemplate.objects.filter(is_default=True)), [LabelTemplate.objects.get(pk=first.id)])
        self.assertTrue(AuditLog.objects.filter(action="label_template.set_default", request_id="switch-default").exists())

    def test_set_default_on_missing_template(self):
        template = create_template(template_data(isDefault=True))

        with self.assertRaises(TemplateNotFoundError):
            set_default(uuid.uuid4())
        template.refresh_from_db()
        self.assertTrue(template.is_default)

    def test_default_cannot_be_deleted(self):
        template = create_template(template_data(isDefault=True))

        with self.assertRaises(CannotDeleteDefaultError):
            delete_template(template.id)
        self.assertTrue(LabelTemplate.objects.filter(pk=template.id).exists())

    def test_invalid_template_is_not_saved(self):
        with self.assertRaises(TemplateValidationError) as ctx:
            create_template(template_data(width=600))

        self.assertEqual(ctx.exception.errors, ["Template width must be between 10mm and 500mm"])
        self.assertFalse(LabelTemplate.objects.exists())

    def test_update_merges_and_revalidates(self):
        template = create_template(template_data())

        updated = update_template(template.id, {"name": "Renamed"})
        self.assertEqual(updated.name, "Renamed")
        self.assertEqual(len(updated.elements), 2)

        with self.assertRaises(TemplateValidationError):
            update_template(template.id, {"width": 40})
        template.refresh_from_db()
        self.assertEqual(template.width, 70)

    def test_duplicate_gets_copy_suffix_and_is_never_default(self):
        source = create_template(template_data(isDefault=True))

        copy = duplicate_template(source.id)

        self.assertEqual(copy.name, "Shelf label (Copy)")
        self.assertFalse(copy.is_default)
        self.assertEqual(copy.elements, source.elements)

    def test_export_import_round_trip(self):
        source = create_template(template_data(isDefault=True))
        exported = export_template(source.id)

        imported = import_template(exported)
        reexported = export_template(imported.id)

        self.assertEqual(imported.name, "Shelf label (Imported)")
        self.assertFalse(imported.is_default)
        self.assertEqual(
            {key: value for key, value in reexported.items() if key not in {"name", "isDefault"}},
            {key: value for key, value in exported.items() if key not in {"name", "isDefault"}},
        )

    def test_import_rejects_invalid_blob(self):
        with self.assertRaises(TemplateValidationError):
            import_template({"name": "Broken", "width": 70, "height": 30, "elements": "nope"})
        with self.assertRaises(TemplateValidationError):
            import_template(["not", "an", "object"])


class LabelApiTests(LabelTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.product = Product.objects.create(
            name="Oak Plank",
            sell_price=Decimal("12.50"),
            attributes=[{"attributeId": "a1", "name": "Color", "value": "Natural"}],
        )
        self.warehouse = Warehouse.objects.create(name="Main Depot")

    def test_crud_and_validation_envelope(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.post("/api/v1/labels/", template_data(), format="json")
        self.assertEqual(response.status_code, 201)
        template_id = response.json()["id"]

        response = self.client.patch(f"/api/v1/labels/{template_id}/", {"name": "Bin label"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["name"], "Bin label")

        response = self.client.post("/api/v1/labels/", template_data(name="", elements=[]), format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_label_template")
        self.assertEqual(response.json()["errors"], ["Template name is required", "Template must have at least one element"])

        response = self.client.delete(f"/api/v1/labels/{template_id}/")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/v1/labels/{template_id}/").status_code, 404)

    def test_default_management(self):
        self.client.force_authenticate(user=self.admin)
        self.assertEqual(self.client.get("/api/v1/labels/default/").status_code, 404)

        template_id = self.client.post("/api/v1/labels/", template_data(), format="json").json()["id"]
        response = self.client.post(f"/api/v1/labels/{template_id}/set-default/")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_default"])

        self.assertEqual(self.client.get("/api/v1/labels/default/").json()["id"], template_id)

        response = self.client.delete(f"/api/v1/labels/{template_id}/")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "cannot_delete_default")

    def test_role_checks(self):
        self.client.force_authenticate(user=self.viewer)
        self.assertEqual(self.client.post("/api/v1/labels/", template_data(), format="json").status_code, 403)
        self.assertEqual(self.client.get("/api/v1/labels/").status_code, 200)

        self.client.force_authenticate(user=self.clerk)
        self.assertEqual(self.client.post("/api/v1/labels/", template_data(isDefault=True), format="json").status_code, 403)
        template_id = self.client.post("/api/v1/labels/", template_data(isDefault=False), format="json").json()["id"]
        self.assertEqual(self.client.post(f"/api/v1/labels/{template_id}/set-default/").status_code, 403)

    def test_duplicate_export_and_import_endpoints(self):
        self.client.force_authenticate(user=self.clerk)
        template_id = self.client.post("/api/v1/labels/", template_data(), format="json").json()["id"]

        copy = self.client.post(f"/api/v1/labels/{template_id}/duplicate/")
        self.assertEqual(copy.status_code, 201)
        self.assertEqual(copy.json()["name"], "Shelf label (Copy)")

        exported = self.client.get(f"/api/v1/labels/{template_id}/export/").json()
        self.assertEqual(set(exported), {"name", "width", "height", "isDefault", "elements"})
        self.assertEqual(exported["elements"][0]["fontSize"], 10)

        imported = self.client.post("/api/v1/labels/import/", exported, format="json")
        self.assertEqual(imported.status_code, 201)
        self.assertEqual(imported.json()["name"], "Shelf label (Imported)")
        self.assertEqual(LabelTemplate.objects.count(), 3)

    def test_preview_resolves_product_data(self):
        self.client.force_authenticate(user=self.viewer)
        template = create_template(template_data())

        response = self.client.get(f"/api/v1/labels/{template.id}/preview/", {"scale": 2, "product": str(self.product.id)})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["width"], 560)
        self.assertEqual(payload["elements"][0]["box"], {"x": 40, "y": 16, "width": 320, "height": 64})
        self.assertEqual(payload["elements"][0]["content"], "Oak Plank")

    def test_arrange_snaps_and_saves(self):
        self.client.force_authenticate(user=self.clerk)
        template = create_template(template_data())

        response = self.client.post(
            f"/api/v1/labels/{template.id}/arrange/",
            {"element": 1, "mode": "resize", "handle": "se", "x": 62, "y": 28},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        barcode = response.json()["elements"][1]
        self.assertEqual((barcode["x"], barcode["y"], barcode["width"], barcode["height"]), (5, 12, 55, 18))

        response = self.client.post(
            f"/api/v1/labels/{template.id}/arrange/",
            {"element": 0, "mode": "move", "x": 12, "y": 9},
            format="json",
        )
        text = response.json()["elements"][0]
        self.assertEqual((text["x"], text["y"]), (10, 10))

        response = self.client.post(f"/api/v1/labels/{template.id}/arrange/", {"element": 5, "mode": "move", "x": 0, "y": 0}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_print_returns_pdf(self):
        self.client.force_authenticate(user=self.viewer)
        create_template(template_data(isDefault=True))
        entry = create_stock_entry(product_id=self.product.id, warehouse_id=self.warehouse.id, quantity=3)

        response = self.client.post("/api/v1/labels/print/", {"barcodes": entry.movement.barcodes}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertTrue(response.content.startswith(b"%PDF"))

        response = self.client.post("/api/v1/labels/print/", {"movement": str(entry.movement.id)}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content.startswith(b"%PDF"))

        self.assertEqual(self.client.post("/api/v1/labels/print/", {"barcodes": ["000000"]}, format="json").status_code, 404)
        self.assertEqual(self.client.post("/api/v1/labels/print/", {}, format="json").status_code, 400)


class PrintingTests(TestCase):
    def test_label_data_from_product(self):
        product = Product.objects.create(
            name="Oak Plank",
            sell_price=Decimal("12.50"),
            sell_currency="PLN",
            attributes=[{"attributeId": "a1", "name": "Color", "value": "Natural"}, {"attributeId": "a2", "name": "Grade", "value": "A"}],
        )

        data = build_label_data(product, "123456")

        self.assertEqual(data["productName"], "Oak Plank")
        self.assertEqual(data["features"], "Color: Natural, Grade: A")
        self.assertEqual(data["price"], "12.50 PLN")
        self.assertEqual(data["barcode"], "123456")
        self.assertRegex(data["date"], r"^\d{2}\.\d{2}\.\d{4}$")

    def test_sample_data_without_product(self):
        data = build_label_data()
        self.assertEqual(data["productName"], "Sample Product")
        self.assertEqual(data["price"], "29.99 USD")

    def test_render_requires_codes(self):
        template = create_template(template_data())

        with self.assertRaises(ValidationError):
            render_labels_pdf(template, None, [])
        self.assertTrue(render_labels_pdf(template, None, ["123456"]).startswith(b"%PDF"))
