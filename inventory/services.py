import logging
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import models, transaction
from django.db.models import F, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from common.audit import create_audit_log
from common.codes import BARCODE_FORMAT, Deadline, mint_unique_code
from common.errors import (
    BarcodeGenerationError,
    BarcodeNotFoundError,
    DuplicateError,
    ExhaustedAttemptsError,
    InvalidLengthsError,
    InvalidQuantityError,
    ProductNotFoundError,
    ShelfNotFoundError,
    ShelfRequiredError,
    StockMovementNotFoundError,
    ValidationError,
    WarehouseNotFoundError,
)
from common.utils import to_decimal
from inventory.models import Barcode, Product, Shelf, StockMovement, Unit, Warehouse

logger = logging.getLogger(__name__)

STOCK_FIELD = models.DecimalField(max_digits=14, decimal_places=3)
WAREHOUSE_NAME_MIN = 2
WAREHOUSE_NAME_MAX = 50
SHELF_NAME_MAX = 20
# Quantities are stored as numeric(14, 3).
QUANTITY_STEP = Decimal("0.001")
MAX_QUANTITY = Decimal("99999999999.999")


@dataclass
class StockEntryResult:
    movement: StockMovement
    barcodes: list[Barcode] = field(default_factory=list)


def _get_or_none(queryset, **lookup):
    try:
        return queryset.filter(**lookup).first()
    except (DjangoValidationError, ValueError, TypeError):
        return None


def get_product(product_id):
    product = _get_or_none(Product.objects.all(), pk=product_id) if product_id else None
    if product is None:
        raise ProductNotFoundError()
    return product


def get_warehouse(warehouse_id):
    warehouse = _get_or_none(Warehouse.objects.all(), pk=warehouse_id) if warehouse_id else None
    if warehouse is None:
        raise WarehouseNotFoundError()
    return warehouse


def resolve_shelf(warehouse, shelf_id):
    """Return the shelf a stock entry is booked on, or None for shelfless warehouses."""
    if not shelf_id:
        if warehouse.has_shelf_system and warehouse.shelves.exists():
            raise ShelfRequiredError()
        return None

    shelf = _get_or_none(Shelf.objects.all(), pk=shelf_id, warehouse=warehouse)
    if shelf is None:
        raise ShelfNotFoundError()
    return shelf


def _piece_count(quantity):
    if isinstance(quantity, bool):
        raise InvalidQuantityError()
    parsed = to_decimal(quantity)
    if parsed is None or parsed <= 0 or parsed != parsed.to_integral_value():
        raise InvalidQuantityError()
    limit = getattr(settings, "STOCK_ENTRY_MAX_UNITS", 10000)
    if parsed > limit:
        raise InvalidQuantityError(
            f"A single stock entry can create at most {limit} barcodes.",
            errors={"quantity": [f"Must be at most {limit}."]},
        )
    return int(parsed)


def expand_quantities(unit, quantity=None, lengths=None):
    """Plan one barcode per physical unit: N pieces of 1, or one entry per cut length."""
    if unit == Unit.PIECE:
        return [Decimal("1")] * _piece_count(quantity)

    if unit == Unit.LENGTH:
        if not isinstance(lengths, (list, tuple)):
            raise InvalidLengthsError()
        parsed = [to_decimal(value) for value in lengths if not isinstance(value, bool)]
        parsed = [value for value in parsed if value is not None]
        if not parsed or any(value > MAX_QUANTITY for value in parsed):
            raise InvalidLengthsError()
        # Rounded here so barcodes and the movement total store the same values.
        parsed = [value.quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP) for value in parsed]
        if any(value <= 0 for value in parsed):
            raise InvalidLengthsError()
        if len(parsed) > getattr(settings, "STOCK_ENTRY_MAX_UNITS", 10000) or sum(parsed) > MAX_QUANTITY:
            raise InvalidLengthsError("Too many cuts or too long a total for one stock entry.")
        return parsed

    raise ValidationError("Unit must be one of: piece, length.", errors={"unit": [f"Unknown unit '{unit}'."]})


def adjust_product_stock(product_id, delta):
    """Apply a stock delta in one UPDATE; the stored value never drops below zero."""
    delta = Decimal(delta)
    Product.objects.filter(pk=product_id).update(
        stock=Greatest(F("stock") + Value(delta, output_field=STOCK_FIELD), Value(Decimal("0"), output_field=STOCK_FIELD), output_field=STOCK_FIELD),
        updated_at=timezone.now(),
    )


def existing_barcode_codes():
    return set(Barcode.objects.values_list("code", flat=True))


def create_stock_entry(
    *,
    product_id,
    warehouse_id,
    unit=None,
    quantity=None,
    lengths=None,
    shelf_id=None,
    note="",
    actor=None,
    request_id=None,
    timeout=None,
    sleep=time.sleep,
):
    product = get_product(product_id)
    warehouse = get_warehouse(warehouse_id)
    shelf = resolve_shelf(warehouse, shelf_id)
    unit = unit or product.unit
    plan = expand_quantities(unit, quantity=quantity, lengths=lengths)
    total = sum(plan, Decimal("0"))

    if timeout is None:
        timeout = getattr(settings, "STOCK_ENTRY_TIMEOUT_SECONDS", None)
    deadline = Deadline(timeout)

    with transaction.atomic():
        movement = StockMovement.objects.create(
            product=product,
            warehouse=warehouse,
            shelf=shelf,
            type=StockMovement.Type.ENTRY,
            quantity=total,
            unit=unit,
            note=note or "",
            barcodes=[],
            created_by=actor if getattr(actor, "is_authenticated", False) else None,
        )

        records = []
        for unit_quantity in plan:

            def create_record(code, unit_quantity=unit_quantity):
                return Barcode.objects.create(
                    code=code,
                    product=product,
                    stock_movement=movement,
                    warehouse=warehouse,
                    shelf=shelf,
                    quantity=unit_quantity,
                    unit=unit,
                )

            try:
                record = mint_unique_code(
                    create_record,
                    existing_barcode_codes,
                    BARCODE_FORMAT,
                    deadline=deadline,
                    sleep=sleep,
                )
            except ExhaustedAttemptsError as exc:
                logger.error(
                    "stock_entry_barcode_generation_failed",
                    extra={"product_id": str(product.id), "movement_id": str(movement.id), "barcode_count": len(records)},
                )
                raise BarcodeGenerationError() from exc
            records.append(record)

        movement.barcodes = [record.code for record in records]
        movement.save(update_fields=["barcodes"])
        adjust_product_stock(product.id, total)

        create_audit_log(
            actor=actor,
            action="stock_entry.create",
            entity="stock_movement",
            entity_id=movement.id,
            after_snapshot={
                "product_id": str(product.id),
                "warehouse_id": str(warehouse.id),
                "shelf_id": str(shelf.id) if shelf else None,
                "unit": unit,
                "quantity": str(total),
                "barcodes": movement.barcodes,
            },
            request_id=request_id,
        )

    logger.info(
        "stock_entry_created",
        extra={"product_id": str(product.id), "movement_id": str(movement.id), "barcode_count": len(records)},
    )
    return StockEntryResult(movement=movement, barcodes=records)


def delete_stock_movement(movement_id, *, actor=None, request_id=None):
    movement = _get_or_none(StockMovement.objects.select_related("product"), pk=movement_id)
    if movement is None:
        raise StockMovementNotFoundError()

    delta = -movement.quantity if movement.type == StockMovement.Type.ENTRY else movement.quantity
    snapshot = {
        "product_id": str(movement.product_id),
        "warehouse_id": str(movement.warehouse_id),
        "type": movement.type,
        "quantity": str(movement.quantity),
        "barcodes": list(movement.barcodes or []),
    }

    with transaction.atomic():
        Barcode.objects.filter(stock_movement=movement).delete()
        movement.delete()
        adjust_product_stock(snapshot["product_id"], delta)
        create_audit_log(
            actor=actor,
            action="stock_movement.delete",
            entity="stock_movement",
            entity_id=movement_id,
            before_snapshot=snapshot,
            request_id=request_id,
        )

    logger.info("stock_movement_deleted", extra={"movement_id": str(movement_id), "product_id": snapshot["product_id"]})


def find_barcode(code):
    record = Barcode.objects.select_related("product", "warehouse", "shelf").filter(code=str(code).strip()).first()
    if record is None:
        raise BarcodeNotFoundError()
    return record


def mark_barcode_used(code, used=True):
    record = find_barcode(code)
    if record.is_used != used:
        record.is_used = used
        record.save(update_fields=["is_used"])
    return record


def barcodes_for_movement(movement_id):
    movement = _get_or_none(StockMovement.objects.all(), pk=movement_id)
    if movement is None:
        raise StockMovementNotFoundError()
    position = {code: index for index, code in enumerate(movement.barcodes or [])}
    records = Barcode.objects.filter(stock_movement=movement).select_related("shelf")
    return sorted(records, key=lambda record: position.get(record.code, len(position)))


def barcodes_for_product(product_id):
    product = get_product(product_id)
    return Barcode.objects.filter(product=product).select_related("warehouse", "shelf").order_by("-created_at", "code")


def _attribute_key(attributes):
    pairs = set()
    for attribute in attributes or []:
        if not isinstance(attribute, dict):
            continue
        attribute_id = attribute.get("attributeId")
        value = attribute.get("value")
        if attribute_id in (None, "") or value in (None, ""):
            continue
        pairs.add((str(attribute_id), str(value).strip().lower()))
    return frozenset(pairs)


def find_duplicate_product(name, attributes=None, exclude_id=None):
    """Same name ignoring case, or the same non-empty attribute set, counts as a duplicate."""
    candidates = Product.objects.all()
    if exclude_id:
        candidates = candidates.exclude(pk=exclude_id)

    normalized_name = (name or "").strip()
    if normalized_name:
        same_name = candidates.filter(name__iexact=normalized_name).first()
        if same_name is not None:
            return same_name

    key = _attribute_key(attributes)
    if not key:
        return None
    for product in candidates.only("id", "name", "attributes"):
        if _attribute_key(product.attributes) == key:
            return product
    return None


def ensure_unique_product(name, attributes=None, exclude_id=None):
    duplicate = find_duplicate_product(name, attributes, exclude_id=exclude_id)
    if duplicate is not None:
        raise DuplicateError(
            f"A product matching '{duplicate.name}' already exists.",
            errors={"duplicate_id": str(duplicate.id)},
        )


def _clean_warehouse_name(name, exclude_id=None):
    name = (name or "").strip()
    if not WAREHOUSE_NAME_MIN <= len(name) <= WAREHOUSE_NAME_MAX:
        raise ValidationError(
            f"Warehouse name must be between {WAREHOUSE_NAME_MIN} and {WAREHOUSE_NAME_MAX} characters.",
            errors={"name": ["Invalid length."]},
        )
    clash = Warehouse.objects.filter(name__iexact=name)
    if exclude_id:
        clash = clash.exclude(pk=exclude_id)
    if clash.exists():
        raise DuplicateError("A warehouse with this name already exists.", errors={"name": [name]})
    return name


def create_warehouse(*, name, has_shelf_system=False, is_active=True):
    return Warehouse.objects.create(
        name=_clean_warehouse_name(name),
        has_shelf_system=bool(has_shelf_system),
        is_active=bool(is_active),
    )


@transaction.atomic
def update_warehouse(warehouse, **changes):
    update_fields = ["updated_at"]
    if "name" in changes:
        warehouse.name = _clean_warehouse_name(changes["name"], exclude_id=warehouse.id)
        update_fields.append("name")
    for flag in ("is_active", "has_shelf_system"):
        if flag in changes:
            setattr(warehouse, flag, bool(changes[flag]))
            update_fields.append(flag)
    warehouse.save(update_fields=update_fields)

    if not warehouse.has_shelf_system:
        Shelf.objects.filter(warehouse=warehouse).delete()
    return warehouse


def add_shelf(warehouse_id, name):
    warehouse = get_warehouse(warehouse_id)
    if not warehouse.has_shelf_system:
        raise ValidationError("This warehouse does not use a shelf system.")
    name = (name or "").strip()
    if not 1 <= len(name) <= SHELF_NAME_MAX:
        raise ValidationError(
            f"Shelf name must be between 1 and {SHELF_NAME_MAX} characters.",
            errors={"name": ["Invalid length."]},
        )
    if warehouse.shelves.filter(name=name).exists():
        raise DuplicateError("A shelf with this name already exists in the warehouse.", errors={"name": [name]})
    return Shelf.objects.create(warehouse=warehouse, name=name)


def remove_shelf(warehouse_id, shelf_id):
    warehouse = get_warehouse(warehouse_id)
    shelf = _get_or_none(warehouse.shelves.all(), pk=shelf_id)
    if shelf is None:
        raise ShelfNotFoundError()
    shelf.delete()
