from rest_framework import serializers

from inventory.models import Barcode, Product, Shelf, StockMovement, Unit, Warehouse
from inventory.services import ensure_unique_product


class ProductSerializer(serializers.ModelSerializer):
    attributes = serializers.ListField(child=serializers.DictField(), required=False)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "description",
            "buy_price",
            "sell_price",
            "buy_currency",
            "sell_currency",
            "stock",
            "unit",
            "status",
            "attributes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "stock", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Product name is required.")
        return value

    def validate(self, attrs):
        instance = self.instance
        name = attrs.get("name", instance.name if instance else "")
        attributes = attrs.get("attributes", instance.attributes if instance else [])
        ensure_unique_product(name, attributes, exclude_id=instance.id if instance else None)
        return attrs

    def validate_attributes(self, value):
        cleaned = []
        for index, item in enumerate(value, start=1):
            attribute_id = str(item.get("attributeId") or "").strip()
            attribute_value = str(item.get("value") or "").strip()
            if not attribute_id or not attribute_value:
                raise serializers.ValidationError(f"Attribute {index}: attributeId and value are required.")
            cleaned.append({"attributeId": attribute_id, "name": str(item.get("name") or ""), "value": attribute_value})
        return cleaned


class ShelfSerializer(serializers.ModelSerializer):
    class Meta:
        model = Shelf
        fields = ["id", "warehouse", "name", "created_at"]
        read_only_fields = ["id", "warehouse", "created_at"]


class WarehouseSerializer(serializers.ModelSerializer):
    shelves = ShelfSerializer(many=True, read_only=True)

    class Meta:
        model = Warehouse
        fields = ["id", "name", "is_active", "has_shelf_system", "shelves", "created_at", "updated_at"]
        read_only_fields = ["id", "shelves", "created_at", "updated_at"]
        # Name rules live in inventory.services so API and commands share them.
        extra_kwargs = {"name": {"validators": []}}


class BarcodeSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    shelf_name = serializers.CharField(source="shelf.name", read_only=True, default=None)

    class Meta:
        model = Barcode
        fields = [
            "id",
            "code",
            "product",
            "product_name",
            "stock_movement",
            "warehouse",
            "shelf",
            "shelf_name",
            "quantity",
            "unit",
            "is_used",
            "created_at",
        ]
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    warehouse_name = serializers.CharField(source="warehouse.name", read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            "id",
            "product",
            "product_name",
            "warehouse",
            "warehouse_name",
            "shelf",
            "type",
            "quantity",
            "unit",
            "date",
            "note",
            "barcodes",
            "created_at",
        ]
        read_only_fields = fields


class StockEntryRequestSerializer(serializers.Serializer):
    """Shape check only; quantity and lengths are interpreted by the fan-out service."""

    product = serializers.UUIDField()
    warehouse = serializers.UUIDField()
    shelf = serializers.UUIDField(required=False, allow_null=True)
    unit = serializers.ChoiceField(choices=Unit.choices, required=False)
    quantity = serializers.JSONField(required=False, allow_null=True)
    lengths = serializers.JSONField(required=False, allow_null=True)
    note = serializers.CharField(required=False, allow_blank=True, default="")


class ShelfCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, allow_blank=True)


class MarkUsedSerializer(serializers.Serializer):
    is_used = serializers.BooleanField(default=True)
