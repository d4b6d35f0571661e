from rest_framework import serializers

from labels.layout import HANDLES
from labels.models import LabelTemplate


class LabelTemplateSerializer(serializers.ModelSerializer):
    class Meta:
        model = LabelTemplate
        fields = ["id", "name", "width", "height", "elements", "is_default", "created_at", "updated_at"]
        read_only_fields = fields


class PreviewQuerySerializer(serializers.Serializer):
    scale = serializers.FloatField(required=False)
    barcode = serializers.CharField(required=False, allow_blank=True)
    product = serializers.UUIDField(required=False)


class ArrangeElementSerializer(serializers.Serializer):
    """One designer gesture: drag an element or one of its corner handles to a pointer position in mm."""

    element = serializers.IntegerField(min_value=0)
    mode = serializers.ChoiceField(choices=["move", "resize"])
    handle = serializers.ChoiceField(choices=HANDLES, required=False)
    x = serializers.FloatField()
    y = serializers.FloatField()
    offset_x = serializers.FloatField(required=False, default=0)
    offset_y = serializers.FloatField(required=False, default=0)

    def validate(self, attrs):
        if attrs["mode"] == "resize" and not attrs.get("handle"):
            raise serializers.ValidationError({"handle": ["A handle is required to resize."]})
        return attrs


class PrintRequestSerializer(serializers.Serializer):
    template = serializers.UUIDField(required=False, allow_null=True)
    barcodes = serializers.ListField(child=serializers.CharField(), required=False)
    movement = serializers.UUIDField(required=False)

    def validate(self, attrs):
        if not attrs.get("barcodes") and not attrs.get("movement"):
            raise serializers.ValidationError("Provide barcodes or a stock movement to print.")
        return attrs
