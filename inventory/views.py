from django.db import transaction
from django.db.models import ProtectedError
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request, get_request_id
from common.codes import BARCODE_FORMAT, generate_unique_code
from common.errors import ValidationError
from common.pagination import BarcodeResultsSetPagination
from common.permissions import RoleCapabilityPermission
from inventory.models import Barcode, Product, StockMovement, Warehouse
from inventory.serializers import (
    BarcodeSerializer,
    MarkUsedSerializer,
    ProductSerializer,
    ShelfCreateSerializer,
    ShelfSerializer,
    StockEntryRequestSerializer,
    StockMovementSerializer,
    WarehouseSerializer,
)
from inventory.services import (
    add_shelf,
    barcodes_for_movement,
    barcodes_for_product,
    create_stock_entry,
    create_warehouse,
    delete_stock_movement,
    existing_barcode_codes,
    find_barcode,
    mark_barcode_used,
    remove_shelf,
    update_warehouse,
)


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None, entity_id=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=entity_id or instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(action="update", instance=instance, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        instance_id = instance.id
        try:
            with transaction.atomic():
                instance.delete()
        except ProtectedError as exc:
            raise ValidationError(f"This {self.audit_entity} is referenced by stock movements and cannot be deleted.") from exc
        self._audit(action="delete", instance=instance, before_snapshot=before_snapshot, entity_id=instance_id)


class ProductViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.all().order_by("name")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "barcodes": "stock.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.delete",
    }
    audit_entity = "product"

    def get_queryset(self):
        qs = super().get_queryset()
        search = self.request.query_params.get("search")
        status_filter = self.request.query_params.get("status")
        if search:
            qs = qs.filter(name__icontains=search.strip())
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    @action(detail=True, methods=["get"], url_path="barcodes")
    def barcodes(self, request, pk=None):
        records = barcodes_for_product(pk)
        page = self.paginate_queryset(records)
        if page is not None:
            return self.get_paginated_response(BarcodeSerializer(page, many=True).data)
        return Response(BarcodeSerializer(records, many=True).data)


class WarehouseViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Warehouse.objects.prefetch_related("shelves").order_by("name")
    serializer_class = WarehouseSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "catalog.view",
        "retrieve": "catalog.view",
        "create": "catalog.manage",
        "update": "catalog.manage",
        "partial_update": "catalog.manage",
        "destroy": "catalog.delete",
        "shelves": "catalog.view",
        "add_shelf": "catalog.manage",
        "remove_shelf": "catalog.manage",
    }
    audit_entity = "warehouse"

    def perform_create(self, serializer):
        instance = create_warehouse(**serializer.validated_data)
        serializer.instance = instance
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = update_warehouse(serializer.instance, **serializer.validated_data)
        self._audit(action="update", instance=instance, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(instance).data)

    @action(detail=True, methods=["get"], url_path="shelves")
    def shelves(self, request, pk=None):
        warehouse = self.get_object()
        return Response(ShelfSerializer(warehouse.shelves.all(), many=True).data)

    @shelves.mapping.post
    def add_shelf(self, request, pk=None):
        warehouse = self.get_object()
        serializer = ShelfCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        shelf = add_shelf(warehouse.id, serializer.validated_data["name"])
        return Response(ShelfSerializer(shelf).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=r"shelves/(?P<shelf_id>[^/.]+)")
    def remove_shelf(self, request, pk=None, shelf_id=None):
        warehouse = self.get_object()
        remove_shelf(warehouse.id, shelf_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class StockEntryView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "stock.entry.create"}

    def post(self, request):
        serializer = StockEntryRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = create_stock_entry(
            product_id=data["product"],
            warehouse_id=data["warehouse"],
            shelf_id=data.get("shelf"),
            unit=data.get("unit"),
            quantity=data.get("quantity"),
            lengths=data.get("lengths"),
            note=data.get("note", ""),
            actor=request.user,
            request_id=get_request_id(request),
        )
        return Response(
            {
                "movement": StockMovementSerializer(result.movement).data,
                "barcodes": BarcodeSerializer(result.barcodes, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )


class StockMovementViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.DestroyModelMixin, viewsets.GenericViewSet):
    queryset = StockMovement.objects.select_related("product", "warehouse").order_by("-date")
    serializer_class = StockMovementSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.view",
        "retrieve": "stock.view",
        "barcodes": "stock.view",
        "destroy": "stock.movement.delete",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        for param in ("product", "warehouse", "type"):
            value = self.request.query_params.get(param)
            if value:
                qs = qs.filter(**{param: value})
        return qs

    def destroy(self, request, *args, **kwargs):
        delete_stock_movement(kwargs["pk"], actor=request.user, request_id=get_request_id(request))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["get"], url_path="barcodes")
    def barcodes(self, request, pk=None):
        return Response(BarcodeSerializer(barcodes_for_movement(pk), many=True).data)


class BarcodeViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Barcode.objects.select_related("product", "shelf").order_by("-created_at", "code")
    serializer_class = BarcodeSerializer
    pagination_class = BarcodeResultsSetPagination
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "stock.view",
        "retrieve": "stock.view",
        "mark_used": "barcode.mark_used",
    }
    lookup_field = "code"

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        if params.get("product"):
            qs = qs.filter(product=params["product"])
        if params.get("warehouse"):
            qs = qs.filter(warehouse=params["warehouse"])
        if params.get("is_used") in {"true", "false"}:
            qs = qs.filter(is_used=params["is_used"] == "true")
        return qs

    def retrieve(self, request, code=None):
        return Response(self.get_serializer(find_barcode(code)).data)

    @action(detail=True, methods=["post"], url_path="mark-used")
    def mark_used(self, request, code=None):
        serializer = MarkUsedSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = mark_barcode_used(code, serializer.validated_data["is_used"])
        return Response(self.get_serializer(record).data)


class BarcodeGenerateView(APIView):
    """Preview an unused code; nothing is reserved until a stock entry stores it."""

    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"post": "stock.entry.create"}

    def post(self, request):
        return Response({"code": generate_unique_code(existing_barcode_codes, BARCODE_FORMAT)})
