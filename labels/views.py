from django.conf import settings
from django.http import HttpResponse
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import get_request_id
from common.errors import TemplateNotFoundError, ValidationError
from common.permissions import RoleCapabilityPermission, user_has_capability
from inventory.services import barcodes_for_movement, find_barcode, get_product
from labels.elements import element_from_dict
from labels.layout import Rect, layout_template, move_to_pointer, resize_from_handle
from labels.models import LabelTemplate
from labels.printing import build_label_data, render_label_pages, render_labels_pdf
from labels.serializers import (
    ArrangeElementSerializer,
    LabelTemplateSerializer,
    PreviewQuerySerializer,
    PrintRequestSerializer,
)
from labels.services import (
    create_template,
    delete_template,
    duplicate_template,
    export_template,
    get_default_template,
    get_template,
    import_template as import_template_blob,
    set_default as make_default,
    template_payload,
    update_template,
    wants_default,
)


def _pdf_response(pdf, filename="labels.pdf"):
    response = HttpResponse(pdf, content_type="application/pdf")
    response["Content-Disposition"] = f'inline; filename="{filename}"'
    return response


class LabelTemplateViewSet(viewsets.ModelViewSet):
    queryset = LabelTemplate.objects.all()
    serializer_class = LabelTemplateSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "labels.view",
        "retrieve": "labels.view",
        "default_template": "labels.view",
        "export": "labels.view",
        "preview": "labels.view",
        "print_labels": "labels.print",
        "create": "labels.manage",
        "update": "labels.manage",
        "partial_update": "labels.manage",
        "destroy": "labels.manage",
        "duplicate": "labels.manage",
        "import_template": "labels.manage",
        "arrange": "labels.manage",
        "set_default": "labels.default.set",
    }

    def _context(self):
        return {"actor": self.request.user, "request_id": get_request_id(self.request)}

    def _check_default_flag(self, data, current=False):
        if not hasattr(data, "keys") or ("isDefault" not in data and "is_default" not in data):
            return
        if wants_default(data) != current and not user_has_capability(self.request.user, "labels.default.set"):
            raise PermissionDenied("Only administrators can change the default label template.")

    def retrieve(self, request, pk=None):
        return Response(self.get_serializer(get_template(pk)).data)

    def create(self, request):
        self._check_default_flag(request.data)
        template = create_template(request.data, **self._context())
        return Response(self.get_serializer(template).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, partial=False):
        self._check_default_flag(request.data, current=get_template(pk).is_default)
        template = update_template(pk, request.data, **self._context())
        return Response(self.get_serializer(template).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk=pk, partial=True)

    def destroy(self, request, pk=None):
        delete_template(pk, **self._context())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["get"], url_path="default")
    def default_template(self, request):
        template = get_default_template()
        if template is None:
            raise TemplateNotFoundError("No default label template is set.")
        return Response(self.get_serializer(template).data)

    @action(detail=True, methods=["post"], url_path="set-default")
    def set_default(self, request, pk=None):
        template = make_default(pk, **self._context())
        return Response(self.get_serializer(template).data)

    @action(detail=True, methods=["post"])
    def duplicate(self, request, pk=None):
        template = duplicate_template(pk, **self._context())
        return Response(self.get_serializer(template).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"])
    def export(self, request, pk=None):
        return Response(export_template(pk))

    @action(detail=False, methods=["post"], url_path="import")
    def import_template(self, request):
        template = import_template_blob(request.data, **self._context())
        return Response(self.get_serializer(template).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"])
    def preview(self, request, pk=None):
        template = get_template(pk)
        query = PreviewQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        params = query.validated_data

        product = get_product(params["product"]) if params.get("product") else None
        code = params.get("barcode") or None
        if product is None and code:
            record = find_barcode(code)
            product = record.product
        data = build_label_data(product, code)

        scale = params.get("scale", getattr(settings, "LABEL_PRINT_SCALE", 1.0))
        layout = layout_template(template_payload(template), data, scale)
        layout["elements"] = [
            dict(
                placed.element.to_dict(),
                box={
                    "x": placed.box.x,
                    "y": placed.box.y,
                    "width": placed.box.width,
                    "height": placed.box.height,
                },
                content=placed.content,
            )
            for placed in layout["elements"]
        ]
        return Response(layout)

    @action(detail=True, methods=["post"])
    def arrange(self, request, pk=None):
        template = get_template(pk)
        serializer = ArrangeElementSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        gesture = serializer.validated_data

        elements = [dict(item) for item in template.elements or []]
        index = gesture["element"]
        if index >= len(elements):
            raise ValidationError("Element index is out of range.", errors={"element": [f"No element at index {index}."]})

        rect = Rect.of(element_from_dict(elements[index]))
        grid = getattr(settings, "LABEL_GRID_SIZE_MM", 5)
        if gesture["mode"] == "move":
            rect = move_to_pointer(
                rect,
                gesture["x"],
                gesture["y"],
                template.width,
                template.height,
                offset_x=gesture["offset_x"],
                offset_y=gesture["offset_y"],
                grid_size_mm=grid,
            )
        else:
            rect = resize_from_handle(
                gesture["handle"],
                rect,
                gesture["x"],
                gesture["y"],
                template.width,
                template.height,
                grid_size_mm=grid,
            )

        elements[index].update(x=rect.x, y=rect.y, width=rect.width, height=rect.height)
        template = update_template(pk, {"elements": elements}, **self._context())
        return Response(self.get_serializer(template).data)

    @action(detail=False, methods=["post"], url_path="print")
    def print_labels(self, request):
        serializer = PrintRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        params = serializer.validated_data

        if params.get("template"):
            template = get_template(params["template"])
        else:
            template = get_default_template()
            if template is None:
                raise TemplateNotFoundError("No default label template is set.")

        if params.get("movement"):
            records = barcodes_for_movement(params["movement"])
            product = records[0].product if records else None
            pdf = render_labels_pdf(template, product, [record.code for record in records])
        else:
            records = [find_barcode(code) for code in params["barcodes"]]
            pdf = render_label_pages(template, [build_label_data(record.product, record.code) for record in records])
        return _pdf_response(pdf)
