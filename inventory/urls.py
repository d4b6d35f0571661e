from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    BarcodeGenerateView,
    BarcodeViewSet,
    ProductViewSet,
    StockEntryView,
    StockMovementViewSet,
    WarehouseViewSet,
)

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"warehouses", WarehouseViewSet, basename="warehouse")
router.register(r"stock/movements", StockMovementViewSet, basename="stock-movement")
router.register(r"barcodes", BarcodeViewSet, basename="barcode")

# Explicit paths first so "generate" is never read as a barcode code.
urlpatterns = [
    path("stock/entries/", StockEntryView.as_view(), name="stock-entry-create"),
    path("barcodes/generate/", BarcodeGenerateView.as_view(), name="barcode-generate"),
] + router.urls
