from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from customers.models import Customer
from customers.services import create_customer, record_transaction
from inventory.models import Product, Shelf, StockMovement, Unit, Warehouse
from inventory.services import create_stock_entry
from labels.services import create_template, get_default_template

DEMO_TEMPLATE = {
    "name": "Standard 70x30",
    "width": 70,
    "height": 30,
    "isDefault": True,
    "elements": [
        {"type": "text", "field": "productName", "x": 3, "y": 2, "width": 64, "height": 6, "fontSize": 10, "bold": True},
        {"type": "text", "field": "features", "x": 3, "y": 8, "width": 64, "height": 4, "fontSize": 7},
        {"type": "barcode", "field": "barcode", "x": 3, "y": 13, "width": 50, "height": 12},
        {"type": "text", "field": "price", "x": 54, "y": 14, "width": 14, "height": 5, "fontSize": 8, "align": "right"},
        {"type": "text", "field": "date", "x": 54, "y": 21, "width": 14, "height": 4, "fontSize": 6, "align": "right"},
    ],
}


class Command(BaseCommand):
    help = "Seed demo catalog, stock, label and customer data for local development."

    def _user(self, username, role, password, **extra):
        User = get_user_model()
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com", "role": role, "is_active": True, **extra},
        )
        if created:
            user.set_password(password)
            user.save(update_fields=["password"])
        return user

    def handle(self, *args, **options):
        User = get_user_model()
        admin_user = self._user("admin", User.Role.ADMIN, "admin1234", is_staff=True, is_superuser=True)
        self._user("clerk", User.Role.CLERK, "clerk1234")
        self._user("viewer", User.Role.VIEWER, "viewer1234")

        main, _ = Warehouse.objects.get_or_create(name="Main Warehouse", defaults={"has_shelf_system": True})
        store, _ = Warehouse.objects.get_or_create(name="Store Front", defaults={"has_shelf_system": False})
        shelf_a, _ = Shelf.objects.get_or_create(warehouse=main, name="A-01")
        Shelf.objects.get_or_create(warehouse=main, name="A-02")

        plank, _ = Product.objects.get_or_create(
            name="Oak Plank 20mm",
            defaults={
                "buy_price": Decimal("7.20"),
                "sell_price": Decimal("12.50"),
                "sell_currency": "PLN",
                "attributes": [
                    {"attributeId": "color", "name": "Color", "value": "Natural"},
                    {"attributeId": "grade", "name": "Grade", "value": "A"},
                ],
            },
        )
        cable, _ = Product.objects.get_or_create(
            name="Copper Cable 3x1.5",
            defaults={"unit": Unit.LENGTH, "buy_price": Decimal("1.10"), "sell_price": Decimal("2.40")},
        )

        if not StockMovement.objects.filter(product=plank).exists():
            create_stock_entry(product_id=plank.id, warehouse_id=main.id, shelf_id=shelf_a.id, quantity=5, actor=admin_user)
        if not StockMovement.objects.filter(product=cable).exists():
            create_stock_entry(product_id=cable.id, warehouse_id=store.id, lengths=[25, 12.5, 4], actor=admin_user)

        if get_default_template() is None:
            create_template(DEMO_TEMPLATE, actor=admin_user)

        if not Customer.objects.filter(name="Demo Customer").exists():
            customer = create_customer({"name": "Demo Customer", "phone": "+48 600 000 001", "opening_balance": "50.00"}, actor=admin_user)
            record_transaction(customer.id, transaction_type="sale", amount="125.00", reference="INV-0001", actor=admin_user)
            record_transaction(customer.id, transaction_type="payment", amount="100.00", actor=admin_user)

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Credentials: admin/admin1234, clerk/clerk1234, viewer/viewer1234")
