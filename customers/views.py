from django.db.models import Q
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.audit import get_request_id
from common.permissions import RoleCapabilityPermission
from customers.models import Customer
from customers.serializers import (
    BalanceSerializer,
    CustomerSerializer,
    CustomerStatsSerializer,
    CustomerTransactionSerializer,
    TransactionCreateSerializer,
)
from customers.services import (
    create_customer,
    customer_balance,
    customer_stats,
    delete_customer,
    get_customer,
    next_customer_code,
    record_transaction,
    update_customer,
)


class CustomerViewSet(viewsets.ModelViewSet):
    queryset = Customer.objects.all().order_by("code")
    serializer_class = CustomerSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "customers.view",
        "retrieve": "customers.view",
        "next_code": "customers.view",
        "stats": "customers.view",
        "balance": "customers.view",
        "transactions": "customers.view",
        "create": "customers.manage",
        "update": "customers.manage",
        "partial_update": "customers.manage",
        "add_transaction": "customers.manage",
        "destroy": "customers.delete",
    }

    def _context(self):
        return {"actor": self.request.user, "request_id": get_request_id(self.request)}

    def get_queryset(self):
        qs = super().get_queryset()
        search = (self.request.query_params.get("search") or "").strip()
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(code__icontains=search) | Q(phone__icontains=search))
        return qs

    def retrieve(self, request, pk=None):
        return Response(self.get_serializer(get_customer(pk)).data)

    def create(self, request):
        customer = create_customer(request.data, **self._context())
        return Response(self.get_serializer(customer).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, partial=False):
        customer = update_customer(pk, request.data, **self._context())
        return Response(self.get_serializer(customer).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk=pk, partial=True)

    def destroy(self, request, pk=None):
        delete_customer(pk, **self._context())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["get"], url_path="next-code")
    def next_code(self, request):
        return Response({"code": next_customer_code()})

    @action(detail=False, methods=["get"])
    def stats(self, request):
        return Response(CustomerStatsSerializer(customer_stats()).data)

    @action(detail=True, methods=["get"])
    def balance(self, request, pk=None):
        customer = get_customer(pk)
        return Response(dict(BalanceSerializer(customer_balance(customer)).data, customer=str(customer.id), currency=customer.currency))

    @action(detail=True, methods=["get"])
    def transactions(self, request, pk=None):
        customer = get_customer(pk)
        records = customer.transactions.order_by("-date", "-created_at")
        page = self.paginate_queryset(records)
        if page is not None:
            return self.get_paginated_response(CustomerTransactionSerializer(page, many=True).data)
        return Response(CustomerTransactionSerializer(records, many=True).data)

    @transactions.mapping.post
    def add_transaction(self, request, pk=None):
        serializer = TransactionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        record = record_transaction(
            pk,
            transaction_type=data["type"],
            amount=data["amount"],
            currency=data.get("currency"),
            description=data.get("description", ""),
            date=data.get("date"),
            reference=data.get("reference", ""),
            **self._context(),
        )
        return Response(CustomerTransactionSerializer(record).data, status=status.HTTP_201_CREATED)
