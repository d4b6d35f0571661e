from rest_framework import serializers

from customers.models import Customer, CustomerTransaction
from inventory.models import Currency


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "code", "name", "phone", "address", "currency", "opening_balance", "created_at", "updated_at"]
        read_only_fields = fields


class CustomerTransactionSerializer(serializers.ModelSerializer):
    class Meta:
        model = CustomerTransaction
        fields = ["id", "customer", "type", "amount", "currency", "description", "date", "reference", "created_at"]
        read_only_fields = fields


class TransactionCreateSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=CustomerTransaction.Type.choices)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    currency = serializers.ChoiceField(choices=Currency.choices, required=False)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    date = serializers.DateTimeField(required=False)
    reference = serializers.CharField(required=False, allow_blank=True, max_length=100, default="")


class BalanceSerializer(serializers.Serializer):
    total_debt = serializers.DecimalField(max_digits=16, decimal_places=2)
    total_credit = serializers.DecimalField(max_digits=16, decimal_places=2)
    balance = serializers.DecimalField(max_digits=16, decimal_places=2)


class TopBuyerSerializer(serializers.Serializer):
    customer = CustomerSerializer()
    total_sales = serializers.DecimalField(max_digits=16, decimal_places=2)


class CustomerStatsSerializer(serializers.Serializer):
    total_customers = serializers.IntegerField()
    total_debt = serializers.DecimalField(max_digits=16, decimal_places=2)
    total_credit = serializers.DecimalField(max_digits=16, decimal_places=2)
    top_buyers = TopBuyerSerializer(many=True)
