import logging
from decimal import Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from common.audit import create_audit_log
from common.codes import CUSTOMER_FORMAT, generate_unique_code, is_auto_generate, mint_unique_code
from common.errors import CustomerNotFoundError, DuplicateError, ValidationError
from common.utils import to_decimal, to_json_compatible
from customers.models import Customer, CustomerTransaction
from inventory.models import Currency

logger = logging.getLogger(__name__)

# Sequential codes collide only when two requests read the same maximum.
CODE_MAX_CONFLICTS = 1000
TOP_BUYERS = 5
ZERO = Decimal("0.00")


def _sum(condition, field="amount"):
    return Coalesce(
        Sum(field, filter=condition),
        Value(ZERO),
        output_field=DecimalField(max_digits=16, decimal_places=2),
    )


def _snapshot(customer):
    return to_json_compatible(
        {
            "code": customer.code,
            "name": customer.name,
            "phone": customer.phone,
            "address": customer.address,
            "currency": customer.currency,
            "opening_balance": customer.opening_balance,
        }
    )


def _audit(action, entity_id, *, actor=None, request_id=None, before=None, after=None, entity="customer"):
    create_audit_log(
        actor=actor,
        action=f"{entity}.{action}",
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before,
        after_snapshot=after,
        request_id=request_id,
    )


def get_customer(customer_id):
    try:
        customer = Customer.objects.filter(pk=customer_id).first()
    except (DjangoValidationError, ValueError, TypeError):
        customer = None
    if customer is None:
        raise CustomerNotFoundError()
    return customer


def existing_customer_codes():
    return set(Customer.objects.values_list("code", flat=True))


def next_customer_code():
    """Preview of the code the next auto-numbered customer would get."""
    return generate_unique_code(existing_customer_codes, CUSTOMER_FORMAT)


def _clean_profile(data, partial=False):
    cleaned = {}
    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            raise ValidationError("Customer name is required.", errors={"name": ["This field is required."]})
        cleaned["name"] = name
    for field in ("phone", "address"):
        if field in data:
            cleaned[field] = str(data.get(field) or "").strip()
    if "currency" in data:
        if data["currency"] not in Currency.values:
            raise ValidationError("Unsupported currency.", errors={"currency": [f"Must be one of {', '.join(Currency.values)}."]})
        cleaned["currency"] = data["currency"]
    if "opening_balance" in data:
        balance = to_decimal(data["opening_balance"])
        if balance is None:
            raise ValidationError("Opening balance must be a number.", errors={"opening_balance": ["A valid number is required."]})
        cleaned["opening_balance"] = balance
    return cleaned


def _check_code_free(code, exclude_id=None):
    clash = Customer.objects.filter(code=code)
    if exclude_id:
        clash = clash.exclude(pk=exclude_id)
    if clash.exists():
        raise DuplicateError(f"Customer code '{code}' is already in use.", errors={"code": [code]})


def create_customer(data, *, actor=None, request_id=None):
    """Create a customer; a missing code or the AUTO_GENERATE sentinel takes the next sequential code."""
    profile = _clean_profile(data)
    code = data.get("code")

    if is_auto_generate(code):
        customer = mint_unique_code(
            lambda value: Customer.objects.create(code=value, **profile),
            existing_customer_codes,
            CUSTOMER_FORMAT,
            max_conflicts=CODE_MAX_CONFLICTS,
        )
    else:
        code = str(code).strip()
        _check_code_free(code)
        try:
            with transaction.atomic():
                customer = Customer.objects.create(code=code, **profile)
        except IntegrityError as exc:
            raise DuplicateError(f"Customer code '{code}' is already in use.", errors={"code": [code]}) from exc

    _audit("create", customer.id, actor=actor, request_id=request_id, after=_snapshot(customer))
    logger.info("customer_created", extra={"customer_id": str(customer.id), "code": customer.code})
    return customer


def update_customer(customer_id, changes, *, actor=None, request_id=None):
    customer = get_customer(customer_id)
    before = _snapshot(customer)

    profile = _clean_profile(changes, partial=True)
    if "code" in changes and not is_auto_generate(changes["code"]):
        code = str(changes["code"]).strip()
        if code != customer.code:
            _check_code_free(code, exclude_id=customer.id)
            profile["code"] = code

    for field, value in profile.items():
        setattr(customer, field, value)
    try:
        with transaction.atomic():
            customer.save()
    except IntegrityError as exc:
        raise DuplicateError("Customer code is already in use.", errors={"code": [customer.code]}) from exc

    _audit("update", customer.id, actor=actor, request_id=request_id, before=before, after=_snapshot(customer))
    return customer


def delete_customer(customer_id, *, actor=None, request_id=None):
    customer = get_customer(customer_id)
    before = _snapshot(customer)
    with transaction.atomic():
        customer.delete()
        _audit("delete", customer_id, actor=actor, request_id=request_id, before=before)
    logger.info("customer_deleted", extra={"customer_id": str(customer_id)})


def record_transaction(
    customer_id,
    *,
    transaction_type,
    amount,
    currency=None,
    description="",
    date=None,
    reference="",
    actor=None,
    request_id=None,
):
    customer = get_customer(customer_id)
    if transaction_type not in CustomerTransaction.Type.values:
        raise ValidationError("Unknown transaction type.", errors={"type": [f"Must be one of {', '.join(CustomerTransaction.Type.values)}."]})

    value = to_decimal(amount)
    if value is None or value == 0:
        raise ValidationError("Amount must be a non-zero number.", errors={"amount": ["A non-zero number is required."]})
    if value < 0 and transaction_type != CustomerTransaction.Type.ADJUSTMENT:
        raise ValidationError("Only adjustments can be negative.", errors={"amount": ["Must be positive."]})

    currency = currency or customer.currency
    if currency not in Currency.values:
        raise ValidationError("Unsupported currency.", errors={"currency": [f"Must be one of {', '.join(Currency.values)}."]})

    with transaction.atomic():
        record = CustomerTransaction.objects.create(
            customer=customer,
            type=transaction_type,
            amount=value,
            currency=currency,
            description=description or "",
            date=date or timezone.now(),
            reference=reference or "",
            created_by=actor if getattr(actor, "is_authenticated", False) else None,
        )
        _audit(
            "create",
            record.id,
            entity="customer_transaction",
            actor=actor,
            request_id=request_id,
            after=to_json_compatible({"customer_id": customer.id, "type": transaction_type, "amount": value, "currency": currency}),
        )
    logger.info("customer_transaction_recorded", extra={"customer_id": str(customer.id)})
    return record


def customer_balance(customer):
    """Debt, credit and the resulting balance; positive balance means the customer owes."""
    kinds = CustomerTransaction.Type
    totals = customer.transactions.aggregate(
        sales=_sum(Q(type=kinds.SALE)),
        credits=_sum(Q(type__in=[kinds.PAYMENT, kinds.RETURN])),
        raised=_sum(Q(type=kinds.ADJUSTMENT, amount__gt=0)),
        lowered=_sum(Q(type=kinds.ADJUSTMENT, amount__lt=0)),
    )
    opening = customer.opening_balance or ZERO
    total_debt = max(opening, ZERO) + totals["sales"] + totals["raised"]
    total_credit = max(-opening, ZERO) + totals["credits"] - totals["lowered"]
    return {
        "total_debt": total_debt,
        "total_credit": total_credit,
        "balance": total_debt - total_credit,
    }


def customer_stats(top=TOP_BUYERS):
    customers = list(
        Customer.objects.annotate(total_sales=_sum(Q(transactions__type=CustomerTransaction.Type.SALE), "transactions__amount")).order_by("name")
    )
    total_debt = ZERO
    total_credit = ZERO
    for customer in customers:
        balance = customer_balance(customer)
        total_debt += balance["total_debt"]
        total_credit += balance["total_credit"]

    ranked = sorted(customers, key=lambda customer: customer.total_sales, reverse=True)
    return {
        "total_customers": len(customers),
        "total_debt": total_debt,
        "total_credit": total_credit,
        "top_buyers": [{"customer": customer, "total_sales": customer.total_sales} for customer in ranked[:top]],
    }
