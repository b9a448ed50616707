# accounting/serializers/expenses.py

from rest_framework import serializers

from accounting.models.expense import Expense
from accounting.models.tenant import Tenant
from accounting.serializers.common import (
    LineItemSerializer,
    TaxSettingsSerializer,
    build_line_items,
    build_tax,
    check_line_total,
    validated,
)
from accounting.services.events import ExpensePosting


class ExpensePostingSerializer(serializers.Serializer):
    """
    Input contract for an expense posting.

    amount is the gross (tax-inclusive) amount; negative only for refunds.
    """

    vendor_name = serializers.CharField(max_length=150)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    expense_date = serializers.DateField()
    payment_status = serializers.ChoiceField(
        choices=[c for c, _ in Expense.PAYMENT_STATUSES],
        required=False,
        default=Expense.STATUS_UNPAID,
    )
    amount_paid = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, allow_null=True, default=None
    )
    due_date = serializers.DateField(required=False, allow_null=True, default=None)

    category_key = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")
    suggested_account_code = serializers.CharField(required=False, allow_blank=True, default="")
    is_refund = serializers.BooleanField(required=False, default=False)

    tax = TaxSettingsSerializer(required=False, allow_null=True, default=None)
    line_items = LineItemSerializer(many=True, required=False, default=list)

    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=120)
    source_rule_id = serializers.IntegerField(required=False, allow_null=True, default=None)

    def validate_vendor_name(self, value):
        v = (value or "").strip()
        if not v:
            raise serializers.ValidationError("vendor_name is required")
        return v

    def validate_amount_paid(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("amount_paid cannot be negative")
        return value

    def validate(self, attrs):
        amount = attrs["amount"]
        if amount == 0:
            raise serializers.ValidationError({"amount": ["Amount must be non-zero."]})
        if amount < 0 and not attrs["is_refund"]:
            raise serializers.ValidationError(
                {"amount": ["Negative amounts are only allowed when is_refund is true."]}
            )
        check_line_total(attrs)

        attrs["category_key"] = attrs["category_key"].strip().upper()
        for k in ("description", "suggested_account_code", "reference"):
            attrs[k] = attrs[k].strip()
        return attrs

    def to_event(self, tenant: Tenant) -> ExpensePosting:
        data = self.validated_data
        return ExpensePosting(
            tenant=tenant,
            vendor_name=data["vendor_name"],
            amount=data["amount"],
            expense_date=data["expense_date"],
            payment_status=data["payment_status"],
            category_key=data["category_key"],
            description=data["description"],
            suggested_account_code=data["suggested_account_code"],
            is_refund=data["is_refund"],
            amount_paid=data["amount_paid"],
            due_date=data["due_date"],
            tax=build_tax(data["tax"]),
            line_items=build_line_items(data["line_items"]),
            reference=data["reference"],
            source_rule_id=data["source_rule_id"],
        )


def expense_event(tenant: Tenant, payload: dict) -> ExpensePosting:
    return validated(ExpensePostingSerializer, payload).to_event(tenant)
