# accounting/serializers/invoices.py

from decimal import Decimal

from rest_framework import serializers

from accounting.models.invoice import Invoice
from accounting.models.tenant import Tenant
from accounting.serializers.common import (
    LineItemSerializer,
    TaxSettingsSerializer,
    build_line_items,
    build_tax,
    check_line_total,
    validated,
)
from accounting.services.events import InvoicePosting


class InvoicePostingSerializer(serializers.Serializer):
    """
    Input contract for a customer invoice.

    payment_status may be omitted; it is then derived from amount_paid.
    subtotal is optional; without it tax is extracted from amount
    (tax-inclusive).
    """

    customer_name = serializers.CharField(max_length=150)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    invoice_date = serializers.DateField()
    payment_status = serializers.ChoiceField(
        choices=[c for c, _ in Invoice.PAYMENT_STATUSES],
        required=False,
        allow_blank=True,
        default="",
    )
    amount_paid = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, allow_null=True, default=None,
        min_value=Decimal("0"),
    )
    subtotal = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, allow_null=True, default=None,
        min_value=Decimal("0"),
    )
    discount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, default=Decimal("0"),
        min_value=Decimal("0"),
    )

    invoice_number = serializers.CharField(required=False, allow_blank=True, default="", max_length=64)
    due_date = serializers.DateField(required=False, allow_null=True, default=None)
    category_key = serializers.CharField(required=False, allow_blank=True, default="")
    revenue_account_code = serializers.CharField(required=False, allow_blank=True, default="")
    description = serializers.CharField(required=False, allow_blank=True, default="")

    tax = TaxSettingsSerializer(required=False, allow_null=True, default=None)
    line_items = LineItemSerializer(many=True, required=False, default=list)

    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=120)
    source_rule_id = serializers.IntegerField(required=False, allow_null=True, default=None)

    def validate_customer_name(self, value):
        v = (value or "").strip()
        if not v:
            raise serializers.ValidationError("customer_name is required")
        return v

    def validate(self, attrs):
        check_line_total(attrs)

        due = attrs.get("due_date")
        if due is not None and due < attrs["invoice_date"]:
            raise serializers.ValidationError({"due_date": ["due_date cannot precede invoice_date."]})

        attrs["category_key"] = attrs["category_key"].strip().upper()
        for k in ("invoice_number", "revenue_account_code", "description", "reference"):
            attrs[k] = attrs[k].strip()
        return attrs

    def to_event(self, tenant: Tenant) -> InvoicePosting:
        data = self.validated_data
        return InvoicePosting(
            tenant=tenant,
            customer_name=data["customer_name"],
            amount=data["amount"],
            invoice_date=data["invoice_date"],
            payment_status=data["payment_status"],
            amount_paid=data["amount_paid"],
            subtotal=data["subtotal"],
            discount=data["discount"],
            invoice_number=data["invoice_number"],
            due_date=data["due_date"],
            category_key=data["category_key"],
            revenue_account_code=data["revenue_account_code"],
            description=data["description"],
            tax=build_tax(data["tax"]),
            line_items=build_line_items(data["line_items"]),
            reference=data["reference"],
            source_rule_id=data["source_rule_id"],
        )


def invoice_event(tenant: Tenant, payload: dict) -> InvoicePosting:
    return validated(InvoicePostingSerializer, payload).to_event(tenant)
