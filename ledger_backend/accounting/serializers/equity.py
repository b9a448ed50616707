# accounting/serializers/equity.py

from decimal import Decimal

from rest_framework import serializers

from accounting.models.tenant import Tenant
from accounting.serializers.common import validated
from accounting.services.events import CapitalContribution, RevenueReceipt


class CapitalContributionSerializer(serializers.Serializer):
    contributor = serializers.CharField(max_length=150)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    contribution_date = serializers.DateField()
    description = serializers.CharField(max_length=255)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=120)

    def to_event(self, tenant: Tenant) -> CapitalContribution:
        data = self.validated_data
        return CapitalContribution(
            tenant=tenant,
            contributor=data["contributor"].strip(),
            amount=data["amount"],
            contribution_date=data["contribution_date"],
            description=data["description"].strip(),
            notes=data["notes"].strip(),
            reference=data["reference"].strip(),
        )


class RevenueReceiptSerializer(serializers.Serializer):
    """Cash revenue recorded without an invoice."""

    customer_name = serializers.CharField(max_length=150)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    receipt_date = serializers.DateField()
    description = serializers.CharField(max_length=255)
    payment_method = serializers.CharField(required=False, allow_blank=True, default="CASH", max_length=32)
    revenue_account_code = serializers.CharField(required=False, allow_blank=True, default="")
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=120)

    def to_event(self, tenant: Tenant) -> RevenueReceipt:
        data = self.validated_data
        return RevenueReceipt(
            tenant=tenant,
            customer_name=data["customer_name"].strip(),
            amount=data["amount"],
            receipt_date=data["receipt_date"],
            description=data["description"].strip(),
            payment_method=(data["payment_method"] or "CASH").strip().upper(),
            revenue_account_code=data["revenue_account_code"].strip(),
            reference=data["reference"].strip(),
        )


def capital_event(tenant: Tenant, payload: dict) -> CapitalContribution:
    return validated(CapitalContributionSerializer, payload).to_event(tenant)


def revenue_event(tenant: Tenant, payload: dict) -> RevenueReceipt:
    return validated(RevenueReceiptSerializer, payload).to_event(tenant)
