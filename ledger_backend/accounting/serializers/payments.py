# accounting/serializers/payments.py

from decimal import Decimal

from rest_framework import serializers

from accounting.models.tenant import Tenant
from accounting.serializers.common import validated
from accounting.services.events import PaymentRecord, VoidPayment


class PaymentRecordSerializer(serializers.Serializer):
    target_kind = serializers.ChoiceField(choices=["invoice", "expense"])
    target_id = serializers.IntegerField(min_value=1)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    payment_date = serializers.DateField()
    method = serializers.CharField(required=False, allow_blank=True, default="cash", max_length=32)
    reference = serializers.CharField(required=False, allow_blank=True, default="", max_length=120)

    def to_event(self, tenant: Tenant) -> PaymentRecord:
        data = self.validated_data
        return PaymentRecord(
            tenant=tenant,
            target_kind=data["target_kind"],
            target_id=data["target_id"],
            amount=data["amount"],
            payment_date=data["payment_date"],
            method=(data["method"] or "cash").strip().lower(),
            reference=data["reference"].strip(),
        )


class VoidPaymentSerializer(serializers.Serializer):
    journal_id = serializers.IntegerField(min_value=1)
    void_date = serializers.DateField()
    reason = serializers.CharField(required=False, allow_blank=True, default="", max_length=255)

    def to_event(self, tenant: Tenant) -> VoidPayment:
        data = self.validated_data
        return VoidPayment(
            tenant=tenant,
            journal_id=data["journal_id"],
            void_date=data["void_date"],
            reason=data["reason"].strip(),
        )


def payment_event(tenant: Tenant, payload: dict) -> PaymentRecord:
    return validated(PaymentRecordSerializer, payload).to_event(tenant)


def void_event(tenant: Tenant, payload: dict) -> VoidPayment:
    return validated(VoidPaymentSerializer, payload).to_event(tenant)
