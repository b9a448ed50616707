# accounting/serializers/common.py

"""
Shared input pieces for posting payloads.

These serializers only validate and normalize; they are never bound to a
view. Field-level errors come back as PostingValidationError(errors).
"""

from decimal import Decimal

from rest_framework import serializers

from accounting.services.events import TAX_FIXED, TAX_PERCENTAGE, LineItem, TaxSettings
from accounting.services.exceptions import PostingValidationError


def _plain(detail):
    if isinstance(detail, dict):
        return {k: _plain(v) for k, v in detail.items()}
    if isinstance(detail, list):
        return [_plain(v) for v in detail]
    return str(detail)


def validated(serializer_class, data, **kwargs):
    serializer = serializer_class(data=data, **kwargs)
    if not serializer.is_valid():
        raise PostingValidationError(_plain(serializer.errors))
    return serializer


class LineItemSerializer(serializers.Serializer):
    description = serializers.CharField(required=False, allow_blank=True, default="")
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    quantity = serializers.DecimalField(
        max_digits=14, decimal_places=3, required=False, default=Decimal("1"),
        min_value=Decimal("0.001"),
    )
    product_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    category_key = serializers.CharField(required=False, allow_blank=True, default="")
    account_code = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_amount(self, value):
        if value < 0:
            raise serializers.ValidationError("Line amount cannot be negative.")
        return value

    def to_line_item(self, attrs) -> LineItem:
        return LineItem(
            description=attrs["description"].strip(),
            amount=attrs["amount"],
            quantity=attrs["quantity"],
            product_id=attrs["product_id"],
            category_key=attrs["category_key"].strip().upper(),
            account_code=attrs["account_code"].strip(),
        )


class TaxSettingsSerializer(serializers.Serializer):
    enabled = serializers.BooleanField(required=False, default=False)
    tax_type = serializers.ChoiceField(
        choices=[TAX_PERCENTAGE, TAX_FIXED], required=False, default=TAX_PERCENTAGE
    )
    rate = serializers.DecimalField(
        max_digits=7, decimal_places=4, required=False, default=Decimal("0"),
        min_value=Decimal("0"), max_value=Decimal("100"),
    )
    amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, default=Decimal("0"),
        min_value=Decimal("0"),
    )

    def to_settings(self, attrs) -> TaxSettings:
        return TaxSettings(
            enabled=attrs["enabled"],
            tax_type=attrs["tax_type"],
            rate=attrs["rate"],
            amount=attrs["amount"],
        )


def build_line_items(raw: list) -> list[LineItem]:
    return [LineItemSerializer().to_line_item(item) for item in raw or []]


def build_tax(raw: dict | None) -> TaxSettings:
    if not raw:
        return TaxSettings()
    return TaxSettingsSerializer().to_settings(raw)


def check_line_total(attrs: dict) -> None:
    items = attrs.get("line_items") or []
    if items and sum((li["amount"] for li in items), Decimal("0")) <= 0:
        raise serializers.ValidationError({"line_items": ["Line items must sum to a positive amount."]})
