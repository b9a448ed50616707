# accounting/services/events.py

"""
POSTING EVENTS

Normalized business events accepted by the Ledger Writer. Callers usually
build these through the validating serializers in accounting.serializers;
producers inside the codebase (scheduler, depreciation runner) may build
them directly.

submitted_at is part of every derived reference: two identical events submitted
separately are two postings. A retry is recognised by resending the same
explicit reference (or the same event object).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from django.utils import timezone

from accounting.models.tenant import Tenant

TAX_PERCENTAGE = "percentage"
TAX_FIXED = "fixed"


@dataclass
class LineItem:
    description: str
    amount: Decimal
    quantity: Decimal = Decimal("1")
    product_id: int | None = None
    category_key: str = ""
    account_code: str = ""


@dataclass
class TaxSettings:
    enabled: bool = False
    tax_type: str = TAX_PERCENTAGE
    rate: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")

    def as_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "tax_type": self.tax_type,
            "rate": str(self.rate),
            "amount": str(self.amount),
        }


@dataclass
class ExpensePosting:
    tenant: Tenant
    vendor_name: str
    amount: Decimal
    expense_date: date
    payment_status: str = "unpaid"
    category_key: str = ""
    description: str = ""
    suggested_account_code: str = ""
    is_refund: bool = False
    amount_paid: Decimal | None = None
    due_date: date | None = None
    tax: TaxSettings = field(default_factory=TaxSettings)
    line_items: list[LineItem] = field(default_factory=list)
    reference: str = ""
    source_rule_id: int | None = None
    submitted_at: datetime = field(default_factory=timezone.now)


@dataclass
class InvoicePosting:
    tenant: Tenant
    customer_name: str
    amount: Decimal
    invoice_date: date
    payment_status: str = ""  # blank: derived from amount_paid
    amount_paid: Decimal | None = None
    subtotal: Decimal | None = None
    discount: Decimal = Decimal("0")
    invoice_number: str = ""
    due_date: date | None = None
    category_key: str = ""
    revenue_account_code: str = ""
    description: str = ""
    tax: TaxSettings = field(default_factory=TaxSettings)
    line_items: list[LineItem] = field(default_factory=list)
    reference: str = ""
    source_rule_id: int | None = None
    submitted_at: datetime = field(default_factory=timezone.now)


@dataclass
class PaymentRecord:
    tenant: Tenant
    target_kind: str  # "invoice" | "expense"
    target_id: int
    amount: Decimal
    payment_date: date
    method: str = "cash"
    reference: str = ""
    submitted_at: datetime = field(default_factory=timezone.now)


@dataclass
class VoidPayment:
    tenant: Tenant
    journal_id: int
    void_date: date
    reason: str = ""
    reference: str = ""


@dataclass
class AssetDepreciation:
    tenant: Tenant
    asset_id: int
    asset_name: str
    amount: Decimal
    run_date: date
    expense_account_code: str
    accumulated_account_code: str
    accumulated_after: Decimal
    reference: str = ""


@dataclass
class CapitalContribution:
    tenant: Tenant
    contributor: str
    amount: Decimal
    contribution_date: date
    description: str
    notes: str = ""
    reference: str = ""
    submitted_at: datetime = field(default_factory=timezone.now)


@dataclass
class RevenueReceipt:
    tenant: Tenant
    customer_name: str
    amount: Decimal
    receipt_date: date
    description: str
    payment_method: str = "CASH"
    revenue_account_code: str = ""
    reference: str = ""
    submitted_at: datetime = field(default_factory=timezone.now)


PostingEvent = (
    ExpensePosting
    | InvoicePosting
    | PaymentRecord
    | VoidPayment
    | AssetDepreciation
    | CapitalContribution
    | RevenueReceipt
)
