from .equity import CapitalContributionSerializer, RevenueReceiptSerializer, capital_event, revenue_event
from .expenses import ExpensePostingSerializer, expense_event
from .invoices import InvoicePostingSerializer, invoice_event
from .payments import PaymentRecordSerializer, VoidPaymentSerializer, payment_event, void_event

# Kinds a recurring rule can template.
EVENT_BUILDERS = {
    "expense": expense_event,
    "invoice": invoice_event,
}

__all__ = [
    "CapitalContributionSerializer",
    "ExpensePostingSerializer",
    "InvoicePostingSerializer",
    "PaymentRecordSerializer",
    "RevenueReceiptSerializer",
    "VoidPaymentSerializer",
    "EVENT_BUILDERS",
    "capital_event",
    "expense_event",
    "invoice_event",
    "payment_event",
    "revenue_event",
    "void_event",
]
