# accounting/models/invoice.py

from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant


class Invoice(models.Model):
    """
    Customer invoice posted to the ledger.

    Rules:
    - normalized_invoice_number is unique per tenant (when present): the
      second submission of the same number returns the first posting
    - status is derived from amounts and due date, never user-controlled
    - like Expense, only payment tracking fields move after posting
    """

    STATUS_DRAFT = "DRAFT"
    STATUS_SENT = "SENT"
    STATUS_PAID = "PAID"
    STATUS_OVERDUE = "OVERDUE"
    STATUS_CANCELLED = "CANCELLED"

    STATUSES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_SENT, "Sent"),
        (STATUS_PAID, "Paid"),
        (STATUS_OVERDUE, "Overdue"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    PAYMENT_PAID = "paid"
    PAYMENT_UNPAID = "unpaid"
    PAYMENT_INVOICE = "invoice"
    PAYMENT_PARTIAL = "partial"
    PAYMENT_OVERPAID = "overpaid"
    PAYMENT_OVERDUE = "overdue"
    PAYMENT_PREPAID = "prepaid"

    PAYMENT_STATUSES = [
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_UNPAID, "Unpaid"),
        (PAYMENT_INVOICE, "Invoiced"),
        (PAYMENT_PARTIAL, "Partially paid"),
        (PAYMENT_OVERPAID, "Overpaid"),
        (PAYMENT_OVERDUE, "Overdue"),
        (PAYMENT_PREPAID, "Prepaid"),
    ]

    PAYMENT_TRACKING_FIELDS = frozenset(
        {"amount_paid", "payment_status", "status", "updated_at"}
    )

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    journal_entry = models.OneToOneField(
        JournalEntry,
        on_delete=models.PROTECT,
        related_name="invoice",
    )

    customer_name = models.CharField(max_length=150)

    invoice_number = models.CharField(max_length=64, blank=True, default="")
    normalized_invoice_number = models.CharField(max_length=64, blank=True, default="")

    invoice_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)

    total = models.DecimalField(max_digits=14, decimal_places=2)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    payment_status = models.CharField(
        max_length=10,
        choices=PAYMENT_STATUSES,
        default=PAYMENT_UNPAID,
    )
    status = models.CharField(max_length=10, choices=STATUSES, default=STATUS_SENT)

    line_items = models.JSONField(default=list, blank=True)
    tax_settings = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-invoice_date", "-created_at"]
        indexes = [
            models.Index(fields=["tenant", "invoice_date"]),
            models.Index(fields=["tenant", "status"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "normalized_invoice_number"],
                condition=~Q(normalized_invoice_number=""),
                name="uniq_invoice_tenant_number",
            ),
        ]

    def __str__(self):
        label = self.invoice_number or f"#{self.id}"
        return f"Invoice {label} - {self.customer_name} {self.total}"

    @property
    def balance_due(self) -> Decimal:
        return max(self.total - self.amount_paid, Decimal("0.00"))

    def clean(self):
        self.customer_name = (self.customer_name or "").strip()
        if not self.customer_name:
            raise ValidationError({"customer_name": "customer_name is required"})

        if self.total is not None and self.total <= 0:
            raise ValidationError({"total": "Invoice total must be > 0"})

    def save(self, *args, **kwargs):
        update_fields = kwargs.get("update_fields")
        if self.pk and (
            update_fields is None or not set(update_fields) <= self.PAYMENT_TRACKING_FIELDS
        ):
            raise ValidationError("Posted invoices only accept payment tracking updates")
        if not self.pk:
            self.full_clean(validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Posted invoice records cannot be deleted")
