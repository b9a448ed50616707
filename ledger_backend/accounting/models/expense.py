# accounting/models/expense.py

from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from accounting.models.account import Account
from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant


class Expense(models.Model):
    """
    Expense bill (business event), posted to the ledger via the Ledger Writer.

    Rule:
    - Created in the same unit of work as its journal (never unposted)
    - Posting fields are frozen; only payment tracking (amount_paid,
      payment_status) moves afterwards, and each move emits its own journal
    """

    STATUS_PAID = "paid"
    STATUS_UNPAID = "unpaid"
    STATUS_PARTIAL = "partial"
    STATUS_OVERPAID = "overpaid"
    STATUS_REFUNDED = "refunded"

    PAYMENT_STATUSES = [
        (STATUS_PAID, "Paid"),
        (STATUS_UNPAID, "Unpaid"),
        (STATUS_PARTIAL, "Partially paid"),
        (STATUS_OVERPAID, "Overpaid"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    PAYMENT_TRACKING_FIELDS = frozenset({"amount_paid", "payment_status", "updated_at"})

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="expenses",
    )

    journal_entry = models.OneToOneField(
        JournalEntry,
        on_delete=models.PROTECT,
        related_name="expense",
    )

    vendor_name = models.CharField(max_length=150)
    category_key = models.CharField(max_length=64, blank=True, default="")
    description = models.CharField(max_length=255, blank=True, default="")

    expense_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Gross amount; negative for refunds",
    )
    tax_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    is_refund = models.BooleanField(default=False)

    payment_status = models.CharField(
        max_length=10,
        choices=PAYMENT_STATUSES,
        default=STATUS_UNPAID,
    )

    expense_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="expenses",
    )
    resolution_source = models.CharField(max_length=16, blank=True, default="")

    line_items = models.JSONField(default=list, blank=True)
    tax_settings = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-expense_date", "-created_at"]
        indexes = [
            models.Index(fields=["tenant", "expense_date"]),
            models.Index(fields=["tenant", "payment_status"]),
        ]

    def __str__(self):
        return f"Expense #{self.id} - {self.vendor_name} {self.amount} ({self.expense_date})"

    @property
    def outstanding(self) -> Decimal:
        return max(abs(self.amount) - self.amount_paid, Decimal("0.00"))

    def clean(self):
        self.vendor_name = (self.vendor_name or "").strip()
        if not self.vendor_name:
            raise ValidationError({"vendor_name": "vendor_name is required"})

        if self.amount is not None and self.amount < 0 and not self.is_refund:
            raise ValidationError({"amount": "Negative amounts are only allowed for refunds"})

    def save(self, *args, **kwargs):
        update_fields = kwargs.get("update_fields")
        if self.pk and (
            update_fields is None or not set(update_fields) <= self.PAYMENT_TRACKING_FIELDS
        ):
            raise ValidationError("Posted expenses only accept payment tracking updates")
        if not self.pk:
            self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Posted expense records cannot be deleted")
