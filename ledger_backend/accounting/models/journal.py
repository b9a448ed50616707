# accounting/models/journal.py

"""
======================================================
PATH: accounting/models/journal.py
======================================================
JOURNAL ENTRY MODEL

Represents a single accounting transaction (journal header).

Guarantees:
- Immutable once created (no updates, no deletes)
- Idempotency via reference uniqueness per tenant
- entry_date is the accounting effective date
- metadata holds the serialized typed metadata for the journal kind
  (see accounting.services.metadata); it is never an open-ended bag
"""

from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from accounting.models.tenant import Tenant


class JournalEntry(models.Model):
    KIND_EXPENSE = "EXPENSE"
    KIND_INVOICE = "INVOICE"
    KIND_PAYMENT = "PAYMENT"
    KIND_VOID = "VOID"
    KIND_DEPRECIATION = "DEPRECIATION"
    KIND_CAPITAL = "CAPITAL"
    KIND_REVENUE = "REVENUE"
    KIND_CLOSING = "CLOSING"

    KIND_CHOICES = [
        (KIND_EXPENSE, "Expense"),
        (KIND_INVOICE, "Invoice"),
        (KIND_PAYMENT, "Payment"),
        (KIND_VOID, "Void"),
        (KIND_DEPRECIATION, "Depreciation"),
        (KIND_CAPITAL, "Capital contribution"),
        (KIND_REVENUE, "Revenue receipt"),
        (KIND_CLOSING, "Period closing"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="journal_entries",
    )

    reference = models.CharField(
        max_length=120,
        help_text="Idempotency key (unique per tenant)",
    )

    kind = models.CharField(max_length=16, choices=KIND_CHOICES)

    description = models.TextField(help_text="Narrative description of the journal entry")

    entry_date = models.DateField(help_text="Accounting effective date")

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
        help_text="Headline amount of the business event (absolute value)",
    )

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(
        auto_now_add=True,
        help_text="Timestamp when the journal entry was created",
    )

    class Meta:
        ordering = ["-entry_date", "-created_at"]
        indexes = [
            models.Index(fields=["tenant", "entry_date"]),
            models.Index(fields=["tenant", "kind"]),
            models.Index(fields=["created_at"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "reference"],
                name="uniq_journal_tenant_reference",
            ),
            models.CheckConstraint(
                condition=~Q(reference=""),
                name="chk_journal_reference_not_blank",
            ),
        ]
        verbose_name = "Journal Entry"
        verbose_name_plural = "Journal Entries"

    def __str__(self):
        return f"JournalEntry #{self.id} – {self.reference} ({self.entry_date})"

    def clean(self):
        self.reference = (self.reference or "").strip()
        if not self.reference:
            raise ValidationError("Journal entry reference is required")

        self.description = (self.description or "").strip()
        if not self.description:
            raise ValidationError("Journal entry description is required")

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("JournalEntry records are immutable once created")

        self.full_clean(validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("JournalEntry records are immutable and cannot be deleted")
