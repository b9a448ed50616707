# accounting/models/ledger.py

"""
======================================================
PATH: accounting/models/ledger.py
======================================================
LEDGER ENTRY MODEL

One debit or credit line of a journal, against exactly one chart account.

Guarantees:
- Written once by create_journal_entry (bulk insert), never updated/deleted
- amount > 0 and entry_type DEBIT/CREDIT are also database constraints,
  since bulk_create skips clean()
- Account and journal always belong to the same tenant
"""

from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from accounting.models.account import Account
from accounting.models.journal import JournalEntry


class LedgerEntry(models.Model):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    ENTRY_TYPES = [
        (DEBIT, "Debit"),
        (CREDIT, "Credit"),
    ]

    journal_entry = models.ForeignKey(
        JournalEntry,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )

    account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )

    entry_type = models.CharField(
        max_length=6,
        choices=ENTRY_TYPES,
    )

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
        help_text="Positive monetary value",
    )

    description = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Ledger Entry"
        verbose_name_plural = "Ledger Entries"
        ordering = ["id"]
        indexes = [
            models.Index(fields=["account", "entry_type"]),
            models.Index(fields=["journal_entry", "entry_type"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name="chk_ledger_amount_positive",
            ),
            models.CheckConstraint(
                condition=Q(entry_type__in=["DEBIT", "CREDIT"]),
                name="chk_ledger_entry_type",
            ),
        ]

    def __str__(self):
        return f"{self.entry_type} {self.amount} → {self.account}"

    def clean(self):
        if self.entry_type not in (self.DEBIT, self.CREDIT):
            raise ValidationError("Invalid entry_type")

        if self.amount is None or self.amount <= 0:
            raise ValidationError("Ledger amount must be > 0")

        if (
            self.journal_entry_id
            and self.account_id
            and self.journal_entry.tenant_id != self.account.tenant_id
        ):
            raise ValidationError("Ledger entry account must belong to the journal's tenant")

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("LedgerEntry records are immutable and cannot be modified")

        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("LedgerEntry records are immutable and cannot be deleted")
