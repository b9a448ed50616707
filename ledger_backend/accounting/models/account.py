# accounting/models/account.py

from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from accounting.models.tenant import Tenant


class Account(models.Model):
    """
    Represents a single account within a tenant's Chart of Accounts.

    Guarantees:
    - Account codes are unique per tenant
    - Code + name are normalized (trimmed)
    - Normal balance follows the account type unless set explicitly
    - Accounts referenced by ledger entries cannot be deleted
    """

    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"

    ACCOUNT_TYPES = [
        (ASSET, "Asset"),
        (LIABILITY, "Liability"),
        (EQUITY, "Equity"),
        (REVENUE, "Revenue"),
        (EXPENSE, "Expense"),
    ]

    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

    NORMAL_BALANCES = [
        (DEBIT, "Debit"),
        (CREDIT, "Credit"),
    ]

    NORMAL_BALANCE_BY_TYPE = {
        ASSET: DEBIT,
        EXPENSE: DEBIT,
        LIABILITY: CREDIT,
        EQUITY: CREDIT,
        REVENUE: CREDIT,
    }

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="accounts",
    )

    code = models.CharField(max_length=10)
    name = models.CharField(max_length=150)

    account_type = models.CharField(
        max_length=20,
        choices=ACCOUNT_TYPES,
    )

    normal_balance = models.CharField(
        max_length=6,
        choices=NORMAL_BALANCES,
        blank=True,
        default="",
    )

    parent = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="children",
    )

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["code"]
        verbose_name = "Account"
        verbose_name_plural = "Accounts"
        indexes = [
            models.Index(fields=["tenant", "code"]),
            models.Index(fields=["tenant", "account_type"]),
            models.Index(fields=["is_active"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "code"],
                name="uniq_account_tenant_code",
            ),
            models.CheckConstraint(
                condition=~Q(code=""),
                name="chk_account_code_not_blank",
            ),
            models.CheckConstraint(
                condition=~Q(name=""),
                name="chk_account_name_not_blank",
            ),
        ]

    def __str__(self):
        return f"{self.code} – {self.name}"

    def clean(self):
        self.code = (self.code or "").strip()
        self.name = (self.name or "").strip()

        if not self.code:
            raise ValidationError("Account code is required")
        if not self.name:
            raise ValidationError("Account name is required")

        if not self.normal_balance:
            self.normal_balance = self.NORMAL_BALANCE_BY_TYPE.get(self.account_type, "")

        if self.parent_id and self.parent.tenant_id != self.tenant_id:
            raise ValidationError({"parent": "Parent account must belong to the same tenant"})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.pk and self.ledger_entries.exists():
            raise ValidationError(
                f"Account {self.code} is referenced by ledger entries and cannot be deleted"
            )
        return super().delete(*args, **kwargs)
