# assets/models/asset.py

"""
FIXED ASSET REGISTER

- Straight-line (SL) is the only method.
- residual_value is clamped to [0, cost] on registration.
- accumulated_depreciation, status and next_run_on move ONLY through the
  depreciation runner (assets.services.depreciation).
- fully_depreciated is terminal: next_run_on is cleared and never set again.
"""

from __future__ import annotations

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant


class AssetCategory(models.Model):
    """
    Optional grouping with its own depreciation accounts.
    Blank codes fall back to the chart defaults (6200 / 1590).
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="asset_categories",
    )

    name = models.CharField(max_length=100)

    expense_account_code = models.CharField(max_length=20, blank=True, default="")
    accumulated_account_code = models.CharField(max_length=20, blank=True, default="")

    default_useful_life_months = models.PositiveIntegerField(default=36)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "Asset categories"
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "name"],
                name="uniq_asset_category_tenant_name",
            ),
        ]

    def __str__(self):
        return self.name


class Asset(models.Model):
    METHOD_STRAIGHT_LINE = "SL"

    METHOD_CHOICES = [
        (METHOD_STRAIGHT_LINE, "Straight line"),
    ]

    STATUS_ACTIVE = "active"
    STATUS_FULLY_DEPRECIATED = "fully_depreciated"

    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_FULLY_DEPRECIATED, "Fully depreciated"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="assets",
    )

    category = models.ForeignKey(
        AssetCategory,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="assets",
    )

    name = models.CharField(max_length=150)
    vendor_name = models.CharField(max_length=150, blank=True, default="")

    acquisition_date = models.DateField()
    in_service_date = models.DateField()

    cost = models.DecimalField(max_digits=14, decimal_places=2)
    residual_value = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    useful_life_months = models.PositiveIntegerField()

    method = models.CharField(
        max_length=4,
        choices=METHOD_CHOICES,
        default=METHOD_STRAIGHT_LINE,
    )

    accumulated_depreciation = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0.00"),
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
    )

    next_run_on = models.DateField(null=True, blank=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["next_run_on", "id"]
        indexes = [
            models.Index(fields=["tenant", "status", "next_run_on"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(cost__gte=0),
                name="chk_asset_cost_gte_zero",
            ),
            models.CheckConstraint(
                condition=Q(residual_value__gte=0) & Q(residual_value__lte=F("cost")),
                name="chk_asset_residual_within_cost",
            ),
            models.CheckConstraint(
                condition=Q(useful_life_months__gte=1),
                name="chk_asset_life_gte_one",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.cost})"

    @property
    def depreciable_base(self) -> Decimal:
        return self.cost - self.residual_value

    @property
    def remaining_base(self) -> Decimal:
        return max(self.depreciable_base - self.accumulated_depreciation, Decimal("0.00"))

    @property
    def book_value(self) -> Decimal:
        return self.cost - self.accumulated_depreciation

    def clean(self):
        self.name = (self.name or "").strip()
        if not self.name:
            raise ValidationError({"name": "name is required"})
        if self.cost is not None and self.residual_value is not None and self.residual_value > self.cost:
            raise ValidationError({"residual_value": "Residual value cannot exceed cost"})
        if self.useful_life_months is not None and self.useful_life_months < 1:
            raise ValidationError({"useful_life_months": "Useful life must be at least one month"})


class AssetEvent(models.Model):
    """Append-only history: one acquire, then one row per depreciation run."""

    ACQUIRE = "acquire"
    DEPRECIATE = "depreciate"

    EVENT_TYPES = [
        (ACQUIRE, "Acquire"),
        (DEPRECIATE, "Depreciate"),
    ]

    asset = models.ForeignKey(
        Asset,
        on_delete=models.PROTECT,
        related_name="events",
    )

    event_type = models.CharField(max_length=12, choices=EVENT_TYPES)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    run_on = models.DateField()

    journal_entry = models.ForeignKey(
        JournalEntry,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="asset_events",
    )

    memo = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["run_on", "id"]

    def __str__(self):
        return f"{self.event_type} {self.amount} on {self.run_on}"
