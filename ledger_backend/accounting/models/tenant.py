# accounting/models/tenant.py

from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.core.exceptions import ValidationError
from django.db import models


class Tenant(models.Model):
    """
    One set of books (a business) with its own chart of accounts.

    Rules:
    - code is the stable key used by seeders, commands and references.
    - tax_regime decides where tax lines land (expense vs VAT receivable on
      purchases, sales tax vs VAT payable on sales).
    - time_zone (IANA name) aligns recurring schedule midnights; blank means UTC.
    """

    REGIME_SALES_TAX = "SALES_TAX"
    REGIME_VAT = "VAT"

    TAX_REGIME_CHOICES = [
        (REGIME_SALES_TAX, "Sales tax"),
        (REGIME_VAT, "VAT"),
    ]

    name = models.CharField(max_length=150, unique=True)

    code = models.SlugField(
        max_length=64,
        unique=True,
        help_text="Stable tenant key. Do not change after go-live.",
    )

    time_zone = models.CharField(max_length=64, blank=True, default="")

    tax_regime = models.CharField(
        max_length=16,
        choices=TAX_REGIME_CHOICES,
        default=REGIME_SALES_TAX,
    )

    is_active = models.BooleanField(default=True, db_index=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.code})"

    @property
    def tzinfo(self) -> ZoneInfo | None:
        if not self.time_zone:
            return None
        return ZoneInfo(self.time_zone)

    def clean(self):
        self.name = (self.name or "").strip()
        self.code = (self.code or "").strip()
        self.time_zone = (self.time_zone or "").strip()

        if not self.code:
            raise ValidationError({"code": "code is required"})

        if self.time_zone:
            try:
                ZoneInfo(self.time_zone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationError(
                    {"time_zone": f"Unknown time zone: {self.time_zone}"}
                ) from exc

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
