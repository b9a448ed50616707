# inventory/models/product.py

from __future__ import annotations

from django.core.exceptions import ValidationError
from django.db import models

from accounting.models.tenant import Tenant


class Product(models.Model):
    """
    Sellable/purchasable item. Only inventory-tracked products move FIFO lots;
    untracked products post like any other expense/revenue line.
    """

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="products",
    )

    sku = models.CharField(max_length=64)
    name = models.CharField(max_length=150)

    is_inventory_tracked = models.BooleanField(default=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "sku"],
                name="uniq_product_tenant_sku",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"

    def clean(self):
        self.sku = (self.sku or "").strip()
        self.name = (self.name or "").strip()
        if not self.sku:
            raise ValidationError({"sku": "sku is required"})
        if not self.name:
            raise ValidationError({"name": "name is required"})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
