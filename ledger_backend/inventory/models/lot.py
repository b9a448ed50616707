# inventory/models/lot.py

"""
INVENTORY LOT (ONE RECEIPT)

- quantity_received is immutable after creation
- remaining_qty is mutated ONLY by the lot ledger (inventory.services.lot_ledger)
- unit_cost is the FIFO cost basis for COGS
- Lots are consumed oldest-first: (received_on, id)
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models
from django.db.models import F, Q

from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant
from inventory.models.product import Product

QTY_PLACES = Decimal("0.001")
UNIT_COST_PLACES = Decimal("0.0001")


class InventoryLot(models.Model):
    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="inventory_lots",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="lots",
    )

    received_on = models.DateField()

    quantity_received = models.DecimalField(max_digits=14, decimal_places=3)
    remaining_qty = models.DecimalField(max_digits=14, decimal_places=3)

    unit_cost = models.DecimalField(max_digits=14, decimal_places=4)

    source_journal = models.ForeignKey(
        JournalEntry,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="inventory_lots",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["received_on", "id"]
        indexes = [
            models.Index(fields=["product", "received_on"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity_received__gt=0),
                name="chk_lot_qty_received_gt_zero",
            ),
            models.CheckConstraint(
                condition=Q(remaining_qty__gte=0),
                name="chk_lot_remaining_gte_zero",
            ),
            models.CheckConstraint(
                condition=Q(remaining_qty__lte=F("quantity_received")),
                name="chk_lot_remaining_lte_received",
            ),
        ]

    def __str__(self):
        return f"Lot #{self.id} {self.product_id}: {self.remaining_qty}/{self.quantity_received} @ {self.unit_cost}"


class InventoryTxn(models.Model):
    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"

    TXN_TYPES = [
        (RECEIPT, "Receipt"),
        (ISSUE, "Issue"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="inventory_txns",
    )

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="inventory_txns",
    )

    lot = models.ForeignKey(
        InventoryLot,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="txns",
    )

    txn_type = models.CharField(max_length=8, choices=TXN_TYPES)

    quantity = models.DecimalField(max_digits=14, decimal_places=3)
    unit_cost = models.DecimalField(max_digits=14, decimal_places=4, default=Decimal("0"))

    journal_entry = models.ForeignKey(
        JournalEntry,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="inventory_txns",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["product", "txn_type"]),
        ]

    def __str__(self):
        return f"{self.txn_type} {self.quantity} of {self.product_id}"
