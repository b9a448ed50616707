# inventory/services/lot_ledger.py

"""
FIFO LOT LEDGER

Purpose:
- receive():          record a receipt lot at a unit cost
- consume():          take quantity oldest-first, returning what was taken
- preview_consume():  same walk, read-only (dry-run postings)
- record_issue():     write ISSUE txns once the posting journal exists

Concurrency:
- consume() locks the product row, then its open lots (select_for_update),
  so concurrent sales of one product serialize inside the posting's unit of
  work. Must be called inside transaction.atomic (the ledger writer does).

Insufficient stock is NOT an error here: consume() takes what exists and the
caller sees the shortfall as `requested - sum(taken)`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from django.db import transaction

from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant
from accounting.services.exceptions import AccountingError
from inventory.models import InventoryLot, InventoryTxn, Product
from inventory.models.lot import QTY_PLACES, UNIT_COST_PLACES

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")


class LotLedgerError(AccountingError):
    """Bad lot movement (non-positive quantity, negative cost, no transaction)."""

    code = "INVENTORY_LOT_ERROR"


def _to_qty(value) -> Decimal:
    qty = Decimal(str(value)).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
    if qty <= 0:
        raise LotLedgerError("quantity must be > 0")
    return qty


@dataclass(frozen=True)
class LotTake:
    lot_id: int
    qty_taken: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return (self.qty_taken * self.unit_cost).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def total_cost(takes: list[LotTake]) -> Decimal:
    return sum((t.cost for t in takes), Decimal("0.00"))


def total_taken(takes: list[LotTake]) -> Decimal:
    return sum((t.qty_taken for t in takes), Decimal("0"))


class LotLedger:
    def get_tracked_products(self, tenant: Tenant, product_ids) -> dict[int, Product]:
        ids = {pid for pid in product_ids if pid}
        if not ids:
            return {}
        return {
            p.id: p
            for p in Product.objects.filter(
                tenant=tenant, id__in=ids, is_inventory_tracked=True
            )
        }

    def receive(
        self,
        *,
        tenant: Tenant,
        product_id: int,
        quantity,
        unit_cost,
        received_on: date,
        journal: JournalEntry | None = None,
    ) -> InventoryLot:
        qty = _to_qty(quantity)
        cost = Decimal(str(unit_cost)).quantize(UNIT_COST_PLACES, rounding=ROUND_HALF_UP)
        if cost < 0:
            raise LotLedgerError("unit_cost cannot be negative")

        lot = InventoryLot.objects.create(
            tenant=tenant,
            product_id=product_id,
            received_on=received_on,
            quantity_received=qty,
            remaining_qty=qty,
            unit_cost=cost,
            source_journal=journal,
        )
        InventoryTxn.objects.create(
            tenant=tenant,
            product_id=product_id,
            lot=lot,
            txn_type=InventoryTxn.RECEIPT,
            quantity=qty,
            unit_cost=cost,
            journal_entry=journal,
        )
        return lot

    def _open_lots(self, tenant: Tenant, product_id: int):
        return InventoryLot.objects.filter(
            tenant=tenant,
            product_id=product_id,
            remaining_qty__gt=0,
        ).order_by("received_on", "id")

    def preview_consume(self, *, tenant: Tenant, product_id: int, quantity) -> list[LotTake]:
        remaining = _to_qty(quantity)
        takes: list[LotTake] = []
        for lot in self._open_lots(tenant, product_id):
            if remaining <= 0:
                break
            taken = min(lot.remaining_qty, remaining)
            takes.append(LotTake(lot.id, taken, lot.unit_cost))
            remaining -= taken
        return takes

    def consume(self, *, tenant: Tenant, product_id: int, quantity) -> list[LotTake]:
        if not transaction.get_connection().in_atomic_block:
            raise LotLedgerError("consume() must run inside the posting transaction")

        requested = _to_qty(quantity)

        # Product row lock serializes consumers even when no lot exists yet.
        Product.objects.select_for_update().filter(tenant=tenant, pk=product_id).first()
        lots = list(self._open_lots(tenant, product_id).select_for_update())

        remaining = requested
        takes: list[LotTake] = []
        for lot in lots:
            if remaining <= 0:
                break
            taken = min(lot.remaining_qty, remaining)
            lot.remaining_qty = lot.remaining_qty - taken
            lot.save(update_fields=["remaining_qty"])
            takes.append(LotTake(lot.id, taken, lot.unit_cost))
            remaining -= taken

        if remaining > 0:
            logger.warning(
                "Insufficient inventory for product %s (tenant %s): requested %s, short %s",
                product_id,
                tenant.code,
                requested,
                remaining,
            )
        return takes

    def record_issue(
        self,
        *,
        tenant: Tenant,
        product_id: int,
        takes: list[LotTake],
        journal: JournalEntry,
    ) -> list[InventoryTxn]:
        return InventoryTxn.objects.bulk_create(
            [
                InventoryTxn(
                    tenant=tenant,
                    product_id=product_id,
                    lot_id=t.lot_id,
                    txn_type=InventoryTxn.ISSUE,
                    quantity=t.qty_taken,
                    unit_cost=t.unit_cost,
                    journal_entry=journal,
                )
                for t in takes
            ]
        )
