# assets/services/depreciation.py

"""
======================================================
PATH: assets/services/depreciation.py
======================================================
ASSET DEPRECIATION RUNNER

- register_asset():  create the asset + its acquire event
- run_due():         walk active assets with next_run_on <= today
- run_one():         one monthly straight-line charge for one asset

Each run_one() is its own unit of work: the asset row is locked, the
AssetDepreciation event goes through the same Ledger Writer entry point as
every other producer, and the asset only advances when the posting commits.

Monthly charge = round((cost - residual) / useful_life_months, 2), clamped
to what is left of the depreciable base. Once the remaining base is
<= 0.009 the asset is fully_depreciated and drops out of the schedule.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounting.models.tenant import Tenant
from accounting.services import chart_of_accounts as coa
from accounting.services import ledger_writer
from accounting.services.amounts import ZERO, money
from accounting.services.events import AssetDepreciation
from accounting.services.exceptions import AccountingServiceError
from assets.models import Asset, AssetCategory, AssetEvent

logger = logging.getLogger(__name__)

FULLY_DEPRECIATED_THRESHOLD = Decimal("0.009")

OUTCOME_POSTED = "posted"
OUTCOME_EXISTING = "existing"
OUTCOME_COMPLETED = "completed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class DepreciationOutcome:
    asset_id: int
    status: str
    amount: Decimal = ZERO
    journal_id: int | None = None
    next_run_on: date | None = None
    reason: str = ""
    error: dict | None = None


# ------------------------------------------------------------
# MATH
# ------------------------------------------------------------

def clamp_residual(cost, residual) -> Decimal:
    cost = max(money(cost), ZERO)
    residual = max(money(residual), ZERO)
    return min(residual, cost)


def compute_monthly_depreciation(cost, residual, useful_life_months: int) -> Decimal:
    cost = max(money(cost), ZERO)
    residual = clamp_residual(cost, residual)
    life = max(int(useful_life_months or 1), 1)
    return max(money((cost - residual) / life), ZERO)


def next_run_from(run_on: date) -> date:
    """Same day next month, clamped to that month's last day."""
    year, month = (run_on.year + 1, 1) if run_on.month == 12 else (run_on.year, run_on.month + 1)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(run_on.day, last_day))


# ------------------------------------------------------------
# REGISTER
# ------------------------------------------------------------

@transaction.atomic
def register_asset(
    *,
    tenant: Tenant,
    name: str,
    cost,
    in_service_date: date,
    useful_life_months: int | None = None,
    residual_value=ZERO,
    category: AssetCategory | None = None,
    acquisition_date: date | None = None,
    vendor_name: str = "",
) -> Asset:
    if category is not None and category.tenant_id != tenant.id:
        raise AccountingServiceError(
            "Asset category belongs to another tenant",
            details={"category_id": category.id},
        )

    if useful_life_months is None:
        useful_life_months = category.default_useful_life_months if category else 36

    cost = money(cost)
    asset = Asset(
        tenant=tenant,
        category=category,
        name=name,
        vendor_name=(vendor_name or "").strip(),
        acquisition_date=acquisition_date or in_service_date,
        in_service_date=in_service_date,
        cost=cost,
        residual_value=clamp_residual(cost, residual_value),
        useful_life_months=max(int(useful_life_months), 1),
        next_run_on=next_run_from(in_service_date),
    )
    asset.full_clean()
    asset.save()

    AssetEvent.objects.create(
        asset=asset,
        event_type=AssetEvent.ACQUIRE,
        amount=asset.cost,
        run_on=asset.acquisition_date,
        memo="Acquisition",
    )

    logger.info("Registered asset %s (%s) for tenant %s, first run %s",
                asset.id, asset.name, tenant.code, asset.next_run_on)
    return asset


# ------------------------------------------------------------
# RUN
# ------------------------------------------------------------

def _accounts_for(asset: Asset) -> tuple[str, str]:
    expense = coa.SEMANTIC_CODES[coa.DEPRECIATION_EXPENSE]
    accumulated = coa.SEMANTIC_CODES[coa.ACCUMULATED_DEPRECIATION]
    if asset.category is not None:
        expense = asset.category.expense_account_code.strip() or expense
        accumulated = asset.category.accumulated_account_code.strip() or accumulated
    return expense, accumulated


def _finish(asset: Asset) -> None:
    asset.status = Asset.STATUS_FULLY_DEPRECIATED
    asset.next_run_on = None
    asset.save(update_fields=["status", "next_run_on", "updated_at"])


@transaction.atomic
def run_one(asset_id: int, *, today: date | None = None) -> DepreciationOutcome:
    today = today or timezone.localdate()

    asset = (
        Asset.objects.select_for_update()
        .select_related("tenant", "category")
        .filter(pk=asset_id)
        .first()
    )
    if asset is None:
        return DepreciationOutcome(asset_id, OUTCOME_SKIPPED, reason="not_found")
    if asset.status != Asset.STATUS_ACTIVE:
        return DepreciationOutcome(asset_id, OUTCOME_SKIPPED, reason="inactive")
    if asset.next_run_on is None or asset.next_run_on > today:
        return DepreciationOutcome(asset_id, OUTCOME_SKIPPED, reason="not_due", next_run_on=asset.next_run_on)

    remaining = asset.remaining_base
    if remaining <= FULLY_DEPRECIATED_THRESHOLD:
        _finish(asset)
        return DepreciationOutcome(asset_id, OUTCOME_COMPLETED)

    monthly = compute_monthly_depreciation(asset.cost, asset.residual_value, asset.useful_life_months)
    amount = min(remaining, monthly)
    run_date = asset.next_run_on
    expense_code, accumulated_code = _accounts_for(asset)

    result = ledger_writer.post(
        AssetDepreciation(
            tenant=asset.tenant,
            asset_id=asset.id,
            asset_name=asset.name,
            amount=amount,
            run_date=run_date,
            expense_account_code=expense_code,
            accumulated_account_code=accumulated_code,
            accumulated_after=asset.accumulated_depreciation + amount,
        )
    )

    if result.is_existing:
        # Period already charged; only the schedule moves.
        logger.warning("Depreciation for asset %s period %s already posted (journal %s)",
                       asset.id, f"{run_date:%Y-%m}", result.journal_id)
        status = OUTCOME_EXISTING
    else:
        asset.accumulated_depreciation = asset.accumulated_depreciation + amount
        AssetEvent.objects.create(
            asset=asset,
            event_type=AssetEvent.DEPRECIATE,
            amount=amount,
            run_on=run_date,
            journal_entry_id=result.journal_id,
            memo="Monthly depreciation",
        )
        status = OUTCOME_POSTED

    asset.next_run_on = next_run_from(run_date)
    asset.save(update_fields=["accumulated_depreciation", "next_run_on", "updated_at"])

    if asset.remaining_base <= FULLY_DEPRECIATED_THRESHOLD:
        _finish(asset)

    return DepreciationOutcome(
        asset_id,
        status,
        amount=amount if status == OUTCOME_POSTED else ZERO,
        journal_id=result.journal_id,
        next_run_on=asset.next_run_on,
    )


def run_due(
    *,
    limit: int | None = None,
    today: date | None = None,
    tenant: Tenant | None = None,
) -> list[DepreciationOutcome]:
    """
    One pass over due assets, oldest next_run_on first. A failing asset is
    logged and reported; it does not stop the batch.
    """
    today = today or timezone.localdate()
    if limit is None:
        limit = settings.LEDGER["DEPRECIATION"]["BATCH_LIMIT"]

    qs = Asset.objects.filter(status=Asset.STATUS_ACTIVE, next_run_on__lte=today)
    if tenant is not None:
        qs = qs.filter(tenant=tenant)
    due_ids = list(qs.order_by("next_run_on", "id").values_list("id", flat=True)[:limit])

    outcomes: list[DepreciationOutcome] = []
    for asset_id in due_ids:
        try:
            outcomes.append(run_one(asset_id, today=today))
        except AccountingServiceError as exc:
            logger.error("Depreciation failed for asset %s: %s", asset_id, exc.message or exc)
            outcomes.append(DepreciationOutcome(asset_id, OUTCOME_FAILED, error=exc.as_dict()))
    return outcomes
