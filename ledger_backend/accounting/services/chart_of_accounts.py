# accounting/services/chart_of_accounts.py

"""
CHART OF ACCOUNTS

- DEFAULT_CHART: the accounts every tenant is seeded with
- SEMANTIC_CODES: stable semantic keys -> account codes used by posting
- ensure_core_accounts(): idempotent seeding (used by seed_chart + tests)
- TenantChart: read-only snapshot of one tenant's active accounts, loaded
  once per posting and safe to read without holding a transaction
"""

from __future__ import annotations

import logging

from django.db import transaction

from accounting.models.account import Account
from accounting.models.tenant import Tenant
from accounting.services.exceptions import AccountsNotFoundError

logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# SEMANTIC KEYS
# ------------------------------------------------------------

CASH = "CASH"
ACCOUNTS_RECEIVABLE = "ACCOUNTS_RECEIVABLE"
INVENTORY = "INVENTORY"
PREPAID_EXPENSES = "PREPAID_EXPENSES"
VAT_RECEIVABLE = "VAT_RECEIVABLE"
ACCUMULATED_DEPRECIATION = "ACCUMULATED_DEPRECIATION"
ACCOUNTS_PAYABLE = "ACCOUNTS_PAYABLE"
CUSTOMER_CREDITS = "CUSTOMER_CREDITS"
SALES_TAX_PAYABLE = "SALES_TAX_PAYABLE"
VAT_PAYABLE = "VAT_PAYABLE"
UNEARNED_REVENUE = "UNEARNED_REVENUE"
SALES_REVENUE = "SALES_REVENUE"
SALES_DISCOUNTS = "SALES_DISCOUNTS"
COGS = "COGS"
TAXES_AND_LICENSES = "TAXES_AND_LICENSES"
DEPRECIATION_EXPENSE = "DEPRECIATION_EXPENSE"
GENERAL_EXPENSE = "GENERAL_EXPENSE"
OFFICE_SUPPLIES = "OFFICE_SUPPLIES"
OWNER_EQUITY = "OWNER_EQUITY"
RETAINED_EARNINGS = "RETAINED_EARNINGS"

SEMANTIC_CODES = {
    CASH: "1010",
    ACCOUNTS_RECEIVABLE: "1200",
    INVENTORY: "1300",
    PREPAID_EXPENSES: "1400",
    VAT_RECEIVABLE: "1450",
    ACCUMULATED_DEPRECIATION: "1590",
    ACCOUNTS_PAYABLE: "2010",
    CUSTOMER_CREDITS: "2050",
    SALES_TAX_PAYABLE: "2150",
    VAT_PAYABLE: "2160",
    UNEARNED_REVENUE: "2400",
    SALES_REVENUE: "4020",
    SALES_DISCOUNTS: "4910",
    COGS: "5010",
    TAXES_AND_LICENSES: "6170",
    DEPRECIATION_EXPENSE: "6200",
    GENERAL_EXPENSE: "6999",
    OFFICE_SUPPLIES: "6020",
    OWNER_EQUITY: "3000",
    RETAINED_EARNINGS: "3200",
}

# Tax lines by regime: (purchase side, sales side)
TAX_ACCOUNTS_BY_REGIME = {
    Tenant.REGIME_SALES_TAX: (TAXES_AND_LICENSES, SALES_TAX_PAYABLE),
    Tenant.REGIME_VAT: (VAT_RECEIVABLE, VAT_PAYABLE),
}

# ------------------------------------------------------------
# DEFAULT CHART
# ------------------------------------------------------------

DEFAULT_CHART = [
    # ASSETS
    ("1010", "Cash", Account.ASSET),
    ("1200", "Accounts Receivable", Account.ASSET),
    ("1300", "Inventory", Account.ASSET),
    ("1400", "Prepaid Expenses", Account.ASSET),
    ("1450", "VAT Receivable", Account.ASSET),
    ("1500", "Fixed Assets", Account.ASSET),
    ("1590", "Accumulated Depreciation", Account.ASSET),
    # LIABILITIES
    ("2010", "Accounts Payable", Account.LIABILITY),
    ("2050", "Customer Credits", Account.LIABILITY),
    ("2150", "Sales Tax Payable", Account.LIABILITY),
    ("2160", "VAT Payable", Account.LIABILITY),
    ("2400", "Unearned Revenue", Account.LIABILITY),
    # EQUITY
    ("3000", "Owner's Equity", Account.EQUITY),
    ("3200", "Retained Earnings", Account.EQUITY),
    # REVENUE
    ("4010", "Product Sales", Account.REVENUE),
    ("4020", "Sales Revenue", Account.REVENUE),
    ("4030", "Service Revenue", Account.REVENUE),
    ("4040", "Subscription Revenue", Account.REVENUE),
    ("4910", "Sales Discounts", Account.REVENUE),  # contra-revenue
    # COST OF SALES
    ("5010", "Cost of Goods Sold", Account.EXPENSE),
    # OPERATING EXPENSES
    ("6020", "Office Supplies", Account.EXPENSE),
    ("6030", "Software & Subscriptions", Account.EXPENSE),
    ("6040", "Marketing & Advertising", Account.EXPENSE),
    ("6060", "Travel", Account.EXPENSE),
    ("6070", "Rent", Account.EXPENSE),
    ("6080", "Utilities", Account.EXPENSE),
    ("6090", "Professional Services", Account.EXPENSE),
    ("6100", "Bank & Payment Fees", Account.EXPENSE),
    ("6110", "Insurance", Account.EXPENSE),
    ("6120", "Legal & Compliance", Account.EXPENSE),
    ("6130", "Training & Education", Account.EXPENSE),
    ("6140", "Meals & Entertainment", Account.EXPENSE),
    ("6150", "Telecommunications", Account.EXPENSE),
    ("6170", "Taxes & Licenses", Account.EXPENSE),
    ("6180", "Bad Debt", Account.EXPENSE),
    ("6200", "Depreciation Expense", Account.EXPENSE),
    ("6999", "General Expense", Account.EXPENSE),
]

# Accumulated depreciation is a contra-asset: credit normal balance.
NORMAL_BALANCE_OVERRIDES = {
    "1590": Account.CREDIT,
    "4910": Account.DEBIT,
}


@transaction.atomic
def ensure_core_accounts(tenant: Tenant) -> tuple[int, int]:
    """Create missing default accounts. Returns (created, updated)."""
    created_count = 0
    updated_count = 0

    for code, name, account_type in DEFAULT_CHART:
        acc, acc_created = Account.objects.get_or_create(
            tenant=tenant,
            code=code,
            defaults={
                "name": name,
                "account_type": account_type,
                "normal_balance": NORMAL_BALANCE_OVERRIDES.get(code, ""),
                "is_active": True,
            },
        )

        if acc_created:
            created_count += 1
            continue

        if not acc.is_active:
            acc.is_active = True
            acc.save(update_fields=["is_active", "updated_at"])
            updated_count += 1

    if created_count:
        logger.info(
            "Seeded %s accounts for tenant %s (%s reactivated)",
            created_count,
            tenant.code,
            updated_count,
        )
    return created_count, updated_count


class TenantChart:
    """Snapshot of a tenant's active accounts keyed by code."""

    def __init__(self, tenant: Tenant, accounts=None):
        self.tenant = tenant
        if accounts is None:
            accounts = Account.objects.filter(tenant=tenant, is_active=True)
        self._by_code = {acc.code: acc for acc in accounts}

    def __contains__(self, code) -> bool:
        return (code or "").strip() in self._by_code

    def get(self, code) -> Account | None:
        return self._by_code.get((code or "").strip())

    def accounts(self) -> list[Account]:
        return sorted(self._by_code.values(), key=lambda a: a.code)

    def require(self, *codes: str) -> dict[str, Account]:
        missing = [c for c in codes if c not in self._by_code]
        if missing:
            raise AccountsNotFoundError(missing, tenant_code=self.tenant.code)
        return {c: self._by_code[c] for c in codes}

    def semantic(self, key: str) -> Account:
        code = SEMANTIC_CODES[key]
        return self.require(code)[code]

    def tax_account(self, *, sales: bool) -> Account:
        purchase_key, sales_key = TAX_ACCOUNTS_BY_REGIME.get(
            self.tenant.tax_regime,
            TAX_ACCOUNTS_BY_REGIME[Tenant.REGIME_SALES_TAX],
        )
        return self.semantic(sales_key if sales else purchase_key)
