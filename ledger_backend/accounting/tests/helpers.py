# accounting/tests/helpers.py

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from accounting.models.account import Account
from accounting.models.journal import JournalEntry
from accounting.models.ledger import LedgerEntry
from accounting.models.tenant import Tenant
from accounting.services.chart_of_accounts import ensure_core_accounts


def make_tenant(code: str = "acme", *, regime: str = Tenant.REGIME_SALES_TAX,
                time_zone: str = "", seed: bool = True) -> Tenant:
    tenant = Tenant.objects.create(
        name=f"{code.title()} Ltd",
        code=code,
        tax_regime=regime,
        time_zone=time_zone,
    )
    if seed:
        ensure_core_accounts(tenant)
    return tenant


def account(tenant: Tenant, code: str) -> Account:
    return Account.objects.get(tenant=tenant, code=code)


def net_by_account(result) -> dict[str, Decimal]:
    """{account_code: debit - credit} for a PostingResult."""
    net: dict[str, Decimal] = defaultdict(lambda: Decimal("0.00"))
    for line in result.entries:
        sign = 1 if line.side == LedgerEntry.DEBIT else -1
        net[line.account_code] += sign * line.amount
    return {code: amount for code, amount in net.items() if amount != 0}


def journal_totals(journal: JournalEntry) -> tuple[Decimal, Decimal]:
    debits = Decimal("0.00")
    credits = Decimal("0.00")
    for line in journal.ledger_entries.all():
        if line.entry_type == LedgerEntry.DEBIT:
            debits += line.amount
        else:
            credits += line.amount
    return debits, credits
