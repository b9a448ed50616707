# accounting/services/period_close_service.py

"""
======================================================
PATH: accounting/services/period_close_service.py
======================================================
PERIOD CLOSING ENTRIES

Zeroes every REVENUE and EXPENSE account of a tenant, as of a date, into
Retained Earnings (3200) with ONE journal.

Guarantees:
- Idempotent: reference CLOSE-{YYYY-MM-DD}; a second close for the same
  date returns the first journal (is_existing=True)
- Balances are cumulative up to as_of, so earlier closing journals are
  already netted in and a later close only moves what accrued since
- Accounts whose balance rounds to zero are left alone
- Profit credits Retained Earnings, a loss debits it
- Nothing to close -> no journal, returns None
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from django.db import transaction
from django.db.models import Case, F, Sum, When
from django.db.models.functions import Coalesce
from django.utils import timezone

from accounting.models.account import Account
from accounting.models.journal import JournalEntry
from accounting.models.ledger import LedgerEntry
from accounting.models.tenant import Tenant
from accounting.services import chart_of_accounts as coa
from accounting.services.amounts import ZERO, money
from accounting.services.exceptions import DUPLICATE_REFERENCE, IdempotencyError, PostingValidationError
from accounting.services.journal_entry_service import create_journal_entry
from accounting.services.ledger_writer import PostingResult
from accounting.services.metadata import ClosingMeta, dump_metadata

logger = logging.getLogger(__name__)


def closing_reference(as_of: date) -> str:
    return f"CLOSE-{as_of.isoformat()}"


def _net_debits(tenant: Tenant, as_of: date) -> list[tuple[Account, Decimal]]:
    """(account, debits - credits) for every revenue/expense account with a balance."""
    per_account = (
        LedgerEntry.objects.filter(
            journal_entry__tenant=tenant,
            journal_entry__entry_date__lte=as_of,
            account__account_type__in=[Account.REVENUE, Account.EXPENSE],
        )
        .values("account_id")
        .annotate(
            debit_total=Coalesce(
                Sum(Case(When(entry_type=LedgerEntry.DEBIT, then=F("amount")))),
                Decimal("0.00"),
            ),
            credit_total=Coalesce(
                Sum(Case(When(entry_type=LedgerEntry.CREDIT, then=F("amount")))),
                Decimal("0.00"),
            ),
        )
    )

    balances = {}
    for row in per_account:
        net = money(row["debit_total"]) - money(row["credit_total"])
        if net != ZERO:
            balances[row["account_id"]] = net

    accounts = Account.objects.filter(tenant=tenant, id__in=balances).order_by("code")
    return [(account, balances[account.id]) for account in accounts]


def close_books(tenant: Tenant, *, as_of: date | None = None) -> PostingResult | None:
    """
    Post the closing journal for `tenant` as of `as_of` (default: today).

    Returns None when every revenue and expense account is already at zero.
    """
    as_of = as_of or timezone.localdate()
    if as_of > timezone.localdate():
        raise PostingValidationError({"as_of": [f"Cannot close a future date ({as_of.isoformat()})."]})

    reference = closing_reference(as_of)
    existing = JournalEntry.objects.filter(tenant=tenant, reference=reference).first()
    if existing is not None:
        logger.info("Books already closed as of %s for tenant %s", as_of, tenant.code)
        return PostingResult.from_journal(existing, is_existing=True, duplicate_reason=DUPLICATE_REFERENCE)

    balances = _net_debits(tenant, as_of)
    if not balances:
        logger.info("Nothing to close as of %s for tenant %s", as_of, tenant.code)
        return None

    retained = coa.TenantChart(tenant).semantic(coa.RETAINED_EARNINGS)

    postings = []
    net_income = ZERO
    for account, net in balances:
        label = f"Close {account.code} - {account.name}"
        if net > 0:
            postings.append({"account": account, "debit": ZERO, "credit": net, "description": label})
        else:
            postings.append({"account": account, "debit": -net, "credit": ZERO, "description": label})
        net_income -= net

    if net_income > 0:
        postings.append({"account": retained, "debit": ZERO, "credit": net_income,
                         "description": "Close to Retained Earnings (Net Income)"})
    elif net_income < 0:
        postings.append({"account": retained, "debit": -net_income, "credit": ZERO,
                         "description": "Close to Retained Earnings (Net Loss)"})

    meta = ClosingMeta(
        as_of=as_of.isoformat(),
        net_income=net_income,
        closed_accounts=[account.code for account, _ in balances],
    )

    try:
        with transaction.atomic():
            journal = create_journal_entry(
                tenant=tenant,
                kind=JournalEntry.KIND_CLOSING,
                reference=reference,
                description=f"Closing Entries as of {as_of.isoformat()}",
                entry_date=as_of,
                amount=net_income.copy_abs(),
                postings=postings,
                metadata=dump_metadata(meta),
            )
    except IdempotencyError as exc:
        return PostingResult.from_journal(exc.existing, is_existing=True, duplicate_reason=exc.code)

    logger.info(
        "Closed %s accounts as of %s for tenant %s (net income %s, journal %s)",
        len(balances),
        as_of,
        tenant.code,
        net_income,
        journal.id,
    )
    return PostingResult.from_journal(journal)
