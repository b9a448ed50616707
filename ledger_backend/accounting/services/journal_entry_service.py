# accounting/services/journal_entry_service.py

"""
======================================================
PATH: accounting/services/journal_entry_service.py
======================================================
JOURNAL ENTRY SERVICE (ACCOUNTING ENGINE)

This module is the ONLY place allowed to:
- Create JournalEntry
- Create LedgerEntry
- Enforce debit == credit
- Enforce idempotency via (tenant, reference)

Everything else (expenses, invoices, payments, voids, depreciation) must pass
through here via accounting.services.ledger_writer.

Postings are dicts: {"account", "debit", "credit", "description"?}.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from django.db import IntegrityError, transaction

from accounting.models.journal import JournalEntry
from accounting.models.ledger import LedgerEntry
from accounting.models.tenant import Tenant
from accounting.services.amounts import ZERO, is_balanced, money
from accounting.services.exceptions import (
    AccountingInvariantViolation,
    IdempotencyError,
    JournalEntryCreationError,
)

logger = logging.getLogger(__name__)

MIN_LINE_AMOUNT = Decimal("0.01")


def normalize_postings(postings: list) -> tuple[list[dict], Decimal, Decimal]:
    """Validate posting lines and return (normalized, total_debits, total_credits)."""
    if not postings:
        raise JournalEntryCreationError("Journal entry must contain at least one posting")

    total_debits = ZERO
    total_credits = ZERO
    normalized: list[dict] = []

    for line in postings:
        if not isinstance(line, dict):
            raise JournalEntryCreationError("Each posting must be an object/dict")

        account = line.get("account")
        if account is None:
            raise JournalEntryCreationError("Posting missing account")

        if not getattr(account, "is_active", True):
            raise JournalEntryCreationError(
                f"Account {getattr(account, 'code', 'UNKNOWN')} is inactive"
            )

        debit = money(line.get("debit"))
        credit = money(line.get("credit"))

        if debit < 0 or credit < 0:
            raise JournalEntryCreationError("Debit or credit cannot be negative")

        if debit > 0 and credit > 0:
            raise JournalEntryCreationError("A posting cannot have both debit and credit")

        if debit == 0 and credit == 0:
            raise JournalEntryCreationError("A posting must have either debit or credit")

        if 0 < debit < MIN_LINE_AMOUNT or 0 < credit < MIN_LINE_AMOUNT:
            raise JournalEntryCreationError(f"Posting amount too small: {debit or credit}")

        total_debits += debit
        total_credits += credit

        normalized.append(
            {
                "account": account,
                "debit": debit,
                "credit": credit,
                "description": (line.get("description") or "").strip()[:255],
            }
        )

    return normalized, money(total_debits), money(total_credits)


def assert_balanced(*, reference: str, total_debits: Decimal, total_credits: Decimal) -> None:
    if is_balanced(total_debits, total_credits):
        return

    logger.critical(
        "ACCOUNTING_INVARIANT_VIOLATION reference=%s debits=%s credits=%s",
        reference,
        total_debits,
        total_credits,
    )
    raise AccountingInvariantViolation(
        f"Journal entry not balanced: debits={total_debits} credits={total_credits}",
        details={
            "reference": reference,
            "debits": str(total_debits),
            "credits": str(total_credits),
        },
    )


def _assert_single_tenant(tenant: Tenant, normalized: list[dict]) -> None:
    for line in normalized:
        acc = line["account"]
        if getattr(acc, "tenant_id", None) != tenant.id:
            raise JournalEntryCreationError(
                "All postings must belong to the journal's tenant. "
                "Cross-tenant journal entries are not allowed."
            )


@transaction.atomic
def create_journal_entry(
    *,
    tenant: Tenant,
    kind: str,
    reference: str,
    description: str,
    entry_date: date,
    amount,
    postings: list,
    metadata: dict | None = None,
) -> JournalEntry:
    reference = (reference or "").strip()
    if not reference:
        raise JournalEntryCreationError("Journal entry reference is required")

    description = (description or "").strip()
    if not description:
        raise JournalEntryCreationError("Journal entry description is required")

    normalized, total_debits, total_credits = normalize_postings(postings)
    assert_balanced(reference=reference, total_debits=total_debits, total_credits=total_credits)
    _assert_single_tenant(tenant, normalized)

    existing = JournalEntry.objects.filter(tenant=tenant, reference=reference).first()
    if existing is not None:
        raise IdempotencyError(
            f"Journal entry already exists for reference {reference}", existing=existing
        )

    try:
        with transaction.atomic():
            journal_entry = JournalEntry.objects.create(
                tenant=tenant,
                kind=kind,
                reference=reference,
                description=description,
                entry_date=entry_date,
                amount=money(amount).copy_abs(),
                metadata=metadata or {},
            )
    except IntegrityError as exc:
        existing = JournalEntry.objects.filter(tenant=tenant, reference=reference).first()
        if existing is not None:
            raise IdempotencyError(
                f"Journal entry already exists for reference {reference}", existing=existing
            ) from exc
        raise JournalEntryCreationError(f"Failed to create journal entry: {exc}") from exc

    ledger_entries: list[LedgerEntry] = []
    for line in normalized:
        if line["debit"] > 0:
            ledger_entries.append(
                LedgerEntry(
                    journal_entry=journal_entry,
                    account=line["account"],
                    entry_type=LedgerEntry.DEBIT,
                    amount=line["debit"],
                    description=line["description"],
                )
            )

        if line["credit"] > 0:
            ledger_entries.append(
                LedgerEntry(
                    journal_entry=journal_entry,
                    account=line["account"],
                    entry_type=LedgerEntry.CREDIT,
                    amount=line["credit"],
                    description=line["description"],
                )
            )

    LedgerEntry.objects.bulk_create(ledger_entries)
    return journal_entry
