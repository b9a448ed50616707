# accounting/services/ledger_writer.py

"""
======================================================
PATH: accounting/services/ledger_writer.py
======================================================
LEDGER WRITER (POSTING ENGINE ENTRYPOINT)

post(event)     -> PostingResult   commit mode
preview(event)  -> PostingResult   same math and resolution, writes nothing

Unit of work (commit):
- account resolution runs first, outside any transaction (the oracle tier
  may block for its timeout; no row locks are held while it does)
- one transaction.atomic() covers: FIFO consumption / payment target locks,
  journal + ledger entries (create_journal_entry), domain records, lot txns
- any failure rolls everything back; nothing is partially committed

Idempotency:
- a journal with the same (tenant, reference), or for invoices the same
  normalized invoice number, is returned as is_existing=True
- the race loser hits the unique constraint inside the unit of work; the
  resulting IdempotencyError is caught OUTSIDE the atomic block, after
  rollback, and turned into the winner's result
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from decimal import Decimal

from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction

from accounting.models.journal import JournalEntry
from accounting.models.ledger import LedgerEntry
from accounting.services.account_resolver import AccountResolver
from accounting.services.classifier import shared_oracle
from accounting.services.exceptions import IdempotencyError
from accounting.services.journal_entry_service import (
    assert_balanced,
    create_journal_entry,
    normalize_postings,
)
from accounting.services.metadata import dump_metadata
from accounting.services.posting import PostingDraft, handler_for
from inventory.services.lot_ledger import LotLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PostedLine:
    account_code: str
    account_name: str
    side: str
    amount: Decimal
    description: str = ""


@dataclass
class PostingResult:
    journal_id: int | None
    reference: str
    kind: str
    entry_date: date
    amount: Decimal
    entries: list[PostedLine] = field(default_factory=list)
    is_existing: bool = False
    duplicate_reason: str = ""
    record_id: int | None = None
    dry_run: bool = False
    metadata: dict = field(default_factory=dict)

    @property
    def total_debits(self) -> Decimal:
        return sum((e.amount for e in self.entries if e.side == LedgerEntry.DEBIT), Decimal("0.00"))

    @property
    def total_credits(self) -> Decimal:
        return sum((e.amount for e in self.entries if e.side == LedgerEntry.CREDIT), Decimal("0.00"))

    def signature(self) -> list[tuple[str, str, Decimal]]:
        """Order-independent (account, side, amount) view, for preview-vs-commit checks."""
        return sorted((e.account_code, e.side, e.amount) for e in self.entries)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["entry_date"] = self.entry_date.isoformat() if self.entry_date else None
        data["amount"] = str(self.amount)
        data["entries"] = [{**asdict(e), "amount": str(e.amount)} for e in self.entries]
        return data

    @classmethod
    def from_journal(cls, journal: JournalEntry, *, is_existing: bool = False,
                     duplicate_reason: str = "") -> "PostingResult":
        entries = [
            PostedLine(
                account_code=e.account.code,
                account_name=e.account.name,
                side=e.entry_type,
                amount=e.amount,
                description=e.description,
            )
            for e in journal.ledger_entries.select_related("account").order_by("id")
        ]
        return cls(
            journal_id=journal.id,
            reference=journal.reference,
            kind=journal.kind,
            entry_date=journal.entry_date,
            amount=journal.amount,
            entries=entries,
            is_existing=is_existing,
            duplicate_reason=duplicate_reason,
            record_id=_record_id(journal),
            metadata=journal.metadata,
        )

    @classmethod
    def from_draft(cls, draft: PostingDraft, normalized: list[dict]) -> "PostingResult":
        entries = []
        for line in normalized:
            side, amount = (
                (LedgerEntry.DEBIT, line["debit"]) if line["debit"] > 0
                else (LedgerEntry.CREDIT, line["credit"])
            )
            entries.append(
                PostedLine(
                    account_code=line["account"].code,
                    account_name=line["account"].name,
                    side=side,
                    amount=amount,
                    description=line["description"],
                )
            )
        return cls(
            journal_id=None,
            reference=draft.reference,
            kind=draft.kind,
            entry_date=draft.entry_date,
            amount=draft.amount,
            entries=entries,
            dry_run=True,
            metadata=dump_metadata(draft.meta),
        )


def _record_id(journal: JournalEntry) -> int | None:
    for attr in ("expense", "invoice"):
        try:
            return getattr(journal, attr).id
        except ObjectDoesNotExist:
            continue
    return None


def _default_resolver(tenant) -> AccountResolver:
    return AccountResolver(tenant, oracle=shared_oracle())


# ============================================================
# ENTRYPOINTS
# ============================================================

def post(event, *, resolver: AccountResolver | None = None,
         lots: LotLedger | None = None) -> PostingResult:
    handler = handler_for(event)
    handler.validate(event)
    reference = handler.reference(event)

    existing, reason = handler.find_existing(event, reference)
    if existing is not None:
        logger.info("Idempotent hit for %s (%s) on tenant %s", reference, reason, event.tenant.code)
        return PostingResult.from_journal(existing, is_existing=True, duplicate_reason=reason)

    resolver = resolver or _default_resolver(event.tenant)
    lots = lots or LotLedger()
    draft = handler.prepare(event, reference, resolver, lots=lots)

    try:
        with transaction.atomic():
            handler.finalize(event, draft, resolver=resolver, lots=lots, commit=True)
            journal = create_journal_entry(
                tenant=event.tenant,
                kind=draft.kind,
                reference=draft.reference,
                description=draft.description,
                entry_date=draft.entry_date,
                amount=draft.amount,
                postings=draft.postings,
                metadata=dump_metadata(draft.meta),
            )
            handler.persist(event, draft, journal, lots=lots)
    except IdempotencyError as exc:
        logger.info(
            "Concurrent duplicate for %s (%s) on tenant %s; returning the first posting",
            reference,
            exc.code,
            event.tenant.code,
        )
        return PostingResult.from_journal(exc.existing, is_existing=True, duplicate_reason=exc.code)

    logger.info(
        "Posted %s journal %s (%s) for tenant %s",
        draft.kind,
        journal.id,
        reference,
        event.tenant.code,
    )
    return PostingResult.from_journal(journal)


def preview(event, *, resolver: AccountResolver | None = None,
            lots: LotLedger | None = None) -> PostingResult:
    """
    Side-effect-free rendition of post(): identical validation, amount math
    and account resolution; FIFO costs come from a read-only walk of the lots.
    """
    handler = handler_for(event)
    handler.validate(event)
    reference = handler.reference(event)

    existing, reason = handler.find_existing(event, reference)
    if existing is not None:
        result = PostingResult.from_journal(existing, is_existing=True, duplicate_reason=reason)
        result.dry_run = True
        return result

    resolver = resolver or _default_resolver(event.tenant)
    lots = lots or LotLedger()
    draft = handler.prepare(event, reference, resolver, lots=lots)
    handler.finalize(event, draft, resolver=resolver, lots=lots, commit=False)

    normalized, total_debits, total_credits = normalize_postings(draft.postings)
    assert_balanced(reference=reference, total_debits=total_debits, total_credits=total_credits)
    return PostingResult.from_draft(draft, normalized)
