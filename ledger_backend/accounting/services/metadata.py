# accounting/services/metadata.py

"""
JOURNAL METADATA (typed, one shape per journal kind)

PostingMetadata = ExpenseMeta | InvoiceMeta | PaymentMeta | VoidMeta | DepreciationMeta
                | CapitalMeta | RevenueMeta | ClosingMeta

JournalEntry.metadata stores `dump_metadata(meta)`: the dataclass fields plus
a "kind" discriminator. Decimals are stored as strings so JSON round-trips do
not lose cents.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from typing import ClassVar, Union

from accounting.models.journal import JournalEntry


@dataclass(frozen=True)
class ExpenseMeta:
    kind: ClassVar[str] = JournalEntry.KIND_EXPENSE

    vendor_name: str
    category_key: str
    payment_status: str
    account_source: str
    is_refund: bool = False
    tax_amount: Decimal = Decimal("0.00")
    source_rule_id: int | None = None


@dataclass(frozen=True)
class InvoiceMeta:
    kind: ClassVar[str] = JournalEntry.KIND_INVOICE

    customer_name: str
    invoice_number: str
    payment_status: str
    tax_amount: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    discount_posted: bool = False
    overpayment: Decimal = Decimal("0.00")
    cogs_amount: Decimal = Decimal("0.00")
    source_rule_id: int | None = None


@dataclass(frozen=True)
class PaymentMeta:
    kind: ClassVar[str] = JournalEntry.KIND_PAYMENT

    target_kind: str
    target_id: int
    amount: Decimal
    applied: Decimal
    excess: Decimal = Decimal("0.00")
    method: str = "cash"


@dataclass(frozen=True)
class VoidMeta:
    kind: ClassVar[str] = JournalEntry.KIND_VOID

    voided_journal_id: int
    voided_reference: str
    target_kind: str
    target_id: int
    amount: Decimal
    reason: str = ""


@dataclass(frozen=True)
class DepreciationMeta:
    kind: ClassVar[str] = JournalEntry.KIND_DEPRECIATION

    asset_id: int
    period: str
    amount: Decimal
    accumulated_after: Decimal


@dataclass(frozen=True)
class CapitalMeta:
    kind: ClassVar[str] = JournalEntry.KIND_CAPITAL

    contributor: str
    notes: str = ""


@dataclass(frozen=True)
class RevenueMeta:
    kind: ClassVar[str] = JournalEntry.KIND_REVENUE

    customer_name: str
    payment_method: str
    revenue_account_code: str


@dataclass(frozen=True)
class ClosingMeta:
    kind: ClassVar[str] = JournalEntry.KIND_CLOSING

    as_of: str
    net_income: Decimal
    closed_accounts: list[str] = field(default_factory=list)


PostingMetadata = Union[
    ExpenseMeta, InvoiceMeta, PaymentMeta, VoidMeta, DepreciationMeta,
    CapitalMeta, RevenueMeta, ClosingMeta,
]

METADATA_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (
        ExpenseMeta, InvoiceMeta, PaymentMeta, VoidMeta, DepreciationMeta,
        CapitalMeta, RevenueMeta, ClosingMeta,
    )
}


def dump_metadata(meta: PostingMetadata) -> dict:
    data = {"kind": meta.kind}
    for key, value in asdict(meta).items():
        data[key] = str(value) if isinstance(value, Decimal) else value
    return data


def load_metadata(raw: dict) -> PostingMetadata:
    raw = dict(raw or {})
    kind = raw.pop("kind", None)
    cls = METADATA_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown journal metadata kind: {kind!r}")

    kwargs = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        value = raw[f.name]
        if f.type in ("Decimal",) and value is not None:
            value = Decimal(str(value))
        kwargs[f.name] = value
    return cls(**kwargs)


def journal_metadata(journal: JournalEntry) -> PostingMetadata:
    return load_metadata(journal.metadata)
