# accounting/services/posting.py

"""
======================================================
PATH: accounting/services/posting.py
======================================================
POSTING HANDLERS (event -> balanced postings)

One handler per event kind. The ledger writer drives every handler through
the same phases:

  1. validate()      payload sanity (raises PostingValidationError)
  2. reference()     explicit or deterministically derived idempotency key
  3. find_existing() journal that already answers this event, if any
  4. prepare()       OUTSIDE the transaction: amount math + account
                     resolution (may call the classification oracle)
  5. finalize()      INSIDE the transaction: anything that needs row locks
                     (FIFO lots, payment targets). commit=False is the
                     read-only preview flavor of the same math.
  6. persist()       INSIDE the transaction, after the journal exists:
                     domain records and lot movements

Postings are plain dicts {account, debit, credit, description}, the shape
create_journal_entry() accepts.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone

from accounting.models.expense import Expense
from accounting.models.invoice import Invoice
from accounting.models.journal import JournalEntry
from accounting.models.ledger import LedgerEntry
from accounting.services import chart_of_accounts as coa
from accounting.services.account_resolver import AccountResolver, ResolutionHint
from accounting.services.amounts import (
    ZERO,
    allocate_proportionally,
    exclusive_tax,
    is_balanced,
    money,
    split_inclusive_tax,
)
from accounting.services.events import (
    TAX_FIXED,
    AssetDepreciation,
    CapitalContribution,
    ExpensePosting,
    InvoicePosting,
    PaymentRecord,
    RevenueReceipt,
    VoidPayment,
)
from accounting.services.exceptions import (
    ALREADY_VOIDED,
    DUPLICATE_INVOICE_NUMBER,
    DUPLICATE_REFERENCE,
    IdempotencyError,
    PostingValidationError,
)
from accounting.services.metadata import (
    CapitalMeta,
    DepreciationMeta,
    ExpenseMeta,
    InvoiceMeta,
    PaymentMeta,
    PostingMetadata,
    RevenueMeta,
    VoidMeta,
    load_metadata,
)
from inventory.services.lot_ledger import LotLedger, total_cost

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# HELPERS
# ------------------------------------------------------------

def _dr(account, amount: Decimal, description: str = "") -> dict:
    return {"account": account, "debit": amount, "credit": ZERO, "description": description}


def _cr(account, amount: Decimal, description: str = "") -> dict:
    return {"account": account, "debit": ZERO, "credit": amount, "description": description}


def swap_sides(postings: list[dict]) -> list[dict]:
    return [
        {**p, "debit": p["credit"], "credit": p["debit"]}
        for p in postings
    ]


def _digest(*parts) -> str:
    base = "|".join(str(p) for p in parts)
    return hashlib.sha1(base.encode("utf-8")).hexdigest()


def normalize_invoice_number(raw: str) -> str:
    """'  #inv 001 ' -> 'INV001'"""
    value = (raw or "").strip().upper().lstrip("#")
    return "".join(value.split())


def derive_payment_status(total: Decimal, paid: Decimal) -> str:
    if paid <= 0:
        return "unpaid"
    if paid < total:
        return "partial"
    if paid == total:
        return "paid"
    return "overpaid"


def derive_invoice_status(total: Decimal, paid: Decimal, due_date: date | None, today: date) -> str:
    if paid >= total:
        return Invoice.STATUS_PAID
    if due_date is not None and due_date < today:
        return Invoice.STATUS_OVERDUE
    return Invoice.STATUS_SENT


@dataclass
class LotReceipt:
    product_id: int
    quantity: Decimal
    unit_cost: Decimal


@dataclass
class LotIssue:
    product_id: int
    quantity: Decimal
    description: str = ""
    takes: list = field(default_factory=list)


@dataclass
class PostingDraft:
    """Everything the writer needs to create one journal."""

    kind: str
    reference: str
    description: str
    entry_date: date
    amount: Decimal
    postings: list[dict]
    meta: PostingMetadata
    receipts: list[LotReceipt] = field(default_factory=list)
    issues: list[LotIssue] = field(default_factory=list)
    context: dict = field(default_factory=dict)


# ------------------------------------------------------------
# BASE HANDLER
# ------------------------------------------------------------

class PostingHandler:
    kind = ""

    def validate(self, event) -> None:
        pass

    def reference(self, event) -> str:
        raise NotImplementedError

    def find_existing(self, event, reference: str) -> tuple[JournalEntry | None, str]:
        existing = JournalEntry.objects.filter(tenant=event.tenant, reference=reference).first()
        return existing, DUPLICATE_REFERENCE

    def prepare(self, event, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        raise NotImplementedError

    def finalize(self, event, draft: PostingDraft, *, resolver: AccountResolver,
                 lots: LotLedger, commit: bool) -> None:
        pass

    def persist(self, event, draft: PostingDraft, journal: JournalEntry, *, lots: LotLedger):
        return None


# ============================================================
# EXPENSE
# ============================================================

class ExpenseHandler(PostingHandler):
    kind = JournalEntry.KIND_EXPENSE

    def validate(self, event: ExpensePosting) -> None:
        errors = {}
        if not (event.vendor_name or "").strip():
            errors["vendor_name"] = ["This field is required."]
        gross = money(event.amount)
        if gross == 0:
            errors["amount"] = ["Amount must be non-zero."]
        elif gross < 0 and not event.is_refund:
            errors["amount"] = ["Negative amounts are only allowed for refunds."]
        if event.payment_status not in dict(Expense.PAYMENT_STATUSES):
            errors["payment_status"] = [f"Unknown payment status {event.payment_status!r}."]
        if errors:
            raise PostingValidationError(errors)

    def reference(self, event: ExpensePosting) -> str:
        if event.reference:
            return event.reference.strip()
        digest = _digest(
            event.vendor_name.strip(),
            money(event.amount),
            event.expense_date.isoformat(),
            event.submitted_at.isoformat(),
        )
        return f"EXP-{digest[:16]}"

    def _debit_lines(self, event: ExpensePosting, subtotal: Decimal, resolver: AccountResolver,
                     lots: LotLedger) -> tuple[list[dict], list[LotReceipt], list]:
        postings: list[dict] = []
        receipts: list[LotReceipt] = []
        resolutions = []

        if not event.line_items:
            res = resolver.resolve_debit_account(
                ResolutionHint(
                    category_key=event.category_key,
                    vendor_name=event.vendor_name,
                    description=event.description,
                    suggested_account_code=event.suggested_account_code,
                )
            )
            resolutions.append(res)
            # A fixed tax can swallow the whole gross.
            if subtotal > 0:
                postings.append(_dr(res.account, subtotal, f"{res.account.name} - {event.vendor_name}"))
            return postings, receipts, resolutions

        scaled = allocate_proportionally([li.amount for li in event.line_items], subtotal)
        tracked = lots.get_tracked_products(event.tenant, [li.product_id for li in event.line_items])
        inventory = resolver.semantic(coa.INVENTORY) if tracked else None

        for item, amount in zip(event.line_items, scaled):
            if amount == 0:
                continue
            if item.product_id in tracked:
                postings.append(_dr(inventory, amount, item.description or "Inventory receipt"))
                qty = Decimal(str(item.quantity))
                if not event.is_refund and qty > 0:
                    receipts.append(LotReceipt(item.product_id, qty, amount / qty))
                continue

            res = resolver.resolve_debit_account(
                ResolutionHint(
                    category_key=item.category_key or event.category_key,
                    vendor_name=event.vendor_name,
                    description=item.description or event.description,
                    suggested_account_code=item.account_code or event.suggested_account_code,
                )
            )
            resolutions.append(res)
            postings.append(_dr(res.account, amount, item.description or res.account.name))

        return postings, receipts, resolutions

    def prepare(self, event: ExpensePosting, reference: str, resolver: AccountResolver,
                *, lots: LotLedger) -> PostingDraft:
        signed = money(event.amount)
        refund = signed < 0
        gross = signed.copy_abs()

        tax_amount = ZERO
        subtotal = gross
        if event.tax.enabled:
            subtotal, tax_amount = split_inclusive_tax(
                gross,
                tax_type=event.tax.tax_type,
                rate=event.tax.rate,
                fixed_amount=event.tax.amount,
            )

        postings, receipts, resolutions = self._debit_lines(event, subtotal, resolver, lots)

        if tax_amount > 0:
            postings.append(_dr(resolver.tax_account(sales=False), tax_amount, "Input tax"))

        status = event.payment_status
        paid = money(event.amount_paid) if event.amount_paid is not None else None
        cash = resolver.semantic(coa.CASH)
        payable = resolver.semantic(coa.ACCOUNTS_PAYABLE)

        if not refund and status == Expense.STATUS_PARTIAL and paid is not None and 0 < paid < gross:
            postings.append(_cr(cash, paid, f"Partial payment to {event.vendor_name}"))
            postings.append(_cr(payable, gross - paid, f"Balance due to {event.vendor_name}"))
        else:
            credit = resolver.resolve_credit_account(status, signed)
            postings.append(_cr(credit.account, gross, f"{credit.account.name} - {event.vendor_name}"))

        if not refund and status == Expense.STATUS_OVERPAID and paid is not None and paid > gross:
            excess = paid - gross
            postings.append(_dr(payable, excess, f"Overpayment to {event.vendor_name}"))
            postings.append(_cr(cash, excess, f"Overpayment to {event.vendor_name}"))

        if refund:
            postings = swap_sides(postings)

        primary = resolutions[0] if resolutions else None
        meta = ExpenseMeta(
            vendor_name=event.vendor_name.strip(),
            category_key=event.category_key,
            payment_status=Expense.STATUS_REFUNDED if refund else status,
            account_source=primary.source if primary else "INVENTORY",
            is_refund=refund,
            tax_amount=tax_amount,
            source_rule_id=event.source_rule_id,
        )

        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=event.description or f"Expense - {event.vendor_name.strip()}",
            entry_date=event.expense_date,
            amount=gross,
            postings=postings,
            meta=meta,
            receipts=receipts,
            context={"primary": primary, "paid": paid, "gross": gross, "refund": refund},
        )

    def _initial_paid(self, status: str, gross: Decimal, paid: Decimal | None, refund: bool) -> Decimal:
        if refund or status in (Expense.STATUS_PAID, Expense.STATUS_REFUNDED):
            return gross
        if status == Expense.STATUS_OVERPAID:
            return paid if paid is not None and paid > gross else gross
        if status == Expense.STATUS_PARTIAL:
            return paid if paid is not None and 0 < paid < gross else ZERO
        return ZERO

    def persist(self, event: ExpensePosting, draft: PostingDraft, journal: JournalEntry, *,
                lots: LotLedger) -> Expense:
        for receipt in draft.receipts:
            lots.receive(
                tenant=event.tenant,
                product_id=receipt.product_id,
                quantity=receipt.quantity,
                unit_cost=receipt.unit_cost,
                received_on=event.expense_date,
                journal=journal,
            )

        ctx = draft.context
        primary = ctx["primary"]
        return Expense.objects.create(
            tenant=event.tenant,
            journal_entry=journal,
            vendor_name=event.vendor_name,
            category_key=event.category_key,
            description=(event.description or "")[:255],
            expense_date=event.expense_date,
            due_date=event.due_date,
            amount=money(event.amount),
            tax_amount=draft.meta.tax_amount,
            amount_paid=self._initial_paid(
                draft.meta.payment_status, ctx["gross"], ctx["paid"], ctx["refund"]
            ),
            is_refund=ctx["refund"],
            payment_status=draft.meta.payment_status,
            expense_account=primary.account if primary else None,
            resolution_source=draft.meta.account_source,
            line_items=[
                {
                    "description": li.description,
                    "amount": str(money(li.amount)),
                    "quantity": str(li.quantity),
                    "product_id": li.product_id,
                    "category_key": li.category_key,
                }
                for li in event.line_items
            ],
            tax_settings=event.tax.as_dict(),
        )


# ============================================================
# INVOICE
# ============================================================

PAID_BY_DEFAULT = frozenset({Invoice.PAYMENT_PAID, Invoice.PAYMENT_OVERPAID, Invoice.PAYMENT_PREPAID})


class InvoiceHandler(PostingHandler):
    kind = JournalEntry.KIND_INVOICE

    def validate(self, event: InvoicePosting) -> None:
        errors = {}
        if not (event.customer_name or "").strip():
            errors["customer_name"] = ["This field is required."]
        if money(event.amount) <= 0:
            errors["amount"] = ["Invoice amount must be > 0."]
        if event.payment_status and event.payment_status not in dict(Invoice.PAYMENT_STATUSES):
            errors["payment_status"] = [f"Unknown payment status {event.payment_status!r}."]
        if event.amount_paid is not None and money(event.amount_paid) < 0:
            errors["amount_paid"] = ["amount_paid cannot be negative."]
        if money(event.discount) < 0:
            errors["discount"] = ["discount cannot be negative."]
        if errors:
            raise PostingValidationError(errors)

    def reference(self, event: InvoicePosting) -> str:
        if event.reference:
            return event.reference.strip()
        number = normalize_invoice_number(event.invoice_number)
        if number:
            return f"INV-{number}"
        digest = _digest(
            event.customer_name.strip(),
            money(event.amount),
            event.invoice_date.isoformat(),
            event.submitted_at.isoformat(),
        )
        return f"INV-{digest[:16]}"

    def find_existing(self, event: InvoicePosting, reference: str):
        existing, reason = super().find_existing(event, reference)
        if existing is not None:
            return existing, reason

        number = normalize_invoice_number(event.invoice_number)
        if number:
            invoice = (
                Invoice.objects.filter(tenant=event.tenant, normalized_invoice_number=number)
                .select_related("journal_entry")
                .first()
            )
            if invoice is not None:
                return invoice.journal_entry, DUPLICATE_INVOICE_NUMBER
        return None, ""

    def _amounts(self, event: InvoicePosting) -> dict:
        total = money(event.amount)
        discount = money(event.discount)
        status = event.payment_status

        if event.amount_paid is not None:
            paid = money(event.amount_paid)
        elif status in PAID_BY_DEFAULT:
            paid = total
        else:
            paid = ZERO

        if not status:
            status = derive_payment_status(total, paid)

        tax = ZERO
        if event.subtotal is not None:
            subtotal = money(event.subtotal)
            if event.tax.enabled:
                if event.tax.tax_type == TAX_FIXED:
                    tax = min(money(event.tax.amount), total)
                else:
                    tax = exclusive_tax(subtotal - discount, event.tax.rate)
        else:
            net = total
            if event.tax.enabled:
                net, tax = split_inclusive_tax(
                    total,
                    tax_type=event.tax.tax_type,
                    rate=event.tax.rate,
                    fixed_amount=event.tax.amount,
                )
            subtotal = net + discount

        discount_posted = discount > 0 and is_balanced(subtotal - discount + tax, total)
        if discount_posted:
            revenue = subtotal
        else:
            revenue = total - tax
            if discount > 0:
                logger.warning(
                    "Invoice %s discount %s does not reconcile (subtotal=%s tax=%s total=%s); "
                    "folding it into revenue",
                    event.invoice_number or event.customer_name,
                    discount,
                    subtotal,
                    tax,
                    total,
                )

        return {
            "total": total,
            "paid": paid,
            "status": status,
            "tax": tax,
            "discount": discount,
            "discount_posted": discount_posted,
            "subtotal": subtotal,
            "revenue": revenue,
        }

    def prepare(self, event: InvoicePosting, reference: str, resolver: AccountResolver,
                *, lots: LotLedger) -> PostingDraft:
        a = self._amounts(event)
        total, paid, revenue = a["total"], a["paid"], a["revenue"]
        customer = event.customer_name.strip()

        cash = resolver.semantic(coa.CASH)
        postings: list[dict] = []

        collected = min(paid, total)
        if collected > 0:
            postings.append(_dr(cash, collected, f"Received from {customer}"))
        if total - collected > 0:
            postings.append(_dr(resolver.semantic(coa.ACCOUNTS_RECEIVABLE), total - collected,
                                f"Receivable from {customer}"))

        if a["discount_posted"]:
            postings.append(_dr(resolver.semantic(coa.SALES_DISCOUNTS), a["discount"], "Sales discount"))

        prepaid = a["status"] == Invoice.PAYMENT_PREPAID
        if prepaid:
            unearned = resolver.semantic(coa.UNEARNED_REVENUE)
            if revenue > 0:
                postings.append(_cr(unearned, revenue, f"Unearned revenue - {customer}"))
        elif event.line_items and revenue > 0:
            scaled = allocate_proportionally([li.amount for li in event.line_items], revenue)
            for item, amount in zip(event.line_items, scaled):
                if amount == 0:
                    continue
                res = resolver.resolve_revenue_account(
                    item.category_key or event.category_key,
                    item.account_code or event.revenue_account_code,
                )
                postings.append(_cr(res.account, amount, item.description or res.account.name))
        elif revenue > 0:
            res = resolver.resolve_revenue_account(event.category_key, event.revenue_account_code)
            postings.append(_cr(res.account, revenue, f"{res.account.name} - {customer}"))

        if a["tax"] > 0:
            postings.append(_cr(resolver.tax_account(sales=True), a["tax"], "Output tax"))

        overpayment = paid - total if paid > total else ZERO
        if overpayment > 0:
            postings.append(_dr(cash, overpayment, f"Overpayment from {customer}"))
            postings.append(_cr(resolver.semantic(coa.CUSTOMER_CREDITS), overpayment,
                                f"Customer credit - {customer}"))

        tracked = lots.get_tracked_products(event.tenant, [li.product_id for li in event.line_items])
        issues = [
            LotIssue(li.product_id, Decimal(str(li.quantity)), li.description)
            for li in event.line_items
            if li.product_id in tracked and Decimal(str(li.quantity)) > 0
        ]

        meta = InvoiceMeta(
            customer_name=customer,
            invoice_number=event.invoice_number.strip(),
            payment_status=a["status"],
            tax_amount=a["tax"],
            discount_amount=a["discount"],
            discount_posted=a["discount_posted"],
            overpayment=overpayment,
            source_rule_id=event.source_rule_id,
        )

        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=event.description or f"Invoice {event.invoice_number.strip() or reference} - {customer}",
            entry_date=event.invoice_date,
            amount=total,
            postings=postings,
            meta=meta,
            issues=issues,
            context=a,
        )

    def finalize(self, event: InvoicePosting, draft: PostingDraft, *, resolver, lots, commit):
        if not draft.issues:
            return

        cogs = ZERO
        for issue in draft.issues:
            if commit:
                issue.takes = lots.consume(
                    tenant=event.tenant, product_id=issue.product_id, quantity=issue.quantity
                )
            else:
                issue.takes = lots.preview_consume(
                    tenant=event.tenant, product_id=issue.product_id, quantity=issue.quantity
                )
            cogs += total_cost(issue.takes)

        cogs = money(cogs)
        if cogs > 0:
            draft.postings.append(_dr(resolver.semantic(coa.COGS), cogs, "Cost of goods sold"))
            draft.postings.append(_cr(resolver.semantic(coa.INVENTORY), cogs, "Inventory issued"))
        draft.meta = replace(draft.meta, cogs_amount=cogs)

    def persist(self, event: InvoicePosting, draft: PostingDraft, journal: JournalEntry, *,
                lots: LotLedger) -> Invoice:
        for issue in draft.issues:
            if issue.takes:
                lots.record_issue(
                    tenant=event.tenant,
                    product_id=issue.product_id,
                    takes=issue.takes,
                    journal=journal,
                )

        a = draft.context
        number = normalize_invoice_number(event.invoice_number)
        try:
            with transaction.atomic():
                return Invoice.objects.create(
                    tenant=event.tenant,
                    journal_entry=journal,
                    customer_name=event.customer_name,
                    invoice_number=event.invoice_number.strip(),
                    normalized_invoice_number=number,
                    invoice_date=event.invoice_date,
                    due_date=event.due_date,
                    total=a["total"],
                    subtotal=a["subtotal"],
                    tax_amount=a["tax"],
                    discount_amount=a["discount"],
                    amount_paid=a["paid"],
                    payment_status=a["status"],
                    status=derive_invoice_status(
                        a["total"], a["paid"], event.due_date, timezone.localdate()
                    ),
                    line_items=[
                        {
                            "description": li.description,
                            "amount": str(money(li.amount)),
                            "quantity": str(li.quantity),
                            "product_id": li.product_id,
                            "category_key": li.category_key,
                        }
                        for li in event.line_items
                    ],
                    tax_settings=event.tax.as_dict(),
                )
        except IntegrityError as exc:
            winner = (
                Invoice.objects.filter(tenant=event.tenant, normalized_invoice_number=number)
                .select_related("journal_entry")
                .first()
            )
            if winner is None:
                raise
            raise IdempotencyError(
                f"Invoice number {number} already posted",
                existing=winner.journal_entry,
                code=DUPLICATE_INVOICE_NUMBER,
            ) from exc


# ============================================================
# PAYMENTS
# ============================================================

PAYMENT_TARGETS = {
    "invoice": Invoice,
    "expense": Expense,
}


def _apply_payment(target, delta: Decimal, *, today: date) -> None:
    """Move amount_paid on an invoice/expense and re-derive its statuses."""
    target.amount_paid = max(target.amount_paid + delta, ZERO)

    if isinstance(target, Invoice):
        target.payment_status = derive_payment_status(target.total, target.amount_paid)
        target.status = derive_invoice_status(target.total, target.amount_paid, target.due_date, today)
        target.save(update_fields=["amount_paid", "payment_status", "status", "updated_at"])
    else:
        target.payment_status = derive_payment_status(abs(target.amount), target.amount_paid)
        target.save(update_fields=["amount_paid", "payment_status", "updated_at"])


class PaymentHandler(PostingHandler):
    kind = JournalEntry.KIND_PAYMENT

    def validate(self, event: PaymentRecord) -> None:
        errors = {}
        if event.target_kind not in PAYMENT_TARGETS:
            errors["target_kind"] = ["Must be 'invoice' or 'expense'."]
        if money(event.amount) <= 0:
            errors["amount"] = ["Payment amount must be > 0."]
        if errors:
            raise PostingValidationError(errors)

    def reference(self, event: PaymentRecord) -> str:
        if event.reference:
            return event.reference.strip()
        digest = _digest(
            money(event.amount),
            event.payment_date.isoformat(),
            event.method,
            event.submitted_at.isoformat(),
        )
        return f"PAY-{event.target_kind}-{event.target_id}-{digest[:12]}"

    def _target(self, event: PaymentRecord, *, lock: bool):
        model = PAYMENT_TARGETS[event.target_kind]
        qs = model.objects.filter(tenant=event.tenant, pk=event.target_id)
        if lock:
            qs = qs.select_for_update()
        target = qs.first()
        if target is None:
            raise PostingValidationError(
                {"target_id": [f"No {event.target_kind} {event.target_id} for this tenant."]}
            )
        if isinstance(target, Expense) and target.is_refund:
            raise PostingValidationError({"target_id": ["Refund expenses do not take payments."]})
        return target

    def prepare(self, event: PaymentRecord, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        amount = money(event.amount)
        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=f"Payment on {event.target_kind} #{event.target_id}",
            entry_date=event.payment_date,
            amount=amount,
            postings=[],
            meta=PaymentMeta(
                target_kind=event.target_kind,
                target_id=event.target_id,
                amount=amount,
                applied=ZERO,
                method=event.method,
            ),
        )

    def finalize(self, event: PaymentRecord, draft: PostingDraft, *, resolver, lots, commit):
        target = self._target(event, lock=commit)
        amount = draft.amount

        if isinstance(target, Invoice):
            outstanding = target.balance_due
        else:
            outstanding = target.outstanding
        applied = min(amount, outstanding)
        excess = amount - applied

        cash = resolver.semantic(coa.CASH)
        postings: list[dict] = []
        if isinstance(target, Invoice):
            label = target.invoice_number or f"#{target.id}"
            postings.append(_dr(cash, amount, f"Payment received - invoice {label}"))
            if applied > 0:
                postings.append(_cr(resolver.semantic(coa.ACCOUNTS_RECEIVABLE), applied,
                                    f"Applied to invoice {label}"))
            if excess > 0:
                postings.append(_cr(resolver.semantic(coa.CUSTOMER_CREDITS), excess,
                                    f"Customer credit - {target.customer_name}"))
        else:
            if applied > 0:
                postings.append(_dr(resolver.semantic(coa.ACCOUNTS_PAYABLE), applied,
                                    f"Paid to {target.vendor_name}"))
            if excess > 0:
                postings.append(_dr(resolver.semantic(coa.PREPAID_EXPENSES), excess,
                                    f"Prepaid - {target.vendor_name}"))
            postings.append(_cr(cash, amount, f"Payment to {target.vendor_name}"))

        draft.postings = postings
        draft.meta = replace(draft.meta, applied=applied, excess=excess)
        draft.context["target"] = target

    def persist(self, event: PaymentRecord, draft: PostingDraft, journal: JournalEntry, *, lots):
        target = draft.context["target"]
        _apply_payment(target, draft.amount, today=event.payment_date)
        return target


class VoidPaymentHandler(PostingHandler):
    kind = JournalEntry.KIND_VOID

    def reference(self, event: VoidPayment) -> str:
        if event.reference:
            return event.reference.strip()
        return f"void:{event.journal_id}"

    def _void_of(self, event: VoidPayment) -> JournalEntry | None:
        return JournalEntry.objects.filter(
            tenant=event.tenant,
            kind=JournalEntry.KIND_VOID,
            metadata__voided_journal_id=event.journal_id,
        ).first()

    def find_existing(self, event: VoidPayment, reference: str):
        existing, reason = super().find_existing(event, reference)
        if existing is not None:
            return existing, reason
        # A payment is voided at most once, whatever reference the caller sends.
        existing = self._void_of(event)
        if existing is not None:
            return existing, ALREADY_VOIDED
        return None, ""

    def prepare(self, event: VoidPayment, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        original = JournalEntry.objects.filter(tenant=event.tenant, pk=event.journal_id).first()
        if original is None:
            raise PostingValidationError({"journal_id": [f"No journal {event.journal_id} for this tenant."]})
        if original.kind != JournalEntry.KIND_PAYMENT:
            raise PostingValidationError({"journal_id": ["Only payment journals can be voided."]})

        paid = load_metadata(original.metadata)
        entries = original.ledger_entries.select_related("account").order_by("id")
        postings = [
            _cr(e.account, e.amount, f"Void: {e.description}".strip())
            if e.entry_type == LedgerEntry.DEBIT
            else _dr(e.account, e.amount, f"Void: {e.description}".strip())
            for e in entries
        ]

        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=f"Void payment {original.reference}",
            entry_date=event.void_date,
            amount=original.amount,
            postings=postings,
            meta=VoidMeta(
                voided_journal_id=original.id,
                voided_reference=original.reference,
                target_kind=paid.target_kind,
                target_id=paid.target_id,
                amount=paid.amount,
                reason=event.reason,
            ),
        )

    def finalize(self, event: VoidPayment, draft: PostingDraft, *, resolver, lots, commit):
        if not commit:
            return
        # Serializes concurrent voids of the same payment.
        JournalEntry.objects.select_for_update().filter(tenant=event.tenant, pk=event.journal_id).first()
        existing = self._void_of(event)
        if existing is not None:
            raise IdempotencyError(
                f"Payment journal {event.journal_id} is already voided",
                existing=existing,
                code=ALREADY_VOIDED,
            )

    def persist(self, event: VoidPayment, draft: PostingDraft, journal: JournalEntry, *, lots):
        meta = draft.meta
        model = PAYMENT_TARGETS.get(meta.target_kind)
        target = model.objects.select_for_update().filter(tenant=event.tenant, pk=meta.target_id).first()
        if target is None:
            return None
        _apply_payment(target, -meta.amount, today=event.void_date)
        return target


# ============================================================
# DEPRECIATION
# ============================================================

class DepreciationHandler(PostingHandler):
    kind = JournalEntry.KIND_DEPRECIATION

    def validate(self, event: AssetDepreciation) -> None:
        if money(event.amount) <= 0:
            raise PostingValidationError({"amount": ["Depreciation amount must be > 0."]})

    def reference(self, event: AssetDepreciation) -> str:
        if event.reference:
            return event.reference.strip()
        return f"asset:{event.asset_id}:{event.run_date:%Y-%m}"

    def prepare(self, event: AssetDepreciation, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        accounts = resolver.chart.require(event.expense_account_code, event.accumulated_account_code)
        amount = money(event.amount)
        period = f"{event.run_date:%Y-%m}"
        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=f"Depreciation {period} - {event.asset_name}",
            entry_date=event.run_date,
            amount=amount,
            postings=[
                _dr(accounts[event.expense_account_code], amount, f"Depreciation - {event.asset_name}"),
                _cr(accounts[event.accumulated_account_code], amount, f"Accumulated - {event.asset_name}"),
            ],
            meta=DepreciationMeta(
                asset_id=event.asset_id,
                period=period,
                amount=amount,
                accumulated_after=money(event.accumulated_after),
            ),
        )


# ============================================================
# OWNER CAPITAL / DIRECT REVENUE
# ============================================================

def _require_text(errors: dict, event, *names: str) -> None:
    for name in names:
        if not (getattr(event, name) or "").strip():
            errors[name] = ["This field is required."]


class CapitalContributionHandler(PostingHandler):
    """Owner puts cash into the business: Dr Cash / Cr Owner's Equity."""

    kind = JournalEntry.KIND_CAPITAL

    def validate(self, event: CapitalContribution) -> None:
        errors = {}
        _require_text(errors, event, "contributor", "description")
        if money(event.amount) <= 0:
            errors["amount"] = ["Contribution amount must be > 0."]
        if errors:
            raise PostingValidationError(errors)

    def reference(self, event: CapitalContribution) -> str:
        if event.reference:
            return event.reference.strip()
        digest = _digest(
            event.contributor.strip(),
            money(event.amount),
            event.contribution_date.isoformat(),
            event.submitted_at.isoformat(),
        )
        return f"CAP-{digest[:16]}"

    def prepare(self, event: CapitalContribution, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        amount = money(event.amount)
        contributor = event.contributor.strip()
        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=event.description.strip(),
            entry_date=event.contribution_date,
            amount=amount,
            postings=[
                _dr(resolver.semantic(coa.CASH), amount, f"Capital from {contributor}"),
                _cr(resolver.semantic(coa.OWNER_EQUITY), amount, f"Owner contribution - {contributor}"),
            ],
            meta=CapitalMeta(contributor=contributor, notes=(event.notes or "").strip()),
        )


class RevenueReceiptHandler(PostingHandler):
    """Revenue collected on the spot, no invoice: Dr Cash / Cr Revenue."""

    kind = JournalEntry.KIND_REVENUE

    def validate(self, event: RevenueReceipt) -> None:
        errors = {}
        _require_text(errors, event, "customer_name", "description")
        if money(event.amount) <= 0:
            errors["amount"] = ["Revenue amount must be > 0."]
        if errors:
            raise PostingValidationError(errors)

    def reference(self, event: RevenueReceipt) -> str:
        if event.reference:
            return event.reference.strip()
        digest = _digest(
            event.customer_name.strip(),
            money(event.amount),
            event.receipt_date.isoformat(),
            event.submitted_at.isoformat(),
        )
        return f"REV-{digest[:16]}"

    def prepare(self, event: RevenueReceipt, reference: str, resolver: AccountResolver, *,
                lots: LotLedger) -> PostingDraft:
        amount = money(event.amount)
        customer = event.customer_name.strip()
        revenue = resolver.resolve_revenue_account("", event.revenue_account_code).account
        return PostingDraft(
            kind=self.kind,
            reference=reference,
            description=event.description.strip(),
            entry_date=event.receipt_date,
            amount=amount,
            postings=[
                _dr(resolver.semantic(coa.CASH), amount, f"Received from {customer}"),
                _cr(revenue, amount, f"{revenue.name} - {customer}"),
            ],
            meta=RevenueMeta(
                customer_name=customer,
                payment_method=(event.payment_method or "CASH").strip().upper(),
                revenue_account_code=revenue.code,
            ),
        )


HANDLERS: dict[type, PostingHandler] = {
    ExpensePosting: ExpenseHandler(),
    InvoicePosting: InvoiceHandler(),
    PaymentRecord: PaymentHandler(),
    VoidPayment: VoidPaymentHandler(),
    AssetDepreciation: DepreciationHandler(),
    CapitalContribution: CapitalContributionHandler(),
    RevenueReceipt: RevenueReceiptHandler(),
}


def handler_for(event) -> PostingHandler:
    try:
        return HANDLERS[type(event)]
    except KeyError:
        raise PostingValidationError(
            {"event": [f"Unsupported posting event {type(event).__name__}."]}
        ) from None
