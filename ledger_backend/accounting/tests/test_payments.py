# accounting/tests/test_payments.py

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from unittest import mock

from django.test import TestCase
from django.utils import timezone

from accounting.models.expense import Expense
from accounting.models.invoice import Invoice
from accounting.models.journal import JournalEntry
from accounting.serializers import payment_event, void_event
from accounting.services import ledger_writer
from accounting.services.events import ExpensePosting, InvoicePosting, PaymentRecord, VoidPayment
from accounting.services.exceptions import PostingValidationError
from accounting.services.metadata import PaymentMeta, VoidMeta, journal_metadata
from accounting.services.posting import VoidPaymentHandler
from accounting.tests.helpers import make_tenant, net_by_account


class InvoicePaymentTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")
        posted = ledger_writer.post(
            InvoicePosting(
                tenant=self.tenant,
                customer_name="Globex",
                amount=Decimal("500.00"),
                invoice_date=date(2025, 6, 1),
                invoice_number="INV-500",
            )
        )
        self.invoice = Invoice.objects.get(id=posted.record_id)

    def _pay(self, amount: str, when=date(2025, 6, 15), **kwargs):
        return ledger_writer.post(
            PaymentRecord(
                tenant=self.tenant,
                target_kind="invoice",
                target_id=self.invoice.id,
                amount=Decimal(amount),
                payment_date=when,
                **kwargs,
            )
        )

    def test_partial_payment_reduces_receivable(self):
        result = self._pay("200.00")

        self.assertEqual(result.kind, JournalEntry.KIND_PAYMENT)
        self.assertEqual(net_by_account(result), {"1010": Decimal("200.00"), "1200": Decimal("-200.00")})

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("200.00"))
        self.assertEqual(self.invoice.payment_status, "partial")
        self.assertEqual(self.invoice.status, Invoice.STATUS_SENT)

        meta = journal_metadata(JournalEntry.objects.get(id=result.journal_id))
        self.assertIsInstance(meta, PaymentMeta)
        self.assertEqual(meta.applied, Decimal("200.00"))
        self.assertEqual(meta.target_id, self.invoice.id)

    def test_excess_payment_goes_to_customer_credits(self):
        result = self._pay("600.00")

        self.assertEqual(
            net_by_account(result),
            {"1010": Decimal("600.00"), "1200": Decimal("-500.00"), "2050": Decimal("-100.00")},
        )
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.payment_status, "overpaid")
        self.assertEqual(self.invoice.status, Invoice.STATUS_PAID)

    def test_retried_payment_is_idempotent(self):
        stamp = timezone.now()
        first = self._pay("100.00", submitted_at=stamp)
        second = self._pay("100.00", submitted_at=stamp)

        self.assertTrue(second.is_existing)
        self.assertEqual(second.journal_id, first.journal_id)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("100.00"))

    def test_two_same_day_payments_both_apply(self):
        stamp = timezone.now()
        first = self._pay("100.00", submitted_at=stamp)
        second = self._pay("100.00", submitted_at=stamp + timedelta(minutes=5))

        self.assertFalse(second.is_existing)
        self.assertNotEqual(second.journal_id, first.journal_id)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("200.00"))
        self.assertEqual(
            JournalEntry.objects.filter(tenant=self.tenant, kind=JournalEntry.KIND_PAYMENT).count(), 2
        )

    def test_void_reverses_lines_and_amount_paid(self):
        paid = self._pay("200.00")

        voided = ledger_writer.post(
            VoidPayment(tenant=self.tenant, journal_id=paid.journal_id, void_date=date(2025, 6, 20))
        )

        self.assertEqual(voided.reference, f"void:{paid.journal_id}")
        self.assertEqual(net_by_account(voided), {"1010": Decimal("-200.00"), "1200": Decimal("200.00")})

        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))
        self.assertEqual(self.invoice.payment_status, "unpaid")

        meta = journal_metadata(JournalEntry.objects.get(id=voided.journal_id))
        self.assertIsInstance(meta, VoidMeta)
        self.assertEqual(meta.voided_journal_id, paid.journal_id)

    def test_void_twice_is_idempotent(self):
        paid = self._pay("200.00")
        event = VoidPayment(tenant=self.tenant, journal_id=paid.journal_id, void_date=date(2025, 6, 20))

        ledger_writer.post(event)
        again = ledger_writer.post(event)

        self.assertTrue(again.is_existing)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))

    def test_void_under_a_second_reference_does_not_reverse_again(self):
        paid = self._pay("200.00")

        first = ledger_writer.post(
            VoidPayment(tenant=self.tenant, journal_id=paid.journal_id,
                        void_date=date(2025, 6, 20), reference="VOID-A")
        )
        second = ledger_writer.post(
            VoidPayment(tenant=self.tenant, journal_id=paid.journal_id,
                        void_date=date(2025, 6, 21), reference="VOID-B")
        )

        self.assertTrue(second.is_existing)
        self.assertEqual(second.duplicate_reason, "ALREADY_VOIDED")
        self.assertEqual(second.journal_id, first.journal_id)
        self.assertEqual(JournalEntry.objects.filter(kind=JournalEntry.KIND_VOID).count(), 1)
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))

    def test_concurrent_void_is_caught_under_the_payment_lock(self):
        paid = self._pay("200.00")
        first = ledger_writer.post(
            VoidPayment(tenant=self.tenant, journal_id=paid.journal_id,
                        void_date=date(2025, 6, 20), reference="VOID-A")
        )

        # the second request passed its pre-check before the first committed
        with mock.patch.object(VoidPaymentHandler, "find_existing", return_value=(None, "")):
            second = ledger_writer.post(
                VoidPayment(tenant=self.tenant, journal_id=paid.journal_id,
                            void_date=date(2025, 6, 20), reference="VOID-B")
            )

        self.assertTrue(second.is_existing)
        self.assertEqual(second.duplicate_reason, "ALREADY_VOIDED")
        self.assertEqual(second.journal_id, first.journal_id)
        self.assertFalse(JournalEntry.objects.filter(reference="VOID-B").exists())
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))

    def test_only_payment_journals_can_be_voided(self):
        with self.assertRaises(PostingValidationError) as ctx:
            ledger_writer.post(
                VoidPayment(
                    tenant=self.tenant,
                    journal_id=self.invoice.journal_entry_id,
                    void_date=date(2025, 6, 20),
                )
            )
        self.assertIn("journal_id", ctx.exception.errors)

    def test_unknown_target_is_a_validation_failure(self):
        with self.assertRaises(PostingValidationError):
            ledger_writer.post(
                PaymentRecord(
                    tenant=self.tenant,
                    target_kind="invoice",
                    target_id=987654,
                    amount=Decimal("10.00"),
                    payment_date=date(2025, 6, 15),
                )
            )
        self.assertFalse(JournalEntry.objects.filter(kind=JournalEntry.KIND_PAYMENT).exists())

    def test_payment_preview_writes_nothing(self):
        preview = ledger_writer.preview(
            PaymentRecord(
                tenant=self.tenant,
                target_kind="invoice",
                target_id=self.invoice.id,
                amount=Decimal("50.00"),
                payment_date=date(2025, 6, 15),
            )
        )

        self.assertTrue(preview.dry_run)
        self.assertEqual(net_by_account(preview), {"1010": Decimal("50.00"), "1200": Decimal("-50.00")})
        self.invoice.refresh_from_db()
        self.assertEqual(self.invoice.amount_paid, Decimal("0.00"))


class ExpensePaymentTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")
        posted = ledger_writer.post(
            ExpensePosting(
                tenant=self.tenant,
                vendor_name="Landlord LLC",
                amount=Decimal("300.00"),
                expense_date=date(2025, 6, 1),
                category_key="RENT",
            )
        )
        self.expense = Expense.objects.get(id=posted.record_id)

    def test_payment_settles_payable(self):
        result = ledger_writer.post(
            payment_event(
                self.tenant,
                {
                    "target_kind": "expense",
                    "target_id": self.expense.id,
                    "amount": "300.00",
                    "payment_date": "2025-06-30",
                },
            )
        )

        self.assertEqual(net_by_account(result), {"2010": Decimal("300.00"), "1010": Decimal("-300.00")})
        self.expense.refresh_from_db()
        self.assertEqual(self.expense.payment_status, Expense.STATUS_PAID)
        self.assertEqual(self.expense.outstanding, Decimal("0.00"))

    def test_excess_payment_becomes_prepaid(self):
        result = ledger_writer.post(
            PaymentRecord(
                tenant=self.tenant,
                target_kind="expense",
                target_id=self.expense.id,
                amount=Decimal("350.00"),
                payment_date=date(2025, 6, 30),
            )
        )

        self.assertEqual(
            net_by_account(result),
            {"2010": Decimal("300.00"), "1400": Decimal("50.00"), "1010": Decimal("-350.00")},
        )

    def test_refund_expenses_do_not_take_payments(self):
        refund = ledger_writer.post(
            ExpensePosting(
                tenant=self.tenant,
                vendor_name="Landlord LLC",
                amount=Decimal("-30.00"),
                is_refund=True,
                expense_date=date(2025, 6, 2),
                category_key="RENT",
            )
        )

        with self.assertRaises(PostingValidationError):
            ledger_writer.post(
                PaymentRecord(
                    tenant=self.tenant,
                    target_kind="expense",
                    target_id=refund.record_id,
                    amount=Decimal("30.00"),
                    payment_date=date(2025, 6, 30),
                )
            )

    def test_void_from_payload_restores_payable(self):
        paid = ledger_writer.post(
            PaymentRecord(
                tenant=self.tenant,
                target_kind="expense",
                target_id=self.expense.id,
                amount=Decimal("100.00"),
                payment_date=date(2025, 6, 30),
            )
        )

        ledger_writer.post(
            void_event(
                self.tenant,
                {"journal_id": paid.journal_id, "void_date": "2025-07-01", "reason": "bounced"},
            )
        )

        self.expense.refresh_from_db()
        self.assertEqual(self.expense.amount_paid, Decimal("0.00"))
        self.assertEqual(self.expense.payment_status, Expense.STATUS_UNPAID)

    def test_payment_serializer_rejects_zero_amount(self):
        with self.assertRaises(PostingValidationError) as ctx:
            payment_event(
                self.tenant,
                {
                    "target_kind": "expense",
                    "target_id": self.expense.id,
                    "amount": "0.00",
                    "payment_date": "2025-06-30",
                },
            )
        self.assertIn("amount", ctx.exception.errors)
