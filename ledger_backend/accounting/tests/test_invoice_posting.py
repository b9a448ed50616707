# accounting/tests/test_invoice_posting.py

from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest import mock

from django.test import TestCase

from accounting.models.invoice import Invoice
from accounting.models.journal import JournalEntry
from accounting.models.tenant import Tenant
from accounting.serializers import invoice_event
from accounting.services import ledger_writer
from accounting.services.events import InvoicePosting, LineItem, TaxSettings
from accounting.services.posting import InvoiceHandler, normalize_invoice_number
from accounting.tests.helpers import make_tenant, net_by_account
from inventory.models import InventoryLot, InventoryTxn, Product
from inventory.services import LotLedger


class InvoicePostingTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")

    def _invoice(self, **kwargs) -> InvoicePosting:
        payload = {
            "tenant": self.tenant,
            "customer_name": "Globex",
            "amount": Decimal("1000.00"),
            "invoice_date": date(2025, 5, 1),
        }
        payload.update(kwargs)
        return InvoicePosting(**payload)

    def test_overpaid_invoice_routes_excess_to_customer_credits(self):
        result = ledger_writer.post(self._invoice(amount_paid=Decimal("1200.00")))

        self.assertEqual(
            net_by_account(result),
            {
                "1010": Decimal("1200.00"),
                "4020": Decimal("-1000.00"),
                "2050": Decimal("-200.00"),
            },
        )
        cash_lines = sorted(e.amount for e in result.entries if e.account_code == "1010")
        self.assertEqual(cash_lines, [Decimal("200.00"), Decimal("1000.00")])

        invoice = Invoice.objects.get(id=result.record_id)
        self.assertEqual(invoice.payment_status, Invoice.PAYMENT_OVERPAID)
        self.assertEqual(invoice.status, Invoice.STATUS_PAID)
        self.assertEqual(result.metadata["overpayment"], "200.00")

    def test_unpaid_service_invoice_debits_receivable(self):
        result = ledger_writer.post(
            self._invoice(amount=Decimal("500.00"), category_key="SERVICES")
        )

        self.assertEqual(net_by_account(result), {"1200": Decimal("500.00"), "4030": Decimal("-500.00")})
        invoice = Invoice.objects.get(id=result.record_id)
        self.assertEqual(invoice.payment_status, Invoice.PAYMENT_UNPAID)
        self.assertEqual(invoice.status, Invoice.STATUS_SENT)
        self.assertEqual(invoice.balance_due, Decimal("500.00"))

    def test_partially_paid_invoice(self):
        result = ledger_writer.post(
            self._invoice(amount=Decimal("500.00"), amount_paid=Decimal("200.00"))
        )

        self.assertEqual(
            net_by_account(result),
            {"1010": Decimal("200.00"), "1200": Decimal("300.00"), "4020": Decimal("-500.00")},
        )
        self.assertEqual(Invoice.objects.get(id=result.record_id).payment_status, "partial")

    def test_paid_status_defaults_amount_paid_to_total(self):
        result = ledger_writer.post(self._invoice(amount=Decimal("80.00"), payment_status="paid"))
        self.assertEqual(net_by_account(result), {"1010": Decimal("80.00"), "4020": Decimal("-80.00")})

    def test_reconciling_discount_posts_contra_revenue(self):
        result = ledger_writer.post(
            self._invoice(
                amount=Decimal("99.00"),
                subtotal=Decimal("100.00"),
                discount=Decimal("10.00"),
                tax=TaxSettings(enabled=True, rate=Decimal("10")),
            )
        )

        self.assertEqual(
            net_by_account(result),
            {
                "1200": Decimal("99.00"),
                "4910": Decimal("10.00"),
                "4020": Decimal("-100.00"),
                "2150": Decimal("-9.00"),
            },
        )
        self.assertTrue(result.metadata["discount_posted"])

    def test_non_reconciling_discount_is_folded_into_revenue(self):
        with self.assertLogs("accounting.services.posting", level="WARNING"):
            result = ledger_writer.post(
                self._invoice(
                    amount=Decimal("105.00"),
                    subtotal=Decimal("100.00"),
                    discount=Decimal("10.00"),
                    tax=TaxSettings(enabled=True, rate=Decimal("10")),
                )
            )

        self.assertEqual(
            net_by_account(result),
            {"1200": Decimal("105.00"), "4020": Decimal("-96.00"), "2150": Decimal("-9.00")},
        )
        self.assertFalse(result.metadata["discount_posted"])

    def test_tax_inclusive_total_without_subtotal(self):
        result = ledger_writer.post(
            self._invoice(
                amount=Decimal("110.00"),
                payment_status="paid",
                tax=TaxSettings(enabled=True, rate=Decimal("10")),
            )
        )

        self.assertEqual(
            net_by_account(result),
            {"1010": Decimal("110.00"), "4020": Decimal("-100.00"), "2150": Decimal("-10.00")},
        )

    def test_vat_regime_credits_vat_payable(self):
        vat_tenant = make_tenant("eurco", regime=Tenant.REGIME_VAT)
        result = ledger_writer.post(
            self._invoice(
                tenant=vat_tenant,
                amount=Decimal("120.00"),
                tax=TaxSettings(enabled=True, rate=Decimal("20")),
            )
        )

        net = net_by_account(result)
        self.assertEqual(net["2160"], Decimal("-20.00"))
        self.assertNotIn("2150", net)

    def test_prepaid_invoice_credits_unearned_revenue(self):
        result = ledger_writer.post(
            self._invoice(amount=Decimal("300.00"), payment_status="prepaid")
        )
        self.assertEqual(net_by_account(result), {"1010": Decimal("300.00"), "2400": Decimal("-300.00")})

    def test_line_items_carry_their_own_revenue_accounts(self):
        result = ledger_writer.post(
            self._invoice(
                amount=Decimal("300.00"),
                line_items=[
                    LineItem(description="Setup", amount=Decimal("100.00"), category_key="SERVICES"),
                    LineItem(description="Plan", amount=Decimal("200.00"), category_key="SUBSCRIPTIONS"),
                ],
            )
        )

        self.assertEqual(
            net_by_account(result),
            {"1200": Decimal("300.00"), "4030": Decimal("-100.00"), "4040": Decimal("-200.00")},
        )

    def test_same_invoice_number_is_idempotent(self):
        first = ledger_writer.post(self._invoice(invoice_number="#inv 001"))
        second = ledger_writer.post(
            self._invoice(invoice_number=" INV001 ", amount=Decimal("999.00"), reference="other-ref")
        )

        self.assertTrue(second.is_existing)
        self.assertEqual(second.duplicate_reason, "DUPLICATE_INVOICE_NUMBER")
        self.assertEqual(second.journal_id, first.journal_id)
        self.assertEqual(Invoice.objects.count(), 1)
        self.assertEqual(JournalEntry.objects.count(), 1)

    def test_invoice_number_race_returns_the_winner(self):
        first = ledger_writer.post(self._invoice(invoice_number="INV-900"))

        # the loser passed its pre-check before the winner committed
        with mock.patch.object(InvoiceHandler, "find_existing", return_value=(None, "")):
            second = ledger_writer.post(
                self._invoice(invoice_number="#inv-900", amount=Decimal("750.00"), reference="other-ref")
            )

        self.assertTrue(second.is_existing)
        self.assertEqual(second.duplicate_reason, "DUPLICATE_INVOICE_NUMBER")
        self.assertEqual(second.journal_id, first.journal_id)
        self.assertEqual(Invoice.objects.count(), 1)
        self.assertEqual(JournalEntry.objects.count(), 1)
        self.assertFalse(JournalEntry.objects.filter(reference="other-ref").exists())

    def test_invoice_number_normalization(self):
        self.assertEqual(normalize_invoice_number("  #inv 001 "), "INV001")
        self.assertEqual(normalize_invoice_number("##a-7"), "A-7")
        self.assertEqual(normalize_invoice_number(""), "")

    def test_past_due_unpaid_invoice_is_overdue(self):
        result = ledger_writer.post(
            self._invoice(
                amount=Decimal("50.00"),
                invoice_date=date(2020, 1, 1),
                due_date=date(2020, 1, 31),
            )
        )
        self.assertEqual(Invoice.objects.get(id=result.record_id).status, Invoice.STATUS_OVERDUE)


class InvoiceCogsTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")
        self.product = Product.objects.create(
            tenant=self.tenant, sku="WIDGET", name="Widget", is_inventory_tracked=True
        )
        lots = LotLedger()
        self.old_lot = lots.receive(
            tenant=self.tenant,
            product_id=self.product.id,
            quantity=Decimal("5"),
            unit_cost=Decimal("2.00"),
            received_on=date(2025, 1, 1),
        )
        self.new_lot = lots.receive(
            tenant=self.tenant,
            product_id=self.product.id,
            quantity=Decimal("5"),
            unit_cost=Decimal("3.00"),
            received_on=date(2025, 2, 1),
        )

    def _sale(self, qty: str, amount: str = "70.00", **kwargs) -> InvoicePosting:
        return InvoicePosting(
            tenant=self.tenant,
            customer_name="Initech",
            amount=Decimal(amount),
            invoice_date=date(2025, 3, 1),
            payment_status="paid",
            line_items=[
                LineItem(
                    description="Widgets",
                    amount=Decimal(amount),
                    quantity=Decimal(qty),
                    product_id=self.product.id,
                )
            ],
            **kwargs,
        )

    def test_sale_consumes_oldest_lots_first(self):
        result = ledger_writer.post(self._sale("7"))

        net = net_by_account(result)
        self.assertEqual(net["5010"], Decimal("16.00"))
        self.assertEqual(net["1300"], Decimal("-16.00"))
        self.assertEqual(net["1010"], Decimal("70.00"))
        self.assertEqual(net["4020"], Decimal("-70.00"))

        self.old_lot.refresh_from_db()
        self.new_lot.refresh_from_db()
        self.assertEqual(self.old_lot.remaining_qty, Decimal("0.000"))
        self.assertEqual(self.new_lot.remaining_qty, Decimal("3.000"))

        issues = InventoryTxn.objects.filter(txn_type=InventoryTxn.ISSUE, journal_entry_id=result.journal_id)
        self.assertEqual(issues.count(), 2)
        self.assertEqual(result.metadata["cogs_amount"], "16.00")

    def test_insufficient_stock_is_not_fatal(self):
        with self.assertLogs("inventory.services.lot_ledger", level="WARNING"):
            result = ledger_writer.post(self._sale("12", amount="120.00"))

        self.assertEqual(net_by_account(result)["5010"], Decimal("25.00"))
        self.assertEqual(
            sum(InventoryLot.objects.values_list("remaining_qty", flat=True), Decimal("0")),
            Decimal("0.000"),
        )

    def test_preview_costs_without_consuming(self):
        preview = ledger_writer.preview(self._sale("7"))

        self.assertEqual(net_by_account(preview)["5010"], Decimal("16.00"))
        self.old_lot.refresh_from_db()
        self.assertEqual(self.old_lot.remaining_qty, Decimal("5.000"))
        self.assertFalse(InventoryTxn.objects.filter(txn_type=InventoryTxn.ISSUE).exists())


class InvoiceSerializerTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")

    def test_status_is_optional(self):
        event = invoice_event(
            self.tenant,
            {"customer_name": "Globex", "amount": "1000", "amount_paid": "1200", "invoice_date": "2025-05-01"},
        )
        self.assertEqual(event.payment_status, "")
        self.assertEqual(event.amount, Decimal("1000.00"))

        result = ledger_writer.post(event)
        self.assertEqual(Invoice.objects.get(id=result.record_id).payment_status, "overpaid")

    def test_due_date_before_invoice_date_is_rejected(self):
        from accounting.services.exceptions import PostingValidationError

        with self.assertRaises(PostingValidationError) as ctx:
            invoice_event(
                self.tenant,
                {
                    "customer_name": "Globex",
                    "amount": "10.00",
                    "invoice_date": "2025-05-01",
                    "due_date": "2025-04-01",
                },
            )
        self.assertIn("due_date", ctx.exception.errors)
