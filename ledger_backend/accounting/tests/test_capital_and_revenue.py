# accounting/tests/test_capital_and_revenue.py

from __future__ import annotations

from datetime import date
from decimal import Decimal

from django.test import TestCase

from accounting.models.journal import JournalEntry
from accounting.serializers import capital_event, revenue_event
from accounting.services import ledger_writer
from accounting.services.events import CapitalContribution, RevenueReceipt
from accounting.services.exceptions import PostingValidationError
from accounting.services.metadata import CapitalMeta, RevenueMeta, journal_metadata
from accounting.tests.helpers import make_tenant, net_by_account


class CapitalContributionTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")

    def _capital(self, **kwargs) -> CapitalContribution:
        payload = {
            "tenant": self.tenant,
            "contributor": "Jordan Lee",
            "amount": Decimal("5000.00"),
            "contribution_date": date(2025, 1, 2),
            "description": "Initial investment",
        }
        payload.update(kwargs)
        return CapitalContribution(**payload)

    def test_cash_in_owner_equity_up(self):
        result = ledger_writer.post(self._capital(notes="seed round"))

        self.assertEqual(result.kind, JournalEntry.KIND_CAPITAL)
        self.assertTrue(result.reference.startswith("CAP-"))
        self.assertEqual(net_by_account(result), {"1010": Decimal("5000.00"), "3000": Decimal("-5000.00")})

        meta = journal_metadata(JournalEntry.objects.get(id=result.journal_id))
        self.assertEqual(meta, CapitalMeta(contributor="Jordan Lee", notes="seed round"))

    def test_same_reference_posts_once(self):
        first = ledger_writer.post(self._capital(reference="CAP-2025-01"))
        second = ledger_writer.post(self._capital(reference="CAP-2025-01", amount=Decimal("10.00")))

        self.assertTrue(second.is_existing)
        self.assertEqual(second.journal_id, first.journal_id)
        self.assertEqual(JournalEntry.objects.filter(kind=JournalEntry.KIND_CAPITAL).count(), 1)

    def test_required_fields(self):
        with self.assertRaises(PostingValidationError) as ctx:
            ledger_writer.post(self._capital(contributor=" ", description="", amount=Decimal("0")))

        self.assertEqual(set(ctx.exception.errors), {"contributor", "description", "amount"})
        self.assertEqual(JournalEntry.objects.count(), 0)

    def test_serializer_builds_the_event(self):
        event = capital_event(
            self.tenant,
            {
                "contributor": " Jordan Lee ",
                "amount": "250.00",
                "contribution_date": "2025-02-01",
                "description": "Top-up",
            },
        )
        self.assertEqual(event.contributor, "Jordan Lee")
        self.assertEqual(event.amount, Decimal("250.00"))

        with self.assertRaises(PostingValidationError) as ctx:
            capital_event(self.tenant, {"contributor": "X", "amount": "-1", "contribution_date": "2025-02-01"})
        self.assertIn("amount", ctx.exception.errors)
        self.assertIn("description", ctx.exception.errors)


class RevenueReceiptTests(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")

    def _receipt(self, **kwargs) -> RevenueReceipt:
        payload = {
            "tenant": self.tenant,
            "customer_name": "Walk-in",
            "amount": Decimal("120.00"),
            "receipt_date": date(2025, 3, 5),
            "description": "Counter sale",
        }
        payload.update(kwargs)
        return RevenueReceipt(**payload)

    def test_cash_sale_without_invoice(self):
        result = ledger_writer.post(self._receipt())

        self.assertEqual(result.kind, JournalEntry.KIND_REVENUE)
        self.assertTrue(result.reference.startswith("REV-"))
        self.assertEqual(net_by_account(result), {"1010": Decimal("120.00"), "4020": Decimal("-120.00")})

        meta = journal_metadata(JournalEntry.objects.get(id=result.journal_id))
        self.assertEqual(
            meta,
            RevenueMeta(customer_name="Walk-in", payment_method="CASH", revenue_account_code="4020"),
        )

    def test_explicit_revenue_account(self):
        result = ledger_writer.post(self._receipt(revenue_account_code="4030", payment_method="card"))

        self.assertEqual(net_by_account(result)["4030"], Decimal("-120.00"))
        self.assertEqual(result.metadata["payment_method"], "CARD")

    def test_same_reference_posts_once(self):
        first = ledger_writer.post(self._receipt(reference="TILL-7"))
        second = ledger_writer.post(self._receipt(reference="TILL-7"))

        self.assertTrue(second.is_existing)
        self.assertEqual(second.journal_id, first.journal_id)

    def test_required_fields(self):
        with self.assertRaises(PostingValidationError) as ctx:
            ledger_writer.post(self._receipt(customer_name="", description=" ", amount=Decimal("-5")))

        self.assertEqual(set(ctx.exception.errors), {"customer_name", "description", "amount"})

    def test_serializer_defaults_to_cash(self):
        event = revenue_event(
            self.tenant,
            {"customer_name": "Walk-in", "amount": "9.99", "receipt_date": "2025-03-05", "description": "Coffee"},
        )
        self.assertEqual(event.payment_method, "CASH")
