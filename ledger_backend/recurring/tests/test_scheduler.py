# recurring/tests/test_scheduler.py

from datetime import date, datetime, time, timedelta, timezone as dt_timezone
from io import StringIO

from django.core.management import call_command
from django.db.models import F
from django.test import TestCase

from accounting.models.expense import Expense
from accounting.models.invoice import Invoice
from accounting.models.journal import JournalEntry
from accounting.services import ledger_writer
from accounting.services.exceptions import PostingValidationError
from accounting.tests.helpers import make_tenant
from recurring.models import RecurringRule
from recurring.services import (
    RecurringScheduler,
    RecurringTicker,
    create_rule,
    delete_rule,
    pause_rule,
    preview_occurrences,
    resume_rule,
    update_rule,
)
from recurring.services.scheduler import FAILED, POSTED, PREVIEW, SKIPPED

RENT = {
    "vendor_name": "Landlord LLC",
    "amount": "1500.00",
    "category_key": "RENT",
    "payment_status": "paid",
}


def at(d: date, hour: int = 12) -> datetime:
    return datetime.combine(d, time(hour), tzinfo=dt_timezone.utc)


class SchedulerTestBase(TestCase):
    def setUp(self):
        self.tenant = make_tenant("acme")
        self.scheduler = RecurringScheduler()

    def _rule(self, *, cadence="MONTHLY", start="2025-03-01", options=None, template=None,
              kind="EXPENSE", anchor_posted=False, **extra) -> RecurringRule:
        payload = {
            "kind": kind,
            "cadence": cadence,
            "start_date": start,
            "options": options or {},
            "payload_template": template or RENT,
            **extra,
        }
        return create_rule(self.tenant, payload, anchor_posted=anchor_posted)


class MonthlyScheduleTests(SchedulerTestBase):
    def test_end_of_month_rule_lands_on_month_ends(self):
        rule = self._rule(start="2025-01-31", options={"end_of_month": True}, anchor_posted=True)

        posted = []
        for run_on in (date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)):
            outcomes = self.scheduler.run_due(now=at(run_on))
            self.assertEqual([o.status for o in outcomes], [POSTED])
            posted.append(outcomes[0].result)

        self.assertEqual([r.entry_date for r in posted], [date(2025, 2, 28), date(2025, 3, 31), date(2025, 4, 30)])
        self.assertEqual(posted[0].reference, f"REC-{rule.id}-2025-02-28")
        self.assertEqual(Expense.objects.filter(tenant=self.tenant).count(), 3)

        rule.refresh_from_db()
        self.assertEqual(rule.next_run_at.date(), date(2025, 5, 31))
        self.assertEqual(len(rule.run_log), 3)

    def test_first_run_is_start_date_without_anchor(self):
        rule = self._rule(start="2025-03-10")
        self.assertEqual(rule.next_run_at, datetime(2025, 3, 10, tzinfo=dt_timezone.utc))
        self.assertEqual(preview_occurrences(rule), [date(2025, 3, 10), date(2025, 4, 10), date(2025, 5, 10)])

    def test_nothing_runs_before_it_is_due(self):
        self._rule(start="2025-03-10")
        self.assertEqual(self.scheduler.run_due(now=at(date(2025, 3, 9))), [])

    def test_tenant_time_zone_midnight(self):
        self.tenant.time_zone = "America/Chicago"
        self.tenant.save()
        rule = self._rule(start="2025-03-01")

        self.assertEqual(rule.next_run_at, datetime(2025, 3, 1, 6, tzinfo=dt_timezone.utc))
        self.assertEqual(self.scheduler.run_due(now=datetime(2025, 3, 1, 5, tzinfo=dt_timezone.utc)), [])

        outcomes = self.scheduler.run_due(now=datetime(2025, 3, 1, 6, tzinfo=dt_timezone.utc))
        self.assertEqual(outcomes[0].run_date, date(2025, 3, 1))


class PreviewParityTests(SchedulerTestBase):
    def test_dry_run_predicts_commit(self):
        template = {
            "vendor_name": "Office Depot",
            "amount": "110.00",
            "category_key": "OFFICE_SUPPLIES",
            "tax": {"enabled": True, "tax_type": "percentage", "rate": "10"},
            "line_items": [
                {"description": "Paper", "amount": "60.00"},
                {"description": "Toner", "amount": "50.00"},
            ],
        }
        rule = self._rule(template=template)
        now = at(date(2025, 3, 1))

        [preview] = self.scheduler.run_due(now=now, dry_run=True)
        self.assertEqual(preview.status, PREVIEW)
        self.assertTrue(preview.result.dry_run)
        self.assertFalse(JournalEntry.objects.exists())

        rule.refresh_from_db()
        self.assertEqual(rule.run_log, [])

        [committed] = self.scheduler.run_due(now=now)
        self.assertEqual(committed.status, POSTED)
        self.assertEqual(preview.result.signature(), committed.result.signature())
        self.assertEqual(preview.result.reference, committed.result.reference)


class PauseAndEndDateTests(SchedulerTestBase):
    def test_soft_pause_skips_without_consuming(self):
        rule = self._rule(options={"pause_until": "2025-03-15"})

        [skipped] = self.scheduler.run_due(now=at(date(2025, 3, 2)))
        self.assertEqual(skipped.status, SKIPPED)
        self.assertIn("paused", skipped.reason)

        rule.refresh_from_db()
        self.assertEqual(rule.next_run_at.date(), date(2025, 3, 1))
        self.assertEqual(rule.run_log[-1]["status"], SKIPPED)
        self.assertTrue(rule.is_active)

        [posted] = self.scheduler.run_due(now=at(date(2025, 3, 15)))
        self.assertEqual((posted.status, posted.run_date), (POSTED, date(2025, 3, 1)))

    def test_rule_deactivates_after_last_run_before_end_date(self):
        rule = self._rule(start="2025-01-10", end_date="2025-02-20")

        self.scheduler.run_due(now=at(date(2025, 1, 10)))
        self.scheduler.run_due(now=at(date(2025, 2, 10)))

        rule.refresh_from_db()
        self.assertFalse(rule.is_active)
        self.assertEqual(self.scheduler.run_due(now=at(date(2025, 3, 10))), [])
        self.assertEqual(JournalEntry.objects.count(), 2)

    def test_run_date_past_end_date_is_skipped_and_deactivated(self):
        rule = self._rule(start="2025-01-10")
        self.scheduler.run_due(now=at(date(2025, 1, 10)))
        update_rule(rule, {"end_date": "2025-02-01"})

        [outcome] = self.scheduler.run_due(now=at(date(2025, 2, 11)))

        self.assertEqual((outcome.status, outcome.reason), (SKIPPED, "past end_date"))
        rule.refresh_from_db()
        self.assertFalse(rule.is_active)
        self.assertEqual(JournalEntry.objects.count(), 1)

    def test_resume_on_reactivates_automatically(self):
        rule = self._rule()
        pause_rule(rule, resume_on=date(2025, 3, 5))

        self.assertEqual(self.scheduler.run_due(now=at(date(2025, 3, 3))), [])

        [posted] = self.scheduler.run_due(now=at(date(2025, 3, 5)))
        self.assertEqual((posted.status, posted.run_date), (POSTED, date(2025, 3, 1)))

        rule.refresh_from_db()
        self.assertTrue(rule.is_active)
        self.assertNotIn("resume_on", rule.options)

    def test_manual_pause_and_resume(self):
        rule = self._rule()
        pause_rule(rule)
        self.assertEqual(self.scheduler.run_due(now=at(date(2025, 4, 1))), [])

        resume_rule(rule)
        self.assertEqual(len(self.scheduler.run_due(now=at(date(2025, 4, 1)))), 1)

    def test_deleted_rule_keeps_its_posted_journals(self):
        rule = self._rule()
        self.scheduler.run_due(now=at(date(2025, 3, 1)))

        delete_rule(rule)

        self.assertFalse(RecurringRule.objects.exists())
        self.assertEqual(JournalEntry.objects.filter(reference__startswith="REC-").count(), 1)
        self.assertEqual(self.scheduler.run_due(now=at(date(2025, 6, 1))), [])


class SameDayGuardTests(SchedulerTestBase):
    def test_catch_up_allowed_but_not_a_second_run_for_today(self):
        self._rule(cadence="DAILY", start="2025-03-01")

        first = self.scheduler.run_due(now=at(date(2025, 3, 3), 8))
        second = self.scheduler.run_due(now=at(date(2025, 3, 3), 9))
        third = self.scheduler.run_due(now=at(date(2025, 3, 3), 10))
        fourth = self.scheduler.run_due(now=at(date(2025, 3, 4), 1))

        self.assertEqual([o.run_date for o in first], [date(2025, 3, 1)])
        self.assertEqual([o.run_date for o in second], [date(2025, 3, 2)])
        self.assertEqual(third, [])
        self.assertEqual([o.run_date for o in fourth], [date(2025, 3, 3)])


class IsolationAndConcurrencyTests(SchedulerTestBase):
    def test_one_broken_rule_does_not_stop_the_sweep(self):
        broken = self._rule()
        healthy = self._rule(template={**RENT, "vendor_name": "Cleaner Co"})
        RecurringRule.objects.filter(pk=broken.pk).update(payload_template={"vendor_name": "", "amount": "10"})

        with self.assertLogs("recurring.services.scheduler", level="ERROR"):
            outcomes = {o.rule_id: o for o in self.scheduler.run_due(now=at(date(2025, 3, 1)))}

        self.assertEqual(outcomes[broken.id].status, FAILED)
        self.assertEqual(outcomes[broken.id].error["code"], "VALIDATION_FAILED")
        self.assertEqual(outcomes[healthy.id].status, POSTED)

        broken.refresh_from_db()
        self.assertEqual(broken.next_run_at.date(), date(2025, 3, 1))
        self.assertEqual(broken.run_log[-1]["status"], FAILED)

    def test_unexpected_error_is_recorded_and_the_sweep_continues(self):
        broken = self._rule(template={**RENT, "vendor_name": "Flaky Co"})
        healthy = self._rule(template={**RENT, "vendor_name": "Cleaner Co"})

        def flaky_post(event, **kwargs):
            if event.vendor_name == "Flaky Co":
                raise RuntimeError("connection reset")
            return ledger_writer.post(event, **kwargs)

        with self.assertLogs("recurring.services.scheduler", level="ERROR") as logs:
            outcomes = {
                o.rule_id: o
                for o in RecurringScheduler(post=flaky_post).run_due(now=at(date(2025, 3, 1)))
            }

        self.assertEqual(outcomes[broken.id].status, FAILED)
        self.assertEqual(outcomes[broken.id].error["code"], "UNEXPECTED_ERROR")
        self.assertEqual(outcomes[broken.id].error["message"], "connection reset")
        self.assertEqual(outcomes[healthy.id].status, POSTED)
        self.assertIsNotNone(logs.records[0].exc_info)

        broken.refresh_from_db()
        self.assertEqual(broken.next_run_at.date(), date(2025, 3, 1))
        self.assertEqual(broken.run_log[-1]["status"], FAILED)

    def test_losing_the_advance_race_does_not_double_fire(self):
        rule = self._rule()

        def racing_post(event, **kwargs):
            result = ledger_writer.post(event, **kwargs)
            # another tick advances the rule first
            RecurringRule.objects.filter(pk=rule.pk).update(next_run_at=F("next_run_at") + timedelta(days=31))
            return result

        outcome = RecurringScheduler(post=racing_post).run_one(rule.id, now=at(date(2025, 3, 1)))

        self.assertEqual((outcome.status, outcome.reason), (SKIPPED, "already advanced"))
        self.assertEqual(JournalEntry.objects.count(), 1)

        again = self.scheduler.run_one(rule.id, now=at(date(2025, 4, 1)))
        self.assertEqual(again.status, POSTED)
        self.assertEqual(again.run_date, date(2025, 4, 1))

    def test_run_log_is_bounded(self):
        rule = self._rule(cadence="DAILY", start="2025-03-01")
        scheduler = RecurringScheduler(run_log_limit=2)

        for day in (1, 2, 3):
            scheduler.run_due(now=at(date(2025, 3, day)))

        rule.refresh_from_db()
        self.assertEqual([e["run_date"] for e in rule.run_log], ["2025-03-02", "2025-03-03"])

    def test_ticker_does_not_stack_sweeps(self):
        self._rule()
        ticker = RecurringTicker(self.scheduler, interval=1)

        ticker._guard.acquire()
        try:
            self.assertIsNone(ticker.tick(now=at(date(2025, 3, 1))))
        finally:
            ticker._guard.release()

        self.assertEqual(len(ticker.tick(now=at(date(2025, 3, 1)))), 1)


class InvoiceRuleTests(SchedulerTestBase):
    def test_invoice_run_gets_due_date_and_number(self):
        self._rule(
            kind="INVOICE",
            template={"customer_name": "Globex", "amount": "250.00", "category_key": "SERVICES"},
            options={"due_days": 30, "invoice_number_prefix": "RET"},
        )

        [outcome] = self.scheduler.run_due(now=at(date(2025, 3, 1)))

        invoice = Invoice.objects.get(id=outcome.result.record_id)
        self.assertEqual(invoice.invoice_number, "RET-20250301")
        self.assertEqual(invoice.due_date, date(2025, 3, 31))
        self.assertEqual(invoice.invoice_date, date(2025, 3, 1))

    def test_default_invoice_number_uses_rule_id(self):
        rule = self._rule(kind="INVOICE", template={"customer_name": "Globex", "amount": "250.00"})

        [outcome] = self.scheduler.run_due(now=at(date(2025, 3, 1)))

        invoice = Invoice.objects.get(id=outcome.result.record_id)
        self.assertEqual(invoice.invoice_number, f"REC-{rule.id}-20250301")


class RuleLifecycleTests(SchedulerTestBase):
    def test_invalid_cadence_is_rejected(self):
        with self.assertRaises(PostingValidationError) as ctx:
            self._rule(cadence="HOURLY")
        self.assertIn("cadence", ctx.exception.errors)

    def test_unpostable_template_is_rejected_at_creation(self):
        with self.assertRaises(PostingValidationError):
            self._rule(template={"amount": "10.00"})
        self.assertFalse(RecurringRule.objects.exists())

    def test_new_start_date_reanchors_a_rule_that_never_ran(self):
        rule = self._rule(start="2025-03-01")
        rule = update_rule(rule, {"start_date": "2025-03-20"})
        self.assertEqual(rule.next_run_at.date(), date(2025, 3, 20))

    def test_command_dry_run_writes_nothing(self):
        rule = self._rule(start="2020-01-01")
        out = StringIO()

        call_command("run_recurring", "--rule", str(rule.id), "--dry-run", stdout=out)

        self.assertIn(PREVIEW, out.getvalue())
        self.assertFalse(JournalEntry.objects.exists())
