# recurring/services/scheduler.py

"""
======================================================
PATH: recurring/services/scheduler.py
======================================================
RECURRING SCHEDULER

Turns due RecurringRules into posting events and hands them to the Ledger
Writer, exactly like a direct caller would.

Tick (run_due):
  1. auto-resume paused rules whose resume_on has passed
  2. pick active rules with next_run_at <= now (same-day guard: a rule that
     already ran today only runs again if next_run_at is from a prior day)
  3. per rule:
       pause_until not passed     -> SCHEDULE_SKIPPED (nothing consumed)
       run date past end_date     -> SCHEDULE_SKIPPED + deactivate
       otherwise                  -> materialize + post (or preview)
  4. on commit, advance next_run_at under a row lock, compare-and-swap on
     the next_run_at this tick started from; deactivate past end_date

The posting is idempotent (reference REC-{rule}-{YYYY-MM-DD}), so a tick that
loses the race to advance a rule never produces a second journal.

One failing rule is logged (and written into its run log); the sweep goes on.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from accounting.models.tenant import Tenant
from accounting.serializers import EVENT_BUILDERS
from accounting.services import ledger_writer
from accounting.services.exceptions import AccountingServiceError, SCHEDULE_SKIPPED
from accounting.services.ledger_writer import PostingResult
from recurring.models import RecurringRule
from recurring.services import cadence

logger = logging.getLogger(__name__)

POSTED = "POSTED"
PREVIEW = "PREVIEW"
SKIPPED = SCHEDULE_SKIPPED
FAILED = "FAILED"

DATE_FIELDS = {
    RecurringRule.KIND_EXPENSE: "expense_date",
    RecurringRule.KIND_INVOICE: "invoice_date",
}


@dataclass
class RunOutcome:
    rule_id: int
    status: str
    run_date: date | None = None
    reason: str = ""
    result: PostingResult | None = None
    error: dict | None = None
    next_run_at: datetime | None = None

    def as_log_entry(self, at: datetime) -> dict:
        entry = {
            "at": at.isoformat(),
            "status": self.status,
            "run_date": self.run_date.isoformat() if self.run_date else None,
        }
        if self.result is not None:
            entry["journal_id"] = self.result.journal_id
            entry["reference"] = self.result.reference
            entry["is_existing"] = self.result.is_existing
        if self.reason:
            entry["reason"] = self.reason
        if self.error:
            entry["error"] = self.error
        return entry


# ------------------------------------------------------------
# TEMPLATE -> EVENT
# ------------------------------------------------------------

def run_reference(rule_id: int, run_date: date) -> str:
    return f"REC-{rule_id}-{run_date:%Y-%m-%d}"


def materialize(rule: RecurringRule, run_date: date):
    """
    Concrete posting event for one occurrence, dated at the scheduled run
    date (not "now"). Raises PostingValidationError for a broken template.
    """
    payload = copy.deepcopy(rule.payload_template)
    options = rule.options or {}

    payload[DATE_FIELDS[rule.kind]] = run_date.isoformat()
    payload["reference"] = run_reference(rule.id, run_date)
    payload["source_rule_id"] = rule.id

    if rule.kind == RecurringRule.KIND_INVOICE:
        if options.get("due_days") is not None:
            payload["due_date"] = (run_date + timedelta(days=int(options["due_days"]))).isoformat()
        prefix = (options.get("invoice_number_prefix") or "").strip() or f"REC-{rule.id}"
        payload["invoice_number"] = f"{prefix}-{run_date:%Y%m%d}"

    return EVENT_BUILDERS[rule.kind.lower()](rule.tenant, payload)


def rule_zone(rule: RecurringRule):
    return rule.tenant.tzinfo


def scheduled_run_date(rule: RecurringRule) -> date:
    return cadence.run_date_of(rule.next_run_at, rule.cadence, rule_zone(rule))


def schedule_instant(rule: RecurringRule, run_on: date) -> datetime:
    return cadence.midnight(run_on, rule.cadence, rule_zone(rule))


# ------------------------------------------------------------
# SCHEDULER
# ------------------------------------------------------------

class RecurringScheduler:
    def __init__(
        self,
        *,
        post: Callable[..., PostingResult] = ledger_writer.post,
        preview: Callable[..., PostingResult] = ledger_writer.preview,
        run_log_limit: int | None = None,
    ):
        self._post = post
        self._preview = preview
        self.run_log_limit = run_log_limit or settings.LEDGER["RECURRING"]["RUN_LOG_LIMIT"]

    # -------------------------
    # entry points
    # -------------------------
    def run_due(self, tenant: Tenant | None = None, *, now: datetime | None = None,
                dry_run: bool = False) -> list[RunOutcome]:
        now = now or timezone.now()

        if not dry_run:
            self.resume_expired_pauses(tenant, now=now)

        qs = RecurringRule.objects.select_related("tenant").filter(is_active=True, next_run_at__lte=now)
        if tenant is not None:
            qs = qs.filter(tenant=tenant)

        outcomes = []
        for rule in qs.order_by("next_run_at", "id"):
            if self._ran_today(rule, now):
                continue
            outcomes.append(self._run_isolated(rule, now=now, dry_run=dry_run))
        return outcomes

    def run_one(self, rule_id: int, *, dry_run: bool = False, now: datetime | None = None,
                tenant: Tenant | None = None) -> RunOutcome:
        """Manual trigger: runs the rule's current occurrence even if not yet due."""
        now = now or timezone.now()
        qs = RecurringRule.objects.select_related("tenant")
        if tenant is not None:
            qs = qs.filter(tenant=tenant)
        rule = qs.get(pk=rule_id)

        if not rule.is_active:
            return RunOutcome(rule.id, SKIPPED, reason="inactive", next_run_at=rule.next_run_at)
        return self._run_isolated(rule, now=now, dry_run=dry_run)

    def resume_expired_pauses(self, tenant: Tenant | None = None, *,
                              now: datetime | None = None) -> list[int]:
        now = now or timezone.now()
        qs = RecurringRule.objects.select_related("tenant").filter(
            is_active=False, options__has_key="resume_on"
        )
        if tenant is not None:
            qs = qs.filter(tenant=tenant)

        resumed = []
        for rule in qs:
            resume_on = rule.option_date("resume_on")
            if resume_on is None or cadence.local_date(now, rule_zone(rule)) < resume_on:
                continue
            if rule.end_date and scheduled_run_date(rule) > rule.end_date:
                continue
            rule.options = {k: v for k, v in rule.options.items() if k != "resume_on"}
            rule.is_active = True
            rule.save(update_fields=["options", "is_active", "updated_at"])
            logger.info("Recurring rule %s auto-resumed (resume_on %s)", rule.id, resume_on)
            resumed.append(rule.id)
        return resumed

    # -------------------------
    # internals
    # -------------------------
    def _ran_today(self, rule: RecurringRule, now: datetime) -> bool:
        if rule.last_run_at is None:
            return False
        tz = rule_zone(rule)
        today = cadence.local_date(now, tz)
        return (
            cadence.local_date(rule.last_run_at, tz) == today
            and cadence.local_date(rule.next_run_at, tz) >= today
        )

    def _run_isolated(self, rule: RecurringRule, *, now: datetime, dry_run: bool) -> RunOutcome:
        try:
            return self._run(rule, now=now, dry_run=dry_run)
        except (AccountingServiceError, DjangoValidationError) as exc:
            error = exc.as_dict() if isinstance(exc, AccountingServiceError) else {
                "code": "VALIDATION_FAILED",
                "message": "; ".join(exc.messages),
                "details": {},
            }
            logger.error(
                "Recurring rule %s (tenant %s) failed: %s",
                rule.id,
                rule.tenant.code,
                error["message"],
            )
        except Exception as exc:
            # a failing rule never aborts the sweep
            logger.exception("Recurring rule %s (tenant %s) crashed", rule.id, rule.tenant.code)
            error = {
                "code": "UNEXPECTED_ERROR",
                "message": str(exc) or type(exc).__name__,
                "details": {"exception": type(exc).__name__},
            }

        outcome = RunOutcome(
            rule.id,
            FAILED,
            run_date=scheduled_run_date(rule),
            error=error,
            next_run_at=rule.next_run_at,
        )
        if not dry_run:
            self._log_only(rule, outcome, now)
        return outcome

    def _run(self, rule: RecurringRule, *, now: datetime, dry_run: bool) -> RunOutcome:
        run_date = scheduled_run_date(rule)
        today = cadence.local_date(now, rule_zone(rule))

        pause_until = rule.option_date("pause_until")
        if pause_until and today < pause_until:
            outcome = RunOutcome(rule.id, SKIPPED, run_date=run_date,
                                 reason=f"paused until {pause_until.isoformat()}",
                                 next_run_at=rule.next_run_at)
            if not dry_run:
                self._log_only(rule, outcome, now)
            return outcome

        if rule.end_date and run_date > rule.end_date:
            outcome = RunOutcome(rule.id, SKIPPED, run_date=run_date,
                                 reason="past end_date", next_run_at=rule.next_run_at)
            if not dry_run:
                self._log_only(rule, outcome, now, deactivate=True)
            return outcome

        event = materialize(rule, run_date)

        if dry_run:
            return RunOutcome(rule.id, PREVIEW, run_date=run_date,
                              result=self._preview(event), next_run_at=rule.next_run_at)

        result = self._post(event)
        return self._advance(rule, run_date, result, now)

    def _advance(self, rule: RecurringRule, run_date: date, result: PostingResult,
                 now: datetime) -> RunOutcome:
        next_date = cadence.advance(run_date, rule.cadence, rule.options)
        next_at = schedule_instant(rule, next_date)

        with transaction.atomic():
            locked = RecurringRule.objects.select_for_update().get(pk=rule.pk)
            if locked.next_run_at != rule.next_run_at:
                # Another tick already advanced this occurrence.
                return RunOutcome(rule.id, SKIPPED, run_date=run_date, result=result,
                                  reason="already advanced", next_run_at=locked.next_run_at)

            outcome = RunOutcome(rule.id, POSTED, run_date=run_date, result=result, next_run_at=next_at)
            locked.next_run_at = next_at
            locked.last_run_at = now
            if locked.end_date and next_date > locked.end_date:
                locked.is_active = False
                logger.info("Recurring rule %s reached its end date %s; deactivated",
                            rule.id, locked.end_date)
            locked.append_run_log(outcome.as_log_entry(now), self.run_log_limit)
            locked.save(update_fields=["next_run_at", "last_run_at", "is_active", "run_log", "updated_at"])

        rule.next_run_at = locked.next_run_at
        rule.last_run_at = locked.last_run_at
        rule.is_active = locked.is_active
        rule.run_log = locked.run_log

        logger.info("Recurring rule %s posted %s for %s (journal %s), next run %s",
                    rule.id, result.reference, run_date, result.journal_id, next_date)
        return outcome

    def _log_only(self, rule: RecurringRule, outcome: RunOutcome, now: datetime,
                  *, deactivate: bool = False) -> None:
        with transaction.atomic():
            locked = RecurringRule.objects.select_for_update().get(pk=rule.pk)
            locked.append_run_log(outcome.as_log_entry(now), self.run_log_limit)
            fields = ["run_log", "updated_at"]
            if deactivate:
                locked.is_active = False
                fields.append("is_active")
                logger.info("Recurring rule %s is past its end date; deactivated", rule.id)
            locked.save(update_fields=fields)
        rule.run_log = locked.run_log
        rule.is_active = locked.is_active


def due_tenant_ids(now: datetime | None = None) -> list[int]:
    now = now or timezone.now()
    return list(
        RecurringRule.objects.filter(
            Q(is_active=True, next_run_at__lte=now) | Q(is_active=False, options__has_key="resume_on")
        )
        .values_list("tenant_id", flat=True)
        .distinct()
        .order_by("tenant_id")
    )
