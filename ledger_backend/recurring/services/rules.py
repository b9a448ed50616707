# recurring/services/rules.py

"""
RULE LIFECYCLE (create / update / pause / resume / delete)

The template is checked by materializing the first occurrence, so a rule
whose payload cannot be posted is rejected at creation instead of failing
on every tick.
"""

from __future__ import annotations

import logging
from datetime import date

from django.db import transaction

from accounting.models.tenant import Tenant
from accounting.serializers.common import validated
from recurring.models import RecurringRule
from recurring.serializers import RecurringOptionsSerializer, RecurringRuleSerializer
from recurring.services import cadence
from recurring.services.scheduler import materialize, schedule_instant, scheduled_run_date

logger = logging.getLogger(__name__)


@transaction.atomic
def create_rule(tenant: Tenant, payload: dict, *, anchor_posted: bool = False) -> RecurringRule:
    """
    anchor_posted=True: the rule comes from an event already posted on
    start_date, so the first run is the occurrence after it.
    """
    attrs = validated(RecurringRuleSerializer, payload).validated_data
    options = RecurringOptionsSerializer.to_options(attrs.get("options") or {})

    first_run = attrs["start_date"]
    if anchor_posted:
        first_run = cadence.advance(first_run, attrs["cadence"], options)

    rule = RecurringRule(
        tenant=tenant,
        name=attrs["name"].strip(),
        kind=attrs["kind"],
        cadence=attrs["cadence"],
        start_date=attrs["start_date"],
        end_date=attrs["end_date"],
        options=options,
        payload_template=attrs["payload_template"],
        is_active=not (attrs["end_date"] and first_run > attrs["end_date"]),
    )
    rule.next_run_at = schedule_instant(rule, first_run)
    rule.full_clean()
    rule.save()

    materialize(rule, first_run)

    logger.info("Created recurring rule %s (%s %s) for tenant %s, first run %s",
                rule.id, rule.kind, rule.cadence, tenant.code, first_run)
    return rule


@transaction.atomic
def update_rule(rule: RecurringRule, payload: dict) -> RecurringRule:
    """
    Partial update. A new start_date re-anchors a rule that has never run;
    cadence/option changes apply from the next advance. Works on a freshly
    locked copy (the scheduler may have advanced the row); returns it.
    """
    rule = RecurringRule.objects.select_related("tenant").select_for_update().get(pk=rule.pk)
    attrs = validated(RecurringRuleSerializer, payload, instance=rule, partial=True).validated_data
    pending = scheduled_run_date(rule)

    for field in ("name", "kind", "cadence", "end_date", "payload_template"):
        if field in attrs:
            setattr(rule, field, attrs[field])

    if "options" in attrs:
        # pause/resume keys are owned by pause_rule()/resume_rule()
        kept = {k: v for k, v in rule.options.items() if k in ("pause_until", "resume_on")}
        rule.options = {**kept, **RecurringOptionsSerializer.to_options(attrs["options"])}

    if "start_date" in attrs and attrs["start_date"] != rule.start_date:
        rule.start_date = attrs["start_date"]
        if rule.last_run_at is None:
            pending = rule.start_date

    # midnight depends on cadence (daily is UTC)
    rule.next_run_at = schedule_instant(rule, pending)

    rule.full_clean()
    rule.save()

    materialize(rule, scheduled_run_date(rule))
    return rule


def pause_rule(rule: RecurringRule, *, resume_on: date | None = None) -> RecurringRule:
    options = {k: v for k, v in (rule.options or {}).items() if k != "resume_on"}
    if resume_on is not None:
        options["resume_on"] = resume_on.isoformat()
    rule.options = options
    rule.is_active = False
    rule.save(update_fields=["options", "is_active", "updated_at"])
    logger.info("Paused recurring rule %s (resume_on %s)", rule.id, resume_on)
    return rule


def resume_rule(rule: RecurringRule) -> RecurringRule:
    rule.options = {k: v for k, v in (rule.options or {}).items() if k != "resume_on"}
    rule.is_active = True
    rule.save(update_fields=["options", "is_active", "updated_at"])
    logger.info("Resumed recurring rule %s", rule.id)
    return rule


def delete_rule(rule: RecurringRule) -> None:
    logger.info("Deleting recurring rule %s", rule.id)
    rule.delete()


def preview_occurrences(rule: RecurringRule, count: int = 3) -> list[date]:
    """The next `count` run dates, starting with the pending one."""
    return cadence.occurrences(
        scheduled_run_date(rule),
        rule.cadence,
        rule.options,
        count,
        end_date=rule.end_date,
    )
