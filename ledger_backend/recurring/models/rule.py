# recurring/models/rule.py

"""
RECURRING RULE

A template posting (expense or invoice) plus a cadence.

State:
- ACTIVE:          is_active=True, fires when next_run_at <= now
- PAUSED:          is_active=False (resumable by user, or automatically once
                   options["resume_on"] has passed)
- SOFT-PAUSED:     options["pause_until"] in the future; is_active untouched
- DEACTIVATED:     is_active=False after the schedule ran past end_date

next_run_at / last_run_at / run_log are advanced ONLY by the scheduler
(recurring.services.scheduler).
"""

from __future__ import annotations

from datetime import date

from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from accounting.models.tenant import Tenant


class RecurringRule(models.Model):
    KIND_EXPENSE = "EXPENSE"
    KIND_INVOICE = "INVOICE"

    KIND_CHOICES = [
        (KIND_EXPENSE, "Expense"),
        (KIND_INVOICE, "Invoice"),
    ]

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"

    CADENCE_CHOICES = [
        (DAILY, "Daily"),
        (WEEKLY, "Weekly"),
        (MONTHLY, "Monthly"),
        (ANNUAL, "Annual"),
    ]

    tenant = models.ForeignKey(
        Tenant,
        on_delete=models.PROTECT,
        related_name="recurring_rules",
    )

    name = models.CharField(max_length=150, blank=True, default="")

    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    cadence = models.CharField(max_length=10, choices=CADENCE_CHOICES)

    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)

    options = models.JSONField(default=dict, blank=True)
    payload_template = models.JSONField(default=dict)

    next_run_at = models.DateTimeField(db_index=True)
    last_run_at = models.DateTimeField(null=True, blank=True)

    is_active = models.BooleanField(default=True, db_index=True)

    run_log = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["next_run_at", "id"]
        indexes = [
            models.Index(fields=["tenant", "is_active", "next_run_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(end_date__isnull=True) | Q(end_date__gte=models.F("start_date")),
                name="chk_recurring_end_after_start",
            ),
        ]

    def __str__(self):
        label = self.name or self.payload_template.get("vendor_name") or self.payload_template.get("customer_name") or ""
        return f"{self.kind} {self.cadence} #{self.id} {label}".strip()

    def option_date(self, key: str) -> date | None:
        raw = (self.options or {}).get(key)
        if not raw:
            return None
        return date.fromisoformat(str(raw))

    def append_run_log(self, entry: dict, limit: int) -> None:
        self.run_log = ([*(self.run_log or []), entry])[-limit:]

    def clean(self):
        if self.end_date and self.start_date and self.end_date < self.start_date:
            raise ValidationError({"end_date": "end_date cannot be before start_date"})
        if not isinstance(self.payload_template, dict) or not self.payload_template:
            raise ValidationError({"payload_template": "payload_template must be a non-empty object"})
        if not isinstance(self.options, dict):
            raise ValidationError({"options": "options must be an object"})
