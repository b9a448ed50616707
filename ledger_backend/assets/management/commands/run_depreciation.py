# assets/management/commands/run_depreciation.py

from __future__ import annotations

from datetime import datetime

from django.core.management.base import BaseCommand, CommandError

from accounting.models.tenant import Tenant
from assets.services.depreciation import OUTCOME_FAILED, OUTCOME_POSTED, run_due


class Command(BaseCommand):
    help = "Post monthly straight-line depreciation for every asset that is due."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", help="Only this tenant code (default: all tenants)")
        parser.add_argument("--limit", type=int, default=None, help="Max assets per run")
        parser.add_argument("--today", help="Treat this date (YYYY-MM-DD) as today")

    def handle(self, *args, **options):
        tenant = None
        if options.get("tenant"):
            tenant = Tenant.objects.filter(code=options["tenant"].strip()).first()
            if tenant is None:
                raise CommandError(f"Unknown tenant: {options['tenant']}")

        today = None
        if options.get("today"):
            try:
                today = datetime.strptime(options["today"], "%Y-%m-%d").date()
            except ValueError as exc:
                raise CommandError("Invalid --today date. Use YYYY-MM-DD") from exc

        outcomes = run_due(limit=options.get("limit"), today=today, tenant=tenant)

        for o in outcomes:
            line = f"asset {o.asset_id}: {o.status}"
            if o.status == OUTCOME_POSTED:
                line += f" {o.amount} (journal {o.journal_id}, next {o.next_run_on})"
            elif o.reason:
                line += f" ({o.reason})"
            if o.status == OUTCOME_FAILED:
                self.stderr.write(self.style.ERROR(f"{line}: {o.error}"))
            else:
                self.stdout.write(line)

        posted = sum(1 for o in outcomes if o.status == OUTCOME_POSTED)
        failed = sum(1 for o in outcomes if o.status == OUTCOME_FAILED)
        self.stdout.write(
            self.style.SUCCESS(f"✔ Depreciation run complete: {posted} posted, {failed} failed, {len(outcomes)} processed.")
        )
