# recurring/management/commands/run_recurring.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from accounting.models.tenant import Tenant
from recurring.models import RecurringRule
from recurring.services.scheduler import FAILED, RecurringScheduler, RunOutcome
from recurring.services.ticker import RecurringTicker


class Command(BaseCommand):
    help = "Post due recurring expenses/invoices (one sweep, a single rule, or a background loop)."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", help="Only rules of this tenant code")
        parser.add_argument("--rule", type=int, help="Run this rule's pending occurrence now, even if not due")
        parser.add_argument("--dry-run", action="store_true", help="Preview postings without writing")
        parser.add_argument("--daemon", action="store_true", help="Keep ticking until interrupted")
        parser.add_argument("--interval", type=int, default=None, help="Seconds between ticks (daemon mode)")
        parser.add_argument("--workers", type=int, default=1, help="Threads per tick, one tenant each (daemon mode)")

    def handle(self, *args, **options):
        tenant = None
        if options.get("tenant"):
            tenant = Tenant.objects.filter(code=options["tenant"].strip()).first()
            if tenant is None:
                raise CommandError(f"Unknown tenant: {options['tenant']}")

        dry_run = bool(options.get("dry_run"))
        scheduler = RecurringScheduler()

        if options.get("daemon"):
            if tenant is not None or options.get("rule"):
                raise CommandError("--daemon sweeps every tenant; drop --tenant/--rule")
            ticker = RecurringTicker(scheduler, interval=options.get("interval"), max_workers=options["workers"])
            self.stdout.write(f"Recurring ticker running every {ticker.interval}s (Ctrl+C to stop)...")
            try:
                ticker.run_forever()
            except KeyboardInterrupt:
                self.stdout.write("Stopped.")
            return

        if options.get("rule"):
            try:
                outcomes = [scheduler.run_one(options["rule"], dry_run=dry_run, tenant=tenant)]
            except RecurringRule.DoesNotExist as exc:
                raise CommandError(f"Unknown recurring rule: {options['rule']}") from exc
        else:
            outcomes = scheduler.run_due(tenant, dry_run=dry_run)

        for o in outcomes:
            self._report(o)

        failed = sum(1 for o in outcomes if o.status == FAILED)
        label = "previewed" if dry_run else "processed"
        self.stdout.write(self.style.SUCCESS(f"✔ {len(outcomes)} rule(s) {label}, {failed} failed."))

    def _report(self, o: RunOutcome) -> None:
        line = f"rule {o.rule_id} [{o.run_date}]: {o.status}"
        if o.result is not None:
            line += f" {o.result.reference} amount={o.result.amount}"
            if o.result.is_existing:
                line += " (already posted)"
        if o.reason:
            line += f" ({o.reason})"

        if o.status == FAILED:
            self.stderr.write(self.style.ERROR(f"{line}: {o.error.get('message') if o.error else ''}"))
        else:
            self.stdout.write(line)
