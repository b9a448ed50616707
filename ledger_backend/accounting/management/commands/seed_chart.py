# accounting/management/commands/seed_chart.py

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from accounting.models.tenant import Tenant
from accounting.services.chart_of_accounts import ensure_core_accounts


class Command(BaseCommand):
    help = "Create (or update) a tenant and seed its default chart of accounts"

    def add_arguments(self, parser):
        parser.add_argument("--tenant", required=True, help="Tenant code (slug)")
        parser.add_argument("--name", default="", help="Display name for a new tenant")
        parser.add_argument(
            "--regime",
            choices=[Tenant.REGIME_SALES_TAX, Tenant.REGIME_VAT],
            default=None,
            help="Tax regime (decides the tax accounts postings use)",
        )
        parser.add_argument("--time-zone", default=None, help="IANA time zone, e.g. America/Chicago")

    @transaction.atomic
    def handle(self, *args, **options):
        code = (options["tenant"] or "").strip()
        if not code:
            raise CommandError("--tenant is required")

        tenant, created = Tenant.objects.get_or_create(
            code=code,
            defaults={
                "name": options["name"] or code,
                "tax_regime": options["regime"] or Tenant.REGIME_SALES_TAX,
                "time_zone": options["time_zone"] or "",
            },
        )

        if not created:
            changed = []
            if options["regime"] and tenant.tax_regime != options["regime"]:
                tenant.tax_regime = options["regime"]
                changed.append("tax_regime")
            if options["time_zone"] is not None and tenant.time_zone != options["time_zone"]:
                tenant.time_zone = options["time_zone"]
                changed.append("time_zone")
            if changed:
                tenant.save()

        self.stdout.write(f"Seeding chart of accounts for tenant {tenant.code}...")
        created_count, updated_count = ensure_core_accounts(tenant)

        self.stdout.write(
            self.style.SUCCESS(
                f"✔ Chart seeded for {tenant.code} ({created_count} new accounts, "
                f"{updated_count} reactivated)."
            )
        )
