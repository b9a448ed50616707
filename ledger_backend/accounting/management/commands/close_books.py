# accounting/management/commands/close_books.py

from __future__ import annotations

from datetime import datetime

from django.core.management.base import BaseCommand, CommandError

from accounting.models.tenant import Tenant
from accounting.services.exceptions import AccountingServiceError
from accounting.services.period_close_service import close_books


class Command(BaseCommand):
    help = "Close revenue and expense accounts into Retained Earnings as of a date."

    def add_arguments(self, parser):
        parser.add_argument("--tenant", required=True, help="Tenant code (slug)")
        parser.add_argument("--as-of", help="Closing date YYYY-MM-DD (default: today)")

    def handle(self, *args, **options):
        tenant = Tenant.objects.filter(code=(options["tenant"] or "").strip()).first()
        if tenant is None:
            raise CommandError(f"Unknown tenant: {options['tenant']}")

        as_of = None
        if options.get("as_of"):
            try:
                as_of = datetime.strptime(options["as_of"], "%Y-%m-%d").date()
            except ValueError as exc:
                raise CommandError("Invalid --as-of date. Use YYYY-MM-DD") from exc

        try:
            result = close_books(tenant, as_of=as_of)
        except AccountingServiceError as exc:
            raise CommandError(exc.message) from exc

        if result is None:
            self.stdout.write("Nothing to close.")
        elif result.is_existing:
            self.stdout.write(f"Already closed: {result.reference} (journal {result.journal_id}).")
        else:
            self.stdout.write(
                self.style.SUCCESS(f"✔ Closed books: {result.reference} (journal {result.journal_id}).")
            )
