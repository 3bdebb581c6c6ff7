"""
Management command to check stock counters against the movement ledger.

Reports every product whose quantity differs from its opening quantity plus
the sum of its movements, or (for unit-tracked products) from its number of
IN_STOCK units.

Usage:
    python manage.py reconcile_stock
    python manage.py reconcile_stock --fix-status
"""

from django.core.management.base import BaseCommand, CommandError
from stock.tasks import reconcile_stock_levels


class Command(BaseCommand):
    help = 'Checks product stock counters against the movement ledger and units'

    def add_arguments(self, parser):
        parser.add_argument(
            '--fix-status',
            action='store_true',
            help='Re-derive every product status from its quantity'
        )

    def handle(self, *args, **options):
        result = reconcile_stock_levels(fix_status=options['fix_status'])

        for drift in result['drifted']:
            self.stdout.write(self.style.WARNING(
                f"  ! {drift['sku']}: quantity {drift['quantity']}, "
                f"ledger {drift['ledger_quantity']}, units in stock {drift['units_in_stock']}"
            ))

        if options['fix_status']:
            self.stdout.write(f"Statuses fixed: {result['statuses_fixed']}")

        if result['drifted']:
            raise CommandError(
                f"{len(result['drifted'])} of {result['checked']} product(s) out of balance"
            )
        self.stdout.write(self.style.SUCCESS(f"{result['checked']} product(s) balanced"))
