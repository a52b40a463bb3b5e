from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from apps.inventory.services import StockMovementService


class Command(BaseCommand):
    help = 'Writes an Initial Stock ledger row for every stocked product that has no ledger history'

    def add_arguments(self, parser):
        parser.add_argument('--user', required=True, help='Username recorded as created_by')

    def handle(self, *args, **options):
        User = get_user_model()
        try:
            user = User.objects.get(username=options['user'])
        except User.DoesNotExist:
            raise CommandError(f"User '{options['user']}' does not exist")

        created = StockMovementService.backfill_initial_stock(user)
        self.stdout.write(self.style.SUCCESS(f'Opened {created} ledger balance(s).'))
