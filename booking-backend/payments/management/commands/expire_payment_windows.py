"""
Management command to cancel orders whose payment window elapsed.

Usage:
    python manage.py expire_payment_windows
    python manage.py expire_payment_windows --dry-run
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from orders.models import Order
from orders.status import AWAITING_PAYMENT_STATUSES
from payments.reconciler import expire_stale_orders


class Command(BaseCommand):
    help = "Cancel unpaid orders past their payment window and release their reservations"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only list the orders that would be cancelled",
        )

    def handle(self, *args, **options):
        now = timezone.now()
        if options.get("dry_run"):
            stale = Order.objects.filter(status__in=AWAITING_PAYMENT_STATUSES, expires_at__lte=now)
            for order in stale:
                self.stdout.write(f"  {order.external_identifier} ({order.payment_method}) expired {order.expires_at:%Y-%m-%d %H:%M}")
            self.stdout.write(f"{stale.count()} order(s) would be cancelled")
            return
        count = expire_stale_orders(now=now)
        self.stdout.write(self.style.SUCCESS(f"Cancelled {count} order(s)"))
