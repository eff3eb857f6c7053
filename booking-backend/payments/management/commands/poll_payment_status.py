"""
Management command to re-read gateway status for open orders.

Usage:
    python manage.py poll_payment_status
"""

from django.core.management.base import BaseCommand

from payments.reconciler import poll_pending_orders


class Command(BaseCommand):
    help = "Poll the payment gateway for orders still awaiting payment"

    def handle(self, *args, **options):
        stats = poll_pending_orders()
        style = self.style.WARNING if stats["errors"] else self.style.SUCCESS
        self.stdout.write(style(
            f"Checked {stats['checked']} order(s): {stats['changed']} changed, {stats['errors']} gateway error(s)"
        ))
