"""
Management command to expire stale cart holds.

Usage:
    python manage.py sweep_cart_holds
    python manage.py sweep_cart_holds --dry-run
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from cart.holds import sweep_expired_holds
from cart.models import CartHold


class Command(BaseCommand):
    help = "Flip active cart holds past their expiry to expired"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many holds would expire",
        )

    def handle(self, *args, **options):
        now = timezone.now()
        if options.get("dry_run"):
            count = CartHold.objects.filter(status=CartHold.STATUS_ACTIVE, expires_at__lte=now).count()
            self.stdout.write(f"{count} hold(s) would expire")
            return
        count = sweep_expired_holds(now=now)
        self.stdout.write(self.style.SUCCESS(f"Expired {count} hold(s)"))
