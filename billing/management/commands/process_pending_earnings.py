"""
Django management command to move earnings past the 48-hour hold into
available earnings.

Usage:
    python manage.py process_pending_earnings
"""
import sys
import traceback

from django.core.management.base import BaseCommand
from django.utils import timezone

from billing.services.ledger_service import promote_pending_to_available


class Command(BaseCommand):
    help = "Promote pending earnings older than the hold window to available earnings"

    def handle(self, *args, **options):
        try:
            self.stdout.write(f"[{timezone.now()}] Processing pending earnings...")
            result = promote_pending_to_available()
            self.stdout.write(
                self.style.SUCCESS(
                    f"[{timezone.now()}] Pending earnings processed: "
                    f"{result['users']} users, "
                    f"{result['transactions']} earnings, "
                    f"${result['amount']} promoted, "
                    f"{result['failed']} failed"
                )
            )
        except Exception as e:
            self.stderr.write(f"[{timezone.now()}] ERROR in process_pending_earnings: {e}")
            self.stderr.write(traceback.format_exc())
            sys.exit(1)
