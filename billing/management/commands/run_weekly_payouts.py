"""
Django management command to pay out every eligible earner's available
earnings through Stripe Connect.

Usage:
    python manage.py run_weekly_payouts
"""
import sys
import traceback

from django.core.management.base import BaseCommand
from django.utils import timezone

from billing.services.ledger_service import run_weekly_payouts


class Command(BaseCommand):
    help = "Request a withdrawal of available earnings for every eligible earner"

    def handle(self, *args, **options):
        try:
            self.stdout.write(f"[{timezone.now()}] Starting weekly payouts...")
            result = run_weekly_payouts()
            self.stdout.write(
                self.style.SUCCESS(
                    f"[{timezone.now()}] Weekly payouts done: "
                    f"{result['requested']} requested (${result['amount']}), "
                    f"{result['failed']} failed"
                )
            )
        except Exception as e:
            self.stderr.write(f"[{timezone.now()}] ERROR in run_weekly_payouts: {e}")
            self.stderr.write(traceback.format_exc())
            sys.exit(1)
