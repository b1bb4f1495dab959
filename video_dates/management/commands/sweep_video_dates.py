"""
Django management command to advance video dates whose time has come:
open waiting rooms, start calls, expire no-shows (with refund) and
complete finished calls (with settlement).

Usage:
    python manage.py sweep_video_dates
"""
import sys
import traceback

from django.core.management.base import BaseCommand
from django.utils import timezone

from video_dates.services.booking_service import sweep


class Command(BaseCommand):
    help = "Advance scheduled video dates and expire no-shows"

    def handle(self, *args, **options):
        try:
            self.stdout.write(f"[{timezone.now()}] Sweeping video dates...")
            result = sweep()
            self.stdout.write(
                self.style.SUCCESS(
                    f"[{timezone.now()}] Sweep completed: "
                    f"{result['waiting']} waiting, "
                    f"{result['in_progress']} started, "
                    f"{result['no_show']} no-shows refunded, "
                    f"{result['not_accepted']} unaccepted refunded, "
                    f"{result['completed']} completed, "
                    f"{result['failed']} failed"
                )
            )
        except Exception as e:
            self.stderr.write(f"[{timezone.now()}] ERROR in sweep_video_dates: {e}")
            self.stderr.write(traceback.format_exc())
            sys.exit(1)
