from django.utils import timezone

from billing.models import Transaction
from testing.financial.base import balances, book_started_video_date, cleanup_scenario_data, ensure_test_users, fund_credits
from video_dates.models import VideoDate
from video_dates.services import booking_service


def run():
    print("Running: scenario_no_show_refund")
    cleanup_scenario_data("no_show_refund")
    seeker, earner = ensure_test_users("no_show_refund")
    fund_credits(seeker, 300, "no_show_refund")
    video_date = book_started_video_date(seeker, earner, duration=15, minutes_ago=10)
    after_booking, _, _ = balances(seeker)
    if after_booking != 300 - video_date.credits_reserved:
        raise Exception(f"Expected the reservation to debit the seeker, balance is {after_booking}")

    booking_service.sweep(now=timezone.now())
    video_date.refresh_from_db()
    if video_date.status != VideoDate.STATUS_CANCELLED_NO_SHOW or not video_date.refunded:
        raise Exception(f"Expected a refunded no-show, got {video_date.status} refunded={video_date.refunded}")
    credits, _, _ = balances(seeker)
    if credits != 300:
        raise Exception(f"Expected the full 300 credits back, got {credits}")

    booking_service.sweep(now=timezone.now())
    credits, _, _ = balances(seeker)
    refunds = Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_VIDEO_DATE_REFUND).count()
    if credits != 300 or refunds != 1:
        raise Exception("Expected a second sweep to change nothing.")
    _, earner_pending, _ = balances(earner)
    if earner_pending != 0:
        raise Exception("Expected no earnings for a no-show.")
    print("✓ Passed")
