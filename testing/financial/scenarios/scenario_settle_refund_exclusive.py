from datetime import timedelta

from django.utils import timezone

from billing.services import ledger_service
from testing.financial.base import balances, book_started_video_date, cleanup_scenario_data, ensure_test_users, fund_credits
from video_dates.models import VideoDate
from video_dates.services import booking_service


def run():
    print("Running: scenario_settle_refund_exclusive")
    cleanup_scenario_data("settle_refund_exclusive")
    seeker, earner = ensure_test_users("settle_refund_exclusive")
    fund_credits(seeker, 200, "settle_refund_exclusive")
    video_date = book_started_video_date(seeker, earner, duration=15, minutes_ago=2)

    now = timezone.now()
    booking_service.record_join(seeker, video_date.pk, now=now)
    booking_service.record_join(earner, video_date.pk, now=now)
    video_date.refresh_from_db()
    if video_date.status != VideoDate.STATUS_IN_PROGRESS:
        raise Exception(f"Expected in_progress after both joined, got {video_date.status}")

    booking_service.complete_booking(seeker, video_date.pk, now=now + timedelta(minutes=15))
    if ledger_service.refund_booking(video_date.pk, "late_cancel"):
        raise Exception("Expected refund of a settled video date to be refused.")
    if ledger_service.settle_booking(video_date.pk):
        raise Exception("Expected a second settlement to be a no-op.")

    video_date.refresh_from_db()
    if video_date.refunded or video_date.settled_at is None:
        raise Exception("Expected the video date to be settled and not refunded.")
    credits, _, _ = balances(seeker)
    _, pending, _ = balances(earner)
    if credits != 0:
        raise Exception(f"Expected the seeker to keep paying 200 credits, balance is {credits}")
    if pending != video_date.earner_amount:
        raise Exception(f"Expected earner pending {video_date.earner_amount}, got {pending}")
    print("✓ Passed")
