import uuid
from datetime import timedelta

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from accounts.models import CustomUser, EarnerProfile
from billing import pricing
from billing.models import (
    CreditReservation,
    GiftCatalogItem,
    GiftTransaction,
    ProcessedWebhookEvent,
    Transaction,
    Wallet,
    Withdrawal,
)
from billing.services import ledger_service, transaction_log, wallet_service
from notifications.models import Notification
from video_dates.models import VideoDate
from video_dates.services import booking_service

SCENARIO_TAG_PREFIX = "financial_scenario"
SCENARIO_GIFT_NAME = "Scenario Rose"


def _scenario_email(scenario_name, role):
    return f"{SCENARIO_TAG_PREFIX}.{scenario_name}.{role}@local.test"


def _scenario_users(scenario_name):
    return CustomUser.objects.filter(email__startswith=f"{SCENARIO_TAG_PREFIX}.{scenario_name}.")


def ensure_test_users(scenario_name):
    """A seeker and an earner (with the minimum rate table) owned by one scenario."""
    seeker, _ = CustomUser.objects.get_or_create(
        email=_scenario_email(scenario_name, "seeker"),
        defaults={"is_email_verified": True, "is_active": True, "role": CustomUser.ROLE_SEEKER},
    )
    earner, _ = CustomUser.objects.get_or_create(
        email=_scenario_email(scenario_name, "earner"),
        defaults={"is_email_verified": True, "is_active": True, "role": CustomUser.ROLE_EARNER},
    )
    earner.role = CustomUser.ROLE_EARNER
    earner.stripe_account_id = "acct_scenario"
    earner.stripe_onboarding_complete = True
    earner.save(update_fields=["role", "stripe_account_id", "stripe_onboarding_complete"])

    EarnerProfile.objects.get_or_create(
        user=earner,
        defaults={"display_name": "Scenario Earner"},
    )
    wallet_service.get_or_create_wallet(seeker)
    wallet_service.get_or_create_wallet(earner)
    return seeker, earner


def assert_scenarios_enabled():
    if not settings.ALLOW_TEST_SCENARIOS:
        raise Exception("Test scenarios disabled in this environment.")


@transaction.atomic()
def cleanup_scenario_data(scenario_name):
    """Remove everything a previous run of the scenario left behind, users included."""
    users = list(_scenario_users(scenario_name))
    if not users:
        return
    video_dates = VideoDate.objects.filter(seeker__in=users) | VideoDate.objects.filter(earner__in=users)
    withdrawals = Withdrawal.objects.filter(user__in=users)
    ProcessedWebhookEvent.objects.filter(event_id__startswith=f"evt_{SCENARIO_TAG_PREFIX}_{scenario_name}_").delete()
    Transaction.objects.filter(user__in=users).delete()
    CreditReservation.objects.filter(user__in=users).delete()
    GiftTransaction.objects.filter(sender__in=users).delete()
    GiftTransaction.objects.filter(recipient__in=users).delete()
    withdrawals.delete()
    video_dates.delete()
    Notification.objects.filter(user__in=users).delete()
    Wallet.objects.filter(user__in=users).delete()
    CustomUser.objects.filter(pk__in=[user.pk for user in users]).delete()


def reference(scenario_name):
    return f"{SCENARIO_TAG_PREFIX}_{scenario_name}_{uuid.uuid4().hex[:12]}"


def event_id(scenario_name):
    return f"evt_{reference(scenario_name)}"


def fund_credits(user, credits, scenario_name):
    """Credit the user through the normal purchase path, as a Stripe webhook would."""
    tx, _ = ledger_service.confirm_purchase(
        user,
        reference(scenario_name),
        credits,
        pricing.credits_to_usd(credits),
    )
    return tx


def scenario_gift(credits_cost=50):
    gift, _ = GiftCatalogItem.objects.get_or_create(
        name=SCENARIO_GIFT_NAME,
        credits_cost=credits_cost,
        defaults={"emoji": "🌹", "active": True},
    )
    return gift


def balances(user):
    wallet = wallet_service.get_or_create_wallet(user)
    return wallet.credit_balance, wallet.pending_earnings, wallet.available_earnings


def book_started_video_date(seeker, earner, duration=15, minutes_ago=10):
    """
    Request a booking, then move it into the past as if it had been accepted
    and its start time had passed. Room provisioning is skipped.
    """
    video_date = booking_service.request_booking(
        seeker,
        earner,
        VideoDate.CALL_TYPE_VIDEO,
        duration,
        timezone.now() + timedelta(hours=1),
    )
    VideoDate.objects.filter(pk=video_date.pk).update(
        status=VideoDate.STATUS_SCHEDULED,
        scheduled_start=timezone.now() - timedelta(minutes=minutes_ago),
    )
    video_date.refresh_from_db()
    return video_date


@transaction.atomic()
def create_processing_withdrawal(user, amount):
    """
    Local half of a withdrawal whose Stripe transfer was accepted: available
    earnings debited, withdrawal row in processing. The transfer itself is
    not created.
    """
    wallet_service.lock_wallet(user)
    wallet_service.apply_delta(user, available_delta=-amount)
    withdrawal = Withdrawal.objects.create(
        user=user,
        amount=amount,
        status=Withdrawal.STATUS_PROCESSING,
        stripe_transfer_id=f"tr_{uuid.uuid4().hex[:16]}",
    )
    transaction_log.append(
        user,
        Transaction.TYPE_WITHDRAWAL,
        0,
        -amount,
        status=Transaction.STATUS_PENDING,
        description="Withdrawal to bank account",
        withdrawal=withdrawal,
    )
    return withdrawal
