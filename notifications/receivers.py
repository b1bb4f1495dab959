"""
Turn committed ledger events into in-app notifications (and emails for
payout outcomes). Runs after commit via send_robust, so nothing here can
affect balances.
"""
import logging

from django.contrib.auth import get_user_model
from django.dispatch import receiver

from billing import signals
from notifications.email_service import EmailService
from notifications.models import Notification

logger = logging.getLogger(__name__)


def _credits_purchased(payload):
    return Notification.TYPE_CREDITS_PURCHASED, "Credits added", f"{payload['credits']} credits have been added to your balance.", payload.get("transaction_id", "")


def _gift_received(payload):
    return (
        Notification.TYPE_GIFT_RECEIVED,
        f"You received {payload.get('emoji', '')} {payload.get('gift_name', 'a gift')}".strip(),
        f"${payload['usd_amount']} was added to your pending earnings.",
        payload.get("gift_transaction_id", ""),
    )


def _earning_credited(payload):
    return Notification.TYPE_EARNING, "New earning", f"${payload['usd_amount']} was added to your pending earnings.", ""


def _earnings_available(payload):
    return Notification.TYPE_EARNINGS_AVAILABLE, "Earnings available", f"${payload['usd_amount']} is now available to withdraw.", ""


def _withdrawal_requested(payload):
    return Notification.TYPE_PAYOUT, "Withdrawal requested", f"Your withdrawal of ${payload['usd_amount']} is being processed.", payload["withdrawal_id"]


def _withdrawal_completed(payload):
    return Notification.TYPE_PAYOUT, "Payout sent", f"${payload['usd_amount']} has been paid to your bank account.", payload["withdrawal_id"]


def _withdrawal_failed(payload):
    return (
        Notification.TYPE_PAYOUT,
        "Payout issue",
        f"Your withdrawal of ${payload['usd_amount']} could not be completed. Our team is reviewing it.",
        payload["withdrawal_id"],
    )


def _booking_settled(payload):
    return Notification.TYPE_VIDEO_DATE, "Video date completed", f"${payload['usd_amount']} was added to your pending earnings.", payload["video_date_id"]


def _booking_refunded(payload):
    return Notification.TYPE_VIDEO_DATE, "Video date refunded", f"{payload['credits']} credits were returned to your balance.", payload["video_date_id"]


BUILDERS = {
    signals.CREDITS_PURCHASED: _credits_purchased,
    signals.GIFT_RECEIVED: _gift_received,
    signals.EARNING_CREDITED: _earning_credited,
    signals.EARNINGS_AVAILABLE: _earnings_available,
    signals.WITHDRAWAL_REQUESTED: _withdrawal_requested,
    signals.WITHDRAWAL_COMPLETED: _withdrawal_completed,
    signals.WITHDRAWAL_FAILED: _withdrawal_failed,
    signals.BOOKING_SETTLED: _booking_settled,
    signals.BOOKING_REFUNDED: _booking_refunded,
}


@receiver(signals.ledger_event)
def create_notification(sender, event, user_id, payload, **kwargs):
    builder = BUILDERS.get(event)
    if builder is None:
        return None
    notification_type, title, message, related_id = builder(payload)
    return Notification.objects.create(
        user_id=user_id,
        type=notification_type,
        title=title[:200],
        message=message,
        related_id=str(related_id or "")[:64],
    )


@receiver(signals.ledger_event)
def email_payout_outcome(sender, event, user_id, payload, **kwargs):
    if event not in (signals.WITHDRAWAL_COMPLETED, signals.WITHDRAWAL_FAILED):
        return
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        return
    if event == signals.WITHDRAWAL_COMPLETED:
        EmailService.send_payout_completed_email(user, payload["usd_amount"])
    else:
        EmailService.send_payout_failed_email(user, payload["usd_amount"])
