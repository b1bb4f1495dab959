"""
Ledger events, emitted only after the surrounding database transaction commits.

Receivers (notifications, analytics) run with send_robust so a failing
receiver can never roll back or break a money movement.
"""
import logging

from django.db import transaction
from django.dispatch import Signal

logger = logging.getLogger(__name__)

# kwargs: event (str), user_id, payload (dict)
ledger_event = Signal()

CREDITS_PURCHASED = "credits_purchased"
GIFT_RECEIVED = "gift_received"
EARNING_CREDITED = "earning_credited"
EARNINGS_AVAILABLE = "earnings_available"
WITHDRAWAL_REQUESTED = "withdrawal_requested"
WITHDRAWAL_COMPLETED = "withdrawal_completed"
WITHDRAWAL_FAILED = "withdrawal_failed"
BOOKING_SETTLED = "booking_settled"
BOOKING_REFUNDED = "booking_refunded"


def _dispatch(event: str, user_id, payload: dict) -> None:
    results = ledger_event.send_robust(sender=None, event=event, user_id=user_id, payload=payload)
    for receiver, result in results:
        if isinstance(result, Exception):
            logger.warning("ledger_event receiver failed event=%s receiver=%r: %s", event, receiver, result)


def emit_after_commit(event: str, user_id, **payload) -> None:
    transaction.on_commit(lambda: _dispatch(event, user_id, payload))
