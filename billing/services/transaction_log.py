"""
Transaction log: append-only record of every balance-affecting event.

append() must run inside the same atomic block as the wallet change it
records; if either fails neither is committed.
"""
from django.db import transaction
from django.db.models import Sum

from billing.models import Transaction


def append(
    user,
    type: str,
    credits_amount: int = 0,
    usd_amount=None,
    *,
    external_reference: str = None,
    status: str = Transaction.STATUS_COMPLETED,
    description: str = "",
    video_date=None,
    withdrawal=None,
) -> Transaction:
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("transaction_log.append must be called inside transaction.atomic()")
    return Transaction.objects.create(
        user=user,
        type=type,
        credits_amount=credits_amount,
        usd_amount=usd_amount,
        external_reference=external_reference or None,
        status=status,
        description=description[:255],
        video_date=video_date,
        withdrawal=withdrawal,
    )


def find_by_external_reference(ref: str):
    if not ref:
        return None
    return Transaction.objects.filter(external_reference=ref).first()


def exists_for_video_date(video_date_id, type: str) -> bool:
    return Transaction.objects.filter(video_date_id=video_date_id, type=type).exists()


def reconstruct_credit_balance(user) -> int:
    """Credit balance implied by the log (failed entries never moved money)."""
    total = (
        Transaction.objects.filter(user=user)
        .exclude(status=Transaction.STATUS_FAILED)
        .aggregate(total=Sum("credits_amount"))["total"]
    )
    return int(total or 0)
