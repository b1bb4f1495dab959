"""
Wallet store. All wallet balance changes go through apply_delta, called by
billing.services.ledger_service together with a transaction_log.append in
the same atomic block. Never modify Wallet balance fields outside this module.
"""
import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from billing.errors import InsufficientBalance, InvalidAmount
from billing.models import Wallet

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def get_wallet(user):
    """Wallet for user, or None when the user never had one."""
    return Wallet.objects.filter(user=user).first()


def get_or_create_wallet(user) -> Wallet:
    wallet, _ = Wallet.objects.get_or_create(user=user)
    return wallet


@transaction.atomic()
def lock_wallet(user) -> Wallet:
    """Row-lock the user's wallet for the rest of the caller's transaction."""
    get_or_create_wallet(user)
    return Wallet.objects.select_for_update().get(user=user)


@transaction.atomic()
def apply_delta(
    user,
    credits_delta: int = 0,
    pending_delta=ZERO,
    available_delta=ZERO,
    paid_out_delta=ZERO,
) -> Wallet:
    """
    Atomically add the given deltas to the user's wallet.

    Implemented as one conditional UPDATE (col = col + delta WHERE col >= -delta)
    so concurrent spends can never interleave into a negative balance.
    Raises InsufficientBalance, with nothing written, when a negative delta
    would drive a balance below zero.
    """
    pending_delta = Decimal(pending_delta)
    available_delta = Decimal(available_delta)
    paid_out_delta = Decimal(paid_out_delta)
    if paid_out_delta < 0:
        raise InvalidAmount("paid_out_total can only increase")

    get_or_create_wallet(user)

    guards = {}
    if credits_delta < 0:
        guards["credit_balance__gte"] = -credits_delta
    if pending_delta < 0:
        guards["pending_earnings__gte"] = -pending_delta
    if available_delta < 0:
        guards["available_earnings__gte"] = -available_delta

    updated = Wallet.objects.filter(user=user, **guards).update(
        credit_balance=F("credit_balance") + credits_delta,
        pending_earnings=F("pending_earnings") + pending_delta,
        available_earnings=F("available_earnings") + available_delta,
        paid_out_total=F("paid_out_total") + paid_out_delta,
        updated_at=timezone.now(),
    )
    wallet = Wallet.objects.get(user=user)
    if updated:
        return wallet

    if credits_delta < 0 and wallet.credit_balance < -credits_delta:
        raise InsufficientBalance(required=-credits_delta, available=wallet.credit_balance)
    if available_delta < 0 and wallet.available_earnings < -available_delta:
        raise InsufficientBalance(
            "Insufficient available earnings.",
            required=-available_delta,
            available=wallet.available_earnings,
            field="available_earnings",
        )
    raise InsufficientBalance(
        "Insufficient pending earnings.",
        required=-pending_delta,
        available=wallet.pending_earnings,
        field="pending_earnings",
    )


@transaction.atomic()
def set_payout_hold(user, held: bool, reason: str = "") -> Wallet:
    """
    Privileged: used by admin/fraud review and the payout manual-review path.
    Ordinary spend/earn flows never call this.
    """
    wallet = lock_wallet(user)
    wallet.payout_hold = held
    wallet.payout_hold_reason = (reason or "")[:255] if held else ""
    wallet.save(update_fields=["payout_hold", "payout_hold_reason", "updated_at"])
    logger.info("set_payout_hold user=%s held=%s reason=%s", user.pk, held, reason)
    return wallet
