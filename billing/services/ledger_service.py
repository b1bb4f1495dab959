"""
Ledger service — every balance-affecting operation.

Each operation changes the Wallet (wallet_service.apply_delta) and appends
to the Transaction Log (transaction_log.append) inside one transaction.atomic
block: both are committed or neither is. Validation errors are raised before
anything is written. Notifications are emitted only after commit
(billing.signals.emit_after_commit).

Callers (views, booking state machine, webhooks, jobs) must pass the user
whose identity was verified; this module never trusts client-sent prices.
"""
import logging
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal, InvalidOperation

import stripe
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from billing import config, pricing, signals
from billing.errors import (
    AlreadyProcessed,
    BelowMinimum,
    ExternalProviderError,
    GiftNotFound,
    InsufficientBalance,
    InsufficientEarnings,
    InvalidAmount,
    LedgerError,
    ManualReconciliationRequired,
    PayoutAccountMissing,
    PayoutHeld,
)
from billing.models import (
    CreditReservation,
    GiftCatalogItem,
    GiftTransaction,
    ProcessedWebhookEvent,
    Transaction,
    Wallet,
    Withdrawal,
)
from billing.services import payout_service, stripe_service, transaction_log, wallet_service
from video_dates.errors import BookingNotFound
from video_dates.models import VideoDate

logger = logging.getLogger(__name__)

WITHDRAWAL_OUTCOME_PAID = "paid"
WITHDRAWAL_OUTCOME_FAILED = "failed"
WITHDRAWAL_OUTCOME_REVERSED = "reversed"
WITHDRAWAL_OUTCOMES = (WITHDRAWAL_OUTCOME_PAID, WITHDRAWAL_OUTCOME_FAILED, WITHDRAWAL_OUTCOME_REVERSED)


def _positive_credits(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("Credit amount must be a positive whole number.")
    return amount


def _usd(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount()
    if not value.is_finite():
        raise InvalidAmount()
    return pricing.round_cents(value)


def _lock_wallets(*users) -> None:
    """
    Row-lock several wallets in user id order so two-party operations
    (A pays B while B pays A) cannot deadlock.
    """
    for user in users:
        wallet_service.get_or_create_wallet(user)
    ids = sorted({user.pk for user in users})
    list(Wallet.objects.select_for_update().filter(user_id__in=ids).order_by("user_id"))


# --- Purchases ---------------------------------------------------------------

def confirm_purchase(user, external_reference: str, credits: int, usd_amount):
    """
    Credit purchased credits once per processor reference.

    Returns (transaction, created). A repeat call with the same reference,
    from a redelivered webhook or the client's confirm call, is a no-op
    returning the prior transaction.
    """
    if not external_reference:
        raise InvalidAmount("A payment reference is required.")
    credits = _positive_credits(credits)
    usd_amount = _usd(usd_amount)

    existing = transaction_log.find_by_external_reference(external_reference)
    if existing is not None:
        return _already_purchased(existing, user, external_reference)

    try:
        with transaction.atomic():
            wallet_service.apply_delta(user, credits_delta=credits)
            tx = transaction_log.append(
                user,
                Transaction.TYPE_PURCHASE,
                credits,
                usd_amount,
                external_reference=external_reference,
                description=f"Purchased {credits} credits",
            )
    except IntegrityError:
        # Lost a race with a concurrent delivery of the same reference
        existing = transaction_log.find_by_external_reference(external_reference)
        if existing is None:
            raise
        return _already_purchased(existing, user, external_reference)

    logger.info(
        "confirm_purchase user=%s ref=%s credits=%s usd=%s",
        user.pk, external_reference, credits, usd_amount,
    )
    signals.emit_after_commit(
        signals.CREDITS_PURCHASED, user.pk, credits=credits, usd_amount=str(usd_amount), transaction_id=str(tx.id)
    )
    return tx, True


def _already_purchased(existing, user, external_reference):
    if existing.user_id != user.pk:
        logger.error(
            "confirm_purchase: ref=%s already recorded for user=%s, not user=%s",
            external_reference, existing.user_id, user.pk,
        )
        raise LedgerError("This payment has already been applied to another account.")
    logger.info("confirm_purchase: ref=%s already processed", external_reference)
    return existing, False


# --- Spending ----------------------------------------------------------------

def spend_credits(user, amount: int, reason: str, recipient=None) -> Transaction:
    """
    Debit credits for a priced action. With a recipient, the creator share of
    the spend goes to the recipient's pending earnings in the same commit.
    Raises InsufficientBalance (nothing written) when the balance is short.
    """
    amount = _positive_credits(amount)
    if recipient is not None and recipient.pk == user.pk:
        raise InvalidAmount("You cannot pay yourself.")

    earner_amount = pricing.creator_share(amount)
    with transaction.atomic():
        if recipient is not None:
            _lock_wallets(user, recipient)
        wallet_service.apply_delta(user, credits_delta=-amount)
        tx = transaction_log.append(
            user,
            Transaction.TYPE_SPEND,
            -amount,
            pricing.credits_to_usd(amount),
            description=reason,
        )
        if recipient is not None:
            wallet_service.apply_delta(recipient, pending_delta=earner_amount)
            transaction_log.append(
                recipient,
                Transaction.TYPE_EARNING,
                0,
                earner_amount,
                description=reason,
            )

    logger.info(
        "spend_credits user=%s credits=%s reason=%s recipient=%s",
        user.pk, amount, reason, recipient.pk if recipient is not None else None,
    )
    if recipient is not None:
        signals.emit_after_commit(
            signals.EARNING_CREDITED, recipient.pk, usd_amount=str(earner_amount), reason=reason
        )
    return tx


def spend_for_item(user, item: str, recipient=None) -> Transaction:
    """Spend at the server-side list price for item."""
    return spend_credits(user, pricing.price_for(item), item, recipient=recipient)


# --- Gifts -------------------------------------------------------------------

def send_gift(sender, recipient, gift_id, message: str = "") -> GiftTransaction:
    """
    Debit the sender the current catalog price and credit the recipient's
    pending earnings with the creator share, as one commit.
    """
    if recipient is None or sender.pk == recipient.pk:
        raise InvalidAmount("You cannot send a gift to yourself.")
    gift = GiftCatalogItem.objects.filter(pk=gift_id, active=True).first()
    if gift is None:
        raise GiftNotFound()

    credits = gift.credits_cost
    earner_amount = pricing.creator_share(credits)
    platform_fee = pricing.platform_share(credits)

    with transaction.atomic():
        _lock_wallets(sender, recipient)
        wallet_service.apply_delta(sender, credits_delta=-credits)
        gift_tx = GiftTransaction.objects.create(
            sender=sender,
            recipient=recipient,
            gift=gift,
            credits_spent=credits,
            earner_amount=earner_amount,
            platform_fee=platform_fee,
            message=(message or "")[:500],
        )
        transaction_log.append(
            sender,
            Transaction.TYPE_GIFT_SENT,
            -credits,
            pricing.credits_to_usd(credits),
            description=f"Gift {gift.name} ({gift_tx.id})",
        )
        wallet_service.apply_delta(recipient, pending_delta=earner_amount)
        transaction_log.append(
            recipient,
            Transaction.TYPE_GIFT_EARNING,
            0,
            earner_amount,
            description=f"Gift {gift.name} ({gift_tx.id})",
        )

    logger.info(
        "send_gift sender=%s recipient=%s gift=%s credits=%s earner_amount=%s",
        sender.pk, recipient.pk, gift.pk, credits, earner_amount,
    )
    signals.emit_after_commit(
        signals.GIFT_RECEIVED,
        recipient.pk,
        gift_transaction_id=str(gift_tx.id),
        sender_id=sender.pk,
        gift_name=gift.name,
        emoji=gift.emoji,
        usd_amount=str(earner_amount),
    )
    return gift_tx


def react_to_gift(user, gift_transaction_id, reaction: str) -> GiftTransaction:
    reaction = (reaction or "").strip()
    if not reaction:
        raise InvalidAmount("A reaction is required.")
    gift_tx = GiftTransaction.objects.filter(pk=gift_transaction_id, recipient=user).first()
    if gift_tx is None:
        raise GiftNotFound()
    gift_tx.thank_you_reaction = reaction[:16]
    gift_tx.save(update_fields=["thank_you_reaction"])
    return gift_tx


# --- Video date reservations -------------------------------------------------

def reserve_for_booking(seeker, credits: int, video_date):
    """
    Debit the seeker for a booking and record the reservation against the
    VideoDate. Release is a compensating refund (refund_booking), never an
    un-debit. Returns the reservation id; a repeat call for the same
    VideoDate returns the existing reservation without debiting again.
    """
    credits = _positive_credits(credits)
    existing = CreditReservation.objects.filter(video_date=video_date).first()
    if existing is not None:
        logger.info("reserve_for_booking: video_date=%s already reserved", video_date.pk)
        return existing.id

    try:
        with transaction.atomic():
            wallet_service.apply_delta(seeker, credits_delta=-credits)
            reservation = CreditReservation.objects.create(
                user=seeker,
                video_date=video_date,
                credits=credits,
            )
            transaction_log.append(
                seeker,
                Transaction.TYPE_SPEND,
                -credits,
                pricing.credits_to_usd(credits),
                description="video_date_reservation",
                video_date=video_date,
            )
    except IntegrityError:
        existing = CreditReservation.objects.filter(video_date=video_date).first()
        if existing is None:
            raise
        return existing.id

    logger.info("reserve_for_booking seeker=%s video_date=%s credits=%s", seeker.pk, video_date.pk, credits)
    return reservation.id


def settle_booking(video_date_id) -> bool:
    """
    Pay the earner for a completed call: earner_amount to pending earnings,
    an informational video_date_charge for the seeker and an earning for the
    earner. Claims the VideoDate by compare-and-set so settlement and refund
    are mutually exclusive. Returns False when already settled or refunded.
    """
    now = timezone.now()
    try:
        with transaction.atomic():
            video_date = _claim_booking(
                video_date_id,
                Transaction.TYPE_VIDEO_DATE_CHARGE,
                dict(status=VideoDate.STATUS_COMPLETED),
                dict(settled_at=now, updated_at=now),
            )
            _settle_claimed(video_date, now)
    except AlreadyProcessed as e:
        logger.info("settle_booking: video_date=%s %s", video_date_id, e.message)
        return False

    logger.info(
        "settle_booking video_date=%s earner=%s earner_amount=%s",
        video_date.pk, video_date.earner_id, video_date.earner_amount,
    )
    signals.emit_after_commit(
        signals.BOOKING_SETTLED,
        video_date.earner_id,
        video_date_id=str(video_date.pk),
        usd_amount=str(video_date.earner_amount),
    )
    return True


def _claim_booking(video_date_id, tx_type, status_filter, updates) -> VideoDate:
    """
    Compare-and-set claim of an unsettled, unrefunded VideoDate. Raises
    AlreadyProcessed (rolling back the claim) when the booking was already
    settled or refunded, or when its tx_type entry is already in the log.
    """
    claimed = VideoDate.objects.filter(
        pk=video_date_id,
        settled_at__isnull=True,
        refunded=False,
        **status_filter,
    ).update(**updates)
    video_date = VideoDate.objects.select_related("seeker", "earner").filter(pk=video_date_id).first()
    if video_date is None:
        raise BookingNotFound()
    if not claimed:
        if video_date.refunded or video_date.settled_at is not None:
            logger.warning(
                "video_date=%s already %s", video_date_id, "refunded" if video_date.refunded else "settled"
            )
        raise AlreadyProcessed(f"already processed (status={video_date.status})")
    if transaction_log.exists_for_video_date(video_date.pk, tx_type):
        logger.warning("video_date=%s already has a %s entry", video_date_id, tx_type)
        raise AlreadyProcessed(f"{tx_type} already logged")
    return video_date


def _settle_claimed(video_date, now) -> None:
    wallet_service.apply_delta(video_date.earner, pending_delta=video_date.earner_amount)
    transaction_log.append(
        video_date.seeker,
        Transaction.TYPE_VIDEO_DATE_CHARGE,
        0,
        pricing.credits_to_usd(video_date.credits_reserved),
        description=f"{video_date.scheduled_duration} min {video_date.call_type} date",
        video_date=video_date,
    )
    transaction_log.append(
        video_date.earner,
        Transaction.TYPE_EARNING,
        0,
        video_date.earner_amount,
        description=f"{video_date.scheduled_duration} min {video_date.call_type} date",
        video_date=video_date,
    )
    CreditReservation.objects.filter(
        video_date=video_date, status=CreditReservation.STATUS_ACTIVE
    ).update(status=CreditReservation.STATUS_CONSUMED, resolved_at=now)


def refund_booking(video_date_id, reason: str = "") -> bool:
    """
    Return credits_reserved to the seeker of a cancelled booking. Idempotent:
    returns False, without writing, when already refunded or settled.
    """
    now = timezone.now()
    try:
        with transaction.atomic():
            video_date = _claim_booking(
                video_date_id,
                Transaction.TYPE_VIDEO_DATE_REFUND,
                dict(status__in=VideoDate.CANCELLED_STATUSES),
                dict(refunded=True, refund_reason=(reason or "")[:255], updated_at=now),
            )
            credits = video_date.credits_reserved
            wallet_service.apply_delta(video_date.seeker, credits_delta=credits)
            transaction_log.append(
                video_date.seeker,
                Transaction.TYPE_VIDEO_DATE_REFUND,
                credits,
                pricing.credits_to_usd(credits),
                description=reason or "video_date_refund",
                video_date=video_date,
            )
            CreditReservation.objects.filter(
                video_date=video_date, status=CreditReservation.STATUS_ACTIVE
            ).update(status=CreditReservation.STATUS_RELEASED, resolved_at=now)
    except AlreadyProcessed as e:
        logger.info("refund_booking: video_date=%s %s", video_date_id, e.message)
        return False

    logger.info("refund_booking video_date=%s seeker=%s credits=%s reason=%s", video_date.pk, video_date.seeker_id, credits, reason)
    signals.emit_after_commit(
        signals.BOOKING_REFUNDED,
        video_date.seeker_id,
        video_date_id=str(video_date.pk),
        credits=credits,
        reason=reason,
    )
    return True


# --- Earnings hold -----------------------------------------------------------

def promote_pending_to_available(now=None) -> dict:
    """
    Move earnings older than the hold window from pending to available,
    one atomic unit per user. A failure for one user is logged and the
    batch continues.
    """
    now = now or timezone.now()
    cutoff = now - timedelta(hours=config.EARNINGS_HOLD_HOURS)
    due = list(
        Transaction.objects.filter(
            type__in=Transaction.EARNING_TYPES,
            cleared_at__isnull=True,
            created_at__lte=cutoff,
        )
        .exclude(status=Transaction.STATUS_FAILED)
        .order_by("created_at")
        .values_list("id", "user_id")[: config.PENDING_EARNINGS_BATCH_SIZE]
    )
    by_user = defaultdict(list)
    for tx_id, user_id in due:
        by_user[user_id].append(tx_id)

    users = get_user_model().objects.in_bulk(list(by_user))
    result = {"users": 0, "transactions": 0, "amount": Decimal("0.00"), "failed": 0}
    for user_id, tx_ids in by_user.items():
        user = users.get(user_id)
        if user is None:
            continue
        try:
            with transaction.atomic():
                wallet_service.lock_wallet(user)
                rows = list(
                    Transaction.objects.select_for_update().filter(id__in=tx_ids, cleared_at__isnull=True)
                )
                if not rows:
                    continue
                total = sum((row.usd_amount or Decimal("0.00") for row in rows), Decimal("0.00"))
                Transaction.objects.filter(id__in=[row.id for row in rows]).update(cleared_at=now)
                wallet_service.apply_delta(user, pending_delta=-total, available_delta=total)
        except (LedgerError, DatabaseError):
            logger.exception("promote_pending_to_available failed for user=%s", user_id)
            result["failed"] += 1
            continue

        result["users"] += 1
        result["transactions"] += len(rows)
        result["amount"] += total
        logger.info("promote_pending_to_available user=%s transactions=%s amount=%s", user_id, len(rows), total)
        signals.emit_after_commit(signals.EARNINGS_AVAILABLE, user_id, usd_amount=str(total))
    return result


# --- Withdrawals -------------------------------------------------------------

def request_withdrawal(user, usd_amount) -> Withdrawal:
    """
    Debit available earnings, record a pending withdrawal and start the
    Stripe transfer once the local records are committed.

    A definite Stripe rejection is compensated (withdrawal failed, amount
    returned to available earnings) and raises ExternalProviderError. A
    network failure leaves the outcome unknown: the withdrawal stays pending,
    is flagged for manual review and ManualReconciliationRequired is raised.
    """
    amount = _usd(usd_amount)
    if amount <= 0:
        raise InvalidAmount("Withdrawal amount must be positive.")
    if amount < config.PAYOUT_MINIMUM_USD:
        raise BelowMinimum(
            f"Minimum withdrawal is ${config.PAYOUT_MINIMUM_USD}.",
            required=config.PAYOUT_MINIMUM_USD,
        )
    if amount > config.PAYOUT_MAXIMUM_USD:
        raise InvalidAmount(f"Maximum withdrawal is ${config.PAYOUT_MAXIMUM_USD}.")

    wallet = wallet_service.get_or_create_wallet(user)
    if wallet.payout_hold:
        raise PayoutHeld()
    if amount > wallet.available_earnings:
        raise InsufficientEarnings(
            f"You can withdraw at most ${wallet.available_earnings}.",
            required=amount,
        )
    if not user.can_receive_payouts:
        raise PayoutAccountMissing()
    if not stripe_service.is_configured():
        raise ExternalProviderError("Payouts are not configured. Please try again later.")

    try:
        with transaction.atomic():
            wallet = wallet_service.lock_wallet(user)
            if wallet.payout_hold:
                raise PayoutHeld()
            wallet_service.apply_delta(user, available_delta=-amount)
            withdrawal = Withdrawal.objects.create(user=user, amount=amount)
            transaction_log.append(
                user,
                Transaction.TYPE_WITHDRAWAL,
                0,
                -amount,
                status=Transaction.STATUS_PENDING,
                description="Withdrawal to bank account",
                withdrawal=withdrawal,
            )
    except InsufficientBalance as e:
        raise InsufficientEarnings(f"You can withdraw at most ${e.available}.", required=amount)

    logger.info("request_withdrawal user=%s withdrawal=%s amount=%s", user.pk, withdrawal.id, amount)
    signals.emit_after_commit(
        signals.WITHDRAWAL_REQUESTED, user.pk, withdrawal_id=str(withdrawal.id), usd_amount=str(amount)
    )

    try:
        transfer = payout_service.create_transfer(withdrawal)
    except stripe.APIConnectionError as e:
        Withdrawal.objects.filter(pk=withdrawal.pk).update(
            needs_manual_review=True,
            failure_reason="Transfer outcome unknown (network error)",
        )
        logger.error(
            "request_withdrawal: transfer outcome unknown withdrawal=%s user=%s: %s",
            withdrawal.id, user.pk, e,
        )
        raise ManualReconciliationRequired(
            "Your withdrawal is being reviewed. We will update you once it is confirmed."
        )
    except stripe.StripeError as e:
        _compensate_rejected_transfer(withdrawal, str(e)[:255])
        raise ExternalProviderError(stripe_service.user_message(e, "Withdrawal failed. Please try again."))

    Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.STATUS_PENDING).update(
        status=Withdrawal.STATUS_PROCESSING,
        stripe_transfer_id=transfer.id,
    )
    withdrawal.refresh_from_db()
    return withdrawal


def _compensate_rejected_transfer(withdrawal, reason: str) -> None:
    """Stripe rejected the transfer outright: no money left, so return it."""
    now = timezone.now()
    with transaction.atomic():
        updated = Withdrawal.objects.filter(pk=withdrawal.pk, status=Withdrawal.STATUS_PENDING).update(
            status=Withdrawal.STATUS_FAILED,
            failure_reason=reason,
            processed_at=now,
        )
        if not updated:
            return
        wallet_service.apply_delta(withdrawal.user, available_delta=withdrawal.amount)
        transaction_log.append(
            withdrawal.user,
            Transaction.TYPE_WITHDRAWAL_REFUND,
            0,
            withdrawal.amount,
            description="Withdrawal rejected by payment provider",
            withdrawal=withdrawal,
        )
        Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL).update(
            status=Transaction.STATUS_FAILED
        )
    logger.warning("request_withdrawal: transfer rejected withdrawal=%s, amount returned: %s", withdrawal.id, reason)
    signals.emit_after_commit(
        signals.WITHDRAWAL_FAILED, withdrawal.user_id, withdrawal_id=str(withdrawal.id), usd_amount=str(withdrawal.amount)
    )


def reconcile_withdrawal_webhook(external_event_id: str, withdrawal_id, outcome: str, failure_reason: str = ""):
    """
    Apply a payout outcome from the processor. Idempotent by event id and by
    withdrawal status. Failure or reversal is never re-credited automatically:
    the withdrawal is flagged for manual review and payouts are held.

    Returns (withdrawal or None, applied).
    """
    if outcome not in WITHDRAWAL_OUTCOMES:
        raise LedgerError(f"Unknown payout outcome '{outcome}'.")
    if not external_event_id:
        raise LedgerError("An event id is required.")

    now = timezone.now()
    try:
        with transaction.atomic():
            ProcessedWebhookEvent.objects.create(event_id=external_event_id, event_type=f"transfer.{outcome}")
            try:
                withdrawal = (
                    Withdrawal.objects.select_for_update().select_related("user").filter(pk=withdrawal_id).first()
                )
            except (ValidationError, ValueError):
                withdrawal = None
            if withdrawal is None:
                logger.warning("reconcile_withdrawal_webhook: unknown withdrawal=%s event=%s", withdrawal_id, external_event_id)
                return None, False
            if withdrawal.status in Withdrawal.FINAL_STATUSES:
                logger.warning(
                    "reconcile_withdrawal_webhook: withdrawal=%s already %s, ignoring %s event=%s",
                    withdrawal.id, withdrawal.status, outcome, external_event_id,
                )
                return withdrawal, False

            if outcome == WITHDRAWAL_OUTCOME_PAID:
                withdrawal.status = Withdrawal.STATUS_COMPLETED
                withdrawal.processed_at = now
                withdrawal.save(update_fields=["status", "processed_at"])
                Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL).update(
                    status=Transaction.STATUS_COMPLETED
                )
                wallet_service.apply_delta(withdrawal.user, paid_out_delta=withdrawal.amount)
            else:
                withdrawal.status = Withdrawal.STATUS_FAILED
                withdrawal.processed_at = now
                withdrawal.needs_manual_review = True
                withdrawal.failure_reason = (failure_reason or f"Transfer {outcome}")[:255]
                withdrawal.save(update_fields=["status", "processed_at", "needs_manual_review", "failure_reason"])
                Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL).update(
                    status=Transaction.STATUS_FAILED
                )
                wallet_service.set_payout_hold(withdrawal.user, True, config.MANUAL_RECONCILIATION_HOLD_REASON)
    except IntegrityError:
        logger.info("reconcile_withdrawal_webhook: event=%s already processed", external_event_id)
        return Withdrawal.objects.filter(pk=withdrawal_id).first(), False

    if outcome == WITHDRAWAL_OUTCOME_PAID:
        logger.info("reconcile_withdrawal_webhook: withdrawal=%s completed amount=%s", withdrawal.id, withdrawal.amount)
        signals.emit_after_commit(
            signals.WITHDRAWAL_COMPLETED, withdrawal.user_id, withdrawal_id=str(withdrawal.id), usd_amount=str(withdrawal.amount)
        )
    else:
        logger.error(
            "reconcile_withdrawal_webhook: withdrawal=%s %s, manual reconciliation required user=%s amount=%s",
            withdrawal.id, outcome, withdrawal.user_id, withdrawal.amount,
        )
        signals.emit_after_commit(
            signals.WITHDRAWAL_FAILED, withdrawal.user_id, withdrawal_id=str(withdrawal.id), usd_amount=str(withdrawal.amount)
        )
    return withdrawal, True


def resolve_manual_review(withdrawal_id, recredit: bool, note: str = "") -> Withdrawal:
    """
    Staff decision on a withdrawal flagged for review. With recredit, the
    amount goes back to available earnings; only allowed when no transfer
    is known to have been created or the transfer failed. The payout hold
    is released once the user has no other withdrawal awaiting review.
    """
    now = timezone.now()
    with transaction.atomic():
        withdrawal = Withdrawal.objects.select_for_update().select_related("user").filter(pk=withdrawal_id).first()
        if withdrawal is None:
            raise LedgerError("Withdrawal not found.")
        if not withdrawal.needs_manual_review:
            raise LedgerError("This withdrawal is not awaiting review.")

        fields = ["needs_manual_review", "reviewed_at", "failure_reason"]
        if recredit:
            refundable = withdrawal.status == Withdrawal.STATUS_FAILED or (
                withdrawal.status == Withdrawal.STATUS_PENDING and not withdrawal.stripe_transfer_id
            )
            if not refundable:
                raise ManualReconciliationRequired("Only failed withdrawals can be re-credited.")
            if Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL_REFUND).exists():
                raise ManualReconciliationRequired("This withdrawal was already re-credited.")
            wallet_service.apply_delta(withdrawal.user, available_delta=withdrawal.amount)
            transaction_log.append(
                withdrawal.user,
                Transaction.TYPE_WITHDRAWAL_REFUND,
                0,
                withdrawal.amount,
                description="Withdrawal re-credited after review",
                withdrawal=withdrawal,
            )
            Transaction.objects.filter(withdrawal=withdrawal, type=Transaction.TYPE_WITHDRAWAL).update(
                status=Transaction.STATUS_FAILED
            )
            if withdrawal.status != Withdrawal.STATUS_FAILED:
                withdrawal.status = Withdrawal.STATUS_FAILED
                withdrawal.processed_at = now
                fields += ["status", "processed_at"]

        withdrawal.needs_manual_review = False
        withdrawal.reviewed_at = now
        if note:
            withdrawal.failure_reason = f"{withdrawal.failure_reason} | review: {note}".strip(" |")[:255]
        withdrawal.save(update_fields=fields)

        still_flagged = Withdrawal.objects.filter(user=withdrawal.user, needs_manual_review=True).exists()
        wallet = wallet_service.get_wallet(withdrawal.user)
        if (
            not still_flagged
            and wallet is not None
            and wallet.payout_hold
            and wallet.payout_hold_reason == config.MANUAL_RECONCILIATION_HOLD_REASON
        ):
            wallet_service.set_payout_hold(withdrawal.user, False)

    logger.info("resolve_manual_review withdrawal=%s recredit=%s", withdrawal.id, recredit)
    return withdrawal


def run_weekly_payouts() -> dict:
    """Request a full withdrawal for every eligible earner wallet."""
    wallets = (
        Wallet.objects.filter(
            available_earnings__gte=config.PAYOUT_MINIMUM_USD,
            payout_hold=False,
            user__stripe_onboarding_complete=True,
        )
        .exclude(user__stripe_account_id="")
        .select_related("user")
        .order_by("user_id")
    )
    result = {"requested": 0, "failed": 0, "amount": Decimal("0.00")}
    for wallet in wallets:
        amount = min(wallet.available_earnings, config.PAYOUT_MAXIMUM_USD)
        try:
            request_withdrawal(wallet.user, amount)
        except LedgerError as e:
            logger.warning("run_weekly_payouts: user=%s failed: %s", wallet.user_id, e.message)
            result["failed"] += 1
            continue
        result["requested"] += 1
        result["amount"] += amount
    logger.info("run_weekly_payouts %s", result)
    return result


# --- Audit -------------------------------------------------------------------

def audit_wallet(user) -> dict:
    """Compare the stored credit balance with the one implied by the log."""
    wallet = wallet_service.get_wallet(user)
    stored = wallet.credit_balance if wallet else 0
    reconstructed = transaction_log.reconstruct_credit_balance(user)
    if stored != reconstructed:
        logger.error("audit_wallet mismatch user=%s stored=%s log=%s", user.pk, stored, reconstructed)
    return {
        "user_id": user.pk,
        "stored_credit_balance": stored,
        "reconstructed_credit_balance": reconstructed,
        "consistent": stored == reconstructed,
    }
