"""
Earner payouts through Stripe Connect (Express accounts + transfers).

create_transfer lets Stripe exceptions propagate: the ledger decides whether
a failure is definite (compensate) or ambiguous (manual review).
"""
import logging
from decimal import Decimal

import stripe
from django.conf import settings

from billing.errors import ExternalProviderError, PayoutAccountMissing
from billing.services.stripe_service import get_client, is_configured, user_message

logger = logging.getLogger(__name__)


def _amount_cents(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def create_transfer(withdrawal):
    """
    Transfer the withdrawal amount to the earner's connected account.
    The idempotency key is derived from the withdrawal id, so a retried
    call can never pay out twice.
    """
    user = withdrawal.user
    if not user.stripe_account_id:
        raise PayoutAccountMissing()
    transfer = get_client().Transfer.create(
        amount=_amount_cents(withdrawal.amount),
        currency="usd",
        destination=user.stripe_account_id,
        metadata={
            "withdrawal_id": str(withdrawal.id),
            "user_id": str(user.pk),
        },
        idempotency_key=f"withdrawal:{withdrawal.id}",
    )
    logger.info(
        "create_transfer withdrawal=%s user=%s amount=%s transfer=%s",
        withdrawal.id, user.pk, withdrawal.amount, transfer.id,
    )
    return transfer


def create_onboarding_link(user) -> str:
    """Return a Connect onboarding URL, creating the Express account on first use."""
    if not is_configured():
        raise ExternalProviderError("Payouts are not configured. Please try again later.")
    stripe_client = get_client()
    try:
        if not user.stripe_account_id:
            account = stripe_client.Account.create(
                type="express",
                email=user.email,
                capabilities={"transfers": {"requested": True}},
                metadata={"user_id": str(user.pk)},
                idempotency_key=f"connect-account:{user.pk}",
            )
            user.stripe_account_id = account.id
            user.save(update_fields=["stripe_account_id"])
            logger.info("create_onboarding_link: created account user=%s account=%s", user.pk, account.id)
        link = stripe_client.AccountLink.create(
            account=user.stripe_account_id,
            refresh_url=settings.STRIPE_CONNECT_REFRESH_URL,
            return_url=settings.STRIPE_CONNECT_RETURN_URL,
            type="account_onboarding",
        )
    except stripe.StripeError as e:
        logger.warning("create_onboarding_link failed user=%s: %s", user.pk, e)
        raise ExternalProviderError(user_message(e, "Could not start bank account setup. Please try again."))
    return link.url


def refresh_onboarding_status(user) -> bool:
    """Sync stripe_onboarding_complete from the connected account."""
    if not user.stripe_account_id or not is_configured():
        return False
    try:
        account = get_client().Account.retrieve(user.stripe_account_id)
    except stripe.StripeError as e:
        raise ExternalProviderError(user_message(e, "Could not check bank account status."))
    complete = bool(getattr(account, "details_submitted", False) and getattr(account, "payouts_enabled", False))
    if complete != user.stripe_onboarding_complete:
        user.stripe_onboarding_complete = complete
        user.save(update_fields=["stripe_onboarding_complete"])
        logger.info("refresh_onboarding_status user=%s complete=%s", user.pk, complete)
    return complete
