"""
Credit purchases — create and verify Stripe PaymentIntents for credit packs.

The ledger is credited only by ledger_service.confirm_purchase, called either
from the webhook or from the client's confirm call after verify_credit_purchase.
Credits and price always come from billing.pricing, never from the client.
"""
from decimal import Decimal

import stripe

from billing import pricing
from billing.errors import ExternalProviderError, InvalidAmount, LedgerError
from billing.services.stripe_service import get_client, is_configured, user_message

PAYMENT_TYPE_CREDIT_PURCHASE = "credit_purchase"


def create_credit_purchase_intent(
    *,
    user,
    pack_slug: str,
    attempt_id: str | None = None,
    currency: str = "usd",
) -> dict:
    """
    Create a Stripe PaymentIntent for a credit pack (do not confirm).

    One PaymentIntent represents one purchase attempt; the frontend reuses its
    client_secret for retries. Metadata carries everything the webhook needs
    to credit the right wallet.

    Returns:
        {"payment_intent_id": "pi_xxx", "client_secret": "...", "credits": int, "amount_cents": int}
    """
    if not is_configured():
        raise ExternalProviderError("Payment is not configured. Please try again later.")
    pack = pricing.get_credit_pack(pack_slug)

    stripe_client = get_client()
    metadata = {
        "payment_type": PAYMENT_TYPE_CREDIT_PURCHASE,
        "user_id": str(user.pk),
        "credits": str(pack["credits"]),
        "pack": pack_slug,
    }
    idempotency_key = None
    if (attempt_id or "").strip():
        idempotency_key = f"credits:{user.pk}:{pack_slug}:{(attempt_id or '').strip()[:64]}"
    try:
        create_kwargs = dict(
            amount=pack["price_cents"],
            currency=currency,
            confirm=False,
            capture_method="automatic",
            description=f"{pack['credits']} credits",
            metadata=metadata,
            payment_method_types=["card"],
        )
        if idempotency_key:
            create_kwargs["idempotency_key"] = idempotency_key
        intent = stripe_client.PaymentIntent.create(**create_kwargs)
    except stripe.StripeError as e:
        raise ExternalProviderError(user_message(e, "Could not start the purchase. Please try again."))

    return {
        "payment_intent_id": intent.id,
        "client_secret": intent.client_secret,
        "credits": pack["credits"],
        "amount_cents": pack["price_cents"],
    }


def validate_payment_intent_id(value) -> str:
    if not isinstance(value, str) or not value.startswith("pi_") or not (10 <= len(value) <= 100):
        raise InvalidAmount("Invalid payment intent ID.")
    if not value.replace("_", "").isalnum():
        raise InvalidAmount("Invalid payment intent ID.")
    return value


def credits_from_metadata(metadata) -> int:
    try:
        credits = int((metadata or {}).get("credits") or 0)
    except (TypeError, ValueError):
        credits = 0
    if credits <= 0:
        raise InvalidAmount("Payment has no credits attached.")
    return credits


def verify_credit_purchase(user, payment_intent_id: str):
    """
    Retrieve a PaymentIntent after the client confirmed it and check that it
    succeeded for this user. Returns (credits, usd_amount).
    """
    payment_intent_id = validate_payment_intent_id(payment_intent_id)
    if not is_configured():
        raise ExternalProviderError("Payment is not configured.")

    stripe_client = get_client()
    try:
        intent = stripe_client.PaymentIntent.retrieve(payment_intent_id)
    except stripe.StripeError:
        raise ExternalProviderError("Payment could not be verified. Please try again.")

    if intent.status != "succeeded":
        raise LedgerError("Payment has not been completed.")
    metadata = intent.metadata or {}
    if metadata.get("user_id") != str(user.pk):
        raise LedgerError("Payment does not belong to this account.")
    credits = credits_from_metadata(metadata)
    usd_amount = (Decimal(intent.amount) / Decimal(100)).quantize(pricing.CENT)
    return credits, usd_amount
