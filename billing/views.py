"""
Billing API: wallet, credit purchases, spends, gifts, withdrawals, Stripe
webhooks and cron job endpoints. Views only parse input and call
billing.services; they never touch balances directly.
"""
import logging
from decimal import Decimal

import stripe
from django.conf import settings
from django.contrib.admin.views.decorators import staff_member_required
from django.contrib.auth import get_user_model
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from billing import pricing
from billing.decorators import api_login_required, cron_secret_required, json_errors, read_json
from billing.errors import InvalidAmount, LedgerError
from billing.models import GiftCatalogItem, Transaction, Withdrawal
from billing.services import ledger_service, payment_service, payout_service, wallet_service
from billing.services.stripe_service import check_api_ok, construct_event, is_configured

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS_LIMIT = 20


def _get_user_or_400(user_id):
    user = None
    try:
        user = get_user_model().objects.filter(pk=int(user_id), is_active=True).first()
    except (TypeError, ValueError):
        pass
    if user is None:
        raise InvalidAmount("Recipient not found.")
    return user


def _transaction_dict(tx: Transaction) -> dict:
    return {
        "id": str(tx.id),
        "type": tx.type,
        "credits_amount": tx.credits_amount,
        "usd_amount": str(tx.usd_amount) if tx.usd_amount is not None else None,
        "status": tx.status,
        "description": tx.description,
        "created_at": tx.created_at.isoformat(),
    }


def _withdrawal_dict(withdrawal: Withdrawal) -> dict:
    return {
        "id": str(withdrawal.id),
        "amount": str(withdrawal.amount),
        "status": withdrawal.status,
        "requested_at": withdrawal.requested_at.isoformat(),
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
    }


@require_GET
@api_login_required
@json_errors
def wallet(request):
    """
    GET /billing/wallet/
    Balances of the signed-in user plus recent ledger entries.
    """
    user_wallet = wallet_service.get_or_create_wallet(request.user)
    recent = Transaction.objects.filter(user=request.user).order_by("-created_at")[:RECENT_TRANSACTIONS_LIMIT]
    return JsonResponse({
        "success": True,
        "credit_balance": user_wallet.credit_balance,
        "pending_earnings": str(user_wallet.pending_earnings),
        "available_earnings": str(user_wallet.available_earnings),
        "paid_out_total": str(user_wallet.paid_out_total),
        "payout_hold": user_wallet.payout_hold,
        "transactions": [_transaction_dict(tx) for tx in recent],
    })


@require_GET
def credit_packs(request):
    """GET /billing/credits/packs/"""
    packs = [
        {
            "slug": slug,
            "credits": pack["credits"],
            "price_usd": str(Decimal(pack["price_cents"]) / 100),
        }
        for slug, pack in pricing.CREDIT_PACKS.items()
    ]
    return JsonResponse({"success": True, "packs": packs})


@require_POST
@api_login_required
@json_errors
def credits_intent(request):
    """
    POST /billing/credits/intent/  {"pack": "popular", "attempt_id": "..."}
    Returns the PaymentIntent client_secret for the frontend to confirm.
    """
    data = read_json(request)
    result = payment_service.create_credit_purchase_intent(
        user=request.user,
        pack_slug=str(data.get("pack") or ""),
        attempt_id=data.get("attempt_id"),
    )
    return JsonResponse({"success": True, **result})


@require_POST
@api_login_required
@json_errors
def credits_confirm(request):
    """
    POST /billing/credits/confirm/  {"payment_intent_id": "pi_..."}
    Client-side confirmation; safe to race with the webhook (idempotent by reference).
    """
    data = read_json(request)
    payment_intent_id = data.get("payment_intent_id")
    credits, usd_amount = payment_service.verify_credit_purchase(request.user, payment_intent_id)
    tx, created = ledger_service.confirm_purchase(request.user, payment_intent_id, credits, usd_amount)
    user_wallet = wallet_service.get_wallet(request.user)
    return JsonResponse({
        "success": True,
        "already_processed": not created,
        "credits": tx.credits_amount,
        "credit_balance": user_wallet.credit_balance if user_wallet else 0,
    })


@require_POST
@api_login_required
@json_errors
def spend(request):
    """
    POST /billing/spend/  {"item": "text_message", "recipient_id": 12}
    The price always comes from the server-side price list.
    """
    data = read_json(request)
    recipient = None
    if data.get("recipient_id") is not None:
        recipient = _get_user_or_400(data.get("recipient_id"))
    tx = ledger_service.spend_for_item(request.user, str(data.get("item") or ""), recipient=recipient)
    return JsonResponse({
        "success": True,
        "credits_spent": -tx.credits_amount,
        "credit_balance": wallet_service.get_wallet(request.user).credit_balance,
    })


@require_GET
def gift_catalog(request):
    """GET /billing/gifts/"""
    gifts = GiftCatalogItem.objects.filter(active=True)
    return JsonResponse({
        "success": True,
        "gifts": [
            {
                "id": gift.id,
                "name": gift.name,
                "emoji": gift.emoji,
                "credits_cost": gift.credits_cost,
                "description": gift.description,
                "animation_type": gift.animation_type,
            }
            for gift in gifts
        ],
    })


@require_POST
@api_login_required
@json_errors
def send_gift(request):
    """POST /billing/gifts/send/  {"recipient_id": 12, "gift_id": 3, "message": "..."}"""
    data = read_json(request)
    recipient = _get_user_or_400(data.get("recipient_id"))
    gift_tx = ledger_service.send_gift(
        request.user,
        recipient,
        data.get("gift_id"),
        message=str(data.get("message") or ""),
    )
    return JsonResponse({
        "success": True,
        "gift_transaction_id": str(gift_tx.id),
        "credits_spent": gift_tx.credits_spent,
        "credit_balance": wallet_service.get_wallet(request.user).credit_balance,
    })


@require_POST
@api_login_required
@json_errors
def react_to_gift(request, gift_transaction_id):
    """POST /billing/gifts/<id>/react/  {"reaction": "heart"}"""
    data = read_json(request)
    gift_tx = ledger_service.react_to_gift(request.user, gift_transaction_id, str(data.get("reaction") or ""))
    return JsonResponse({"success": True, "thank_you_reaction": gift_tx.thank_you_reaction})


@require_POST
@api_login_required
@json_errors
def request_withdrawal(request):
    """POST /billing/withdrawals/  {"amount": "50.00"}"""
    data = read_json(request)
    withdrawal = ledger_service.request_withdrawal(request.user, data.get("amount"))
    return JsonResponse({"success": True, "withdrawal": _withdrawal_dict(withdrawal)})


@require_POST
@api_login_required
@json_errors
def connect_onboard(request):
    """
    POST /billing/connect/onboard/
    Returns the Stripe Connect onboarding URL, or onboarding_complete when done.
    """
    if payout_service.refresh_onboarding_status(request.user):
        return JsonResponse({"success": True, "onboarding_complete": True})
    url = payout_service.create_onboarding_link(request.user)
    return JsonResponse({"success": True, "onboarding_complete": False, "url": url})


@staff_member_required
def stripe_status(request):
    """
    GET /billing/stripe-status/
    Staff-only. Returns JSON: stripe_configured, api_ok (optional Stripe API check).
    """
    return JsonResponse({
        "stripe_configured": is_configured(),
        "api_ok": check_api_ok() if is_configured() else False,
    })


def _verified_event(request, secret_setting: str):
    """The stripe.Event when the Stripe signature is valid, else None."""
    payload = request.body
    sig_header = request.headers.get("Stripe-Signature", "")
    webhook_secret = getattr(settings, secret_setting, "") or ""
    if not webhook_secret or not sig_header:
        logger.warning("%s: missing %s or Stripe-Signature header", request.path, secret_setting)
        return None
    try:
        return construct_event(payload, sig_header, webhook_secret)
    except ValueError as e:
        logger.warning("%s: invalid payload %s", request.path, e)
    except stripe.SignatureVerificationError:
        logger.warning("%s: signature verification failed", request.path)
    return None


@csrf_exempt
@require_POST
def stripe_webhook(request):
    """
    POST /billing/stripe-webhook/
    Credits purchased credits for payment_intent.succeeded and
    checkout.session.completed. Answers 200 only after the ledger commit;
    a database failure answers 500 so Stripe retries.
    """
    event = _verified_event(request, "STRIPE_WEBHOOK_SECRET")
    if event is None:
        return HttpResponse(status=400)

    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}
    if event_type == "payment_intent.succeeded":
        _handle_credit_purchase(
            reference=obj.get("id"),
            metadata=obj.get("metadata") or {},
            amount_cents=obj.get("amount_received") or obj.get("amount") or 0,
        )
    elif event_type == "checkout.session.completed":
        if obj.get("payment_status") == "paid":
            _handle_credit_purchase(
                reference=obj.get("payment_intent") or obj.get("id"),
                metadata=obj.get("metadata") or {},
                amount_cents=obj.get("amount_total") or 0,
            )
    return HttpResponse(status=200)


def _handle_credit_purchase(reference, metadata: dict, amount_cents: int) -> None:
    if metadata.get("payment_type") != payment_service.PAYMENT_TYPE_CREDIT_PURCHASE:
        return
    if not reference:
        logger.warning("stripe_webhook: credit purchase without a reference")
        return
    user = None
    try:
        user = get_user_model().objects.filter(pk=int(metadata.get("user_id"))).first()
    except (TypeError, ValueError):
        pass
    if user is None:
        logger.warning("stripe_webhook: user not found for ref=%s", reference)
        return
    try:
        credits = payment_service.credits_from_metadata(metadata)
        usd_amount = (Decimal(int(amount_cents)) / Decimal(100)).quantize(pricing.CENT)
        ledger_service.confirm_purchase(user, reference, credits, usd_amount)
    except LedgerError as e:
        # Not retryable: acknowledge so Stripe stops redelivering
        logger.error("stripe_webhook: credit purchase ref=%s rejected: %s", reference, e.message)


TRANSFER_OUTCOMES = {
    "transfer.paid": ledger_service.WITHDRAWAL_OUTCOME_PAID,
    "transfer.failed": ledger_service.WITHDRAWAL_OUTCOME_FAILED,
    "transfer.reversed": ledger_service.WITHDRAWAL_OUTCOME_REVERSED,
}


@csrf_exempt
@require_POST
def stripe_transfer_webhook(request):
    """
    POST /billing/stripe-transfer-webhook/
    Reconciles withdrawals from transfer outcome events, idempotent by event id.
    """
    event = _verified_event(request, "STRIPE_TRANSFER_WEBHOOK_SECRET")
    if event is None:
        return HttpResponse(status=400)

    outcome = TRANSFER_OUTCOMES.get(event.get("type"))
    if outcome is None:
        return HttpResponse(status=200)

    obj = (event.get("data") or {}).get("object") or {}
    withdrawal_id = (obj.get("metadata") or {}).get("withdrawal_id")
    if not withdrawal_id and obj.get("id"):
        withdrawal_id = (
            Withdrawal.objects.filter(stripe_transfer_id=obj.get("id")).values_list("id", flat=True).first()
        )
    if not withdrawal_id:
        logger.warning("stripe_transfer_webhook: no withdrawal for transfer=%s event=%s", obj.get("id"), event.get("id"))
        return HttpResponse(status=200)

    try:
        ledger_service.reconcile_withdrawal_webhook(
            event.get("id"),
            withdrawal_id,
            outcome,
            failure_reason=obj.get("failure_message") or "",
        )
    except LedgerError as e:
        logger.error("stripe_transfer_webhook: event=%s rejected: %s", event.get("id"), e.message)
    return HttpResponse(status=200)


@csrf_exempt
@require_POST
@cron_secret_required
def job_process_pending_earnings(request):
    """POST /billing/jobs/process-pending-earnings/ (X-Cron-Secret)"""
    result = ledger_service.promote_pending_to_available()
    return JsonResponse({"success": True, **result, "amount": str(result["amount"])})


@csrf_exempt
@require_POST
@cron_secret_required
def job_run_weekly_payouts(request):
    """POST /billing/jobs/run-weekly-payouts/ (X-Cron-Secret)"""
    result = ledger_service.run_weekly_payouts()
    return JsonResponse({"success": True, **result, "amount": str(result["amount"])})
