from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from billing import config
from billing.models import Withdrawal
from billing.services import ledger_service, wallet_service
from testing.financial.base import (
    cleanup_scenario_data,
    create_processing_withdrawal,
    ensure_test_users,
    event_id,
    fund_credits,
)


def run():
    print("Running: scenario_withdrawal_webhook")
    cleanup_scenario_data("withdrawal_webhook")
    seeker, earner = ensure_test_users("withdrawal_webhook")
    fund_credits(seeker, 1000, "withdrawal_webhook")
    ledger_service.spend_credits(seeker, 1000, "scenario_earning", recipient=earner)
    ledger_service.promote_pending_to_available(
        now=timezone.now() + timedelta(hours=config.EARNINGS_HOLD_HOURS, minutes=1)
    )

    paid = create_processing_withdrawal(earner, Decimal("30.00"))
    evt = event_id("withdrawal_webhook")
    ledger_service.reconcile_withdrawal_webhook(evt, paid.pk, ledger_service.WITHDRAWAL_OUTCOME_PAID)
    _, applied = ledger_service.reconcile_withdrawal_webhook(evt, paid.pk, ledger_service.WITHDRAWAL_OUTCOME_PAID)
    if applied:
        raise Exception("Expected the redelivered event to be ignored.")
    wallet = wallet_service.get_wallet(earner)
    if wallet.paid_out_total != Decimal("30.00"):
        raise Exception(f"Expected paid_out_total $30.00, got {wallet.paid_out_total}")

    failed = create_processing_withdrawal(earner, Decimal("25.00"))
    before = wallet_service.get_wallet(earner).available_earnings
    ledger_service.reconcile_withdrawal_webhook(
        event_id("withdrawal_webhook"), failed.pk, ledger_service.WITHDRAWAL_OUTCOME_FAILED, "account_closed"
    )
    failed.refresh_from_db()
    wallet = wallet_service.get_wallet(earner)
    if failed.status != Withdrawal.STATUS_FAILED or not failed.needs_manual_review:
        raise Exception("Expected the failed withdrawal to be flagged for review.")
    if not wallet.payout_hold or wallet.available_earnings != before:
        raise Exception("Expected a payout hold and no automatic re-credit.")

    ledger_service.resolve_manual_review(failed.pk, recredit=True, note="scenario")
    wallet = wallet_service.get_wallet(earner)
    if wallet.payout_hold or wallet.available_earnings != before + Decimal("25.00"):
        raise Exception("Expected review to re-credit $25.00 and release the hold.")
    print("✓ Passed")
