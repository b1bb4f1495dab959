from datetime import timedelta
from decimal import Decimal

from django.utils import timezone

from billing import config
from billing.services import ledger_service
from testing.financial.base import balances, cleanup_scenario_data, ensure_test_users, fund_credits, scenario_gift


def run():
    print("Running: scenario_earnings_hold")
    cleanup_scenario_data("earnings_hold")
    seeker, earner = ensure_test_users("earnings_hold")
    fund_credits(seeker, 100, "earnings_hold")
    ledger_service.send_gift(seeker, earner, scenario_gift(credits_cost=50).pk)

    ledger_service.promote_pending_to_available(now=timezone.now())
    _, pending, available = balances(earner)
    if pending != Decimal("3.50") or available != 0:
        raise Exception("Expected fresh earnings to stay pending during the hold window.")

    later = timezone.now() + timedelta(hours=config.EARNINGS_HOLD_HOURS, minutes=1)
    ledger_service.promote_pending_to_available(now=later)
    ledger_service.promote_pending_to_available(now=later)
    _, pending, available = balances(earner)
    if pending != 0 or available != Decimal("3.50"):
        raise Exception(f"Expected $3.50 available exactly once, got pending={pending} available={available}")
    print("✓ Passed")
