from decimal import Decimal

from billing.services import ledger_service
from testing.financial.base import balances, cleanup_scenario_data, ensure_test_users, fund_credits, scenario_gift


def run():
    print("Running: scenario_gift_split")
    cleanup_scenario_data("gift_split")
    seeker, earner = ensure_test_users("gift_split")
    fund_credits(seeker, 100, "gift_split")
    gift = scenario_gift(credits_cost=50)
    gift_tx = ledger_service.send_gift(seeker, earner, gift.pk, message="scenario")
    credits, _, _ = balances(seeker)
    _, pending, _ = balances(earner)
    if credits != 50:
        raise Exception(f"Expected sender balance 50, got {credits}")
    if pending != Decimal("3.50"):
        raise Exception(f"Expected recipient pending earnings $3.50, got {pending}")
    if gift_tx.platform_fee != Decimal("1.50"):
        raise Exception(f"Expected platform fee $1.50, got {gift_tx.platform_fee}")
    print("✓ Passed")
