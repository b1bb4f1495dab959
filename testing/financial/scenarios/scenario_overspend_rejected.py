from billing.errors import InsufficientBalance
from billing.services import ledger_service
from testing.financial.base import balances, cleanup_scenario_data, ensure_test_users, fund_credits


def run():
    print("Running: scenario_overspend_rejected")
    cleanup_scenario_data("overspend_rejected")
    seeker, earner = ensure_test_users("overspend_rejected")
    fund_credits(seeker, 100, "overspend_rejected")
    try:
        ledger_service.spend_credits(seeker, 150, "scenario_overspend", recipient=earner)
    except InsufficientBalance:
        pass
    else:
        raise Exception("Expected InsufficientBalance when spending 150 of 100 credits.")
    credits, pending, _ = balances(seeker)
    if credits != 100:
        raise Exception(f"Expected balance to stay at 100, got {credits}")
    _, earner_pending, _ = balances(earner)
    if earner_pending != 0:
        raise Exception("Expected no earning for the recipient of a rejected spend.")
    print("✓ Passed")
