from decimal import Decimal

from billing.services import ledger_service
from testing.financial.base import balances, cleanup_scenario_data, ensure_test_users, reference


def run():
    print("Running: scenario_purchase_idempotent")
    cleanup_scenario_data("purchase_idempotent")
    seeker, _ = ensure_test_users("purchase_idempotent")
    ref = reference("purchase_idempotent")
    _, first_created = ledger_service.confirm_purchase(seeker, ref, 500, Decimal("50.00"))
    _, second_created = ledger_service.confirm_purchase(seeker, ref, 500, Decimal("50.00"))
    if not first_created or second_created:
        raise Exception("Expected only the first confirmation to record the purchase.")
    credits, _, _ = balances(seeker)
    if credits != 500:
        raise Exception(f"Expected 500 credits after a repeated confirmation, got {credits}")
    print("✓ Passed")
