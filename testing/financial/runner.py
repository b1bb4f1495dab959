from testing.financial.base import assert_scenarios_enabled
from testing.financial.scenarios import (
    scenario_earnings_hold,
    scenario_gift_split,
    scenario_no_show_refund,
    scenario_overspend_rejected,
    scenario_purchase_idempotent,
    scenario_rate_table,
    scenario_settle_refund_exclusive,
    scenario_withdrawal_webhook,
)

AVAILABLE_SCENARIOS = {
    "overspend": scenario_overspend_rejected,
    "purchase_idempotent": scenario_purchase_idempotent,
    "gift_split": scenario_gift_split,
    "no_show_refund": scenario_no_show_refund,
    "settle_refund_exclusive": scenario_settle_refund_exclusive,
    "earnings_hold": scenario_earnings_hold,
    "withdrawal_webhook": scenario_withdrawal_webhook,
    "rate_table": scenario_rate_table,
}


def run_scenario(name):
    assert_scenarios_enabled()
    if name not in AVAILABLE_SCENARIOS:
        raise Exception(f"Unknown scenario '{name}'. Available: {', '.join(AVAILABLE_SCENARIOS.keys())}")
    AVAILABLE_SCENARIOS[name].run()


def run_all(stop_on_failure=True):
    """Run every scenario. Returns [(name, exception)] for the ones that failed."""
    assert_scenarios_enabled()
    failures = []
    for name, scenario in AVAILABLE_SCENARIOS.items():
        if not stop_on_failure:
            try:
                scenario.run()
            except Exception as exc:
                failures.append((name, exc))
            continue
        scenario.run()
    return failures
