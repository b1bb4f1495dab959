from accounts.models import EarnerProfile
from billing import pricing
from billing.errors import RateTableError
from testing.financial.base import cleanup_scenario_data, ensure_test_users


def run():
    print("Running: scenario_rate_table")
    cleanup_scenario_data("rate_table")
    _, earner = ensure_test_users("rate_table")

    if not pricing.validate_rate_table({15: 200, 30: 150}):
        raise Exception("Expected 30 min cheaper than 15 min to be rejected.")
    if pricing.validate_rate_table({15: 200, 30: 280}):
        raise Exception("Expected {15: 200, 30: 280} to be accepted.")

    profile = EarnerProfile.objects.get(user=earner)
    try:
        profile.set_video_rates({15: 300, 30: 250, 60: 500, 90: 700})
    except RateTableError:
        pass
    else:
        raise Exception("Expected a decreasing rate table to be refused.")
    profile.refresh_from_db()
    if profile.video_rates != {15: 200, 30: 280, 60: 392, 90: 412}:
        raise Exception("Expected the stored rates to be unchanged after a rejected update.")

    profile.set_video_rates({15: 300, 30: 420, 60: 600, 90: 800})
    profile.refresh_from_db()
    if profile.video_rates[60] != 600:
        raise Exception("Expected a valid rate table to be stored.")
    print("✓ Passed")
