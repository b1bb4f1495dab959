"""
Billing configuration — operational windows and limits for the ledger.

Money conversion constants and price lists live in billing.pricing; this module
only holds the knobs that govern when and how much money may move.
"""
from decimal import Decimal

# Earnings stay in pending_earnings for this long before they become withdrawable
EARNINGS_HOLD_HOURS = 48

# Max earning transactions promoted per run of process_pending_earnings
PENDING_EARNINGS_BATCH_SIZE = 500

# Withdrawal limits (USD). Fixed minimum, no exceptions.
PAYOUT_MINIMUM_USD = Decimal("25.00")
PAYOUT_MAXIMUM_USD = Decimal("10000.00")

# Reason stored on the wallet when a failed payout needs a human to reconcile it
MANUAL_RECONCILIATION_HOLD_REASON = "manual_reconciliation"
