"""
Ledger error taxonomy. Every error carries a message that is safe to show to
the user, a stable machine code and the HTTP status the API layer returns.
"""


class LedgerError(Exception):
    """Base class; message is safe to show to user."""

    code = "invalid_request"
    status_code = 400
    default_message = "The request could not be processed."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"success": False, "error": self.message, "code": self.code}


class InsufficientBalance(LedgerError):
    code = "insufficient_credits"
    status_code = 402
    default_message = "Insufficient credits for this operation."

    def __init__(self, message: str = None, required=None, available=None, field: str = "credit_balance"):
        self.required = required
        self.available = available
        self.field = field
        super().__init__(message)

    def as_dict(self) -> dict:
        data = super().as_dict()
        if self.required is not None:
            data["required"] = str(self.required)
        if self.available is not None:
            data["available"] = str(self.available)
        return data


class BelowMinimum(LedgerError):
    code = "below_minimum"
    default_message = "Amount is below the required minimum."

    def __init__(self, message: str = None, required=None):
        self.required = required
        super().__init__(message)

    def as_dict(self) -> dict:
        data = super().as_dict()
        if self.required is not None:
            data["required"] = str(self.required)
        return data


class InsufficientEarnings(BelowMinimum):
    """Withdrawal asks for more than available_earnings."""

    code = "insufficient_earnings"
    default_message = "Withdrawal exceeds your available earnings."


class PayoutHeld(LedgerError):
    code = "payout_held"
    status_code = 403
    default_message = "Payouts are on hold for this account. Please contact support."


class PayoutAccountMissing(LedgerError):
    code = "payout_account_missing"
    default_message = "Please complete bank account setup first."


class InvalidAmount(LedgerError):
    code = "invalid_amount"
    default_message = "Invalid amount."


class PriceNotFound(LedgerError):
    code = "not_found"
    status_code = 404
    default_message = "Unknown item."


class GiftNotFound(LedgerError):
    code = "not_found"
    status_code = 404
    default_message = "Gift not found."


class RateTableError(LedgerError):
    code = "invalid_rates"
    default_message = "Call rates are invalid."

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or None)

    def as_dict(self) -> dict:
        data = super().as_dict()
        data["errors"] = self.errors
        return data


class AlreadyProcessed(LedgerError):
    """Internal no-op signal for idempotent operations; never returned to callers."""

    code = "already_processed"
    status_code = 200
    default_message = "This request has already been processed."


class ExternalProviderError(LedgerError):
    """Payment or video provider failed. Retryable; no partial ledger commit."""

    code = "provider_unavailable"
    status_code = 503
    default_message = "A payment provider is temporarily unavailable. Please try again."


class ManualReconciliationRequired(LedgerError):
    code = "manual_reconciliation_required"
    status_code = 409
    default_message = "This payout requires manual review."
