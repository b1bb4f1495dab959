"""
Billing models: wallets, the append-only transaction log, withdrawals, gifts
and credit reservations for video dates.

Wallet and Transaction rows are written only by billing.services
(wallet_service, transaction_log, ledger_service). Never update balances
from views, admin forms or other apps.
"""
import uuid
from decimal import Decimal

from django.db import models
from django.db.models import Q

ZERO_USD = Decimal("0.00")


class Wallet(models.Model):
    """Authoritative balance record, one per user."""

    user = models.OneToOneField(
        "accounts.CustomUser",
        on_delete=models.CASCADE,
        related_name="wallet",
    )
    credit_balance = models.IntegerField(default=0)
    pending_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO_USD)
    available_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO_USD)
    paid_out_total = models.DecimalField(max_digits=12, decimal_places=2, default=ZERO_USD)
    payout_hold = models.BooleanField(default=False)
    payout_hold_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(condition=Q(credit_balance__gte=0), name="wallet_credit_balance_non_negative"),
            models.CheckConstraint(condition=Q(pending_earnings__gte=0), name="wallet_pending_earnings_non_negative"),
            models.CheckConstraint(condition=Q(available_earnings__gte=0), name="wallet_available_earnings_non_negative"),
            models.CheckConstraint(condition=Q(paid_out_total__gte=0), name="wallet_paid_out_total_non_negative"),
        ]

    def __str__(self):
        return f"Wallet user={self.user_id} credits={self.credit_balance}"


class Transaction(models.Model):
    """
    Append-only ledger entry for every balance-affecting event.
    credits_amount is signed (positive = credit to the user). usd_amount is
    the USD value of the event from this user's point of view.
    """

    TYPE_PURCHASE = "purchase"
    TYPE_SPEND = "spend"
    TYPE_EARNING = "earning"
    TYPE_GIFT_SENT = "gift_sent"
    TYPE_GIFT_EARNING = "gift_earning"
    TYPE_WITHDRAWAL = "withdrawal"
    TYPE_WITHDRAWAL_REFUND = "withdrawal_refund"
    TYPE_VIDEO_DATE_CHARGE = "video_date_charge"
    TYPE_VIDEO_DATE_REFUND = "video_date_refund"
    TYPE_CHOICES = [
        (TYPE_PURCHASE, "Purchase"),
        (TYPE_SPEND, "Spend"),
        (TYPE_EARNING, "Earning"),
        (TYPE_GIFT_SENT, "Gift sent"),
        (TYPE_GIFT_EARNING, "Gift earning"),
        (TYPE_WITHDRAWAL, "Withdrawal"),
        (TYPE_WITHDRAWAL_REFUND, "Withdrawal refund"),
        (TYPE_VIDEO_DATE_CHARGE, "Video date charge"),
        (TYPE_VIDEO_DATE_REFUND, "Video date refund"),
    ]
    EARNING_TYPES = (TYPE_EARNING, TYPE_GIFT_EARNING)

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_REFUNDED, "Refunded"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    credits_amount = models.IntegerField(default=0)
    usd_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    # Processor reference (payment intent, checkout session); unique when present
    external_reference = models.CharField(max_length=255, null=True, blank=True, unique=True)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_COMPLETED)
    description = models.CharField(max_length=255, blank=True, default="")
    video_date = models.ForeignKey(
        "video_dates.VideoDate",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )
    withdrawal = models.ForeignKey(
        "billing.Withdrawal",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="transactions",
    )
    # Earning rows only: when the hold period moved this amount to available_earnings
    cleared_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["video_date", "type"],
                condition=Q(type__in=["video_date_charge", "video_date_refund"]),
                name="one_charge_or_refund_per_video_date_type",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="transaction_user_created_idx"),
            models.Index(fields=["type", "cleared_at"], name="transaction_type_cleared_idx"),
        ]

    def __str__(self):
        return f"Transaction {self.type} user={self.user_id} credits={self.credits_amount} usd={self.usd_amount}"


class Withdrawal(models.Model):
    STATUS_PENDING = "pending"
    STATUS_PROCESSING = "processing"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PROCESSING, "Processing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]
    FINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="withdrawals",
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING)
    stripe_transfer_id = models.CharField(max_length=255, null=True, blank=True, unique=True)
    failure_reason = models.CharField(max_length=255, blank=True, default="")
    needs_manual_review = models.BooleanField(default=False)
    requested_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-requested_at"]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="withdrawal_amount_positive"),
        ]

    def __str__(self):
        return f"Withdrawal {self.id} ${self.amount} ({self.status})"


class ProcessedWebhookEvent(models.Model):
    """Processor event ids already applied; makes webhook redelivery a no-op."""

    event_id = models.CharField(max_length=255, unique=True)
    event_type = models.CharField(max_length=100)
    processed_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.event_type} {self.event_id}"


class CreditReservation(models.Model):
    """Credits debited from a seeker for a video date, until settled or released."""

    STATUS_ACTIVE = "active"
    STATUS_CONSUMED = "consumed"
    STATUS_RELEASED = "released"
    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_CONSUMED, "Consumed"),
        (STATUS_RELEASED, "Released"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="credit_reservations",
    )
    video_date = models.OneToOneField(
        "video_dates.VideoDate",
        on_delete=models.PROTECT,
        related_name="reservation",
    )
    credits = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    def __str__(self):
        return f"Reservation {self.credits} credits video_date={self.video_date_id} ({self.status})"


class GiftCatalogItem(models.Model):
    ANIMATION_CHOICES = [
        ("standard", "Standard"),
        ("premium", "Premium"),
        ("ultra", "Ultra"),
    ]

    name = models.CharField(max_length=100)
    emoji = models.CharField(max_length=16)
    credits_cost = models.PositiveIntegerField()
    description = models.CharField(max_length=255, blank=True, default="")
    animation_type = models.CharField(max_length=16, choices=ANIMATION_CHOICES, default="standard")
    sort_order = models.IntegerField(default=0)
    active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["sort_order", "credits_cost"]
        constraints = [
            models.CheckConstraint(condition=Q(credits_cost__gt=0), name="gift_credits_cost_positive"),
        ]

    def __str__(self):
        return f"{self.emoji} {self.name} ({self.credits_cost} credits)"


class GiftTransaction(models.Model):
    """One sent gift. credits_spent is the catalog price captured at send time."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sender = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="gifts_sent",
    )
    recipient = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="gifts_received",
    )
    gift = models.ForeignKey(
        "billing.GiftCatalogItem",
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    credits_spent = models.PositiveIntegerField()
    earner_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)
    message = models.CharField(max_length=500, blank=True, default="")
    thank_you_reaction = models.CharField(max_length=16, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Gift {self.gift_id} {self.sender_id} -> {self.recipient_id} ({self.credits_spent} credits)"
