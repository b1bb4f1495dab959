import uuid
from datetime import timedelta

from django.db import models
from django.db.models import Q

from video_dates import config


class VideoDate(models.Model):
    """
    A paid call between a seeker and an earner.

    credits_reserved, earner_amount and platform_fee are fixed when the
    booking is requested and never recomputed. Status changes go through
    video_dates.services.booking_service; money moves only through
    billing.services.ledger_service.
    """

    STATUS_PENDING = "pending"
    STATUS_SCHEDULED = "scheduled"
    STATUS_WAITING = "waiting"
    STATUS_IN_PROGRESS = "in_progress"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"
    STATUS_CANCELLED_NO_SHOW = "cancelled_no_show"
    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SCHEDULED, "Scheduled"),
        (STATUS_WAITING, "Waiting"),
        (STATUS_IN_PROGRESS, "In progress"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_CANCELLED_NO_SHOW, "Cancelled (no-show)"),
    ]
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_CANCELLED_NO_SHOW)
    CANCELLED_STATUSES = (STATUS_CANCELLED, STATUS_CANCELLED_NO_SHOW)
    # Explicit cancellation is only possible before the call starts
    CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_SCHEDULED, STATUS_WAITING)

    CALL_TYPE_VIDEO = "video"
    CALL_TYPE_AUDIO = "audio"
    CALL_TYPE_CHOICES = [
        (CALL_TYPE_VIDEO, "Video"),
        (CALL_TYPE_AUDIO, "Audio"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    seeker = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="video_dates_booked",
    )
    earner = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.PROTECT,
        related_name="video_dates_hosted",
    )
    call_type = models.CharField(max_length=8, choices=CALL_TYPE_CHOICES, default=CALL_TYPE_VIDEO)
    scheduled_start = models.DateTimeField(db_index=True)
    scheduled_duration = models.PositiveIntegerField(help_text="Minutes")

    credits_reserved = models.PositiveIntegerField()
    earner_amount = models.DecimalField(max_digits=12, decimal_places=2)
    platform_fee = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    seeker_joined_at = models.DateTimeField(null=True, blank=True)
    earner_joined_at = models.DateTimeField(null=True, blank=True)
    waiting_started_at = models.DateTimeField(null=True, blank=True)
    actual_start = models.DateTimeField(null=True, blank=True)
    actual_end = models.DateTimeField(null=True, blank=True)

    # Exactly one of these is ever set: refunded (cancellation) or settled_at (completion)
    refunded = models.BooleanField(default=False)
    settled_at = models.DateTimeField(null=True, blank=True)

    room_name = models.CharField(max_length=128, blank=True, default="")
    room_url = models.URLField(max_length=500, blank=True, default="")
    seeker_token = models.TextField(blank=True, default="")
    earner_token = models.TextField(blank=True, default="")

    cancelled_by = models.ForeignKey(
        "accounts.CustomUser",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    cancellation_reason = models.CharField(max_length=255, blank=True, default="")
    refund_reason = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-scheduled_start"]
        constraints = [
            models.CheckConstraint(
                condition=~Q(refunded=True, settled_at__isnull=False),
                name="video_date_not_both_refunded_and_settled",
            ),
            models.CheckConstraint(
                condition=~Q(seeker=models.F("earner")),
                name="video_date_distinct_participants",
            ),
        ]
        indexes = [
            models.Index(fields=["status", "scheduled_start"], name="video_date_status_start_idx"),
        ]

    def __str__(self):
        return f"VideoDate {self.id} {self.seeker_id}->{self.earner_id} ({self.status})"

    @property
    def scheduled_end(self):
        return self.scheduled_start + timedelta(minutes=self.scheduled_duration)

    @property
    def call_end(self):
        """End of the paid call: measured from actual_start once the call has started."""
        return (self.actual_start or self.scheduled_start) + timedelta(minutes=self.scheduled_duration)

    @property
    def grace_deadline(self):
        return self.scheduled_start + timedelta(minutes=config.NO_SHOW_GRACE_MINUTES)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def is_participant(self, user) -> bool:
        return user is not None and user.pk in (self.seeker_id, self.earner_id)

    def token_for(self, user) -> str:
        if user.pk == self.seeker_id:
            return self.seeker_token
        if user.pk == self.earner_id:
            return self.earner_token
        return ""
