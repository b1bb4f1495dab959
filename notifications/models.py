import uuid

from django.db import models
from django.utils import timezone


class Notification(models.Model):
    """In-app notification created from a committed ledger event"""

    TYPE_CREDITS_PURCHASED = "credits_purchased"
    TYPE_GIFT_RECEIVED = "gift_received"
    TYPE_EARNING = "earning"
    TYPE_EARNINGS_AVAILABLE = "earnings_available"
    TYPE_PAYOUT = "payout"
    TYPE_VIDEO_DATE = "video_date"
    TYPE_CHOICES = [
        (TYPE_CREDITS_PURCHASED, "Credits purchased"),
        (TYPE_GIFT_RECEIVED, "Gift received"),
        (TYPE_EARNING, "Earning"),
        (TYPE_EARNINGS_AVAILABLE, "Earnings available"),
        (TYPE_PAYOUT, "Payout"),
        (TYPE_VIDEO_DATE, "Video date"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey("accounts.CustomUser", on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=32, choices=TYPE_CHOICES)
    title = models.CharField(max_length=200)
    message = models.TextField()
    related_id = models.CharField(max_length=64, blank=True, default="", help_text="Id of the gift, withdrawal or video date this is about")
    is_opened = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "Notification"
        verbose_name_plural = "Notifications"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "-created_at"], name="notification_user_created_idx"),
            models.Index(fields=["user", "is_opened"], name="notification_user_opened_idx"),
        ]

    def __str__(self):
        return f"{self.title} - {self.user_id}"
