from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models
from django.utils import timezone
from .managers import CustomUserManager


class CustomUser(AbstractBaseUser, PermissionsMixin):
    ROLE_SEEKER = "seeker"
    ROLE_EARNER = "earner"
    ROLE_CHOICES = [
        (ROLE_SEEKER, "Seeker"),
        (ROLE_EARNER, "Earner"),
    ]

    email = models.EmailField("email address", unique=True)
    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default=ROLE_SEEKER)
    is_staff = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    is_email_verified = models.BooleanField(default=False, help_text="Designates whether this user's email has been verified.")
    date_joined = models.DateTimeField(default=timezone.now)

    # Stripe Connect (earners only); payouts are blocked until onboarding completes
    stripe_account_id = models.CharField(max_length=255, blank=True, default="")
    stripe_onboarding_complete = models.BooleanField(default=False)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = CustomUserManager()

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"

    def save(self, *args, **kwargs):
        """Override save to ensure email is always stored in lowercase"""
        if self.email:
            self.email = self.email.lower().strip()
        super().save(*args, **kwargs)

    def __str__(self):
        return self.email

    @property
    def is_earner(self) -> bool:
        return self.role == self.ROLE_EARNER

    @property
    def can_receive_payouts(self) -> bool:
        return bool(self.stripe_account_id) and self.stripe_onboarding_complete


class EarnerProfile(models.Model):
    """
    Call rates an earner charges, in credits, per video call duration.
    Audio rates are never stored; they are derived from these via billing.pricing.
    """
    user = models.OneToOneField("accounts.CustomUser", on_delete=models.CASCADE, related_name="earner_profile")
    display_name = models.CharField(max_length=150, blank=True)
    video_15min_rate = models.PositiveIntegerField(default=200)
    video_30min_rate = models.PositiveIntegerField(default=280)
    video_60min_rate = models.PositiveIntegerField(default=392)
    video_90min_rate = models.PositiveIntegerField(default=412)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Earner Profile"
        verbose_name_plural = "Earner Profiles"

    def __str__(self):
        return f"{self.display_name or self.user.email} (earner)"

    @property
    def video_rates(self) -> dict:
        return {
            15: self.video_15min_rate,
            30: self.video_30min_rate,
            60: self.video_60min_rate,
            90: self.video_90min_rate,
        }

    def set_video_rates(self, rates: dict) -> None:
        """Validate and store a full rate table. Raises billing.errors.RateTableError."""
        from billing.pricing import validate_call_rates

        validate_call_rates(rates)
        self.video_15min_rate = rates[15]
        self.video_30min_rate = rates[30]
        self.video_60min_rate = rates[60]
        self.video_90min_rate = rates[90]
        self.save(update_fields=[
            "video_15min_rate",
            "video_30min_rate",
            "video_60min_rate",
            "video_90min_rate",
            "updated_at",
        ])
