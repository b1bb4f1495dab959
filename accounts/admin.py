from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.contrib.auth.models import Group

from .forms import EarnerProfileAdminForm
from .models import CustomUser, EarnerProfile

# Hide Authentication and Authorization groups
admin.site.unregister(Group)


class UserAdmin(BaseUserAdmin):
    model = CustomUser
    list_display = ("email", "role", "is_email_verified", "stripe_onboarding_complete", "is_staff")
    list_filter = ("role", "is_email_verified", "stripe_onboarding_complete", "is_staff", "is_superuser")
    search_fields = ("email", "stripe_account_id")
    ordering = ("email",)
    actions = ["verify_emails", "unverify_emails"]
    fieldsets = (
        (None, {"fields": ("email", "password", "role")}),
        ("Email Verification", {"fields": ("is_email_verified",)}),
        ("Payouts", {"fields": ("stripe_account_id", "stripe_onboarding_complete")}),
        ("Permissions", {"fields": ("is_active", "is_staff", "is_superuser", "groups", "user_permissions")}),
        ("Important dates", {"fields": ("last_login",)}),
    )
    add_fieldsets = (
        (None, {"classes": ("wide",), "fields": ("email", "role", "password1", "password2")}),
    )

    def verify_emails(self, request, queryset):
        """Admin action to verify selected users' emails"""
        updated = queryset.update(is_email_verified=True)
        self.message_user(request, f"{updated} user(s) email(s) verified successfully.")
    verify_emails.short_description = "Verify email for selected users"

    def unverify_emails(self, request, queryset):
        updated = queryset.update(is_email_verified=False)
        self.message_user(request, f"{updated} user(s) email(s) unverified.")
    unverify_emails.short_description = "Unverify email for selected users"


@admin.register(EarnerProfile)
class EarnerProfileAdmin(admin.ModelAdmin):
    form = EarnerProfileAdminForm
    list_display = ("user", "display_name", "video_15min_rate", "video_30min_rate", "video_60min_rate", "video_90min_rate")
    search_fields = ("user__email", "display_name")
    readonly_fields = ("updated_at",)


admin.site.register(CustomUser, UserAdmin)
