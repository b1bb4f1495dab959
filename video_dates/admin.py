from django.contrib import admin

from video_dates.models import VideoDate


@admin.register(VideoDate)
class VideoDateAdmin(admin.ModelAdmin):
    list_display = ("id", "seeker", "earner", "call_type", "scheduled_start", "scheduled_duration", "credits_reserved", "status", "refunded", "settled_at")
    list_filter = ("status", "call_type", "refunded")
    search_fields = ("seeker__email", "earner__email", "room_name")
    date_hierarchy = "scheduled_start"
    readonly_fields = (
        "seeker", "earner", "call_type", "scheduled_start", "scheduled_duration",
        "credits_reserved", "earner_amount", "platform_fee", "status",
        "seeker_joined_at", "earner_joined_at", "waiting_started_at", "actual_start", "actual_end",
        "refunded", "settled_at", "room_name", "room_url", "cancelled_by", "cancellation_reason",
        "refund_reason", "created_at", "updated_at",
    )
    exclude = ("seeker_token", "earner_token")

    def has_add_permission(self, request):
        return False
