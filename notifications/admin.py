from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("title", "user", "type", "is_opened", "created_at")
    list_filter = ("type", "is_opened")
    search_fields = ("user__email", "title")
    readonly_fields = ("created_at",)
