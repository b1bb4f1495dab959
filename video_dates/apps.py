from django.apps import AppConfig


class VideoDatesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "video_dates"
    verbose_name = "Video dates"
