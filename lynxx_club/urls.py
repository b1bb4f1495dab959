from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path("admin/", admin.site.urls),
    path("accounts/", include("accounts.urls", namespace="accounts")),
    path("billing/", include("billing.urls", namespace="billing")),
    path("video-dates/", include("video_dates.urls", namespace="video_dates")),
]
