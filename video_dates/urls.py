from django.urls import path
from . import views

app_name = "video_dates"

urlpatterns = [
    path("", views.request_booking, name="request_booking"),
    path("<uuid:video_date_id>/accept/", views.accept, name="accept"),
    path("<uuid:video_date_id>/decline/", views.decline, name="decline"),
    path("<uuid:video_date_id>/cancel/", views.cancel, name="cancel"),
    path("<uuid:video_date_id>/join/", views.join, name="join"),
    path("<uuid:video_date_id>/end/", views.end, name="end"),
    path("jobs/sweep/", views.job_sweep, name="job_sweep"),
]
