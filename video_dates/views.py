"""
Video date API. Every endpoint acts as request.user; the booking service
checks that the caller is a participant of the video date.
"""
import logging

from django.contrib.auth import get_user_model
from django.http import JsonResponse
from django.utils.dateparse import parse_datetime
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from billing.decorators import api_login_required, cron_secret_required, json_errors, read_json
from video_dates.errors import BookingError
from video_dates.models import VideoDate
from video_dates.services import booking_service

logger = logging.getLogger(__name__)


def _video_date_dict(video_date: VideoDate, viewer) -> dict:
    data = {
        "id": str(video_date.id),
        "seeker_id": video_date.seeker_id,
        "earner_id": video_date.earner_id,
        "call_type": video_date.call_type,
        "scheduled_start": video_date.scheduled_start.isoformat(),
        "scheduled_duration": video_date.scheduled_duration,
        "credits_reserved": video_date.credits_reserved,
        "status": video_date.status,
        "refunded": video_date.refunded,
        "room_url": video_date.room_url,
    }
    # Join tokens are only ever shown to their own participant
    token = video_date.token_for(viewer)
    if token:
        data["token"] = token
    if viewer.pk == video_date.earner_id:
        data["earner_amount"] = str(video_date.earner_amount)
    return data


@require_POST
@api_login_required
@json_errors
def request_booking(request):
    """
    POST /video-dates/  {"earner_id": 7, "call_type": "video", "duration": 30,
                         "scheduled_start": "2026-01-10T18:00:00Z"}
    """
    data = read_json(request)
    earner = None
    try:
        earner = get_user_model().objects.filter(pk=int(data.get("earner_id")), is_active=True).first()
    except (TypeError, ValueError):
        pass
    if earner is None:
        raise BookingError("Earner not found.")
    scheduled_start = parse_datetime(str(data.get("scheduled_start") or ""))
    if scheduled_start is None or scheduled_start.tzinfo is None:
        raise BookingError("scheduled_start must be an ISO 8601 datetime with a timezone.")
    try:
        duration = int(data.get("duration"))
    except (TypeError, ValueError):
        raise BookingError("duration must be a number of minutes.")

    video_date = booking_service.request_booking(
        request.user,
        earner,
        str(data.get("call_type") or VideoDate.CALL_TYPE_VIDEO),
        duration,
        scheduled_start,
    )
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)}, status=201)


@require_POST
@api_login_required
@json_errors
def accept(request, video_date_id):
    video_date = booking_service.accept_booking(request.user, video_date_id)
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)})


@require_POST
@api_login_required
@json_errors
def decline(request, video_date_id):
    data = read_json(request)
    video_date = booking_service.decline_booking(request.user, video_date_id, str(data.get("reason") or ""))
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)})


@require_POST
@api_login_required
@json_errors
def cancel(request, video_date_id):
    data = read_json(request)
    video_date = booking_service.cancel_booking(request.user, video_date_id, str(data.get("reason") or ""))
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)})


@require_POST
@api_login_required
@json_errors
def join(request, video_date_id):
    """POST /video-dates/<id>/join/: records the join and returns the caller's token."""
    video_date = booking_service.record_join(request.user, video_date_id)
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)})


@require_POST
@api_login_required
@json_errors
def end(request, video_date_id):
    video_date = booking_service.complete_booking(request.user, video_date_id)
    return JsonResponse({"success": True, "video_date": _video_date_dict(video_date, request.user)})


@csrf_exempt
@require_POST
@cron_secret_required
def job_sweep(request):
    """POST /video-dates/jobs/sweep/ (X-Cron-Secret)"""
    result = booking_service.sweep()
    return JsonResponse({"success": True, **result})
