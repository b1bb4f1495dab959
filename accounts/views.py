"""
Session endpoints for the JSON API plus the earner's call-rate settings.
"""
import logging

from django.contrib.auth import authenticate, login, logout
from django.http import JsonResponse
from django.middleware.csrf import get_token
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from accounts.models import EarnerProfile
from billing import pricing
from billing.decorators import api_login_required, json_errors, read_json
from billing.errors import LedgerError, RateTableError

logger = logging.getLogger(__name__)


def _user_dict(user) -> dict:
    return {
        "id": user.pk,
        "email": user.email,
        "role": user.role,
        "is_email_verified": user.is_email_verified,
        "can_receive_payouts": user.can_receive_payouts,
    }


@ensure_csrf_cookie
@require_GET
def csrf(request):
    """GET /accounts/csrf/: sets the CSRF cookie for the frontend."""
    return JsonResponse({"csrf_token": get_token(request)})


@require_POST
@json_errors
def login_view(request):
    """POST /accounts/login/  {"email": "...", "password": "..."}"""
    data = read_json(request)
    email = str(data.get("email") or "").strip().lower()
    password = str(data.get("password") or "")
    if not email or not password:
        raise LedgerError("Email and password are required.")
    user = authenticate(request, username=email, password=password)
    if user is None:
        logger.info("login failed for %s", email)
        return JsonResponse({"success": False, "error": "Invalid email or password.", "code": "invalid_credentials"}, status=400)
    login(request, user)
    return JsonResponse({"success": True, "user": _user_dict(user)})


@require_POST
def logout_view(request):
    logout(request)
    return JsonResponse({"success": True})


@require_GET
@api_login_required
def me(request):
    return JsonResponse({"success": True, "user": _user_dict(request.user)})


def _rates_dict(rates: dict) -> dict:
    return {
        str(duration): {
            "video": rates[duration],
            "audio": pricing.derive_audio_rate(rates[duration]),
            "earner_usd": str(pricing.creator_share(rates[duration])),
        }
        for duration in pricing.CALL_DURATIONS
    }


@require_http_methods(["GET", "POST"])
@api_login_required
@json_errors
def video_rates(request):
    """
    GET  /accounts/rates/  current rates (audio derived, never stored)
    POST /accounts/rates/  {"15": 200, "30": 280, "60": 392, "90": 412}
    """
    if not request.user.is_earner:
        return JsonResponse({"success": False, "error": "Only earners set call rates.", "code": "forbidden"}, status=403)
    profile, _ = EarnerProfile.objects.get_or_create(user=request.user)

    if request.method == "POST":
        data = read_json(request)
        rates = {}
        errors = []
        for duration in pricing.CALL_DURATIONS:
            value = data.get(str(duration))
            if isinstance(value, bool) or not isinstance(value, int):
                errors.append(f"{duration} min rate must be a whole number of credits")
                continue
            rates[duration] = value
        if errors:
            raise RateTableError(errors)
        profile.set_video_rates(rates)
        logger.info("video_rates updated user=%s rates=%s", request.user.pk, rates)

    return JsonResponse({
        "success": True,
        "rates": _rates_dict(profile.video_rates),
        "limits": {
            "min": {str(d): r for d, r in pricing.MIN_RATES.items()},
            "max": pricing.MAX_RATE,
        },
    })
