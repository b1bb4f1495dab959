"""
Access control for JSON endpoints.

User endpoints act only on request.user. Service endpoints (cron jobs) are
called without a session and must present the shared secret.
"""
import hmac
import json
import logging
from functools import wraps

from django.conf import settings
from django.http import JsonResponse

from billing.errors import LedgerError

logger = logging.getLogger(__name__)


def api_login_required(view_func):
    """Like login_required, but answers 401 JSON instead of redirecting."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        if not request.user.is_authenticated:
            return JsonResponse({"success": False, "error": "Authentication required.", "code": "unauthorized"}, status=401)
        return view_func(request, *args, **kwargs)

    return _wrapped


def cron_secret_required(view_func):
    """Require X-Cron-Secret to match settings.CRON_SECRET (constant-time)."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        expected = getattr(settings, "CRON_SECRET", "") or ""
        provided = request.headers.get("X-Cron-Secret", "")
        if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
            logger.warning("cron endpoint %s: missing or invalid X-Cron-Secret", request.path)
            return JsonResponse({"success": False, "error": "forbidden", "code": "forbidden"}, status=403)
        return view_func(request, *args, **kwargs)

    return _wrapped


def json_errors(view_func):
    """Translate ledger/booking errors into JSON responses with their status code."""

    @wraps(view_func)
    def _wrapped(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except LedgerError as e:
            return JsonResponse(e.as_dict(), status=e.status_code)
        except Exception:
            logger.exception("unexpected error in %s", request.path)
            return JsonResponse(
                {"success": False, "error": "Something went wrong. Please try again.", "code": "server_error"},
                status=500,
            )

    return _wrapped


def read_json(request) -> dict:
    """Request body as a dict; malformed JSON is a 400."""
    if not request.body:
        return {}
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise LedgerError("Invalid JSON body.")
    if not isinstance(data, dict):
        raise LedgerError("Invalid JSON body.")
    return data
