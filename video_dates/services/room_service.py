"""
Video room provider (Daily.co REST API).

Rooms are private, limited to the two participants, and expire a fixed
buffer after the scheduled end of the call. Join tokens are opaque: they
are stored on the VideoDate and handed to the matching participant only.
"""
import logging
from datetime import timedelta

import requests
from django.conf import settings

from video_dates import config
from video_dates.errors import RoomProviderError

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool((getattr(settings, "DAILY_API_KEY", "") or "").strip())


def _headers() -> dict:
    return {
        "Authorization": f"Bearer {settings.DAILY_API_KEY}",
        "Content-Type": "application/json",
    }


def _url(path: str) -> str:
    return settings.DAILY_API_URL.rstrip("/") + path


def room_name_for(video_date) -> str:
    return f"vd-{video_date.id.hex}"


def room_expiry(video_date) -> int:
    expires = video_date.scheduled_end + timedelta(minutes=config.ROOM_EXPIRY_BUFFER_MINUTES)
    return int(expires.timestamp())


def _request(method: str, path: str, **kwargs):
    if not is_configured():
        raise RoomProviderError("Video calls are not configured. Please try again later.")
    try:
        return requests.request(
            method,
            _url(path),
            headers=_headers(),
            timeout=config.ROOM_PROVIDER_TIMEOUT_SECONDS,
            **kwargs,
        )
    except requests.RequestException as e:
        logger.warning("room provider %s %s failed: %s", method, path, e)
        raise RoomProviderError()


def get_room(name: str):
    response = _request("GET", f"/rooms/{name}")
    if response.status_code != 200:
        return None
    return response.json()


def create_room(video_date) -> dict:
    """
    Create the private room for a booking. Returns {"name": ..., "url": ...}.
    A name conflict means the room already exists (a retried accept); the
    existing room is returned.
    """
    name = room_name_for(video_date)
    body = {
        "name": name,
        "privacy": "private",
        "properties": {
            "max_participants": config.MAX_PARTICIPANTS,
            "enable_chat": False,
            "enable_screenshare": False,
            "start_video_off": video_date.call_type == video_date.CALL_TYPE_AUDIO,
            "exp": room_expiry(video_date),
        },
    }
    response = _request("POST", "/rooms", json=body)
    if response.status_code == 409:
        existing = get_room(name)
        if not existing:
            raise RoomProviderError()
        return {"name": existing["name"], "url": existing["url"]}
    if response.status_code != 200:
        logger.warning("create_room video_date=%s status=%s", video_date.id, response.status_code)
        raise RoomProviderError()
    data = response.json()
    logger.info("create_room video_date=%s room=%s", video_date.id, data.get("name"))
    return {"name": data["name"], "url": data["url"]}


def create_meeting_token(room_name: str, user, expires_at: int) -> str:
    body = {
        "properties": {
            "room_name": room_name,
            "user_id": str(user.pk),
            "exp": expires_at,
            "is_owner": False,
        }
    }
    response = _request("POST", "/meeting-tokens", json=body)
    if response.status_code != 200:
        logger.warning("create_meeting_token room=%s status=%s", room_name, response.status_code)
        raise RoomProviderError()
    token = response.json().get("token")
    if not token:
        raise RoomProviderError()
    return token


def provision(video_date) -> dict:
    """Room plus one join token per participant."""
    room = create_room(video_date)
    expires_at = room_expiry(video_date)
    return {
        "room_name": room["name"],
        "room_url": room["url"],
        "seeker_token": create_meeting_token(room["name"], video_date.seeker, expires_at),
        "earner_token": create_meeting_token(room["name"], video_date.earner, expires_at),
    }


def delete_room(name: str) -> bool:
    """Best effort; a missing room counts as deleted."""
    if not name:
        return True
    try:
        response = _request("DELETE", f"/rooms/{name}")
    except RoomProviderError:
        return False
    return response.status_code in (200, 404)
