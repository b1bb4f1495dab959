import json
import uuid
from datetime import timedelta
from io import StringIO
from unittest.mock import Mock, patch

import requests
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from accounts.models import CustomUser, EarnerProfile
from billing import pricing
from billing.errors import InsufficientBalance, PriceNotFound
from billing.models import CreditReservation, Transaction
from billing.services import ledger_service, wallet_service
from video_dates import config
from video_dates.errors import BookingError, BookingNotFound, BookingStateError, NotParticipant, RoomProviderError
from video_dates.models import VideoDate
from video_dates.services import booking_service, room_service

ROOM = {
    "room_name": "vd-test",
    "room_url": "https://lynxx.daily.co/vd-test",
    "seeker_token": "seeker-token",
    "earner_token": "earner-token",
}


def response(status_code=200, data=None):
    return Mock(status_code=status_code, **{"json.return_value": data or {}})


class BookingTestMixin:
    def setUp(self):
        self.seeker = CustomUser.objects.create_user(email="seeker@example.com", password="testpass123")
        self.earner = CustomUser.objects.create_user(
            email="earner@example.com", password="testpass123", role=CustomUser.ROLE_EARNER
        )
        self.outsider = CustomUser.objects.create_user(email="outsider@example.com", password="testpass123")
        EarnerProfile.objects.create(user=self.earner, video_15min_rate=300, video_30min_rate=420)
        ledger_service.confirm_purchase(self.seeker, "pi_setup", 1000, pricing.credits_to_usd(1000))

    def credits(self, user=None):
        return wallet_service.get_wallet(user or self.seeker).credit_balance

    def book(self, duration=15, call_type=VideoDate.CALL_TYPE_VIDEO):
        return booking_service.request_booking(
            self.seeker, self.earner, call_type, duration, timezone.now() + timedelta(hours=1)
        )

    def book_scheduled(self, minutes_ago=1, duration=15):
        """A scheduled booking whose start time was minutes_ago."""
        video_date = self.book(duration=duration)
        VideoDate.objects.filter(pk=video_date.pk).update(
            status=VideoDate.STATUS_SCHEDULED,
            scheduled_start=timezone.now() - timedelta(minutes=minutes_ago),
            **ROOM,
        )
        video_date.refresh_from_db()
        return video_date

    def book_in_progress(self, minutes_ago=1, duration=15, started_late=0):
        """An in-progress call that started started_late minutes after its scheduled start."""
        video_date = self.book_scheduled(minutes_ago=minutes_ago, duration=duration)
        started = video_date.scheduled_start + timedelta(minutes=started_late)
        VideoDate.objects.filter(pk=video_date.pk).update(
            status=VideoDate.STATUS_IN_PROGRESS,
            seeker_joined_at=started,
            earner_joined_at=started,
            actual_start=started,
        )
        video_date.refresh_from_db()
        return video_date


class RequestBookingTests(BookingTestMixin, TestCase):
    def test_price_comes_from_earner_rates(self):
        video_date = self.book(duration=30)
        self.assertEqual(video_date.status, VideoDate.STATUS_PENDING)
        self.assertEqual(video_date.credits_reserved, 420)
        self.assertEqual(video_date.earner_amount, pricing.creator_share(420))
        self.assertEqual(video_date.platform_fee, pricing.platform_share(420))
        self.assertEqual(self.credits(), 580)
        self.assertEqual(CreditReservation.objects.get(video_date=video_date).credits, 420)

    def test_audio_is_cheaper(self):
        video_date = self.book(duration=15, call_type=VideoDate.CALL_TYPE_AUDIO)
        self.assertEqual(video_date.credits_reserved, 210)

    def test_insufficient_credits_creates_nothing(self):
        ledger_service.spend_credits(self.seeker, 900, "text_message")
        with self.assertRaises(InsufficientBalance):
            self.book(duration=15)
        self.assertFalse(VideoDate.objects.exists())
        self.assertEqual(self.credits(), 100)

    def test_invalid_requests(self):
        start = timezone.now() + timedelta(hours=1)
        with self.assertRaises(BookingError):
            booking_service.request_booking(self.seeker, self.seeker, "video", 15, start)
        with self.assertRaises(BookingError):
            booking_service.request_booking(self.seeker, self.outsider, "video", 15, start)
        with self.assertRaises(BookingError):
            booking_service.request_booking(self.seeker, self.earner, "video", 15, timezone.now() - timedelta(minutes=1))
        with self.assertRaises(PriceNotFound):
            booking_service.request_booking(self.seeker, self.earner, "video", 45, start)
        self.assertEqual(self.credits(), 1000)


class AcceptDeclineTests(BookingTestMixin, TestCase):
    @patch("video_dates.services.booking_service.room_service.provision")
    def test_accept_provisions_room(self, provision):
        provision.return_value = dict(ROOM)
        video_date = booking_service.accept_booking(self.earner, self.book().pk)
        self.assertEqual(video_date.status, VideoDate.STATUS_SCHEDULED)
        self.assertEqual(video_date.room_url, ROOM["room_url"])
        self.assertEqual(video_date.token_for(self.seeker), "seeker-token")
        self.assertEqual(video_date.token_for(self.outsider), "")

        again = booking_service.accept_booking(self.earner, video_date.pk)
        self.assertEqual(again.status, VideoDate.STATUS_SCHEDULED)
        provision.assert_called_once()

    @patch("video_dates.services.booking_service.room_service.provision")
    def test_only_earner_accepts(self, provision):
        video_date = self.book()
        with self.assertRaises(NotParticipant):
            booking_service.accept_booking(self.seeker, video_date.pk)
        with self.assertRaises(NotParticipant):
            booking_service.accept_booking(self.outsider, video_date.pk)
        with self.assertRaises(BookingNotFound):
            booking_service.accept_booking(self.earner, uuid.uuid4())
        provision.assert_not_called()

    @patch("video_dates.services.booking_service.room_service.provision")
    def test_cannot_accept_after_start_time(self, provision):
        video_date = self.book()
        VideoDate.objects.filter(pk=video_date.pk).update(scheduled_start=timezone.now() - timedelta(minutes=1))
        with self.assertRaises(BookingStateError):
            booking_service.accept_booking(self.earner, video_date.pk)
        provision.assert_not_called()
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_PENDING)

    @patch("video_dates.services.booking_service.room_service.provision")
    def test_provider_failure_leaves_booking_pending(self, provision):
        provision.side_effect = RoomProviderError()
        video_date = self.book()
        with self.assertRaises(RoomProviderError):
            booking_service.accept_booking(self.earner, video_date.pk)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_PENDING)
        self.assertEqual(self.credits(), 700)

    @patch("video_dates.services.booking_service.room_service.delete_room")
    @patch("video_dates.services.booking_service.room_service.provision")
    def test_cancel_during_provisioning_wins(self, provision, delete_room):
        video_date = self.book()

        def cancel_meanwhile(vd):
            booking_service.cancel_booking(self.seeker, vd.pk, "changed my mind")
            return dict(ROOM)

        provision.side_effect = cancel_meanwhile
        with self.assertRaises(BookingStateError):
            booking_service.accept_booking(self.earner, video_date.pk)
        delete_room.assert_called_once_with(ROOM["room_name"])
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED)
        self.assertEqual(self.credits(), 1000)

    def test_decline_refunds(self):
        video_date = booking_service.decline_booking(self.earner, self.book().pk, "busy")
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED)
        self.assertTrue(video_date.refunded)
        self.assertEqual(video_date.cancellation_reason, "busy")
        self.assertEqual(self.credits(), 1000)
        again = booking_service.decline_booking(self.earner, video_date.pk)
        self.assertEqual(again.status, VideoDate.STATUS_CANCELLED)
        self.assertEqual(Transaction.objects.filter(type=Transaction.TYPE_VIDEO_DATE_REFUND).count(), 1)


class CancelTests(BookingTestMixin, TestCase):
    @patch("video_dates.services.booking_service.room_service.delete_room")
    def test_cancel_scheduled_refunds_and_deletes_room(self, delete_room):
        video_date = self.book_scheduled(minutes_ago=-30)
        with self.captureOnCommitCallbacks(execute=True):
            video_date = booking_service.cancel_booking(self.earner, video_date.pk, "sick")
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED)
        self.assertEqual(video_date.cancelled_by, self.earner)
        self.assertEqual(self.credits(), 1000)
        delete_room.assert_called_once_with(ROOM["room_name"])

    def test_cancel_twice_is_a_no_op(self):
        video_date = self.book()
        booking_service.cancel_booking(self.seeker, video_date.pk)
        booking_service.cancel_booking(self.seeker, video_date.pk)
        self.assertEqual(self.credits(), 1000)
        self.assertTrue(ledger_service.audit_wallet(self.seeker)["consistent"])

    def test_cannot_cancel_started_call(self):
        video_date = self.book_in_progress()
        with self.assertRaises(BookingStateError):
            booking_service.cancel_booking(self.seeker, video_date.pk)
        self.assertEqual(self.credits(), 700)

    def test_outsider_cannot_cancel(self):
        video_date = self.book()
        with self.assertRaises(NotParticipant):
            booking_service.cancel_booking(self.outsider, video_date.pk)

    def test_complete_then_cancel_does_not_refund(self):
        video_date = self.book_in_progress()
        booking_service.complete_booking(self.seeker, video_date.pk)
        with self.assertRaises(BookingStateError):
            booking_service.cancel_booking(self.seeker, video_date.pk)
        self.assertEqual(self.credits(), 700)
        self.assertEqual(wallet_service.get_wallet(self.earner).pending_earnings, pricing.creator_share(300))


class JoinAndCompleteTests(BookingTestMixin, TestCase):
    def test_both_join_within_grace(self):
        video_date = self.book_scheduled(minutes_ago=1)
        now = timezone.now()
        video_date = booking_service.record_join(self.seeker, video_date.pk, now=now)
        self.assertEqual(video_date.status, VideoDate.STATUS_WAITING)
        self.assertEqual(video_date.seeker_joined_at, now)
        video_date = booking_service.record_join(self.earner, video_date.pk, now=now + timedelta(minutes=2))
        self.assertEqual(video_date.status, VideoDate.STATUS_IN_PROGRESS)
        self.assertIsNotNone(video_date.actual_start)

    def test_join_before_start_keeps_schedule(self):
        video_date = self.book_scheduled(minutes_ago=-10)
        video_date = booking_service.record_join(self.seeker, video_date.pk)
        self.assertEqual(video_date.status, VideoDate.STATUS_SCHEDULED)
        self.assertIsNotNone(video_date.seeker_joined_at)

    def test_late_join_is_a_no_show(self):
        video_date = self.book_scheduled(minutes_ago=config.NO_SHOW_GRACE_MINUTES + 5)
        video_date = booking_service.record_join(self.seeker, video_date.pk)
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED_NO_SHOW)
        self.assertTrue(video_date.refunded)
        self.assertEqual(self.credits(), 1000)
        with self.assertRaises(BookingStateError):
            booking_service.record_join(self.earner, video_date.pk)

    def test_join_rules(self):
        video_date = self.book()
        with self.assertRaises(BookingStateError):
            booking_service.record_join(self.seeker, video_date.pk)
        with self.assertRaises(NotParticipant):
            booking_service.record_join(self.outsider, video_date.pk)

    def test_complete_settles_once(self):
        video_date = self.book_in_progress()
        with self.captureOnCommitCallbacks(execute=True):
            video_date = booking_service.complete_booking(self.earner, video_date.pk)
        self.assertEqual(video_date.status, VideoDate.STATUS_COMPLETED)
        self.assertIsNotNone(video_date.settled_at)
        again = booking_service.complete_booking(self.seeker, video_date.pk)
        self.assertEqual(again.settled_at, video_date.settled_at)
        self.assertEqual(wallet_service.get_wallet(self.earner).pending_earnings, pricing.creator_share(300))
        self.assertEqual(Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_EARNING).count(), 1)

    def test_complete_requires_in_progress(self):
        video_date = self.book_scheduled()
        with self.assertRaises(BookingStateError):
            booking_service.complete_booking(self.seeker, video_date.pk)


class SweepTests(BookingTestMixin, TestCase):
    def test_no_show_is_refunded_once(self):
        video_date = self.book_scheduled(minutes_ago=config.NO_SHOW_GRACE_MINUTES + 5)
        result = booking_service.sweep()
        self.assertEqual(result["waiting"], 1)
        self.assertEqual(result["no_show"], 1)
        second = booking_service.sweep()
        self.assertEqual(second["no_show"], 0)

        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED_NO_SHOW)
        self.assertEqual(self.credits(), 1000)
        self.assertEqual(Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_VIDEO_DATE_REFUND).count(), 1)

    def test_sweep_command(self):
        video_date = self.book_scheduled(minutes_ago=config.NO_SHOW_GRACE_MINUTES + 5)
        out = StringIO()
        call_command("sweep_video_dates", stdout=out)
        self.assertIn("1 no-shows refunded", out.getvalue())
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED_NO_SHOW)

    def test_sweep_inside_grace_only_opens_waiting_room(self):
        video_date = self.book_scheduled(minutes_ago=1)
        result = booking_service.sweep()
        self.assertEqual(result["waiting"], 1)
        self.assertEqual(result["no_show"], 0)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_WAITING)

    def test_sweep_starts_call_when_both_joined(self):
        video_date = self.book_scheduled(minutes_ago=2)
        joined = timezone.now() - timedelta(minutes=1)
        VideoDate.objects.filter(pk=video_date.pk).update(
            status=VideoDate.STATUS_WAITING, seeker_joined_at=joined, earner_joined_at=joined
        )
        result = booking_service.sweep()
        self.assertEqual(result["in_progress"], 1)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_IN_PROGRESS)
        self.assertEqual(video_date.actual_start, joined)

    def test_sweep_completes_finished_calls(self):
        video_date = self.book_in_progress(minutes_ago=20, duration=15)
        running = self.book_in_progress(minutes_ago=5, duration=15)
        result = booking_service.sweep()
        self.assertEqual(result["completed"], 1)
        video_date.refresh_from_db()
        running.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_COMPLETED)
        self.assertIsNotNone(video_date.settled_at)
        self.assertEqual(running.status, VideoDate.STATUS_IN_PROGRESS)

    def test_unaccepted_booking_is_refunded_once(self):
        video_date = self.book()
        VideoDate.objects.filter(pk=video_date.pk).update(scheduled_start=timezone.now() - timedelta(hours=3))
        self.assertEqual(self.credits(), 700)

        result = booking_service.sweep()
        self.assertEqual(result["not_accepted"], 1)
        second = booking_service.sweep()
        self.assertEqual(second["not_accepted"], 0)

        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_CANCELLED)
        self.assertEqual(video_date.cancellation_reason, "not_accepted")
        self.assertTrue(video_date.refunded)
        self.assertEqual(self.credits(), 1000)
        self.assertEqual(CreditReservation.objects.get(video_date=video_date).status, CreditReservation.STATUS_RELEASED)
        self.assertEqual(Transaction.objects.filter(video_date=video_date, type=Transaction.TYPE_VIDEO_DATE_REFUND).count(), 1)

    def test_pending_booking_before_start_is_left_alone(self):
        video_date = self.book()
        self.assertEqual(booking_service.sweep()["not_accepted"], 0)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_PENDING)

    def test_late_start_keeps_full_duration(self):
        video_date = self.book_in_progress(minutes_ago=17, duration=15, started_late=4)
        self.assertEqual(booking_service.sweep()["completed"], 0)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_IN_PROGRESS)

        result = booking_service.sweep(now=timezone.now() + timedelta(minutes=3))
        self.assertEqual(result["completed"], 1)
        video_date.refresh_from_db()
        self.assertEqual(video_date.status, VideoDate.STATUS_COMPLETED)

    def test_sweep_and_cancel_refund_once(self):
        video_date = self.book_scheduled(minutes_ago=config.NO_SHOW_GRACE_MINUTES + 5)
        booking_service.sweep()
        cancelled = booking_service.cancel_booking(self.seeker, video_date.pk)
        self.assertEqual(cancelled.status, VideoDate.STATUS_CANCELLED_NO_SHOW)
        self.assertEqual(self.credits(), 1000)


@override_settings(DAILY_API_KEY="daily-key", DAILY_API_URL="https://api.daily.co/v1")
class RoomServiceTests(SimpleTestCase):
    def setUp(self):
        self.video_date = VideoDate(
            id=uuid.uuid4(),
            seeker=CustomUser(id=1, email="seeker@example.com"),
            earner=CustomUser(id=2, email="earner@example.com"),
            call_type=VideoDate.CALL_TYPE_AUDIO,
            scheduled_start=timezone.now() + timedelta(hours=1),
            scheduled_duration=30,
        )
        self.name = room_service.room_name_for(self.video_date)

    @patch("video_dates.services.room_service.requests.request")
    def test_create_room(self, request):
        request.return_value = response(200, {"name": self.name, "url": f"https://x.daily.co/{self.name}"})
        room = room_service.create_room(self.video_date)
        self.assertEqual(room["name"], self.name)
        method, url = request.call_args[0]
        body = request.call_args[1]["json"]
        self.assertEqual((method, url), ("POST", "https://api.daily.co/v1/rooms"))
        self.assertEqual(body["privacy"], "private")
        self.assertEqual(body["properties"]["max_participants"], 2)
        self.assertTrue(body["properties"]["start_video_off"])
        self.assertEqual(body["properties"]["exp"], room_service.room_expiry(self.video_date))
        self.assertEqual(request.call_args[1]["headers"]["Authorization"], "Bearer daily-key")

    @patch("video_dates.services.room_service.requests.request")
    def test_existing_room_is_reused(self, request):
        request.side_effect = [
            response(409),
            response(200, {"name": self.name, "url": "https://x.daily.co/existing"}),
        ]
        room = room_service.create_room(self.video_date)
        self.assertEqual(room["url"], "https://x.daily.co/existing")

    @patch("video_dates.services.room_service.requests.request")
    def test_provider_errors(self, request):
        request.return_value = response(500)
        with self.assertRaises(RoomProviderError):
            room_service.create_room(self.video_date)
        request.side_effect = requests.Timeout("slow")
        with self.assertRaises(RoomProviderError):
            room_service.create_room(self.video_date)

    @override_settings(DAILY_API_KEY="")
    def test_not_configured(self):
        with self.assertRaises(RoomProviderError):
            room_service.create_room(self.video_date)

    @patch("video_dates.services.room_service.requests.request")
    def test_provision_creates_one_token_per_participant(self, request):
        request.side_effect = [
            response(200, {"name": self.name, "url": "https://x.daily.co/room"}),
            response(200, {"token": "t-seeker"}),
            response(200, {"token": "t-earner"}),
        ]
        room = room_service.provision(self.video_date)
        self.assertEqual(room["seeker_token"], "t-seeker")
        self.assertEqual(room["earner_token"], "t-earner")
        token_body = request.call_args_list[1][1]["json"]["properties"]
        self.assertEqual(token_body["user_id"], "1")
        self.assertFalse(token_body["is_owner"])

    @patch("video_dates.services.room_service.requests.request")
    def test_delete_room(self, request):
        request.return_value = response(404)
        self.assertTrue(room_service.delete_room(self.name))
        request.side_effect = requests.ConnectionError("down")
        self.assertFalse(room_service.delete_room(self.name))


@override_settings(CRON_SECRET="cron-secret")
class VideoDateViewTests(BookingTestMixin, TestCase):
    def _post(self, url, data=None, **extra):
        return self.client.post(url, data=json.dumps(data or {}), content_type="application/json", **extra)

    def test_request_booking(self):
        self.client.force_login(self.seeker)
        start = (timezone.now() + timedelta(hours=2)).isoformat()
        response = self._post(
            reverse("video_dates:request_booking"),
            {"earner_id": self.earner.pk, "call_type": "video", "duration": 15, "scheduled_start": start},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["video_date"]["credits_reserved"], 300)
        self.assertNotIn("earner_amount", response.json()["video_date"])

    def test_request_booking_validation(self):
        self.client.force_login(self.seeker)
        response = self._post(
            reverse("video_dates:request_booking"),
            {"earner_id": self.earner.pk, "duration": 15, "scheduled_start": "tomorrow"},
        )
        self.assertEqual(response.status_code, 400)

    def test_join_returns_own_token_only(self):
        video_date = self.book_scheduled(minutes_ago=1)
        self.client.force_login(self.seeker)
        data = self._post(reverse("video_dates:join", args=[video_date.pk])).json()
        self.assertEqual(data["video_date"]["token"], "seeker-token")
        self.client.force_login(self.outsider)
        response = self._post(reverse("video_dates:join", args=[video_date.pk]))
        self.assertEqual(response.status_code, 403)

    def test_cancel_in_progress_conflict(self):
        video_date = self.book_in_progress()
        self.client.force_login(self.seeker)
        response = self._post(reverse("video_dates:cancel", args=[video_date.pk]))
        self.assertEqual(response.status_code, 409)

    def test_sweep_job(self):
        self.book_scheduled(minutes_ago=config.NO_SHOW_GRACE_MINUTES + 5)
        self.assertEqual(self._post(reverse("video_dates:job_sweep")).status_code, 403)
        response = self._post(reverse("video_dates:job_sweep"), HTTP_X_CRON_SECRET="cron-secret")
        self.assertEqual(response.json()["no_show"], 1)
