"""
Video date booking lifecycle.

    pending -> scheduled -> waiting -> in_progress -> completed
    pending | scheduled | waiting -> cancelled        (explicit, before start)
    pending -> cancelled                              (start passed, never accepted)
    waiting -> cancelled_no_show                      (grace window elapsed)

Every status change is a compare-and-set UPDATE filtered on the expected
current status, so concurrent callers (a participant, the sweep job, a
retried request) can never apply the same transition twice. Money moves
only through billing.services.ledger_service, in the same transaction as
the status change that triggers it.
"""
import logging
from datetime import timedelta

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.utils import timezone

from accounts.models import EarnerProfile
from billing import pricing
from billing.errors import LedgerError
from billing.services import ledger_service
from video_dates import config
from video_dates.errors import BookingError, BookingNotFound, BookingStateError, NotParticipant
from video_dates.models import VideoDate
from video_dates.services import room_service

logger = logging.getLogger(__name__)


def _get(video_date_id, for_update: bool = False) -> VideoDate:
    qs = VideoDate.objects.select_related("seeker", "earner")
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=video_date_id)
    except (VideoDate.DoesNotExist, ValidationError, ValueError):
        raise BookingNotFound()


def _get_for_participant(actor, video_date_id, for_update: bool = False) -> VideoDate:
    video_date = _get(video_date_id, for_update=for_update)
    if not video_date.is_participant(actor):
        raise NotParticipant()
    return video_date


def _transition(video_date_id, from_statuses, to_status, now=None, **fields) -> bool:
    """Compare-and-set status change. Returns False when the booking was not in from_statuses."""
    now = now or timezone.now()
    updated = VideoDate.objects.filter(pk=video_date_id, status__in=from_statuses).update(
        status=to_status, updated_at=now, **fields
    )
    return bool(updated)


def _delete_room_after_commit(room_name: str) -> None:
    if room_name:
        transaction.on_commit(lambda: room_service.delete_room(room_name))


def request_booking(seeker, earner, call_type: str, duration: int, scheduled_start, now=None) -> VideoDate:
    """
    Create a pending booking priced from the earner's stored rates and
    reserve the credits from the seeker in the same commit.
    Raises InsufficientBalance (nothing written) when the seeker is short.
    """
    now = now or timezone.now()
    if seeker.pk == earner.pk:
        raise BookingError("You cannot book a video date with yourself.")
    if not earner.is_earner:
        raise BookingError("This member does not offer video dates.")
    if scheduled_start <= now:
        raise BookingError("Please choose a start time in the future.")

    profile = EarnerProfile.objects.filter(user=earner).first()
    rates = profile.video_rates if profile else {}
    credits = pricing.get_call_rate(rates, call_type, duration)

    with transaction.atomic():
        video_date = VideoDate.objects.create(
            seeker=seeker,
            earner=earner,
            call_type=call_type,
            scheduled_start=scheduled_start,
            scheduled_duration=duration,
            credits_reserved=credits,
            earner_amount=pricing.creator_share(credits),
            platform_fee=pricing.platform_share(credits),
        )
        ledger_service.reserve_for_booking(seeker, credits, video_date)

    logger.info(
        "request_booking video_date=%s seeker=%s earner=%s %s min %s credits=%s",
        video_date.id, seeker.pk, earner.pk, duration, call_type, credits,
    )
    return video_date


def accept_booking(earner, video_date_id) -> VideoDate:
    """
    Earner accepts: provision the room and both join tokens, then
    pending -> scheduled. A provider failure leaves the booking pending.
    """
    video_date = _get_for_participant(earner, video_date_id)
    if video_date.earner_id != earner.pk:
        raise NotParticipant("Only the earner can accept this video date.")
    if video_date.status == VideoDate.STATUS_SCHEDULED:
        return video_date
    if video_date.status != VideoDate.STATUS_PENDING:
        raise BookingStateError()
    if video_date.scheduled_start <= timezone.now():
        raise BookingStateError("This video date's start time has passed.")

    room = room_service.provision(video_date)
    accepted = _transition(
        video_date.pk,
        [VideoDate.STATUS_PENDING],
        VideoDate.STATUS_SCHEDULED,
        **room,
    )
    if not accepted:
        # Cancelled or declined while the room was being created
        room_service.delete_room(room["room_name"])
        raise BookingStateError()

    logger.info("accept_booking video_date=%s room=%s", video_date.pk, room["room_name"])
    return _get(video_date.pk)


def decline_booking(earner, video_date_id, reason: str = "") -> VideoDate:
    video_date = _get_for_participant(earner, video_date_id)
    if video_date.earner_id != earner.pk:
        raise NotParticipant("Only the earner can decline this video date.")

    with transaction.atomic():
        declined = _transition(
            video_date.pk,
            [VideoDate.STATUS_PENDING],
            VideoDate.STATUS_CANCELLED,
            cancelled_by=earner,
            cancellation_reason=(reason or "declined")[:255],
        )
        if not declined:
            video_date = _get(video_date.pk)
            if video_date.status in VideoDate.CANCELLED_STATUSES:
                return video_date
            raise BookingStateError()
        ledger_service.refund_booking(video_date.pk, "declined")

    logger.info("decline_booking video_date=%s", video_date.pk)
    return _get(video_date.pk)


def cancel_booking(actor, video_date_id, reason: str = "") -> VideoDate:
    """
    Either participant may cancel before the call starts; the seeker gets
    the reserved credits back. Cancelling an already cancelled booking is a
    no-op.
    """
    video_date = _get_for_participant(actor, video_date_id)

    with transaction.atomic():
        cancelled = _transition(
            video_date.pk,
            VideoDate.CANCELLABLE_STATUSES,
            VideoDate.STATUS_CANCELLED,
            cancelled_by=actor,
            cancellation_reason=(reason or "cancelled")[:255],
        )
        if not cancelled:
            video_date = _get(video_date.pk)
            if video_date.status in VideoDate.CANCELLED_STATUSES:
                return video_date
            raise BookingStateError("This video date has already started and can no longer be cancelled.")
        ledger_service.refund_booking(video_date.pk, reason or "cancelled")
        _delete_room_after_commit(video_date.room_name)

    logger.info("cancel_booking video_date=%s by=%s", video_date.pk, actor.pk)
    return _get(video_date.pk)


def record_join(actor, video_date_id, now=None) -> VideoDate:
    """
    Record a participant joining. Opens the waiting room once the start time
    has arrived, starts the call when both have joined within the grace
    window, and ends it as a no-show (with refund) when the window is over.
    """
    now = now or timezone.now()
    with transaction.atomic():
        video_date = _get_for_participant(actor, video_date_id, for_update=True)
        if video_date.status in VideoDate.TERMINAL_STATUSES:
            raise BookingStateError("This video date has ended.")
        if video_date.status == VideoDate.STATUS_PENDING:
            raise BookingStateError("This video date has not been accepted yet.")

        field = "seeker_joined_at" if actor.pk == video_date.seeker_id else "earner_joined_at"
        fields = []
        if getattr(video_date, field) is None:
            setattr(video_date, field, now)
            fields.append(field)
        if video_date.status == VideoDate.STATUS_IN_PROGRESS:
            if fields:
                video_date.save(update_fields=fields + ["updated_at"])
            return video_date

        if video_date.status == VideoDate.STATUS_SCHEDULED and now >= video_date.scheduled_start:
            video_date.status = VideoDate.STATUS_WAITING
            video_date.waiting_started_at = now
            fields += ["status", "waiting_started_at"]

        deadline = video_date.grace_deadline
        joins = (video_date.seeker_joined_at, video_date.earner_joined_at)
        no_show = False
        if video_date.status == VideoDate.STATUS_WAITING:
            if all(joins) and max(joins) <= deadline:
                video_date.status = VideoDate.STATUS_IN_PROGRESS
                video_date.actual_start = now
                fields += ["status", "actual_start"]
            elif now > deadline:
                video_date.status = VideoDate.STATUS_CANCELLED_NO_SHOW
                video_date.cancellation_reason = "no_show"
                fields += ["status", "cancellation_reason"]
                no_show = True

        if fields:
            video_date.save(update_fields=fields + ["updated_at"])
        if no_show:
            ledger_service.refund_booking(video_date.pk, "no_show")
            _delete_room_after_commit(video_date.room_name)

    logger.info("record_join video_date=%s user=%s status=%s", video_date.pk, actor.pk, video_date.status)
    if no_show:
        video_date.refresh_from_db()
    return video_date


def complete_booking(actor, video_date_id, now=None) -> VideoDate:
    """
    in_progress -> completed and pay the earner. actor is None for the
    sweep job. Completing an already completed booking is a no-op.
    """
    now = now or timezone.now()
    if actor is not None:
        _get_for_participant(actor, video_date_id)

    with transaction.atomic():
        completed = _transition(
            video_date_id,
            [VideoDate.STATUS_IN_PROGRESS],
            VideoDate.STATUS_COMPLETED,
            now=now,
            actual_end=now,
        )
        video_date = _get(video_date_id)
        if not completed:
            if video_date.status == VideoDate.STATUS_COMPLETED:
                return video_date
            raise BookingStateError("This video date is not in progress.")
        ledger_service.settle_booking(video_date.pk)
        _delete_room_after_commit(video_date.room_name)

    logger.info("complete_booking video_date=%s by=%s", video_date.pk, actor.pk if actor is not None else "sweep")
    return _get(video_date.pk)


def _expire_no_show(video_date, now) -> bool:
    with transaction.atomic():
        expired = _transition(
            video_date.pk,
            [VideoDate.STATUS_WAITING],
            VideoDate.STATUS_CANCELLED_NO_SHOW,
            now=now,
            cancellation_reason="no_show",
        )
        if not expired:
            return False
        ledger_service.refund_booking(video_date.pk, "no_show")
        _delete_room_after_commit(video_date.room_name)
    return True


def _expire_unaccepted(video_date, now) -> bool:
    with transaction.atomic():
        expired = _transition(
            video_date.pk,
            [VideoDate.STATUS_PENDING],
            VideoDate.STATUS_CANCELLED,
            now=now,
            cancellation_reason="not_accepted",
        )
        if not expired:
            return False
        ledger_service.refund_booking(video_date.pk, "not_accepted")
    return True


def sweep(now=None) -> dict:
    """
    Periodic pass over bookings whose time has come. Safe to run
    concurrently or repeatedly: every step is a compare-and-set, and
    refund/settlement are themselves idempotent.
    """
    now = now or timezone.now()
    result = {"waiting": 0, "in_progress": 0, "no_show": 0, "not_accepted": 0, "completed": 0, "failed": 0}

    unaccepted = VideoDate.objects.filter(
        status=VideoDate.STATUS_PENDING,
        scheduled_start__lte=now,
    ).order_by("scheduled_start")[: config.SWEEP_BATCH_SIZE]
    for video_date in unaccepted:
        try:
            if _expire_unaccepted(video_date, now):
                result["not_accepted"] += 1
        except (LedgerError, DatabaseError):
            logger.exception("sweep: expiring unaccepted video_date=%s failed", video_date.pk)
            result["failed"] += 1

    result["waiting"] = VideoDate.objects.filter(
        status=VideoDate.STATUS_SCHEDULED,
        scheduled_start__lte=now,
    ).update(status=VideoDate.STATUS_WAITING, waiting_started_at=now, updated_at=now)

    both_joined = VideoDate.objects.filter(
        status=VideoDate.STATUS_WAITING,
        seeker_joined_at__isnull=False,
        earner_joined_at__isnull=False,
    ).order_by("scheduled_start")[: config.SWEEP_BATCH_SIZE]
    for video_date in both_joined:
        last_join = max(video_date.seeker_joined_at, video_date.earner_joined_at)
        if last_join > video_date.grace_deadline:
            continue
        if _transition(video_date.pk, [VideoDate.STATUS_WAITING], VideoDate.STATUS_IN_PROGRESS, now=now, actual_start=last_join):
            result["in_progress"] += 1

    grace_cutoff = now - timedelta(minutes=config.NO_SHOW_GRACE_MINUTES)
    overdue = VideoDate.objects.filter(
        status=VideoDate.STATUS_WAITING,
        scheduled_start__lt=grace_cutoff,
    ).order_by("scheduled_start")[: config.SWEEP_BATCH_SIZE]
    for video_date in overdue:
        try:
            if _expire_no_show(video_date, now):
                result["no_show"] += 1
        except (LedgerError, DatabaseError):
            logger.exception("sweep: no-show failed for video_date=%s", video_date.pk)
            result["failed"] += 1

    running = VideoDate.objects.filter(
        status=VideoDate.STATUS_IN_PROGRESS,
        scheduled_start__lte=now,
    ).order_by("scheduled_start")[: config.SWEEP_BATCH_SIZE]
    for video_date in running:
        if video_date.call_end > now:
            continue
        try:
            complete_booking(None, video_date.pk, now=now)
            result["completed"] += 1
        except BookingStateError:
            continue
        except (LedgerError, DatabaseError):
            logger.exception("sweep: completion failed for video_date=%s", video_date.pk)
            result["failed"] += 1

    logger.info("sweep %s", result)
    return result
