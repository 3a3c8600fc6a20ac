"""
ARP Meeting Scheduler.

Meetings are created with the enrollment (see enrollment_service) and then
only change through the three actions here:

    record_meeting      scheduled → completed (notes, action items)
    miss_meeting        scheduled → missed, and the enrollment fails with it
    reschedule_meeting  scheduled → scheduled on a new date, history appended

Every action locks the owning enrollment first and refuses to touch a
meeting once the enrollment is completed or failed.
"""

import logging
from datetime import UTC, date, datetime

from sqlalchemy import select

from app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.models import db
from app.models.arp import Meeting, MeetingReschedule
from app.models.audit import write_audit
from app.services import enrollment_store, outcome_engine
from app.services.permission import Actor, check_permission

logger = logging.getLogger(__name__)

MISSED_MEETING_REASON = "Missed scheduled coach meeting #{number}"


def _load_for_update(meeting_id: int):
    """Return (meeting, enrollment) with the enrollment row locked."""
    enrollment_id = db.session.execute(
        select(Meeting.enrollment_id).where(Meeting.id == meeting_id)
    ).scalar_one_or_none()
    if enrollment_id is None:
        raise NotFoundError(resource="Meeting", resource_id=meeting_id)

    enrollment = enrollment_store.get_for_update(enrollment_id)
    meeting = db.session.execute(
        select(Meeting)
        .where(Meeting.id == meeting_id)
        .execution_options(populate_existing=True)
    ).scalar_one()
    return meeting, enrollment


def _require_actionable(meeting: Meeting, action: str) -> None:
    if not meeting.is_actionable:
        raise InvalidTransitionError(
            "Meeting", meeting.id, meeting.status, action,
            "only scheduled meetings can change",
        )


def _clean(text):
    text = (text or "").strip()
    return text or None


def record_meeting(meeting_id: int, actor: Actor, notes: str | None = None,
                   action_items: str | None = None) -> dict:
    """Mark a scheduled meeting completed."""
    with enrollment_store.unit_of_work():
        meeting, enrollment = _load_for_update(meeting_id)
        check_permission(actor, "arp_meeting", enrollment)
        enrollment_store.require_active(enrollment, "record_meeting")
        _require_actionable(meeting, "completed")

        old_status = meeting.status
        meeting.status = "completed"
        meeting.completed_date = datetime.now(UTC)
        meeting.notes = _clean(notes)
        meeting.action_items = _clean(action_items)
        meeting.recorded_by = actor.label

        write_audit(
            entity_type="meeting",
            entity_id=meeting.id,
            action="arp.meeting.record",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"status": {"old": old_status, "new": "completed"}},
        )

    logger.info(
        "Meeting #%s recorded for enrollment %s",
        meeting.meeting_number, enrollment.id,
        extra={"enrollment_id": enrollment.id, "meeting_id": meeting.id,
               "event_type": "arp.meeting.record", "actor_id": actor.user_id},
    )
    return meeting.to_dict()


def miss_meeting(meeting_id: int, actor: Actor) -> dict:
    """
    Mark a scheduled meeting missed and fail the enrollment.

    Both writes share one transaction: a missed meeting is never visible
    under an enrollment that is still active.
    """
    with enrollment_store.unit_of_work():
        meeting, enrollment = _load_for_update(meeting_id)
        check_permission(actor, "arp_meeting", enrollment)
        enrollment_store.require_active(enrollment, "miss_meeting")
        _require_actionable(meeting, "missed")

        old_status = meeting.status
        meeting.status = "missed"
        meeting.recorded_by = actor.label

        write_audit(
            entity_type="meeting",
            entity_id=meeting.id,
            action="arp.meeting.miss",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"status": {"old": old_status, "new": "missed"}},
        )
        outcome_engine.fail_locked(
            enrollment,
            MISSED_MEETING_REASON.format(number=meeting.meeting_number),
            actor,
            source="missed_meeting",
        )

    logger.warning(
        "Meeting #%s missed; enrollment %s failed",
        meeting.meeting_number, enrollment.id,
        extra={"enrollment_id": enrollment.id, "meeting_id": meeting.id,
               "event_type": "arp.meeting.miss", "actor_id": actor.user_id},
    )
    return {"meeting": meeting.to_dict(), "enrollment": enrollment.to_dict()}


def reschedule_meeting(meeting_id: int, new_date: date, actor: Actor) -> dict:
    """Move a scheduled meeting to ``new_date`` and keep the old date in history."""
    if new_date is None:
        raise ValidationError("new_date is required", details={"new_date": "missing"})

    with enrollment_store.unit_of_work():
        meeting, enrollment = _load_for_update(meeting_id)
        check_permission(actor, "arp_meeting", enrollment)
        enrollment_store.require_active(enrollment, "reschedule_meeting")
        _require_actionable(meeting, "rescheduled")

        if new_date < enrollment.enrollment_date:
            raise ValidationError(
                "Meeting cannot be moved before the enrollment date",
                details={"new_date": new_date.isoformat(),
                         "enrollment_date": enrollment.enrollment_date.isoformat()},
            )
        if new_date == meeting.scheduled_date:
            raise ValidationError(
                "Meeting is already scheduled on that date",
                details={"new_date": new_date.isoformat()},
            )

        previous = meeting.scheduled_date
        meeting.reschedules.append(MeetingReschedule(
            previous_date=previous,
            new_date=new_date,
            rescheduled_by=actor.label,
        ))
        meeting.scheduled_date = new_date
        # Legacy rows may still carry "rescheduled"; normalize on write.
        meeting.status = "scheduled"

        write_audit(
            entity_type="meeting",
            entity_id=meeting.id,
            action="arp.meeting.reschedule",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"scheduled_date": {"old": previous.isoformat(), "new": new_date.isoformat()}},
        )

    logger.info(
        "Meeting #%s for enrollment %s moved %s → %s",
        meeting.meeting_number, enrollment.id, previous, new_date,
        extra={"enrollment_id": enrollment.id, "meeting_id": meeting.id,
               "event_type": "arp.meeting.reschedule", "actor_id": actor.user_id},
    )
    return meeting.to_dict()
