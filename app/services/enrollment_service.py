"""
ARP Enrollment Service.

Entry point of the lifecycle: decides whether an employee may join ARP and
creates the enrollment with its meeting schedule and empty agreement.

Eligibility rules (first failing rule wins):
    1. employee exists and is active
    2. no active enrollment
    3. not inside the cooldown of the most recent failed enrollment
    4. fewer than ARP_MAX_ENROLLMENTS lifetime enrollments
    5. at least ARP_MIN_WRITEUPS open attendance write-ups issued within the
       last ARP_WRITEUP_WINDOW_DAYS days

Eligibility is always evaluated on the server's date. The enrollment date a
caller supplies may be backdated but never lies in the future or before the
point the previous enrollment released the employee.

The tier equals the number of the enrollment being created, which picks the
duration, meeting count and training requirement from PROGRAM_TIERS.
"""

import logging
from datetime import date, timedelta

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.models import db
from app.models.arp import PROGRAM_TIERS, Agreement, Enrollment, Meeting
from app.models.audit import write_audit
from app.models.personnel import Personnel
from app.services import enrollment_store
from app.services.permission import Actor, check_permission
from app.services.writeup_store import SqlWriteUpStore, WriteUpStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENROLLMENTS = 3
DEFAULT_MIN_WRITEUPS = 2
DEFAULT_WRITEUP_WINDOW_DAYS = 90


def _ineligible(reason: str, **extra) -> dict:
    return {"eligible": False, "reason": reason, **extra}


def _history(personnel_id: int) -> list[Enrollment]:
    return db.session.execute(
        select(Enrollment)
        .where(Enrollment.personnel_id == personnel_id)
        .order_by(Enrollment.enrollment_date.desc(), Enrollment.id.desc())
    ).scalars().all()


def check_eligibility(personnel_id: int, today: date | None = None,
                      writeups: WriteUpStore | None = None, actor: Actor | None = None) -> dict:
    """
    Evaluate whether an employee can be enrolled today.

    Returns:
        {"eligible": True, "tier", "duration_days", "meeting_count",
         "training_required", "writeup_count"} or
        {"eligible": False, "reason"}; the write-up rule also reports
        "writeup_count".
    """
    if actor is not None:
        check_permission(actor, "arp_enroll")
    today = today or date.today()
    writeups = writeups or SqlWriteUpStore()

    person = db.session.get(Personnel, personnel_id)
    if person is None:
        raise NotFoundError(resource="Personnel", resource_id=personnel_id)
    if person.status != "active":
        return _ineligible("Employee is not active")

    history = _history(personnel_id)

    if any(e.status == "active" for e in history):
        return _ineligible("Employee already has an active ARP enrollment")

    last_failed = next((e for e in history if e.status == "failed"), None)
    if last_failed is not None and last_failed.next_eligible_date and last_failed.next_eligible_date > today:
        return _ineligible(
            f"Employee is not eligible to re-enroll until {last_failed.next_eligible_date.isoformat()}"
        )

    max_enrollments = int(current_app.config.get("ARP_MAX_ENROLLMENTS", DEFAULT_MAX_ENROLLMENTS))
    if len(history) >= max_enrollments:
        return _ineligible(f"Employee has reached the maximum of {max_enrollments} ARP enrollments")

    min_writeups = int(current_app.config.get("ARP_MIN_WRITEUPS", DEFAULT_MIN_WRITEUPS))
    window = int(current_app.config.get("ARP_WRITEUP_WINDOW_DAYS", DEFAULT_WRITEUP_WINDOW_DAYS))
    writeup_count = writeups.count_attributable(personnel_id, since=today - timedelta(days=window))
    if writeup_count < min_writeups:
        return _ineligible(
            f"Requires {min_writeups} attendance write-ups from the last {window} days "
            f"(currently has {writeup_count})",
            writeup_count=writeup_count,
        )

    tier = min(len(history) + 1, max(PROGRAM_TIERS))
    load = PROGRAM_TIERS[tier]
    return {
        "eligible": True,
        "tier": tier,
        "duration_days": load["duration_days"],
        "meeting_count": load["meeting_count"],
        "training_required": load["training_required"],
        "writeup_count": writeup_count,
    }


def meeting_schedule(start: date, duration_days: int, meeting_count: int) -> list[tuple[int, str, date]]:
    """
    Spread meetings evenly from ``start`` to ``start + duration_days``.

    Returns (meeting_number, meeting_type, scheduled_date) tuples; the first
    meeting is the initial one, the last one the final one.
    """
    if meeting_count <= 1:
        return [(1, "initial", start)]
    schedule = []
    for index in range(meeting_count):
        offset = round(duration_days * index / (meeting_count - 1))
        if index == 0:
            meeting_type = "initial"
        elif index == meeting_count - 1:
            meeting_type = "final"
        else:
            meeting_type = "progress"
        schedule.append((index + 1, meeting_type, start + timedelta(days=offset)))
    return schedule


def _earliest_start(previous: Enrollment) -> date:
    """First date a new enrollment may start after ``previous``."""
    earliest = previous.enrollment_date
    if previous.status == "failed" and previous.next_eligible_date:
        earliest = max(earliest, previous.next_eligible_date)
    if previous.status == "completed" and previous.completed_at:
        earliest = max(earliest, previous.completed_at.date())
    return earliest


def enroll(personnel_id: int, coach_id: int, actor: Actor,
           enrollment_date: date | None = None, writeups: WriteUpStore | None = None,
           today: date | None = None) -> int:
    """
    Enroll an eligible employee with a coach.

    ``today`` is the server clock eligibility runs against; the HTTP layer
    never passes it. ``enrollment_date`` defaults to that date.

    Returns:
        The new enrollment id.

    Raises:
        PermissionDenied: actor is not a personnel manager.
        ValidationError: coach missing, inactive or the employee themself;
            enrollment_date in the future or before the previous enrollment
            released the employee.
        InvalidTransitionError: employee is not eligible.
    """
    check_permission(actor, "arp_enroll")
    if coach_id is None:
        raise ValidationError("coach_id is required", details={"coach_id": "missing"})
    if coach_id == personnel_id:
        raise ValidationError("An employee cannot coach their own enrollment",
                              details={"coach_id": coach_id})

    today = today or date.today()
    enrollment_date = enrollment_date or today
    if enrollment_date > today:
        raise ValidationError("enrollment_date cannot be in the future",
                              details={"enrollment_date": enrollment_date.isoformat()})

    with enrollment_store.unit_of_work():
        # Serialize concurrent enrollments of the same employee.
        person = db.session.execute(
            select(Personnel).where(Personnel.id == personnel_id).with_for_update()
        ).scalar_one_or_none()
        if person is None:
            raise NotFoundError(resource="Personnel", resource_id=personnel_id)

        coach = db.session.get(Personnel, coach_id)
        if coach is None:
            raise NotFoundError(resource="Personnel", resource_id=coach_id)
        if coach.status != "active":
            raise ValidationError("Coach must be active personnel", details={"coach_id": coach_id})

        eligibility = check_eligibility(personnel_id, today=today, writeups=writeups)
        if not eligibility["eligible"]:
            raise InvalidTransitionError(
                "Personnel", personnel_id, "ineligible", "enroll", eligibility["reason"],
            )

        history = _history(personnel_id)
        if history:
            earliest = _earliest_start(history[0])
            if enrollment_date < earliest:
                raise ValidationError(
                    f"enrollment_date cannot precede {earliest.isoformat()}",
                    details={"enrollment_date": enrollment_date.isoformat(),
                             "earliest": earliest.isoformat()},
                )

        tier = eligibility["tier"]
        duration = eligibility["duration_days"]
        enrollment = Enrollment(
            personnel_id=personnel_id,
            coach_id=coach_id,
            program_tier=tier,
            enrollment_count=tier,
            enrollment_date=enrollment_date,
            program_end_date=enrollment_date + timedelta(days=duration),
            program_duration_days=duration,
            status="active",
            created_by=actor.label,
        )
        for number, meeting_type, scheduled in meeting_schedule(
            enrollment_date, duration, eligibility["meeting_count"]
        ):
            enrollment.meetings.append(Meeting(
                meeting_number=number,
                meeting_type=meeting_type,
                scheduled_date=scheduled,
                status="scheduled",
            ))
        enrollment.agreement = Agreement()
        db.session.add(enrollment)
        db.session.flush()

        write_audit(
            entity_type="enrollment",
            entity_id=enrollment.id,
            action="arp.enroll",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={
                "personnel_id": personnel_id,
                "coach_id": coach_id,
                "program_tier": tier,
                "program_end_date": enrollment.program_end_date.isoformat(),
            },
        )
        enrollment_id = enrollment.id

    logger.info(
        "Personnel %s enrolled in ARP tier %s (enrollment %s)",
        personnel_id, tier, enrollment_id,
        extra={"enrollment_id": enrollment_id, "event_type": "arp.enroll",
               "actor_id": actor.user_id},
    )
    return enrollment_id
