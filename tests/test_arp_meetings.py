"""
Tests: ARP meeting scheduler.

Covers record / miss / reschedule, the missed-meeting failure rule, the
closed-enrollment guard, coach scoping and the tier-2 missed-final-meeting
scenario.
"""

from datetime import date, timedelta

import pytest

from app.core.exceptions import (
    EnrollmentClosedError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.models import db as _db
from app.models.arp import Enrollment, Meeting
from app.models.audit import AuditLog
from app.models.personnel import Personnel, WriteUp
from app.services import enrollment_service, meeting_scheduler
from app.services.permission import Actor


# ── Helpers ──────────────────────────────────────────────────────────────────


def _enrollment(enrollment_id) -> Enrollment:
    _db.session.expire_all()
    return _db.session.get(Enrollment, enrollment_id)


def _meeting_ids(enrollment_id) -> list[int]:
    return [m.id for m in _enrollment(enrollment_id).meetings]


def _make_person(first_name, last_name, writeups=0):
    person = Personnel(first_name=first_name, last_name=last_name, status="active")
    _db.session.add(person)
    _db.session.flush()
    for i in range(writeups):
        _db.session.add(WriteUp(personnel_id=person.id, issued_date=date(2025, 12, 10 + i)))
    _db.session.commit()
    return person


# ═════════════════════════════════════════════════════════════════════════════
# record_meeting
# ═════════════════════════════════════════════════════════════════════════════


def test_record_meeting_completes_meeting(enrollment_id, coach_actor):
    first = _meeting_ids(enrollment_id)[0]

    result = meeting_scheduler.record_meeting(
        first, coach_actor, notes="  Discussed alarms ", action_items="Buy second alarm",
    )

    assert result["status"] == "completed"
    assert result["completed_date"] is not None
    assert result["notes"] == "Discussed alarms"
    assert result["action_items"] == "Buy second alarm"
    assert result["recorded_by"] == "Chris Coach"
    assert _enrollment(enrollment_id).status == "active"


def test_record_meeting_twice_rejected(enrollment_id, coach_actor):
    first = _meeting_ids(enrollment_id)[0]
    meeting_scheduler.record_meeting(first, coach_actor)

    with pytest.raises(InvalidTransitionError) as exc_info:
        meeting_scheduler.record_meeting(first, coach_actor)
    assert exc_info.value.current_status == "completed"


def test_record_unknown_meeting_raises_not_found(admin):
    with pytest.raises(NotFoundError):
        meeting_scheduler.record_meeting(424242, admin)


def test_record_meeting_writes_audit_row(enrollment_id, coach_actor):
    first = _meeting_ids(enrollment_id)[0]
    meeting_scheduler.record_meeting(first, coach_actor)

    log = AuditLog.query.filter_by(enrollment_id=enrollment_id, action="arp.meeting.record").one()
    assert log.entity_id == str(first)
    assert log.actor_user_id == "u-coach"
    assert log.diff["status"] == {"old": "scheduled", "new": "completed"}


def test_other_coach_cannot_record(enrollment_id):
    stranger = _make_person("Other", "Coach")
    actor = Actor(user_id="u-other", name="Other Coach", role="coach", personnel_id=stranger.id)

    with pytest.raises(PermissionDenied):
        meeting_scheduler.record_meeting(_meeting_ids(enrollment_id)[0], actor)


def test_employee_cannot_record_own_meeting(enrollment_id, employee_actor):
    with pytest.raises(PermissionDenied):
        meeting_scheduler.record_meeting(_meeting_ids(enrollment_id)[0], employee_actor)


# ═════════════════════════════════════════════════════════════════════════════
# miss_meeting
# ═════════════════════════════════════════════════════════════════════════════


def test_miss_meeting_fails_enrollment_with_cooldown(enrollment_id, coach_actor):
    second = _meeting_ids(enrollment_id)[1]

    result = meeting_scheduler.miss_meeting(second, coach_actor)

    enrollment = _enrollment(enrollment_id)
    assert result["meeting"]["status"] == "missed"
    assert enrollment.status == "failed"
    assert enrollment.failure_reason == "Missed scheduled coach meeting #2"
    assert enrollment.next_eligible_date == enrollment.enrollment_date + timedelta(days=90)
    assert enrollment.failed_at is not None


def test_miss_meeting_audits_both_meeting_and_enrollment(enrollment_id, coach_actor):
    meeting_scheduler.miss_meeting(_meeting_ids(enrollment_id)[0], coach_actor)

    actions = {log.action for log in AuditLog.query.filter_by(enrollment_id=enrollment_id)}
    assert {"arp.meeting.miss", "arp.enrollment.fail"} <= actions
    fail_log = AuditLog.query.filter_by(action="arp.enrollment.fail").one()
    assert fail_log.diff["source"] == "missed_meeting"


def test_no_meeting_changes_after_failure(enrollment_id, coach_actor):
    ids = _meeting_ids(enrollment_id)
    meeting_scheduler.miss_meeting(ids[0], coach_actor)

    with pytest.raises(EnrollmentClosedError):
        meeting_scheduler.record_meeting(ids[1], coach_actor)
    with pytest.raises(EnrollmentClosedError):
        meeting_scheduler.miss_meeting(ids[2], coach_actor)
    with pytest.raises(EnrollmentClosedError):
        meeting_scheduler.reschedule_meeting(ids[2], date(2026, 4, 30), coach_actor)

    statuses = [m.status for m in _enrollment(enrollment_id).meetings]
    assert statuses == ["missed", "scheduled", "scheduled"]


def test_tier2_three_recorded_then_final_missed(admin, coach, coach_actor):
    """Second enrollment: 4 meetings, 3 recorded, the 4th missed → failed."""
    employee = _make_person("Sam", "Okafor", writeups=2)
    first_start = date(2025, 6, 2)
    prior = Enrollment(
        personnel_id=employee.id, coach_id=coach.id, program_tier=1, enrollment_count=1,
        enrollment_date=first_start, program_end_date=first_start + timedelta(days=30),
        program_duration_days=30, status="failed",
        failure_reason="Missed scheduled coach meeting #1",
        next_eligible_date=first_start + timedelta(days=90),
    )
    _db.session.add(prior)
    _db.session.commit()

    start = date(2026, 1, 5)
    enrollment_id = enrollment_service.enroll(employee.id, coach.id, admin, enrollment_date=start, today=start)
    enrollment = _enrollment(enrollment_id)
    assert enrollment.program_tier == 2
    ids = [m.id for m in enrollment.meetings]
    assert len(ids) == 4

    for meeting_id in ids[:3]:
        meeting_scheduler.record_meeting(meeting_id, coach_actor)
    meeting_scheduler.miss_meeting(ids[3], coach_actor)

    enrollment = _enrollment(enrollment_id)
    assert enrollment.status == "failed"
    assert enrollment.failure_reason == "Missed scheduled coach meeting #4"
    assert enrollment.next_eligible_date == start + timedelta(days=90)
    assert [m.status for m in enrollment.meetings] == ["completed"] * 3 + ["missed"]
    assert not any(m.is_actionable for m in enrollment.meetings)


# ═════════════════════════════════════════════════════════════════════════════
# reschedule_meeting
# ═════════════════════════════════════════════════════════════════════════════


def test_reschedule_keeps_meeting_actionable_and_records_history(enrollment_id, coach_actor):
    second = _meeting_ids(enrollment_id)[1]
    original = _db.session.get(Meeting, second).scheduled_date
    new_date = original + timedelta(days=3)

    result = meeting_scheduler.reschedule_meeting(second, new_date, coach_actor)

    assert result["status"] == "scheduled"
    assert result["scheduled_date"] == new_date.isoformat()
    assert result["reschedule_history"] == [{
        "previous_date": original.isoformat(),
        "new_date": new_date.isoformat(),
        "rescheduled_by": "Chris Coach",
        "rescheduled_at": result["reschedule_history"][0]["rescheduled_at"],
    }]

    # Still recordable after the move
    assert meeting_scheduler.record_meeting(second, coach_actor)["status"] == "completed"


def test_reschedule_twice_appends_history(enrollment_id, coach_actor):
    second = _meeting_ids(enrollment_id)[1]
    meeting_scheduler.reschedule_meeting(second, date(2026, 3, 20), coach_actor)
    result = meeting_scheduler.reschedule_meeting(second, date(2026, 3, 24), coach_actor)

    history = result["reschedule_history"]
    assert [h["new_date"] for h in history] == ["2026-03-20", "2026-03-24"]
    assert history[1]["previous_date"] == "2026-03-20"


def test_reschedule_before_enrollment_date_rejected(enrollment_id, coach_actor):
    enrollment = _enrollment(enrollment_id)
    second = enrollment.meetings[1].id

    with pytest.raises(ValidationError):
        meeting_scheduler.reschedule_meeting(
            second, enrollment.enrollment_date - timedelta(days=1), coach_actor,
        )


def test_reschedule_requires_date(enrollment_id, coach_actor):
    with pytest.raises(ValidationError):
        meeting_scheduler.reschedule_meeting(_meeting_ids(enrollment_id)[1], None, coach_actor)


def test_reschedule_completed_meeting_rejected(enrollment_id, coach_actor):
    first = _meeting_ids(enrollment_id)[0]
    meeting_scheduler.record_meeting(first, coach_actor)

    with pytest.raises(InvalidTransitionError):
        meeting_scheduler.reschedule_meeting(first, date(2026, 3, 9), coach_actor)


def test_legacy_rescheduled_status_is_actionable(enrollment_id, coach_actor):
    second = _meeting_ids(enrollment_id)[1]
    meeting = _db.session.get(Meeting, second)
    meeting.status = "rescheduled"
    _db.session.commit()

    result = meeting_scheduler.reschedule_meeting(second, date(2026, 3, 19), coach_actor)
    assert result["status"] == "scheduled"

    meeting = _db.session.get(Meeting, second)
    meeting.status = "rescheduled"
    _db.session.commit()
    assert meeting_scheduler.record_meeting(second, coach_actor)["status"] == "completed"
