"""
Tests: two sessions working on the same enrollment.

Runs against a file-backed SQLite database so every application context
gets its own session and connection. Session B reads the enrollment while it
is still active, session A then misses a meeting and commits the failure,
and session B's own miss must observe the committed ``failed`` status
through the locked re-read instead of acting on its stale copy.
"""

from datetime import date, timedelta

import pytest

from app import create_app
from app.config import TestingConfig
from app.core.exceptions import EnrollmentClosedError
from app.models import db as _db
from app.models.arp import Enrollment, Meeting
from app.models.audit import AuditLog
from app.models.personnel import Personnel, WriteUp
from app.services import enrollment_service, meeting_scheduler
from app.services.permission import Actor


@pytest.fixture()
def file_app(tmp_path, monkeypatch):
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'arp.db'}")
    application = create_app("testing")
    yield application
    with application.app_context():
        _db.drop_all()
        _db.engine.dispose()


@pytest.fixture()
def seeded(file_app):
    """Active tier-1 enrollment in the file database; returns (enrollment_id, meeting_ids, coach)."""
    with file_app.app_context():
        employee = Personnel(first_name="Robin", last_name="Park", status="active")
        coach = Personnel(first_name="Morgan", last_name="Coach", status="active")
        _db.session.add_all([employee, coach])
        _db.session.flush()
        for i in range(2):
            _db.session.add(WriteUp(personnel_id=employee.id,
                                    issued_date=date.today() - timedelta(days=7 + i)))
        _db.session.commit()

        admin = Actor(user_id="u-admin", name="Alex Admin", role="admin")
        enrollment_id = enrollment_service.enroll(employee.id, coach.id, admin)
        meeting_ids = [m.id for m in _db.session.get(Enrollment, enrollment_id).meetings]
        coach_actor = Actor(user_id="u-coach", name="Morgan Coach", role="coach", personnel_id=coach.id)
    return enrollment_id, meeting_ids, coach_actor


def test_second_miss_sees_committed_failure(file_app, seeded):
    enrollment_id, meeting_ids, coach_actor = seeded

    with file_app.app_context():
        stale = _db.session.get(Enrollment, enrollment_id)
        assert stale.status == "active"

        with file_app.app_context():
            meeting_scheduler.miss_meeting(meeting_ids[0], coach_actor)

        assert stale.status == "active"
        with pytest.raises(EnrollmentClosedError):
            meeting_scheduler.miss_meeting(meeting_ids[1], coach_actor)

    with file_app.app_context():
        enrollment = _db.session.get(Enrollment, enrollment_id)
        assert enrollment.status == "failed"
        assert enrollment.failure_reason == "Missed scheduled coach meeting #1"
        assert [m.status for m in enrollment.meetings] == ["missed", "scheduled", "scheduled"]
        assert AuditLog.query.filter_by(action="arp.enrollment.fail").count() == 1


def test_stale_meeting_copy_is_not_missed_twice(file_app, seeded):
    enrollment_id, meeting_ids, coach_actor = seeded

    with file_app.app_context():
        stale_meeting = _db.session.get(Meeting, meeting_ids[0])
        assert stale_meeting.status == "scheduled"

        with file_app.app_context():
            meeting_scheduler.miss_meeting(meeting_ids[0], coach_actor)

        with pytest.raises(EnrollmentClosedError):
            meeting_scheduler.miss_meeting(meeting_ids[0], coach_actor)

    with file_app.app_context():
        assert AuditLog.query.filter_by(action="arp.meeting.miss").count() == 1
        assert _db.session.get(Enrollment, enrollment_id).status == "failed"
