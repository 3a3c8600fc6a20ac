"""
Tests: ARP enrollment store: status guard and transaction boundary.

Covers:
    - the only legal edges are active → completed and active → failed
    - terminal enrollments reject every further transition
    - require_active raises EnrollmentClosedError on terminal enrollments
    - unit_of_work commits on success and rolls back on error
    - unknown ids raise NotFoundError
"""

import pytest

from app.core.exceptions import EnrollmentClosedError, InvalidTransitionError, NotFoundError
from app.models import db as _db
from app.models.arp import Enrollment, validate_enrollment_transition
from app.services import enrollment_store


def _reload(enrollment_id) -> Enrollment:
    _db.session.expire_all()
    return _db.session.get(Enrollment, enrollment_id)


# ═════════════════════════════════════════════════════════════════════════════
# Transition table
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "old, new, expected",
    [
        ("active", "completed", True),
        ("active", "failed", True),
        ("active", "active", False),
        ("completed", "failed", False),
        ("completed", "active", False),
        ("failed", "completed", False),
        ("failed", "active", False),
    ],
)
def test_validate_enrollment_transition(old, new, expected):
    assert validate_enrollment_transition(old, new) is expected


def test_transition_to_completed_sets_timestamp(enrollment_id):
    with enrollment_store.unit_of_work():
        previous = enrollment_store.transition(enrollment_id, "completed")

    enrollment = _reload(enrollment_id)
    assert previous == "active"
    assert enrollment.status == "completed"
    assert enrollment.completed_at is not None
    assert enrollment.failed_at is None


def test_transition_to_failed_records_reason(enrollment_id):
    with enrollment_store.unit_of_work():
        enrollment_store.transition(enrollment_id, "failed", reason="No-show")

    enrollment = _reload(enrollment_id)
    assert enrollment.status == "failed"
    assert enrollment.failure_reason == "No-show"
    assert enrollment.failed_at is not None


@pytest.mark.parametrize("terminal", ["completed", "failed"])
@pytest.mark.parametrize("target", ["completed", "failed", "active"])
def test_terminal_enrollment_rejects_any_transition(enrollment_id, terminal, target):
    with enrollment_store.unit_of_work():
        enrollment_store.transition(enrollment_id, terminal, reason="x")

    with pytest.raises(InvalidTransitionError) as exc_info:
        with enrollment_store.unit_of_work():
            enrollment_store.transition(enrollment_id, target)

    assert exc_info.value.current_status == terminal
    assert _reload(enrollment_id).status == terminal


def test_get_for_update_unknown_id_raises_not_found():
    with pytest.raises(NotFoundError):
        enrollment_store.get_for_update(99999)


def test_get_unknown_id_raises_not_found():
    with pytest.raises(NotFoundError):
        enrollment_store.get(99999)


def test_require_active_passes_for_active(enrollment_id):
    enrollment_store.require_active(enrollment_store.get(enrollment_id), "record_meeting")


def test_require_active_raises_closed_error(enrollment_id):
    with enrollment_store.unit_of_work():
        enrollment_store.transition(enrollment_id, "failed", reason="x")

    with pytest.raises(EnrollmentClosedError) as exc_info:
        enrollment_store.require_active(enrollment_store.get(enrollment_id), "record_meeting")

    # Closed errors are a kind of transition error
    assert isinstance(exc_info.value, InvalidTransitionError)
    assert exc_info.value.enrollment_id == enrollment_id


def test_unit_of_work_rolls_back_on_error(enrollment_id):
    with pytest.raises(RuntimeError):
        with enrollment_store.unit_of_work():
            enrollment = enrollment_store.get_for_update(enrollment_id)
            enrollment_store.apply_transition(enrollment, "failed", "partial write")
            raise RuntimeError("boom")

    enrollment = _reload(enrollment_id)
    assert enrollment.status == "active"
    assert enrollment.failure_reason is None
