"""Tests: ARP root-cause assessment upsert."""

import pytest

from app.core.exceptions import EnrollmentClosedError, PermissionDenied, ValidationError
from app.models.arp import ROOT_CAUSE_FACTORS, RootCauseAssessment
from app.services import outcome_engine, root_cause_recorder


def test_first_save_creates_assessment(enrollment_id, coach_actor):
    result = root_cause_recorder.save_root_cause(
        enrollment_id, coach_actor,
        sleep_wake_issues=True, transportation=True,
        summary="Bus route changed in January",
    )

    assert result["sleep_wake_issues"] is True
    assert result["transportation"] is True
    assert result["childcare_family"] is False
    assert result["summary"] == "Bus route changed in January"
    assert result["updated_by"] == "Chris Coach"
    assert RootCauseAssessment.query.filter_by(enrollment_id=enrollment_id).count() == 1


def test_second_save_overwrites_every_field(enrollment_id, coach_actor):
    first = root_cause_recorder.save_root_cause(
        enrollment_id, coach_actor,
        sleep_wake_issues=True, other=True, other_description="Night classes",
        summary="First pass",
    )
    second = root_cause_recorder.save_root_cause(enrollment_id, coach_actor, time_management=True)

    assert second["id"] == first["id"]
    assert second["time_management"] is True
    assert second["sleep_wake_issues"] is False
    assert second["other"] is False
    assert second["other_description"] is None
    assert second["summary"] is None


def test_other_description_kept_only_with_other_flag(enrollment_id, coach_actor):
    dropped = root_cause_recorder.save_root_cause(
        enrollment_id, coach_actor, other_description="Ignored text",
    )
    assert dropped["other_description"] is None

    kept = root_cause_recorder.save_root_cause(
        enrollment_id, coach_actor, other=True, other_description="Second job",
    )
    assert kept["other_description"] == "Second job"


def test_all_factors_round_trip(enrollment_id, admin):
    flags = {factor: True for factor in ROOT_CAUSE_FACTORS}
    result = root_cause_recorder.save_root_cause(enrollment_id, admin, **flags)
    assert all(result[factor] is True for factor in ROOT_CAUSE_FACTORS)


def test_unknown_factor_rejected(enrollment_id, coach_actor):
    with pytest.raises(ValidationError):
        root_cause_recorder.save_root_cause(enrollment_id, coach_actor, astrology=True)


def test_employee_cannot_save_root_cause(enrollment_id, employee_actor):
    with pytest.raises(PermissionDenied):
        root_cause_recorder.save_root_cause(enrollment_id, employee_actor, health_issues=True)


def test_root_cause_frozen_after_failure(enrollment_id, admin, coach_actor):
    root_cause_recorder.save_root_cause(enrollment_id, coach_actor, health_issues=True)
    outcome_engine.fail_enrollment(enrollment_id, "Resigned", admin)

    with pytest.raises(EnrollmentClosedError):
        root_cause_recorder.save_root_cause(enrollment_id, coach_actor, transportation=True)

    assessment = RootCauseAssessment.query.filter_by(enrollment_id=enrollment_id).one()
    assert assessment.health_issues is True
    assert assessment.transportation is False
