"""
Tests: ARP tri-party agreement.

Setup strategy:
    The enrollment fixture creates an empty agreement. Tests sign slots
    through the service and read the status back from the facade.
"""

from itertools import permutations

import pytest

from app.core.exceptions import (
    EnrollmentClosedError,
    InvalidTransitionError,
    PermissionDenied,
    ValidationError,
)
from app.models.arp import Agreement
from app.services import agreement_signer, enrollment_facade, outcome_engine

SIGNATURE = "data:image/png;base64,iVBORw0KGgo="

_SIGN = {
    "admin": agreement_signer.sign_as_admin,
    "coach": agreement_signer.sign_as_coach,
    "employee": agreement_signer.sign_as_employee,
}


def _agreement_status(enrollment_id) -> str:
    return enrollment_facade.get_enrollment(enrollment_id)["agreement"]["status"]


def test_new_agreement_is_pending(enrollment_id):
    agreement = enrollment_facade.get_enrollment(enrollment_id)["agreement"]
    assert agreement["status"] == "pending"
    assert agreement["has_admin_signature"] is False
    assert agreement["has_coach_signature"] is False
    assert agreement["has_employee_signature"] is False


@pytest.mark.parametrize("order", list(permutations(("admin", "coach", "employee"))))
def test_status_progression_is_order_independent(enrollment_id, admin, order):
    statuses = []
    for party in order:
        _SIGN[party](enrollment_id, SIGNATURE, admin)
        statuses.append(_agreement_status(enrollment_id))

    assert statuses == ["partially_signed", "partially_signed", "fully_signed"]


def test_derive_status_is_pure():
    agreement = Agreement()
    assert agreement_signer.derive_status(agreement) == "pending"
    agreement.employee_signature = SIGNATURE
    assert agreement_signer.derive_status(agreement) == "partially_signed"
    agreement.admin_signature = SIGNATURE
    agreement.coach_signature = SIGNATURE
    assert agreement_signer.derive_status(agreement) == "fully_signed"
    assert agreement_signer.derive_status(None) == "pending"


def test_admin_slot_records_identity_and_title(enrollment_id, admin):
    result = agreement_signer.sign_as_admin(enrollment_id, SIGNATURE, admin, signer_title="HR Director")

    slot = result["admin"]
    assert slot["signed"] is True
    assert slot["signature"] == SIGNATURE
    assert slot["signer_id"] == "u-admin"
    assert slot["signer_name"] == "Alex Admin"
    assert slot["signer_title"] == "HR Director"
    assert slot["signed_at"] is not None


def test_admin_title_defaults_from_config(enrollment_id, admin):
    result = agreement_signer.sign_as_admin(enrollment_id, SIGNATURE, admin)
    assert result["admin"]["signer_title"] == "Human Resources"


def test_coach_and_employee_slots_name_the_parties(enrollment_id, coach_actor, employee_actor, coach, employee):
    agreement_signer.sign_as_coach(enrollment_id, SIGNATURE, coach_actor)
    result = agreement_signer.sign_as_employee(enrollment_id, SIGNATURE, employee_actor)

    assert result["coach"]["signer_id"] == str(coach.id)
    assert result["coach"]["signer_name"] == "Chris Coach"
    assert result["employee"]["signer_id"] == str(employee.id)
    assert result["employee"]["signer_name"] == "Dana Reyes"


def test_double_sign_rejected(enrollment_id, admin):
    agreement_signer.sign_as_coach(enrollment_id, SIGNATURE, admin)

    with pytest.raises(InvalidTransitionError):
        agreement_signer.sign_as_coach(enrollment_id, "data:image/png;base64,OTHER", admin)

    slot = enrollment_facade.get_enrollment(enrollment_id)["agreement"]["coach"]
    assert slot["signature"] == SIGNATURE


@pytest.mark.parametrize("signature", ["", "   ", None])
def test_empty_signature_rejected(enrollment_id, admin, signature):
    with pytest.raises(ValidationError):
        agreement_signer.sign_as_employee(enrollment_id, signature, admin)
    assert _agreement_status(enrollment_id) == "pending"


def test_unknown_party_rejected(enrollment_id, admin):
    with pytest.raises(ValidationError):
        agreement_signer.sign(enrollment_id, "witness", SIGNATURE, admin)


def test_employee_cannot_sign_coach_slot(enrollment_id, employee_actor):
    with pytest.raises(PermissionDenied):
        agreement_signer.sign_as_coach(enrollment_id, SIGNATURE, employee_actor)


def test_coach_cannot_sign_admin_slot(enrollment_id, coach_actor):
    with pytest.raises(PermissionDenied):
        agreement_signer.sign_as_admin(enrollment_id, SIGNATURE, coach_actor)


def test_signing_closed_enrollment_rejected(enrollment_id, admin):
    outcome_engine.fail_enrollment(enrollment_id, "Withdrew from program", admin)

    with pytest.raises(EnrollmentClosedError):
        agreement_signer.sign_as_admin(enrollment_id, SIGNATURE, admin)
