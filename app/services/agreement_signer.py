"""
ARP Agreement Signer.

Each enrollment carries one tri-party agreement with an admin, a coach and
an employee slot. A slot is written exactly once; the agreement status is
derived from how many slots are filled:

    0 filled → pending
    1-2      → partially_signed
    3        → fully_signed

Signing order is free.
"""

import logging
from datetime import UTC, datetime

from flask import current_app

from app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.models.arp import AGREEMENT_PARTIES, derive_agreement_status
from app.models.audit import write_audit
from app.services import enrollment_store
from app.services.permission import Actor, check_permission

logger = logging.getLogger(__name__)

_PARTY_PERMISSION = {
    "admin": "arp_sign_admin",
    "coach": "arp_sign_coach",
    "employee": "arp_sign_employee",
}



def derive_status(agreement) -> str:
    """Aggregate status from the filled slots; independent of signing order."""
    if agreement is None:
        return "pending"
    return derive_agreement_status(agreement.signed_count)


def _signer_for(party: str, enrollment, actor: Actor, signer_name: str | None):
    """Resolve (signer_id, signer_name) recorded in the slot."""
    if party == "coach" and enrollment.coach is not None:
        return str(enrollment.coach_id), signer_name or enrollment.coach.full_name
    if party == "employee" and enrollment.personnel is not None:
        return str(enrollment.personnel_id), signer_name or enrollment.personnel.full_name
    return str(actor.user_id), signer_name or actor.label


def sign(enrollment_id: int, party: str, signature: str, actor: Actor,
         signer_name: str | None = None, signer_title: str | None = None) -> dict:
    """
    Fill one agreement slot.

    Raises:
        ValidationError: unknown party or empty signature payload.
        InvalidTransitionError: the slot is already signed, or the enrollment is closed.
        PermissionDenied: actor may not sign for this party.
    """
    if party not in AGREEMENT_PARTIES:
        raise ValidationError(
            f"Unknown agreement party '{party}'",
            details={"party": party, "allowed": list(AGREEMENT_PARTIES)},
        )
    signature = (signature or "").strip()
    if not signature:
        raise ValidationError("Signature is required", details={"signature": "empty"})

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, _PARTY_PERMISSION[party], enrollment)
        enrollment_store.require_active(enrollment, f"sign_as_{party}")

        agreement = enrollment.agreement
        if agreement is None:
            raise NotFoundError(resource="Agreement", resource_id=f"enrollment={enrollment_id}")
        if agreement.is_signed(party):
            raise InvalidTransitionError(
                "Agreement", agreement.id, agreement.status, f"sign_as_{party}",
                f"{party} slot is already signed",
            )

        old_status = agreement.status
        signer_id, name = _signer_for(party, enrollment, actor, signer_name)
        setattr(agreement, f"{party}_signature", signature)
        setattr(agreement, f"{party}_signer_id", signer_id)
        setattr(agreement, f"{party}_signer_name", name)
        setattr(agreement, f"{party}_signed_at", datetime.now(UTC))
        if party == "admin":
            agreement.admin_signer_title = (
                signer_title or current_app.config.get("ARP_ADMIN_SIGNER_TITLE", "Human Resources")
            )

        write_audit(
            entity_type="agreement",
            entity_id=agreement.id,
            action="arp.agreement.sign",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"party": party, "status": {"old": old_status, "new": agreement.status}},
        )

    logger.info(
        "Agreement for enrollment %s signed by %s (%s)",
        enrollment_id, party, agreement.status,
        extra={"enrollment_id": enrollment_id, "event_type": "arp.agreement.sign",
               "actor_id": actor.user_id},
    )
    return agreement.to_dict()


def sign_as_admin(enrollment_id: int, signature: str, actor: Actor,
                  signer_name: str | None = None, signer_title: str | None = None) -> dict:
    return sign(enrollment_id, "admin", signature, actor, signer_name, signer_title)


def sign_as_coach(enrollment_id: int, signature: str, actor: Actor,
                  signer_name: str | None = None) -> dict:
    return sign(enrollment_id, "coach", signature, actor, signer_name)


def sign_as_employee(enrollment_id: int, signature: str, actor: Actor,
                     signer_name: str | None = None) -> dict:
    return sign(enrollment_id, "employee", signature, actor, signer_name)
