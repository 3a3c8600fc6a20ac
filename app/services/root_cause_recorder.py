"""
ARP Root Cause Recorder.

Stores the coach's structured assessment of why attendance slipped. There is
at most one assessment per enrollment and each save overwrites every field.
"""

import logging

from app.core.exceptions import ValidationError
from app.models.arp import ROOT_CAUSE_FACTORS, RootCauseAssessment
from app.models.audit import write_audit
from app.services import enrollment_store
from app.services.permission import Actor, check_permission

logger = logging.getLogger(__name__)


def save_root_cause(enrollment_id: int, actor: Actor, other_description: str | None = None,
                    summary: str | None = None, **flags) -> dict:
    """
    Create or overwrite the enrollment's root-cause assessment.

    ``flags`` are factor keys from ROOT_CAUSE_FACTORS mapped to booleans; any
    factor not passed is saved as False. ``other_description`` is kept only
    when the ``other`` factor is set.
    """
    unknown = sorted(set(flags) - set(ROOT_CAUSE_FACTORS))
    if unknown:
        raise ValidationError(
            "Unknown root cause factors",
            details={"unknown": unknown, "allowed": list(ROOT_CAUSE_FACTORS)},
        )

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, "arp_root_cause", enrollment)
        enrollment_store.require_active(enrollment, "save_root_cause")

        assessment = enrollment.root_cause
        created = assessment is None
        if created:
            assessment = RootCauseAssessment()
            enrollment.root_cause = assessment

        for factor in ROOT_CAUSE_FACTORS:
            setattr(assessment, factor, bool(flags.get(factor, False)))
        if assessment.other:
            assessment.other_description = (other_description or "").strip() or None
        else:
            assessment.other_description = None
        assessment.summary = (summary or "").strip() or None
        assessment.updated_by = actor.label

        write_audit(
            entity_type="root_cause",
            entity_id=enrollment.id,
            action="arp.root_cause.save",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={
                "created": created,
                "factors": [f for f in ROOT_CAUSE_FACTORS if flags.get(f)],
            },
        )

    logger.info(
        "Root cause %s for enrollment %s",
        "created" if created else "updated", enrollment_id,
        extra={"enrollment_id": enrollment_id, "event_type": "arp.root_cause.save",
               "actor_id": actor.user_id},
    )
    return assessment.to_dict()
