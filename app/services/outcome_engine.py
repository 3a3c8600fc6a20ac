"""
ARP Outcome Engine.

Moves an active enrollment to its terminal status.

    fail_enrollment      → failed, with reason and re-enrollment cooldown
    complete_enrollment  → completed, clearing every open attendance write-up

Completion requires every scheduled meeting to be completed and every
required catalog module (see TrainingCatalog.required_codes) to be completed
for the enrollment. The status
change and the write-up clearing happen in one transaction: if clearing
raises, the enrollment stays active and no write-up is touched.

``fail_locked`` is the shared failure path. The meeting scheduler calls it
when a meeting is marked missed, inside its own transaction.
"""

import logging
from datetime import timedelta

from flask import current_app

from app.core.exceptions import InvalidTransitionError, ValidationError
from app.models.arp import Enrollment
from app.models.audit import write_audit
from app.services import enrollment_store
from app.services.permission import Actor, check_permission
from app.services.training_catalog import TrainingCatalog, default_catalog
from app.services.writeup_store import SqlWriteUpStore, WriteUpStore

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_DAYS = 90


def _cooldown_days() -> int:
    return int(current_app.config.get("ARP_COOLDOWN_DAYS", DEFAULT_COOLDOWN_DAYS))


def fail_locked(enrollment: Enrollment, reason: str, actor: Actor, source: str = "manual") -> None:
    """
    Fail an enrollment that the caller has already locked.

    Runs inside the caller's transaction; nothing is committed here.
    The cooldown counts from the enrollment date, not the failure date.
    """
    enrollment_store.apply_transition(enrollment, "failed", reason)
    enrollment.next_eligible_date = enrollment.enrollment_date + timedelta(days=_cooldown_days())

    write_audit(
        entity_type="enrollment",
        entity_id=enrollment.id,
        action="arp.enrollment.fail",
        enrollment_id=enrollment.id,
        actor=actor.label,
        actor_user_id=actor.user_id,
        diff={
            "status": {"old": "active", "new": "failed"},
            "failure_reason": reason,
            "next_eligible_date": enrollment.next_eligible_date.isoformat(),
            "source": source,
        },
    )


def fail_enrollment(enrollment_id: int, reason: str, actor: Actor) -> dict:
    """Manually fail an active enrollment. Reason must be non-empty."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Failure reason is required", details={"reason": "empty"})

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, "arp_outcome", enrollment)
        fail_locked(enrollment, reason, actor)

    logger.info(
        "Enrollment %s failed by %s",
        enrollment_id, actor.label,
        extra={
            "enrollment_id": enrollment_id,
            "event_type": "arp.enrollment.fail",
            "actor_id": actor.user_id,
        },
    )
    return enrollment.to_dict()


def complete_enrollment(enrollment_id: int, actor: Actor, writeups: WriteUpStore | None = None,
                        catalog: TrainingCatalog | None = None) -> dict:
    """
    Complete an active enrollment whose meetings are all completed.

    Returns:
        {"writeUpsCleared": n} where n is the number of write-ups that were
        attributable to the employee immediately before the call.

    Raises:
        InvalidTransitionError: enrollment not active, meetings outstanding
            or required training not completed.
    """
    store = writeups or SqlWriteUpStore()
    catalog = catalog or default_catalog

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, "arp_outcome", enrollment)

        if enrollment.status != "active":
            raise InvalidTransitionError(
                "Enrollment", enrollment.id, enrollment.status, "completed",
                "only active enrollments can be completed",
            )

        total = len(enrollment.meetings)
        done = sum(1 for m in enrollment.meetings if m.status == "completed")
        if done < total:
            raise InvalidTransitionError(
                "Enrollment", enrollment.id, enrollment.status, "completed",
                f"{done} of {total} meetings completed",
            )

        finished = {t.module_code for t in enrollment.training if t.status == "completed"}
        missing = sorted(catalog.required_codes() - finished)
        if missing:
            raise InvalidTransitionError(
                "Enrollment", enrollment.id, enrollment.status, "completed",
                f"required training not completed: {', '.join(missing)}",
            )

        enrollment_store.apply_transition(enrollment, "completed")
        cleared = store.clear_all(enrollment.personnel_id, enrollment.id)
        enrollment.writeups_cleared = cleared

        write_audit(
            entity_type="enrollment",
            entity_id=enrollment.id,
            action="arp.enrollment.complete",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={
                "status": {"old": "active", "new": "completed"},
                "writeups_cleared": cleared,
            },
        )

    logger.info(
        "Enrollment %s completed, %d write-ups cleared",
        enrollment_id, cleared,
        extra={
            "enrollment_id": enrollment_id,
            "event_type": "arp.enrollment.complete",
            "actor_id": actor.user_id,
        },
    )
    return {"writeUpsCleared": cleared}
