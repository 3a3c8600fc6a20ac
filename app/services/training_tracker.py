"""
ARP Training Tracker.

Assigns catalog modules to an enrollment and tracks them through
assigned → in_progress → completed. A module can be assigned to the same
enrollment at most once; ``get_available_modules`` is the catalog minus what
is already assigned.
"""

import logging
from datetime import UTC, date, datetime, timedelta

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from app.models import db
from app.models.arp import TrainingAssignment, validate_training_transition
from app.models.audit import write_audit
from app.services import enrollment_store
from app.services.permission import Actor, check_permission
from app.services.training_catalog import TrainingCatalog, default_catalog

logger = logging.getLogger(__name__)

DEFAULT_DUE_DAYS = 14


def get_available_modules(enrollment_id: int, actor: Actor | None = None,
                          catalog: TrainingCatalog | None = None) -> list[dict]:
    """Catalog modules not yet assigned to the enrollment."""
    catalog = catalog or default_catalog
    enrollment = enrollment_store.get(enrollment_id)
    if actor is not None:
        check_permission(actor, "arp_view", enrollment)
    assigned = [t.module_code for t in enrollment.training]
    return [m.to_dict() for m in catalog.available_for(assigned)]


def assign_training(enrollment_id: int, module_code: str, actor: Actor,
                    catalog: TrainingCatalog | None = None, today: date | None = None) -> dict:
    """
    Assign one catalog module to an active enrollment.

    Due date is ``today`` plus the module's due window, or ARP_TRAINING_DUE_DAYS
    when the module has none.
    """
    catalog = catalog or default_catalog
    module_code = (module_code or "").strip()
    if not module_code:
        raise ValidationError("module_code is required", details={"module_code": "missing"})

    module = catalog.get(module_code)
    if module is None:
        raise NotFoundError(resource="TrainingModule", resource_id=module_code)

    today = today or date.today()
    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, "arp_training", enrollment)
        enrollment_store.require_active(enrollment, "assign_training")

        assigned = {t.module_code for t in enrollment.training}
        if module.code in assigned:
            raise InvalidTransitionError(
                "TrainingModule", module.code, "assigned", "assign",
                "module is already assigned to this enrollment",
            )

        due_days = module.due_days
        if due_days is None:
            due_days = int(current_app.config.get("ARP_TRAINING_DUE_DAYS", DEFAULT_DUE_DAYS))

        assignment = TrainingAssignment(
            module_code=module.code,
            module_name=module.name,
            assigned_date=today,
            due_date=today + timedelta(days=due_days),
            status="assigned",
            assigned_by=actor.label,
        )
        enrollment.training.append(assignment)
        db.session.flush()

        write_audit(
            entity_type="training",
            entity_id=assignment.id,
            action="arp.training.assign",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"module_code": module.code, "due_date": assignment.due_date.isoformat()},
        )

    logger.info(
        "Training %s assigned to enrollment %s",
        module.code, enrollment_id,
        extra={"enrollment_id": enrollment_id, "event_type": "arp.training.assign",
               "actor_id": actor.user_id},
    )
    return assignment.to_dict(today=today)


def _move_training(training_id: int, target: str, actor: Actor, action: str) -> dict:
    enrollment_id = db.session.execute(
        select(TrainingAssignment.enrollment_id).where(TrainingAssignment.id == training_id)
    ).scalar_one_or_none()
    if enrollment_id is None:
        raise NotFoundError(resource="TrainingAssignment", resource_id=training_id)

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        check_permission(actor, "arp_training", enrollment)
        enrollment_store.require_active(enrollment, action)

        training = db.session.execute(
            select(TrainingAssignment)
            .where(TrainingAssignment.id == training_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

        old_status = training.status
        if not validate_training_transition(old_status, target):
            raise InvalidTransitionError("TrainingAssignment", training.id, old_status, target)

        training.status = target
        if target == "completed":
            training.completed_date = datetime.now(UTC)

        write_audit(
            entity_type="training",
            entity_id=training.id,
            action=f"arp.training.{'start' if target == 'in_progress' else 'complete'}",
            enrollment_id=enrollment.id,
            actor=actor.label,
            actor_user_id=actor.user_id,
            diff={"status": {"old": old_status, "new": target}},
        )

    logger.info(
        "Training %s (%s) → %s",
        training.id, training.module_code, target,
        extra={"enrollment_id": enrollment_id, "event_type": f"arp.training.{target}",
               "actor_id": actor.user_id},
    )
    return training.to_dict(today=date.today())


def start_training(training_id: int, actor: Actor) -> dict:
    """assigned → in_progress."""
    return _move_training(training_id, "in_progress", actor, "start_training")


def complete_training(training_id: int, actor: Actor) -> dict:
    """assigned | in_progress → completed."""
    return _move_training(training_id, "completed", actor, "complete_training")
