"""
ARP Enrollment Store.

Durable access to Enrollment rows and the single place where enrollment
status changes are applied. Every other ARP service consults this module
before mutating anything that hangs off an enrollment.

Transaction model:
    Mutating services wrap their work in ``unit_of_work()`` and load the
    enrollment through ``get_for_update()`` first. The row lock (SELECT ...
    FOR UPDATE on PostgreSQL, the database write lock on SQLite) serializes
    concurrent mutations of the same enrollment: a second caller blocks
    until the first commits and then sees the committed status.

Usage:
    from app.services import enrollment_store

    with enrollment_store.unit_of_work():
        enrollment = enrollment_store.get_for_update(enrollment_id)
        enrollment_store.require_active(enrollment, "record_meeting")
        ...
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import select

from app.core.exceptions import EnrollmentClosedError, InvalidTransitionError, NotFoundError
from app.models import db
from app.models.arp import Enrollment, validate_enrollment_transition

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work():
    """Commit the session on success; roll back and re-raise on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def get(enrollment_id: int) -> Enrollment:
    """Plain read. Raises NotFoundError for unknown ids."""
    enrollment = db.session.get(Enrollment, enrollment_id)
    if enrollment is None:
        raise NotFoundError(resource="Enrollment", resource_id=enrollment_id)
    return enrollment


def get_for_update(enrollment_id: int) -> Enrollment:
    """Load and row-lock an enrollment, refreshing any stale in-session copy."""
    enrollment = db.session.execute(
        select(Enrollment)
        .where(Enrollment.id == enrollment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if enrollment is None:
        raise NotFoundError(resource="Enrollment", resource_id=enrollment_id)
    return enrollment


def require_active(enrollment: Enrollment, action: str) -> None:
    """Reject sub-entity mutation once the enrollment reached a terminal status."""
    if not enrollment.is_active:
        logger.warning(
            "Rejected %s on closed enrollment %s (status=%s)",
            action, enrollment.id, enrollment.status,
            extra={"enrollment_id": enrollment.id, "event_type": "arp.rejected"},
        )
        raise EnrollmentClosedError(enrollment.id, enrollment.status, action)


def apply_transition(enrollment: Enrollment, target_status: str, reason: str | None = None) -> str:
    """
    Move an already-locked enrollment to ``target_status``.

    Only active → completed and active → failed are legal. The caller owns
    the transaction; nothing is committed here.

    Returns:
        The previous status.

    Raises:
        InvalidTransitionError for any other edge.
    """
    previous = enrollment.status
    if not validate_enrollment_transition(previous, target_status):
        raise InvalidTransitionError(
            "Enrollment", enrollment.id, previous, target_status,
            f"only active enrollments can become {target_status}",
        )

    now = datetime.now(timezone.utc)
    enrollment.status = target_status
    if target_status == "failed":
        enrollment.failure_reason = reason
        enrollment.failed_at = now
    elif target_status == "completed":
        enrollment.completed_at = now

    logger.info(
        "Enrollment %s transitioned: %s → %s",
        enrollment.id, previous, target_status,
        extra={"enrollment_id": enrollment.id, "event_type": f"arp.enrollment.{target_status}"},
    )
    return previous


def transition(enrollment_id: int, target_status: str, reason: str | None = None) -> str:
    """Lock the enrollment by id and apply a status transition (caller commits)."""
    enrollment = get_for_update(enrollment_id)
    return apply_transition(enrollment, target_status, reason)
