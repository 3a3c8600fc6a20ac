"""
Service-wide exception hierarchy.

Every ARP service raises one of these types and never returns error tuples.
The ARP blueprint registers one handler per type and maps it to a stable
HTTP status and machine-readable error code.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Enrollment", resource_id=42)
    raise ValidationError("reason is required", details={"reason": "empty"})
    raise InvalidTransitionError("Enrollment", 42, "completed", "failed")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Enrollment", "Meeting").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input was well-formed but a required value is missing or invalid.

    Typical cases: empty failure reason, empty signature payload, a reschedule
    date before the enrollment started.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when an operation is attempted outside its required status.

    Covers enrollment status transitions (only active → completed/failed are
    legal) as well as sub-entity guards: recording a meeting that is no longer
    scheduled, completing a completed training, signing a filled slot.

    Args:
        resource: Entity name ("Enrollment", "Meeting", "Agreement", ...).
        resource_id: PK of the entity.
        current: Status (or slot state) the entity is in.
        target: Status the caller tried to reach, or the attempted action.
        reason: Optional extra explanation.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None,
        current: str,
        target: str,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current
        self.target = target
        self.reason = reason
        msg = f"Cannot '{target}' {resource} {resource_id} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class EnrollmentClosedError(InvalidTransitionError):
    """Raised when a sub-entity mutation targets a completed or failed enrollment."""

    def __init__(self, enrollment_id: int, status: str, action: str) -> None:
        super().__init__(
            "Enrollment", enrollment_id, status, action,
            f"enrollment is {status}; no further changes are allowed",
        )
        self.enrollment_id = enrollment_id


class PermissionDenied(Exception):
    """Raised when the acting user lacks the role required for an action."""

    def __init__(self, user_id: str | int | None, action: str) -> None:
        super().__init__(f"User {user_id} does not have permission for '{action}'")
        self.user_id = user_id
        self.action = action
