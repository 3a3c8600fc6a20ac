"""
ARP Role-Based Access Control.

Uses PERMISSION_MATRIX to decide whether the acting user may perform an ARP
action. Manager roles act on every enrollment; scoped roles (coach, employee)
only act on enrollments they are a party to.

Usage:
    from app.services.permission import Actor, check_permission

    # Raises PermissionDenied if not allowed
    check_permission(actor, "arp_outcome", enrollment)

    # Boolean check
    if has_permission(actor, "arp_view", enrollment):
        ...
"""

from dataclasses import dataclass

from app.core.exceptions import PermissionDenied


@dataclass(frozen=True)
class Actor:
    """Acting user as supplied by the identity provider."""

    user_id: str
    name: str = ""
    role: str = "employee"
    personnel_id: int | None = None

    @property
    def label(self) -> str:
        return self.name or str(self.user_id)


# Roles that hold personnel-management permission.
MANAGER_ROLES = frozenset({"admin", "hr_manager"})

_MANAGER_ACTIONS = {
    "arp_view",
    "arp_list",
    "arp_enroll",
    "arp_meeting",
    "arp_training",
    "arp_root_cause",
    "arp_sign_admin",
    "arp_sign_coach",
    "arp_sign_employee",
    "arp_outcome",
}

PERMISSION_MATRIX = {
    **{role: _MANAGER_ACTIONS for role in MANAGER_ROLES},
    "coach": {
        "arp_view",
        "arp_meeting",
        "arp_training",
        "arp_root_cause",
        "arp_sign_coach",
    },
    "employee": {
        "arp_view",
        "arp_sign_employee",
    },
}

# Scoped role → Enrollment column that must equal actor.personnel_id
_ROLE_SCOPE = {
    "coach": "coach_id",
    "employee": "personnel_id",
}

ROLES = frozenset(PERMISSION_MATRIX)


def has_permission(actor: Actor, action: str, enrollment=None) -> bool:
    """
    Check if the actor may perform an action, optionally on one enrollment.

    Args:
        actor: Acting user.
        action: Action string (e.g. 'arp_meeting', 'arp_outcome').
        enrollment: Target enrollment for scoped roles. Scoped roles are
                    refused when no enrollment is given.

    Returns:
        True if the actor's role grants the action within its scope.
    """
    if actor is None:
        return False
    allowed_actions = PERMISSION_MATRIX.get(actor.role, set())
    if action not in allowed_actions:
        return False

    scope_column = _ROLE_SCOPE.get(actor.role)
    if scope_column is None:
        return True
    if enrollment is None or actor.personnel_id is None:
        return False
    return getattr(enrollment, scope_column) == actor.personnel_id


def check_permission(actor: Actor, action: str, enrollment=None) -> None:
    """Raise PermissionDenied if the actor lacks permission."""
    if not has_permission(actor, action, enrollment):
        raise PermissionDenied(getattr(actor, "user_id", None), action)
