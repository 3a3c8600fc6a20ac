"""
ARP Enrollment Facade.

Read side of ARP. Assembles the full enrollment aggregate (enrollment,
names, meetings with reschedule history, training, agreement, root cause
and derived progress) and the summary rows of the active-enrollment list.
Nothing here writes.
"""

from datetime import date

from app.models.arp import AGREEMENT_PARTIES, PROGRAM_TIERS, Enrollment
from app.services import enrollment_store
from app.services.agreement_signer import derive_status
from app.services.permission import Actor, check_permission


def compute_progress(enrollment: Enrollment, today: date | None = None) -> dict:
    """
    Derive progress counters for one enrollment.

    progress_percent counts completed meetings and completed training
    against required work: every meeting plus the larger of the assigned
    training count and the tier's training requirement.
    """
    today = today or date.today()
    meetings = enrollment.meetings
    training = enrollment.training
    training_required = PROGRAM_TIERS.get(enrollment.program_tier, {}).get("training_required", 0)

    meetings_completed = sum(1 for m in meetings if m.status == "completed")
    training_completed = sum(1 for t in training if t.status == "completed")

    units_total = len(meetings) + max(len(training), training_required)
    units_done = meetings_completed + training_completed
    progress_percent = round(100 * units_done / units_total) if units_total else 0

    if enrollment.status == "active" and enrollment.program_end_date:
        days_remaining = max(0, (enrollment.program_end_date - today).days)
    else:
        days_remaining = 0

    return {
        "meetings_completed": meetings_completed,
        "meetings_total": len(meetings),
        "training_completed": training_completed,
        "training_total": len(training),
        "training_required": training_required,
        "training_overdue": sum(1 for t in training if t.is_overdue(today)),
        "days_remaining": days_remaining,
        "progress_percent": progress_percent,
    }


def _agreement_dict(agreement) -> dict | None:
    if agreement is None:
        return None
    result = agreement.to_dict()
    result["status"] = derive_status(agreement)
    for party in AGREEMENT_PARTIES:
        result[f"has_{party}_signature"] = agreement.is_signed(party)
    return result


def build_aggregate(enrollment: Enrollment, today: date | None = None) -> dict:
    today = today or date.today()
    result = enrollment.to_dict()
    result["personnel_name"] = enrollment.personnel.full_name if enrollment.personnel else None
    result["coach_name"] = enrollment.coach.full_name if enrollment.coach else None
    result["meetings"] = [m.to_dict() for m in enrollment.meetings]
    result["training"] = [t.to_dict(today=today) for t in enrollment.training]
    result["agreement"] = _agreement_dict(enrollment.agreement)
    result["root_cause"] = enrollment.root_cause.to_dict() if enrollment.root_cause else None
    result["progress"] = compute_progress(enrollment, today)
    return result


def get_enrollment(enrollment_id: int, actor: Actor | None = None, today: date | None = None) -> dict:
    """Full aggregate for one enrollment."""
    enrollment = enrollment_store.get(enrollment_id)
    if actor is not None:
        check_permission(actor, "arp_view", enrollment)
    return build_aggregate(enrollment, today)


def active_enrollments_query(actor: Actor):
    """Active enrollments, soonest program end first. Managers only."""
    check_permission(actor, "arp_list")
    return (
        Enrollment.query
        .filter(Enrollment.status == "active")
        .order_by(Enrollment.program_end_date.asc(), Enrollment.id.asc())
    )


def summarize(enrollment: Enrollment, today: date | None = None) -> dict:
    """One row of the active-enrollment list."""
    progress = compute_progress(enrollment, today)
    upcoming = [m for m in enrollment.meetings if m.is_actionable]
    next_meeting = min((m.scheduled_date for m in upcoming), default=None)
    return {
        "id": enrollment.id,
        "personnel_id": enrollment.personnel_id,
        "personnel_name": enrollment.personnel.full_name if enrollment.personnel else None,
        "coach_id": enrollment.coach_id,
        "coach_name": enrollment.coach.full_name if enrollment.coach else None,
        "program_tier": enrollment.program_tier,
        "enrollment_date": enrollment.enrollment_date.isoformat(),
        "program_end_date": enrollment.program_end_date.isoformat(),
        "days_remaining": progress["days_remaining"],
        "next_meeting_date": next_meeting.isoformat() if next_meeting else None,
        "meetings_completed": progress["meetings_completed"],
        "meetings_total": progress["meetings_total"],
        "training_completed": progress["training_completed"],
        "training_total": progress["training_total"],
        "progress_percent": progress["progress_percent"],
    }


def list_active_enrollments(actor: Actor, today: date | None = None) -> list[dict]:
    """Summary rows for every active enrollment. Managers only."""
    enrollments = active_enrollments_query(actor).all()
    return [summarize(e, today) for e in enrollments]
