"""
Attendance Recovery Program Blueprint.

HTTP surface for the ARP enrollment lifecycle.

Endpoints:
    GET    /api/v1/arp/eligibility/<personnel_id>
    POST   /api/v1/arp/enrollments
           Body: { "personnel_id": <int>, "coach_id": <int>, "enrollment_date": "YYYY-MM-DD" }
    GET    /api/v1/arp/enrollments                      (active list, ?limit=&offset=)
    GET    /api/v1/arp/enrollments/<id>
    GET    /api/v1/arp/enrollments/<id>/training/available

    POST   /api/v1/arp/meetings/<id>/record             Body: { "notes", "action_items" }
    POST   /api/v1/arp/meetings/<id>/miss
    POST   /api/v1/arp/meetings/<id>/reschedule         Body: { "new_date" }

    PUT    /api/v1/arp/enrollments/<id>/root-cause      Body: { <factor>: bool, ..., "other_description", "summary" }

    POST   /api/v1/arp/enrollments/<id>/training        Body: { "module_code" }
    POST   /api/v1/arp/training/<id>/start
    POST   /api/v1/arp/training/<id>/complete

    POST   /api/v1/arp/enrollments/<id>/fail            Body: { "reason" }
    POST   /api/v1/arp/enrollments/<id>/complete        → aggregate + writeUpsCleared
    POST   /api/v1/arp/enrollments/<id>/agreement/sign/<party>
           Body: { "signature", "signer_name", "signer_title" }

Layer contract:
    - Blueprint: resolve actor, parse input, call exactly one service
                 operation, return the re-derived enrollment aggregate.
    - NO db.session calls here; all writes are owned by the services.
    - NO inline role checks; permission guards live in the services.
"""

import logging

from flask import Blueprint, jsonify
from werkzeug.exceptions import HTTPException

from app.auth import current_actor
from app.blueprints import paginate_query
from app.core.exceptions import (
    EnrollmentClosedError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from app.models.arp import ROOT_CAUSE_FACTORS
from app.services import (
    agreement_signer,
    enrollment_facade,
    enrollment_service,
    meeting_scheduler,
    outcome_engine,
    root_cause_recorder,
    training_tracker,
)
from app.utils.errors import E, api_error
from app.utils.helpers import parse_date_input, parse_json_body

logger = logging.getLogger(__name__)

arp_bp = Blueprint("arp", __name__, url_prefix="/api/v1/arp")

_SIGNERS = {
    "admin": agreement_signer.sign_as_admin,
    "coach": agreement_signer.sign_as_coach,
    "employee": agreement_signer.sign_as_employee,
}


# ── Error handlers ────────────────────────────────────────────────────────────


@arp_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@arp_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@arp_bp.errorhandler(EnrollmentClosedError)
def _handle_closed(error: EnrollmentClosedError):
    return api_error(
        E.ENROLLMENT_CLOSED, str(error),
        details={"enrollment_id": error.enrollment_id, "status": error.current_status},
    )


@arp_bp.errorhandler(InvalidTransitionError)
def _handle_transition(error: InvalidTransitionError):
    return api_error(
        E.CONFLICT_STATE, str(error),
        details={"current_status": error.current_status, "target": error.target},
    )


@arp_bp.errorhandler(PermissionDenied)
def _handle_forbidden(error: PermissionDenied):
    logger.warning("Permission denied: user=%s action=%s", error.user_id, error.action,
                   extra={"event_type": "arp.forbidden", "actor_id": error.user_id})
    return api_error(E.FORBIDDEN, str(error))


@arp_bp.errorhandler(HTTPException)
def _handle_http(error: HTTPException):
    return error


@arp_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in arp_bp endpoint")
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _body():
    """Parse the JSON body. Returns (data, err_response)."""
    try:
        return parse_json_body(), None
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))


def _int_field(data: dict, name: str, required: bool = True):
    """Returns (value, err_response)."""
    raw = data.get(name)
    if raw is None or raw == "":
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
        return None, None
    if isinstance(raw, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


def _aggregate(enrollment_id: int, status: int = 200, **extra):
    payload = enrollment_facade.get_enrollment(enrollment_id)
    payload.update(extra)
    return jsonify(payload), status


# ═════════════════════════════════════════════════════════════════════════════
# Eligibility + enrollment
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/eligibility/<int:personnel_id>", methods=["GET"])
def check_eligibility(personnel_id):
    result = enrollment_service.check_eligibility(personnel_id, actor=current_actor())
    return jsonify(result), 200


@arp_bp.route("/enrollments", methods=["POST"])
def enroll():
    data, err = _body()
    if err:
        return err
    personnel_id, err = _int_field(data, "personnel_id")
    if err:
        return err
    coach_id, err = _int_field(data, "coach_id")
    if err:
        return err
    try:
        enrollment_date = parse_date_input(data.get("enrollment_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    enrollment_id = enrollment_service.enroll(
        personnel_id, coach_id, current_actor(), enrollment_date=enrollment_date,
    )
    return _aggregate(enrollment_id, status=201)


@arp_bp.route("/enrollments", methods=["GET"])
def list_active_enrollments():
    query = enrollment_facade.active_enrollments_query(current_actor())
    return jsonify(paginate_query(query, enrollment_facade.summarize)), 200


@arp_bp.route("/enrollments/<int:enrollment_id>", methods=["GET"])
def get_enrollment(enrollment_id):
    return jsonify(enrollment_facade.get_enrollment(enrollment_id, actor=current_actor())), 200


# ═════════════════════════════════════════════════════════════════════════════
# Meetings
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/meetings/<int:meeting_id>/record", methods=["POST"])
def record_meeting(meeting_id):
    data, err = _body()
    if err:
        return err
    meeting = meeting_scheduler.record_meeting(
        meeting_id, current_actor(),
        notes=data.get("notes"), action_items=data.get("action_items"),
    )
    return _aggregate(meeting["enrollment_id"])


@arp_bp.route("/meetings/<int:meeting_id>/miss", methods=["POST"])
def miss_meeting(meeting_id):
    result = meeting_scheduler.miss_meeting(meeting_id, current_actor())
    return _aggregate(result["meeting"]["enrollment_id"])


@arp_bp.route("/meetings/<int:meeting_id>/reschedule", methods=["POST"])
def reschedule_meeting(meeting_id):
    data, err = _body()
    if err:
        return err
    try:
        new_date = parse_date_input(data.get("new_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))
    if new_date is None:
        return api_error(E.VALIDATION_REQUIRED, "new_date is required")

    meeting = meeting_scheduler.reschedule_meeting(meeting_id, new_date, current_actor())
    return _aggregate(meeting["enrollment_id"])


# ═════════════════════════════════════════════════════════════════════════════
# Root cause
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/enrollments/<int:enrollment_id>/root-cause", methods=["PUT"])
def save_root_cause(enrollment_id):
    data, err = _body()
    if err:
        return err
    text_fields = {"other_description", "summary"}
    unknown = sorted(set(data) - set(ROOT_CAUSE_FACTORS) - text_fields)
    if unknown:
        return api_error(
            E.VALIDATION_INVALID, "Unknown root cause fields",
            details={"unknown": unknown},
        )

    flags = {factor: bool(data[factor]) for factor in ROOT_CAUSE_FACTORS if factor in data}
    root_cause_recorder.save_root_cause(
        enrollment_id, current_actor(),
        other_description=data.get("other_description"),
        summary=data.get("summary"),
        **flags,
    )
    return _aggregate(enrollment_id)


# ═════════════════════════════════════════════════════════════════════════════
# Training
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/enrollments/<int:enrollment_id>/training/available", methods=["GET"])
def available_training(enrollment_id):
    modules = training_tracker.get_available_modules(enrollment_id, actor=current_actor())
    return jsonify(modules), 200


@arp_bp.route("/enrollments/<int:enrollment_id>/training", methods=["POST"])
def assign_training(enrollment_id):
    data, err = _body()
    if err:
        return err
    module_code = (data.get("module_code") or "").strip()
    if not module_code:
        return api_error(E.VALIDATION_REQUIRED, "module_code is required")

    training_tracker.assign_training(enrollment_id, module_code, current_actor())
    return _aggregate(enrollment_id, status=201)


@arp_bp.route("/training/<int:training_id>/start", methods=["POST"])
def start_training(training_id):
    training = training_tracker.start_training(training_id, current_actor())
    return _aggregate(training["enrollment_id"])


@arp_bp.route("/training/<int:training_id>/complete", methods=["POST"])
def complete_training(training_id):
    training = training_tracker.complete_training(training_id, current_actor())
    return _aggregate(training["enrollment_id"])


# ═════════════════════════════════════════════════════════════════════════════
# Outcome
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/enrollments/<int:enrollment_id>/fail", methods=["POST"])
def fail_enrollment(enrollment_id):
    data, err = _body()
    if err:
        return err
    outcome_engine.fail_enrollment(enrollment_id, data.get("reason") or "", current_actor())
    return _aggregate(enrollment_id)


@arp_bp.route("/enrollments/<int:enrollment_id>/complete", methods=["POST"])
def complete_enrollment(enrollment_id):
    result = outcome_engine.complete_enrollment(enrollment_id, current_actor())
    return _aggregate(enrollment_id, writeUpsCleared=result["writeUpsCleared"])


# ═════════════════════════════════════════════════════════════════════════════
# Agreement
# ═════════════════════════════════════════════════════════════════════════════


@arp_bp.route("/enrollments/<int:enrollment_id>/agreement/sign/<party>", methods=["POST"])
def sign_agreement(enrollment_id, party):
    signer = _SIGNERS.get(party)
    if signer is None:
        return api_error(
            E.VALIDATION_INVALID, f"Unknown agreement party '{party}'",
            details={"allowed": sorted(_SIGNERS)},
        )
    data, err = _body()
    if err:
        return err

    kwargs = {"signer_name": data.get("signer_name")}
    if party == "admin":
        kwargs["signer_title"] = data.get("signer_title")
    signer(enrollment_id, data.get("signature") or "", current_actor(), **kwargs)
    return _aggregate(enrollment_id)
