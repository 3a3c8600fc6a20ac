"""
Attendance Recovery Program service
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for ARP lifecycle events.
"""

import json
from datetime import UTC, datetime

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "enrollment", "meeting", "training", "agreement", "root_cause",
}

AUDIT_ACTIONS = {
    "arp.enroll",
    # Meetings
    "arp.meeting.record",
    "arp.meeting.miss",
    "arp.meeting.reschedule",
    # Training
    "arp.training.assign",
    "arp.training.start",
    "arp.training.complete",
    # Agreement / assessment
    "arp.agreement.sign",
    "arp.root_cause.save",
    # Outcome
    "arp.enrollment.fail",
    "arp.enrollment.complete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every ARP mutation.

    One row per action. ``diff_json`` carries the old→new snapshot of the
    fields the action changed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_enrollment", "enrollment_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer,
        db.ForeignKey("arp_enrollments.id", ondelete="CASCADE"),
        nullable=True,
    )

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="enrollment | meeting | training | agreement | root_cause",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="arp.meeting.miss | arp.enrollment.complete | …",
    )
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_user_id = db.Column(db.String(64), nullable=True, index=True)

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    enrollment_id: int | None = None,
    actor: str = "system",
    actor_user_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control: the row commits or rolls back with the mutation.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        enrollment_id=enrollment_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=str(actor_user_id) if actor_user_id is not None else None,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
