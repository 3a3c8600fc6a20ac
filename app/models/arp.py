"""
Attendance Recovery Program service
ARP domain models.

Models:
    - Enrollment:           one employee's ARP cycle (the status guard for everything below)
    - Meeting:              fixed sequence of coach meetings, created with the enrollment
    - MeetingReschedule:    append-only history of prior meeting dates
    - TrainingAssignment:   remediation training modules assigned from the catalog
    - Agreement:            tri-party signed agreement, one slot per party
    - RootCauseAssessment:  structured factor assessment, overwritten on each save

Architecture:
    Personnel ──1:N──▶ Enrollment ──1:N──▶ Meeting ──1:N──▶ MeetingReschedule
    Enrollment ──1:N──▶ TrainingAssignment
    Enrollment ──1:1──▶ Agreement
    Enrollment ──1:1──▶ RootCauseAssessment

Lifecycle states:
    Enrollment:          active → completed | failed   (both terminal)
    Meeting:             scheduled → completed | missed (both terminal)
    TrainingAssignment:  assigned → in_progress → completed
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# "rescheduled" is kept for rows written before reschedule history existed;
# it is treated exactly like "scheduled".
ACTIONABLE_MEETING_STATUSES = frozenset({"scheduled", "rescheduled"})

AGREEMENT_PARTIES = ("admin", "coach", "employee")

ROOT_CAUSE_FACTORS = (
    "sleep_wake_issues",
    "transportation",
    "childcare_family",
    "health_issues",
    "time_management",
    "schedule_conflicts",
    "engagement_motivation",
    "other",
)

# Tier → program load.  Tier equals the employee's enrollment count.
PROGRAM_TIERS = {
    1: {"duration_days": 30, "meeting_count": 3, "training_required": 1},
    2: {"duration_days": 60, "meeting_count": 4, "training_required": 2},
    3: {"duration_days": 90, "meeting_count": 6, "training_required": 3},
}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ENROLLMENT_TRANSITIONS = {
    "active":    ["completed", "failed"],
    "completed": [],
    "failed":    [],
}

TRAINING_TRANSITIONS = {
    "assigned":    ["in_progress", "completed"],
    "in_progress": ["completed"],
    "completed":   [],
}


def validate_enrollment_transition(old_status, new_status):
    """Return True if Enrollment status transition is valid."""
    return new_status in ENROLLMENT_TRANSITIONS.get(old_status, [])


def validate_training_transition(old_status, new_status):
    """Return True if TrainingAssignment status transition is valid."""
    return new_status in TRAINING_TRANSITIONS.get(old_status, [])


def derive_agreement_status(signed_count: int) -> str:
    """Map the number of filled signature slots to the aggregate status."""
    if signed_count <= 0:
        return "pending"
    if signed_count >= len(AGREEMENT_PARTIES):
        return "fully_signed"
    return "partially_signed"


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Enrollment
# ═════════════════════════════════════════════════════════════════════════════


class Enrollment(db.Model):
    """
    One employee's ARP participation.

    Created active by the enrollment service, moved to a terminal status only
    by the outcome engine, never deleted.
    """

    __tablename__ = "arp_enrollments"

    id = db.Column(db.Integer, primary_key=True)
    personnel_id = db.Column(
        db.Integer, db.ForeignKey("personnel.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    coach_id = db.Column(
        db.Integer, db.ForeignKey("personnel.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    program_tier = db.Column(db.Integer, nullable=False, comment="1 | 2 | 3")
    enrollment_count = db.Column(
        db.Integer, nullable=False, default=1,
        comment="Nth ARP enrollment for this employee (1..3)",
    )
    enrollment_date = db.Column(db.Date, nullable=False)
    program_end_date = db.Column(db.Date, nullable=False)
    program_duration_days = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | completed | failed",
    )

    # Outcome
    failure_reason = db.Column(db.Text, nullable=True)
    next_eligible_date = db.Column(
        db.Date, nullable=True,
        comment="enrollment_date + cooldown; set only when failed",
    )
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    writeups_cleared = db.Column(
        db.Integer, nullable=True,
        comment="Write-ups cleared by successful completion",
    )

    # Metadata
    created_by = db.Column(db.String(150), default="system")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active','completed','failed')",
            name="ck_arp_enrollment_status",
        ),
        db.CheckConstraint(
            "program_tier BETWEEN 1 AND 3",
            name="ck_arp_enrollment_tier",
        ),
        db.Index("ix_arp_enrollments_personnel_status", "personnel_id", "status"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    personnel = db.relationship("Personnel", foreign_keys=[personnel_id])
    coach = db.relationship("Personnel", foreign_keys=[coach_id])
    meetings = db.relationship(
        "Meeting", backref="enrollment",
        cascade="all, delete-orphan", order_by="Meeting.meeting_number",
    )
    training = db.relationship(
        "TrainingAssignment", backref="enrollment",
        cascade="all, delete-orphan", order_by="TrainingAssignment.id",
    )
    agreement = db.relationship(
        "Agreement", backref="enrollment", uselist=False,
        cascade="all, delete-orphan",
    )
    root_cause = db.relationship(
        "RootCauseAssessment", backref="enrollment", uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "personnel_id": self.personnel_id,
            "coach_id": self.coach_id,
            "program_tier": self.program_tier,
            "enrollment_count": self.enrollment_count,
            "enrollment_date": _iso(self.enrollment_date),
            "program_end_date": _iso(self.program_end_date),
            "program_duration_days": self.program_duration_days,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "next_eligible_date": _iso(self.next_eligible_date),
            "failed_at": _iso(self.failed_at),
            "completed_at": _iso(self.completed_at),
            "writeups_cleared": self.writeups_cleared,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<Enrollment {self.id} personnel={self.personnel_id} tier={self.program_tier} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Meeting + reschedule history
# ═════════════════════════════════════════════════════════════════════════════


class Meeting(db.Model):
    """Coach meeting; meeting 1 is the initial meeting, the last is the final one."""

    __tablename__ = "arp_meetings"

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("arp_enrollments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    meeting_number = db.Column(db.Integer, nullable=False)
    meeting_type = db.Column(
        db.String(20), nullable=False, default="progress",
        comment="initial | progress | final",
    )
    status = db.Column(
        db.String(20), nullable=False, default="scheduled",
        comment="scheduled | completed | missed | rescheduled",
    )
    scheduled_date = db.Column(db.Date, nullable=False)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    action_items = db.Column(db.Text, nullable=True)
    recorded_by = db.Column(db.String(150), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("enrollment_id", "meeting_number", name="uq_arp_meeting_number"),
        db.CheckConstraint(
            "status IN ('scheduled','completed','missed','rescheduled')",
            name="ck_arp_meeting_status",
        ),
    )

    reschedules = db.relationship(
        "MeetingReschedule", backref="meeting",
        cascade="all, delete-orphan", order_by="MeetingReschedule.id",
    )

    @property
    def is_actionable(self) -> bool:
        return self.status in ACTIONABLE_MEETING_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "meeting_number": self.meeting_number,
            "meeting_type": self.meeting_type,
            "status": self.status,
            "scheduled_date": _iso(self.scheduled_date),
            "completed_date": _iso(self.completed_date),
            "notes": self.notes,
            "action_items": self.action_items,
            "recorded_by": self.recorded_by,
            "reschedule_history": [r.to_dict() for r in self.reschedules],
        }

    def __repr__(self) -> str:
        return f"<Meeting {self.id} #{self.meeting_number} {self.status}>"


class MeetingReschedule(db.Model):
    """One reschedule of a meeting. Rows are never updated."""

    __tablename__ = "arp_meeting_reschedules"

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(
        db.Integer, db.ForeignKey("arp_meetings.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    previous_date = db.Column(db.Date, nullable=False)
    new_date = db.Column(db.Date, nullable=False)
    rescheduled_by = db.Column(db.String(150), nullable=True)
    rescheduled_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "previous_date": _iso(self.previous_date),
            "new_date": _iso(self.new_date),
            "rescheduled_by": self.rescheduled_by,
            "rescheduled_at": _iso(self.rescheduled_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. TrainingAssignment
# ═════════════════════════════════════════════════════════════════════════════


class TrainingAssignment(db.Model):
    """A catalog module assigned to an enrollment. One row per module code."""

    __tablename__ = "arp_training"

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("arp_enrollments.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    module_code = db.Column(db.String(50), nullable=False)
    module_name = db.Column(db.String(200), nullable=False)
    assigned_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="assigned",
        comment="assigned | in_progress | completed",
    )
    assigned_by = db.Column(db.String(150), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("enrollment_id", "module_code", name="uq_arp_training_module"),
        db.CheckConstraint(
            "status IN ('assigned','in_progress','completed')",
            name="ck_arp_training_status",
        ),
    )

    def is_overdue(self, today) -> bool:
        return self.status != "completed" and self.due_date is not None and self.due_date < today

    def to_dict(self, today=None) -> dict:
        result = {
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "module_code": self.module_code,
            "module_name": self.module_name,
            "assigned_date": _iso(self.assigned_date),
            "due_date": _iso(self.due_date),
            "completed_date": _iso(self.completed_date),
            "status": self.status,
            "assigned_by": self.assigned_by,
        }
        if today is not None:
            result["is_overdue"] = self.is_overdue(today)
        return result

    def __repr__(self) -> str:
        return f"<TrainingAssignment {self.id} {self.module_code} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. Agreement
# ═════════════════════════════════════════════════════════════════════════════


class Agreement(db.Model):
    """
    Tri-party enrollment agreement.

    Each party has its own slot: signature blob, signer identity and
    timestamp. A slot is written once and never changed. The aggregate status
    is derived from the filled slots, never stored.
    """

    __tablename__ = "arp_agreements"

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("arp_enrollments.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )

    admin_signature = db.Column(db.Text, nullable=True)
    admin_signer_id = db.Column(db.String(64), nullable=True)
    admin_signer_name = db.Column(db.String(200), nullable=True)
    admin_signer_title = db.Column(db.String(200), nullable=True)
    admin_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    coach_signature = db.Column(db.Text, nullable=True)
    coach_signer_id = db.Column(db.String(64), nullable=True)
    coach_signer_name = db.Column(db.String(200), nullable=True)
    coach_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    employee_signature = db.Column(db.Text, nullable=True)
    employee_signer_id = db.Column(db.String(64), nullable=True)
    employee_signer_name = db.Column(db.String(200), nullable=True)
    employee_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def is_signed(self, party: str) -> bool:
        return bool(getattr(self, f"{party}_signature"))

    @property
    def signed_count(self) -> int:
        return sum(1 for party in AGREEMENT_PARTIES if self.is_signed(party))

    @property
    def status(self) -> str:
        return derive_agreement_status(self.signed_count)

    def slot_dict(self, party: str) -> dict:
        return {
            "signed": self.is_signed(party),
            "signature": getattr(self, f"{party}_signature"),
            "signer_id": getattr(self, f"{party}_signer_id"),
            "signer_name": getattr(self, f"{party}_signer_name"),
            "signed_at": _iso(getattr(self, f"{party}_signed_at")),
        }

    def to_dict(self) -> dict:
        result = {
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "status": self.status,
        }
        for party in AGREEMENT_PARTIES:
            result[party] = self.slot_dict(party)
        result["admin"]["signer_title"] = self.admin_signer_title
        return result

    def __repr__(self) -> str:
        return f"<Agreement {self.id} enrollment={self.enrollment_id} {self.status}>"


# ═════════════════════════════════════════════════════════════════════════════
# 5. RootCauseAssessment
# ═════════════════════════════════════════════════════════════════════════════


class RootCauseAssessment(db.Model):
    """Factor flags plus free text. Each save overwrites the whole row."""

    __tablename__ = "arp_root_causes"

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("arp_enrollments.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )

    sleep_wake_issues = db.Column(db.Boolean, nullable=False, default=False)
    transportation = db.Column(db.Boolean, nullable=False, default=False)
    childcare_family = db.Column(db.Boolean, nullable=False, default=False)
    health_issues = db.Column(db.Boolean, nullable=False, default=False)
    time_management = db.Column(db.Boolean, nullable=False, default=False)
    schedule_conflicts = db.Column(db.Boolean, nullable=False, default=False)
    engagement_motivation = db.Column(db.Boolean, nullable=False, default=False)
    other = db.Column(db.Boolean, nullable=False, default=False)
    other_description = db.Column(db.Text, nullable=True)
    summary = db.Column(db.Text, nullable=True)

    updated_by = db.Column(db.String(150), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        result = {factor: bool(getattr(self, factor)) for factor in ROOT_CAUSE_FACTORS}
        result.update({
            "id": self.id,
            "enrollment_id": self.enrollment_id,
            "other_description": self.other_description,
            "summary": self.summary,
            "updated_by": self.updated_by,
            "updated_at": _iso(self.updated_at),
        })
        return result
