"""
Attendance Recovery Program service
Personnel and write-up models.

These tables belong to the surrounding personnel system. The ARP core only
needs a narrow slice of them: who an employee/coach is, whether they are
active, and which disciplinary write-ups are still attributable to them.

Models:
    - Personnel: an employee (or coach) record
    - WriteUp:   a disciplinary record; cleared (not deleted) on ARP completion
"""

from datetime import datetime, timezone

from app.models import db


class Personnel(db.Model):
    """Employee record, referenced by enrollments as employee or coach."""

    __tablename__ = "personnel"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    department = db.Column(db.String(100), default="")
    status = db.Column(
        db.String(20), nullable=False, default="active",
        comment="active | inactive | terminated",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    writeups = db.relationship(
        "WriteUp", backref="personnel", lazy="dynamic",
        order_by="WriteUp.issued_date",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "name": self.full_name,
            "department": self.department,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<Personnel {self.id}: {self.full_name}>"


class WriteUp(db.Model):
    """
    Disciplinary write-up.

    A write-up is attributable to the employee while ``cleared_at`` is NULL.
    Successful ARP completion sets ``cleared_at`` and the clearing enrollment
    id instead of deleting the row, so the history survives.
    """

    __tablename__ = "writeups"
    __table_args__ = (
        db.Index("ix_writeups_personnel_cleared", "personnel_id", "cleared_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    personnel_id = db.Column(
        db.Integer, db.ForeignKey("personnel.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    category = db.Column(
        db.String(20), nullable=False, default="attendance",
        comment="attendance | safety | conduct | other",
    )
    issued_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, default="")

    cleared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cleared_by_enrollment_id = db.Column(
        db.Integer, db.ForeignKey("arp_enrollments.id", ondelete="SET NULL"),
        nullable=True,
    )

    @property
    def is_cleared(self) -> bool:
        return self.cleared_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "personnel_id": self.personnel_id,
            "category": self.category,
            "issued_date": self.issued_date.isoformat() if self.issued_date else None,
            "description": self.description,
            "cleared_at": self.cleared_at.isoformat() if self.cleared_at else None,
            "cleared_by_enrollment_id": self.cleared_by_enrollment_id,
        }

    def __repr__(self) -> str:
        state = "cleared" if self.is_cleared else "open"
        return f"<WriteUp {self.id} personnel={self.personnel_id} {state}>"
