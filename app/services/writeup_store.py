"""
Write-up store used by ARP eligibility and completion.

The write-up records belong to the personnel system. ARP only looks at
attendance write-ups: eligibility counts the open ones issued inside the
lookback window, and completion clears every open one. Write-ups of any
other category (safety, conduct, ...) are never counted or cleared.
``clear_all`` runs inside the caller's transaction so the enrollment status
change and the clearing commit or roll back together.
"""

from datetime import date, datetime, timezone
from typing import Protocol

from sqlalchemy import func, select, update

from app.models import db
from app.models.personnel import WriteUp

ATTENDANCE_CATEGORY = "attendance"


class WriteUpStore(Protocol):
    def count_attributable(self, personnel_id: int, since: date | None = None) -> int:
        """Count open attendance write-ups, optionally issued on or after ``since``."""
        raise NotImplementedError

    def clear_all(self, personnel_id: int, enrollment_id: int) -> int:
        """Clear every open attendance write-up; return how many were cleared."""
        raise NotImplementedError


def _open_attendance(personnel_id: int) -> list:
    return [
        WriteUp.personnel_id == personnel_id,
        WriteUp.category == ATTENDANCE_CATEGORY,
        WriteUp.cleared_at.is_(None),
    ]


class SqlWriteUpStore:
    """WriteUpStore backed by the ``writeups`` table."""

    def count_attributable(self, personnel_id: int, since: date | None = None) -> int:
        criteria = _open_attendance(personnel_id)
        if since is not None:
            criteria.append(WriteUp.issued_date >= since)
        return db.session.execute(
            select(func.count(WriteUp.id)).where(*criteria)
        ).scalar_one()

    def clear_all(self, personnel_id: int, enrollment_id: int) -> int:
        result = db.session.execute(
            update(WriteUp)
            .where(*_open_attendance(personnel_id))
            .values(
                cleared_at=datetime.now(timezone.utc),
                cleared_by_enrollment_id=enrollment_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
