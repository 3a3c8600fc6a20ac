"""
Shared pytest fixtures for the Attendance Recovery Program test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / coach_actor / employee_actor: acting users
    - employee / coach: Personnel rows (the employee carries write-ups)
    - enrollment_id: an active tier-1 enrollment of employee with coach
"""

from datetime import date, timedelta

import pytest

from app import create_app
from app.models import db as _db
from app.models.personnel import Personnel, WriteUp
from app.services import enrollment_service
from app.services.permission import Actor

ENROLLMENT_DATE = date(2026, 3, 2)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Builders ─────────────────────────────────────────────────────────────


def _make_person(first_name="Dana", last_name="Reyes", status="active", writeups=0):
    """Create a committed Personnel row with ``writeups`` recent attendance write-ups."""
    person = Personnel(first_name=first_name, last_name=last_name,
                       department="Operations", status=status)
    _db.session.add(person)
    _db.session.flush()
    for i in range(writeups):
        _db.session.add(WriteUp(
            personnel_id=person.id,
            category="attendance",
            issued_date=date.today() - timedelta(days=10 + i),
            description=f"Late arrival #{i + 1}",
        ))
    _db.session.commit()
    return person


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return Actor(user_id="u-admin", name="Alex Admin", role="admin")


@pytest.fixture()
def employee():
    return _make_person("Dana", "Reyes", writeups=3)


@pytest.fixture()
def coach():
    return _make_person("Chris", "Coach")


@pytest.fixture()
def coach_actor(coach):
    return Actor(user_id="u-coach", name="Chris Coach", role="coach", personnel_id=coach.id)


@pytest.fixture()
def employee_actor(employee):
    return Actor(user_id="u-emp", name="Dana Reyes", role="employee", personnel_id=employee.id)


@pytest.fixture()
def enrollment_id(employee, coach, admin):
    """Active tier-1 enrollment (3 meetings, 30 days) starting ENROLLMENT_DATE."""
    return enrollment_service.enroll(
        employee.id, coach.id, admin, enrollment_date=ENROLLMENT_DATE,
    )
