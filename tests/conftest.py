"""
Shared pytest fixtures for the approval platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_department / make_actor: directory factories
    - org: a small organisation covering every routing path
    - ctx: ActorContext loader
    - auth_headers: identity headers for the test client
"""

from types import SimpleNamespace

import pytest

from opsflow import create_app
from opsflow.models import db as _db
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF, Actor, Department


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
        # In-process push events and absorbed failures outlive a test otherwise
        app.extensions["push_channel"].clear()
        app.extensions["failure_reporter"].clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Services ─────────────────────────────────────────────────────────────


@pytest.fixture()
def engine(app):
    return app.extensions["workflow_engine"]


@pytest.fixture()
def notifier(app):
    return app.extensions["notification_service"]


@pytest.fixture()
def resolver(app):
    return app.extensions["actor_resolver"]


@pytest.fixture()
def push(app):
    return app.extensions["push_channel"]


@pytest.fixture()
def reporter(app):
    return app.extensions["failure_reporter"]


# ── Directory factories ──────────────────────────────────────────────────


@pytest.fixture()
def make_department():
    def _make(name, manager=None, head_email=None):
        dept = Department(
            name=name,
            manager_id=manager.id if manager is not None else None,
            head_email=head_email,
        )
        _db.session.add(dept)
        _db.session.commit()
        return dept
    return _make


@pytest.fixture()
def make_actor():
    counter = {"n": 0}

    def _make(role=ROLE_STAFF, department=None, email=None, full_name=None, is_active=True):
        counter["n"] += 1
        actor = Actor(
            email=email or f"user{counter['n']}@example.com",
            full_name=full_name or f"User {counter['n']}",
            role=role,
            department=department,
            is_active=is_active,
        )
        _db.session.add(actor)
        _db.session.commit()
        return actor
    return _make


@pytest.fixture()
def ctx(resolver):
    """Load the ActorContext for an Actor row (authority resolved now)."""
    def _ctx(actor):
        return resolver.load(actor.id)
    return _ctx


@pytest.fixture()
def auth_headers():
    def _headers(actor):
        return {"X-User-Id": str(actor.id)}
    return _headers


@pytest.fixture()
def org(make_actor, make_department):
    """
    Operations   head by manager_id, two staff
    Marketing    head by head_email (mixed case, padded)
    Finance      head by manager_id, one staff (excluded department)
    Logistics    no head, one staff
    Two admins.
    """
    admin = make_actor(ROLE_ADMIN, email="admin@example.com", full_name="Ada Admin")
    admin2 = make_actor(ROLE_ADMIN, email="admin2@example.com", full_name="Abe Admin")
    ops_head = make_actor(ROLE_DEPARTMENT_HEAD, "Operations", email="ops.head@example.com", full_name="Olu Ops")
    mkt_head = make_actor(ROLE_DEPARTMENT_HEAD, "Marketing", email="mkt.head@example.com", full_name="Mira Mkt")
    fin_head = make_actor(ROLE_DEPARTMENT_HEAD, "Finance", email="fin.head@example.com", full_name="Femi Fin")
    ops_staff = make_actor(ROLE_STAFF, "Operations", email="ops.staff@example.com", full_name="Sola Staff")
    ops_staff2 = make_actor(ROLE_STAFF, "Operations", email="ops.staff2@example.com", full_name="Segun Staff")
    fin_staff = make_actor(ROLE_STAFF, "Finance", email="fin.staff@example.com", full_name="Kemi Staff")
    logi_staff = make_actor(ROLE_STAFF, "Logistics", email="logi.staff@example.com", full_name="Lara Staff")

    operations = make_department("Operations", manager=ops_head)
    marketing = make_department("Marketing", head_email="  MKT.Head@Example.com ")
    finance = make_department("Finance", manager=fin_head)
    logistics = make_department("Logistics")

    return SimpleNamespace(
        admin=admin, admin2=admin2,
        ops_head=ops_head, mkt_head=mkt_head, fin_head=fin_head,
        ops_staff=ops_staff, ops_staff2=ops_staff2, fin_staff=fin_staff, logi_staff=logi_staff,
        operations=operations, marketing=marketing, finance=finance, logistics=logistics,
    )


# ── Payloads ─────────────────────────────────────────────────────────────


@pytest.fixture()
def payloads():
    """Minimal valid content per document type."""
    return SimpleNamespace(
        requisition={"request_type": "Stationery", "requisition_date": "2026-10-01", "items": ["paper"]},
        department_report={"title": "Q3 report", "content": "All targets met."},
        proposal={"client_name": "Acme Ltd", "title": "Training proposal"},
        staff_client_report={
            "report_title": "Visit report", "report_content": "Met the client.", "client_name": "Acme Ltd",
        },
    )
