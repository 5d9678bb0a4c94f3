"""
Demo directory seed.

Creates a small organisation that exercises every routing path:
    - Operations / Engineering (department-head review)
    - Marketing (reviewer department for proposals and client reports)
    - Finance (excluded department, bypasses Marketing)
    - one Admin, one head per department, a few staff

Idempotent: existing rows (matched by department name / actor email) are
left alone.
"""

import logging

from opsflow.models import db
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF, Actor, Department

logger = logging.getLogger(__name__)

DEMO_DEPARTMENTS = ["Operations", "Engineering", "Marketing", "Finance"]

DEMO_ACTORS = [
    # (email, full_name, role, department)
    ("admin@opsflow.local", "Ada Admin", ROLE_ADMIN, None),
    ("ops.head@opsflow.local", "Olu Operations", ROLE_DEPARTMENT_HEAD, "Operations"),
    ("eng.head@opsflow.local", "Emeka Engineering", ROLE_DEPARTMENT_HEAD, "Engineering"),
    ("mkt.head@opsflow.local", "Mira Marketing", ROLE_DEPARTMENT_HEAD, "Marketing"),
    ("fin.head@opsflow.local", "Femi Finance", ROLE_DEPARTMENT_HEAD, "Finance"),
    ("ops.staff@opsflow.local", "Sola Staff", ROLE_STAFF, "Operations"),
    ("eng.staff@opsflow.local", "Tunde Staff", ROLE_STAFF, "Engineering"),
    ("fin.staff@opsflow.local", "Kemi Staff", ROLE_STAFF, "Finance"),
]


def seed_directory(reset=False) -> dict:
    """Insert the demo directory. Returns counts of rows created."""
    if reset:
        Department.query.update({"manager_id": None})
        Department.query.delete()
        Actor.query.delete()
        db.session.commit()
        logger.info("Directory reset")

    created = {"departments": 0, "actors": 0}

    departments = {d.name: d for d in Department.query.all()}
    for name in DEMO_DEPARTMENTS:
        if name not in departments:
            dept = Department(name=name)
            db.session.add(dept)
            departments[name] = dept
            created["departments"] += 1
    db.session.flush()

    for email, full_name, role, dept_name in DEMO_ACTORS:
        actor = Actor.query.filter_by(email=email).first()
        if actor is None:
            actor = Actor(email=email, full_name=full_name, role=role, department=dept_name)
            db.session.add(actor)
            created["actors"] += 1
        db.session.flush()
        if role == ROLE_DEPARTMENT_HEAD and dept_name:
            dept = departments[dept_name]
            if dept.manager_id is None:
                dept.manager_id = actor.id
                dept.head_email = email

    db.session.commit()
    return created
