"""
Directory models — actors and departments.

These rows are owned by the identity side of the platform; the approval
core only reads them to compute roles and departmental authority.
"""

from datetime import datetime, timezone

from opsflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_ADMIN = "Admin"
ROLE_DEPARTMENT_HEAD = "DepartmentHead"
ROLE_STAFF = "Staff"

ACTOR_ROLES = {ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF}


# ═══════════════════════════════════════════════════════════════
# 1. DEPARTMENTS
# ═══════════════════════════════════════════════════════════════
class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    manager_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    head_email = db.Column(db.String(200), nullable=True, comment="Fallback head lookup when manager_id is unset")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "manager_id": self.manager_id,
            "head_email": self.head_email,
        }

    def __repr__(self):
        return f"<Department {self.id}: {self.name}>"


# ═══════════════════════════════════════════════════════════════
# 2. ACTORS
# ═══════════════════════════════════════════════════════════════
class Actor(db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.Index("idx_users_role_active", "role", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(db.String(30), nullable=False, default=ROLE_STAFF, comment="Admin | DepartmentHead | Staff")
    department = db.Column(db.String(200), nullable=True, comment="Declared department name (free text)")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "department": self.department,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Actor {self.id}: {self.email} ({self.role})>"
