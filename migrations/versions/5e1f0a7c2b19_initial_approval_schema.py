"""initial_approval_schema

Creates the approval workflow and notification tables:
  - departments              — directory departments with head reference
  - users                    — actors (Admin | DepartmentHead | Staff)
  - documents                — workflow-bearing records, status + version
  - document_stage_records   — append-only reviewer decisions
  - notifications            — in-app notifications with reply threading
  - audit_logs               — append-only audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1f0a7c2b19
Revises:
Create Date: 2026-10-19 09:12:40.118204
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1f0a7c2b19'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Users ─────────────────────────────────────────────────────────────
    if "users" not in existing:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False,
                      comment="Admin | DepartmentHead | Staff"),
            sa.Column("department", sa.String(length=200), nullable=True,
                      comment="Declared department name (free text)"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    # ── Departments ───────────────────────────────────────────────────────
    if "departments" not in existing:
        op.create_table(
            "departments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("manager_id", sa.Integer(), nullable=True),
            sa.Column("head_email", sa.String(length=200), nullable=True,
                      comment="Fallback head lookup when manager_id is unset"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["manager_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )
        op.create_index("ix_departments_manager_id", "departments", ["manager_id"])

    # ── Documents ─────────────────────────────────────────────────────────
    if "documents" not in existing:
        op.create_table(
            "documents",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("doc_type", sa.String(length=40), nullable=False,
                      comment="requisition | department_report | proposal | staff_client_report"),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("department_id", sa.Integer(), nullable=True),
            sa.Column("department_name", sa.String(length=200), nullable=True,
                      comment="Free-text department as submitted"),
            sa.Column("status", sa.String(length=40), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False, server_default=""),
            sa.Column("content", sa.JSON(), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1",
                      comment="Bumped on every status write"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_documents_type_status", "documents", ["doc_type", "status"])
        op.create_index("idx_documents_owner", "documents", ["owner_id"])
        op.create_index("idx_documents_department", "documents", ["department_id"])

    # ── Stage records ─────────────────────────────────────────────────────
    if "document_stage_records" not in existing:
        op.create_table(
            "document_stage_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("document_id", sa.Integer(), nullable=False),
            sa.Column("stage", sa.String(length=30), nullable=False,
                      comment="dept_head | marketing | admin"),
            sa.Column("reviewer_id", sa.Integer(), nullable=True),
            sa.Column("decision", sa.String(length=40), nullable=False),
            sa.Column("from_status", sa.String(length=40), nullable=False),
            sa.Column("to_status", sa.String(length=40), nullable=False),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["reviewer_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_document_stage_records_document_id", "document_stage_records", ["document_id"])

    # ── Notifications ─────────────────────────────────────────────────────
    if "notifications" not in existing:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=False),
            sa.Column("sender_id", sa.Integer(), nullable=True),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("type", sa.String(length=20), nullable=True,
                      comment="info | success | warning | error"),
            sa.Column("link", sa.String(length=500), nullable=True),
            sa.Column("attachments", sa.JSON(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_acknowledged", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["parent_id"], ["notifications.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_notifications_recipient_read", "notifications", ["recipient_id", "is_read"])
        op.create_index("idx_notifications_parent", "notifications", ["parent_id"])

    # ── Audit logs ────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor_id", sa.Integer(), nullable=True, comment="NULL for system entries"),
            sa.Column("request_id", sa.String(length=32), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["actor_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor_id"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    for table in (
        "audit_logs",
        "notifications",
        "document_stage_records",
        "documents",
        "departments",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table}")
