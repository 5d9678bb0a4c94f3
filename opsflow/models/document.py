"""
Operations Approval Platform
Workflow document model.

Models:
    - Document: one workflow-bearing record (requisition, department report,
      proposal, staff/client report) with its current status.
    - StageRecord: append-only reviewer decision, ordered per document.
"""

from datetime import datetime, timezone

from opsflow.models import db


# ── Constants ────────────────────────────────────────────────────────────────

DOC_REQUISITION = "requisition"
DOC_DEPARTMENT_REPORT = "department_report"
DOC_PROPOSAL = "proposal"
DOC_STAFF_CLIENT_REPORT = "staff_client_report"

DOCUMENT_TYPES = {DOC_REQUISITION, DOC_DEPARTMENT_REPORT, DOC_PROPOSAL, DOC_STAFF_CLIENT_REPORT}

DOCUMENT_LABELS = {
    DOC_REQUISITION: "Requisition",
    DOC_DEPARTMENT_REPORT: "Department report",
    DOC_PROPOSAL: "Proposal",
    DOC_STAFF_CLIENT_REPORT: "Client report",
}


def _utcnow():
    return datetime.now(timezone.utc)


class Document(db.Model):
    """
    Workflow-bearing business record.

    ``status`` is only ever written through the approval engine's
    compare-and-set update; ``content`` holds the type-specific fields
    that do not take part in routing.
    """

    __tablename__ = "documents"
    __table_args__ = (
        db.Index("idx_documents_type_status", "doc_type", "status"),
        db.Index("idx_documents_owner", "owner_id"),
        db.Index("idx_documents_department", "department_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    doc_type = db.Column(db.String(40), nullable=False, comment="requisition | department_report | proposal | staff_client_report")
    owner_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    department_name = db.Column(db.String(200), nullable=True, comment="Free-text department as submitted")
    status = db.Column(db.String(40), nullable=False)
    title = db.Column(db.String(300), nullable=False, default="")
    content = db.Column(db.JSON, default=dict)
    attachments = db.Column(db.JSON, default=list)
    version = db.Column(db.Integer, nullable=False, default=1, comment="Bumped on every status write")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    owner = db.relationship("Actor", foreign_keys=[owner_id], lazy="joined")
    department = db.relationship("Department", foreign_keys=[department_id], lazy="joined")
    stage_records = db.relationship(
        "StageRecord",
        back_populates="document",
        order_by="StageRecord.id",
        cascade="all, delete-orphan",
        lazy="select",
    )

    @property
    def label(self) -> str:
        return DOCUMENT_LABELS.get(self.doc_type, self.doc_type)

    def to_dict(self, include_stages=True):
        result = {
            "id": self.id,
            "type": self.doc_type,
            "owner_id": self.owner_id,
            "owner_name": self.owner.display_name if self.owner else None,
            "department_id": self.department_id,
            "department_name": self.department_name,
            "status": self.status,
            "title": self.title,
            "content": self.content or {},
            "attachments": self.attachments or [],
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_stages:
            result["stage_records"] = [r.to_dict() for r in self.stage_records]
        return result

    def __repr__(self):
        return f"<Document {self.id}: {self.doc_type} [{self.status}]>"


class StageRecord(db.Model):
    """One reviewer checkpoint decision. Rows are never updated."""

    __tablename__ = "document_stage_records"

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(
        db.Integer, db.ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage = db.Column(db.String(30), nullable=False, comment="dept_head | marketing | admin")
    reviewer_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    decision = db.Column(db.String(40), nullable=False)
    from_status = db.Column(db.String(40), nullable=False)
    to_status = db.Column(db.String(40), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    document = db.relationship("Document", back_populates="stage_records")

    def to_dict(self):
        return {
            "id": self.id,
            "stage": self.stage,
            "reviewer_id": self.reviewer_id,
            "decision": self.decision,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "notes": self.notes,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<StageRecord {self.id}: {self.stage} {self.decision}>"
