"""
Document Store — persistence for workflow-bearing records.

Contract used by the approval engine:
    get(id)                         → Document or NotFoundError
    insert(doc)                     → committed Document
    transition(doc, expected, new)  → compare-and-set on ``status``
    list_by_filter(...)             → Documents, newest first

``transition`` is the only way a status changes after insert. It issues a
conditional UPDATE guarded by the expected pre-state, so of two concurrent
advances from the same status exactly one matches a row; the other raises
InvalidStateTransition instead of double-applying.
"""

import logging
from datetime import datetime, timezone

import sqlalchemy as sa

from opsflow.core.exceptions import InvalidStateTransition, NotFoundError
from opsflow.models import db
from opsflow.models.document import Document, StageRecord

logger = logging.getLogger(__name__)


class DocumentStore:
    """Thin persistence gateway over the ``documents`` table."""

    def get(self, document_id: int) -> Document:
        doc = db.session.get(Document, document_id)
        if doc is None:
            raise NotFoundError(resource="Document", resource_id=document_id)
        return doc

    def insert(self, doc: Document) -> Document:
        db.session.add(doc)
        db.session.commit()
        logger.info(
            "Document %s inserted type=%s status=%s", doc.id, doc.doc_type, doc.status,
            extra={"document_id": doc.id},
        )
        return doc

    def transition(
        self,
        document_id: int,
        expected_status: str,
        new_status: str,
        record: StageRecord | None = None,
    ) -> Document:
        """Atomically move ``document_id`` from ``expected_status`` to ``new_status``.

        The optional stage record is written in the same transaction.

        Raises:
            InvalidStateTransition: the row was no longer in ``expected_status``.
        """
        stmt = (
            sa.update(Document)
            .where(Document.id == document_id, Document.status == expected_status)
            .values(
                status=new_status,
                version=Document.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if result.rowcount != 1:
            db.session.rollback()
            current = db.session.execute(
                sa.select(Document.status).where(Document.id == document_id)
            ).scalar_one_or_none()
            logger.info(
                "Lost status race on document %s: expected %s, found %s",
                document_id, expected_status, current,
                extra={"document_id": document_id},
            )
            raise InvalidStateTransition(
                document_id, current, expected_status=expected_status,
                reason="document changed concurrently",
            )

        if record is not None:
            record.document_id = document_id
            db.session.add(record)
        db.session.commit()

        doc = db.session.get(Document, document_id)
        db.session.refresh(doc)
        return doc

    def list_by_filter(
        self,
        *,
        doc_type: str | None = None,
        status=None,
        owner_id: int | None = None,
        department_ids=None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Document]:
        """Filter documents; ``status`` and ``department_ids`` accept collections."""
        q = Document.query
        if doc_type:
            q = q.filter(Document.doc_type == doc_type)
        if status:
            if isinstance(status, str):
                q = q.filter(Document.status == status)
            else:
                q = q.filter(Document.status.in_(list(status)))
        if owner_id is not None:
            q = q.filter(Document.owner_id == owner_id)
        if department_ids is not None:
            q = q.filter(Document.department_id.in_(list(department_ids)))
        q = q.order_by(Document.created_at.desc(), Document.id.desc())
        if offset:
            q = q.offset(offset)
        if limit is not None:
            q = q.limit(limit)
        return q.all()
