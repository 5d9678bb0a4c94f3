"""
Audit Service — append-only secondary record of mutating actions.

``record`` never raises: the workflow transition it describes has already
been committed, so an audit failure is rolled back on its own and handed to
the FailureReporter under ``audit``.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from opsflow.models import db
from opsflow.models.audit import AuditLog, write_audit
from opsflow.services.failure_reporter import KIND_AUDIT, FailureReporter

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, reporter: FailureReporter):
        self.reporter = reporter

    def record(
        self,
        actor_id: int | None,
        action: str,
        entity_type: str,
        entity_id,
        metadata: dict | None = None,
    ) -> AuditLog | None:
        try:
            log = write_audit(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor_id=actor_id,
                metadata=metadata,
            )
            db.session.commit()
            return log
        except SQLAlchemyError as exc:
            db.session.rollback()
            self.reporter.report(
                KIND_AUDIT, exc,
                actor_id=actor_id, action=action,
                entity_type=entity_type, entity_id=str(entity_id),
            )
            return None

    @staticmethod
    def query(entity_type=None, entity_id=None, action=None, actor_id=None):
        """Query audit rows newest first. Returns an unexecuted query."""
        q = AuditLog.query
        if entity_type:
            q = q.filter(AuditLog.entity_type == entity_type)
        if entity_id is not None:
            q = q.filter(AuditLog.entity_id == str(entity_id))
        if action:
            q = q.filter(AuditLog.action == action)
        if actor_id is not None:
            q = q.filter(AuditLog.actor_id == actor_id)
        return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
