"""
Operations Approval Platform
Approval Workflow Engine.

One generic ``submit`` / ``advance`` pair drives every document type from the
declarative chains in ``opsflow.models.stage_chain``.

Order of effects for every transition:
    1. validate (fields, stage authority, pre-state)
    2. commit the status change through the DocumentStore compare-and-set
    3. fan out notifications (each recipient independently)
    4. append the audit row

Steps 3 and 4 never undo or fail step 2.
"""

import logging

from opsflow.core.exceptions import AuthorizationError, InvalidStateTransition, ValidationError
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD
from opsflow.models.document import Document, StageRecord
from opsflow.models.stage_chain import (
    DOCUMENT_CHAINS,
    SCOPE_DOCUMENT_DEPARTMENT,
    SCOPE_REVIEWER_DEPARTMENT,
    get_chain,
)

logger = logging.getLogger(__name__)

# Content keys that may supply a document title, in preference order
_TITLE_KEYS = ("title", "report_title", "request_type", "client_name")


def document_link(doc_id: int) -> str:
    return f"/documents/{doc_id}"


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _humanize(status: str) -> str:
    return status.replace("_", " ")


class WorkflowEngine:
    def __init__(self, resolver, store, notifier, audit):
        self.resolver = resolver
        self.store = store
        self.notifier = notifier
        self.audit = audit

    # ═════════════════════════════════════════════════════════════════════
    # Submit
    # ═════════════════════════════════════════════════════════════════════

    def submit(self, doc_type: str, actor, payload: dict) -> Document:
        """Create a document in its chain's initial pending status.

        Raises:
            ValidationError: unknown type or required content missing.
            AuthorizationError: the actor's role may not submit this type.
        """
        chain = get_chain(doc_type)
        if actor.role not in chain.submitter_roles:
            raise AuthorizationError(
                f"{actor.role} cannot submit {doc_type}", actor_id=actor.id,
            )

        payload = dict(payload or {})
        missing = [f for f in chain.required_fields if _is_blank(payload.get(f))]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={f: "required" for f in missing},
            )

        department, department_name = self._derive_department(actor, payload)
        excluded = self.resolver.is_excluded_department(department_name)

        self_authored = actor.role == ROLE_ADMIN and chain.self_approvable
        skip = set()
        unroutable = []
        # Intermediate stages only; an Admin's own document starts at the final stage
        for stage in () if self_authored else chain.stages[:-1]:
            if stage.scope == SCOPE_DOCUMENT_DEPARTMENT:
                if chain.head_submits_to_next and actor.role == ROLE_DEPARTMENT_HEAD:
                    skip.add(stage.key)
                elif department is None:
                    skip.add(stage.key)
                    unroutable.append(stage.key)
            elif stage.scope == SCOPE_REVIEWER_DEPARTMENT and not excluded:
                if not self.resolver.reviewer_department_ids(stage):
                    skip.add(stage.key)
                    unroutable.append(stage.key)

        status = chain.initial_status(
            is_excluded_department=excluded,
            is_self_authored=self_authored,
            skip_stages=frozenset(skip),
        )

        attachments = payload.pop("attachments", None) or []
        for key in ("department", "department_id", "department_name"):
            payload.pop(key, None)
        title = next((str(payload[k]).strip() for k in _TITLE_KEYS if not _is_blank(payload.get(k))), "")

        doc = Document(
            doc_type=doc_type,
            owner_id=actor.id,
            department_id=department.id if department is not None else None,
            department_name=department_name,
            status=status,
            title=title[:300],
            content=payload,
            attachments=list(attachments),
        )
        doc = self.store.insert(doc)
        logger.info(
            "Submitted %s %s by actor %s → %s", doc_type, doc.id, actor.id, status,
            extra={"document_id": doc.id, "actor_id": actor.id},
        )

        self._fanout_submitted(doc, actor, chain, unroutable)
        self.audit.record(
            actor.id, "document.submit", doc_type, doc.id,
            {
                "status": status,
                "department_id": doc.department_id,
                "excluded_department": excluded,
                "skipped_stages": sorted(skip),
            },
        )
        return doc

    def _derive_department(self, actor, payload):
        """Resolve the submitting department.

        Explicit ``department_id`` / ``department`` in the payload wins;
        otherwise Department Heads use the department they lead and everyone
        else their declared department. Returns ``(Department | None, name)``.
        """
        dept_id = payload.get("department_id")
        name = payload.get("department") or payload.get("department_name")
        if dept_id is None and _is_blank(name):
            if actor.role == ROLE_DEPARTMENT_HEAD and actor.authority:
                dept_id = min(actor.authority)
            else:
                name = actor.department
        if dept_id is not None:
            try:
                dept_id = int(dept_id)
            except (TypeError, ValueError):
                raise ValidationError("department_id must be an integer", details={"department_id": dept_id})

        department = self.resolver.resolve_department(dept_id, name)
        if department is not None:
            return department, department.name
        return None, (name.strip() if isinstance(name, str) and name.strip() else None)

    def _fanout_submitted(self, doc, actor, chain, unroutable):
        link = document_link(doc.id)
        # Fan-out after a committed write goes through notify_bulk: failed rows are reported, never raised
        self.notifier.notify_bulk(
            [actor.id],
            title=f"{doc.label} submitted",
            message=f"Your {doc.label.lower()} was submitted successfully and is now {_humanize(doc.status)}.",
            type="success",
            link=link,
        )

        if unroutable:
            self.notifier.notify_role(
                ROLE_ADMIN,
                title=f"{doc.label} routed to Admin",
                message=(
                    f"No reviewer could be resolved for stage(s) {', '.join(unroutable)} "
                    f"(department: {doc.department_name or 'unknown'}); the document was sent straight to Admin."
                ),
                type="warning",
                link=link,
            )

        self._ping_reviewers(doc, chain, sender_id=actor.id)

    def _ping_reviewers(self, doc, chain, sender_id):
        stage = chain.stage_for_status(doc.status)
        if stage is None:
            return []
        reviewers = [r for r in self.resolver.reviewers_for(doc, stage) if r != doc.owner_id]
        if not reviewers:
            return []
        owner = doc.owner.display_name if doc.owner else "A colleague"
        return self.notifier.notify_bulk(
            reviewers,
            title=f"{doc.label} awaiting your review",
            message=f"{owner} submitted '{doc.title}'. It is {_humanize(doc.status)}.",
            type="info",
            link=document_link(doc.id),
            sender_id=sender_id,
        )

    # ═════════════════════════════════════════════════════════════════════
    # Advance
    # ═════════════════════════════════════════════════════════════════════

    def advance(self, doc_id: int, actor, decision: str, notes: str | None = None,
                expected_status: str | None = None) -> Document:
        """Apply one reviewer decision.

        ``expected_status`` lets a client pin the status it reviewed; any
        mismatch fails the same way as losing a concurrent race.

        Raises:
            NotFoundError: unknown document.
            InvalidStateTransition: terminal document, stale pre-state, or a
                concurrent advance won.
            AuthorizationError: actor lacks authority for the current stage.
            ValidationError: decision not accepted at the current stage.
        """
        doc = self.store.get(doc_id)
        chain = get_chain(doc.doc_type)
        current = doc.status

        if expected_status is not None and expected_status != current:
            raise InvalidStateTransition(doc.id, current, expected_status=expected_status)

        stage = chain.stage_for_status(current)
        if stage is None:
            raise InvalidStateTransition(doc.id, current, reason="document is in a terminal status")

        if not self.resolver.has_stage_authority(actor, stage, doc):
            logger.warning(
                "Actor %s (role=%s) denied stage %s on document %s",
                actor.id, actor.role, stage.key, doc.id,
                extra={"document_id": doc.id, "actor_id": actor.id},
            )
            raise AuthorizationError(
                f"Not authorized to act on stage '{stage.key}'", actor_id=actor.id,
            )

        owner_role = doc.owner.role if doc.owner else None
        new_status = chain.next_status(
            current,
            decision,
            is_excluded_department=self.resolver.is_excluded_department(doc.department_name),
            is_self_authored=owner_role == ROLE_ADMIN,
            document_id=doc.id,
        )

        record = StageRecord(
            stage=stage.key,
            reviewer_id=actor.id,
            decision=decision,
            from_status=current,
            to_status=new_status,
            notes=(notes or "").strip() or None,
        )
        doc = self.store.transition(doc.id, current, new_status, record)
        logger.info(
            "Document %s %s → %s by actor %s (%s)", doc.id, current, new_status, actor.id, decision,
            extra={"document_id": doc.id, "actor_id": actor.id},
        )

        self._fanout_advanced(doc, actor, chain, stage, decision, notes)
        self.audit.record(
            actor.id, "document.advance", doc.doc_type, doc.id,
            {
                "stage": stage.key,
                "decision": decision,
                "from_status": current,
                "to_status": new_status,
                "notes": record.notes,
            },
        )
        return doc

    def _fanout_advanced(self, doc, actor, chain, stage, decision, notes):
        link = document_link(doc.id)
        approved = stage.is_approval(decision)
        terminal = chain.is_terminal(doc.status)
        verdict = "approved" if approved else "rejected"

        message = f"Your {doc.label.lower()} '{doc.title}' was {verdict} at the {stage.key.replace('_', ' ')} stage"
        message += f" and is now {_humanize(doc.status)}." if not terminal else f". Final status: {_humanize(doc.status)}."
        if notes:
            message += f" Notes: {notes}"
        self.notifier.notify_bulk(
            [doc.owner_id],
            title=f"{doc.label} {verdict}",
            message=message,
            type="success" if approved else "error",
            link=link,
            sender_id=actor.id if actor.id != doc.owner_id else None,
        )

        if not terminal:
            self._ping_reviewers(doc, chain, sender_id=actor.id)
            return

        # Earlier reviewers of record learn the final outcome
        if stage.key == chain.final_stage.key:
            earlier = []
            for rec in doc.stage_records:
                rid = rec.reviewer_id
                if rid and rid not in (actor.id, doc.owner_id) and rid not in earlier and rec.stage != stage.key:
                    earlier.append(rid)
            if earlier:
                self.notifier.notify_bulk(
                    earlier,
                    title=f"{doc.label} {_humanize(doc.status)}",
                    message=f"'{doc.title}', which you reviewed, reached final status {_humanize(doc.status)}.",
                    type="success" if approved else "warning",
                    link=link,
                    sender_id=actor.id,
                )

    # ═════════════════════════════════════════════════════════════════════
    # Queries
    # ═════════════════════════════════════════════════════════════════════

    def can_view(self, actor, doc) -> bool:
        if actor.is_admin or doc.owner_id == actor.id:
            return True
        if self.resolver.authority_over(actor, doc):
            return True
        if any(rec.reviewer_id == actor.id for rec in doc.stage_records):
            return True
        stage = get_chain(doc.doc_type).stage_for_status(doc.status)
        return stage is not None and self.resolver.has_stage_authority(actor, stage, doc)

    def get_document(self, doc_id: int, actor) -> Document:
        doc = self.store.get(doc_id)
        if not self.can_view(actor, doc):
            raise AuthorizationError("Not allowed to view this document", actor_id=actor.id)
        return doc

    def pending_for(self, actor) -> list[Document]:
        """Documents whose current stage ``actor`` may act on, newest first."""
        result = []
        reviewer_ids_cache = {}
        for chain in DOCUMENT_CHAINS.values():
            for stage in chain.stages:
                if actor.role not in stage.roles:
                    continue
                if stage.scope == SCOPE_REVIEWER_DEPARTMENT and stage.key not in reviewer_ids_cache:
                    reviewer_ids_cache[stage.key] = self.resolver.reviewer_department_ids(stage)
                docs = self.store.list_by_filter(doc_type=chain.doc_type, status=stage.pending_status)
                result.extend(
                    d for d in docs
                    if self.resolver.has_stage_authority(actor, stage, d, reviewer_ids_cache.get(stage.key))
                )
        result.sort(key=lambda d: (d.created_at, d.id), reverse=True)
        return result

    def list_documents(self, actor, doc_type=None, status=None) -> list[Document]:
        if doc_type is not None:
            get_chain(doc_type)
        docs = self.store.list_by_filter(doc_type=doc_type, status=status)
        if actor.is_admin:
            return docs
        return [d for d in docs if self.can_view(actor, d)]


