"""
Operations Approval Platform
Declarative stage chains per document type.

Each document type declares an ordered list of stages. A stage names the
pending status it owns, the roles allowed to act on it, how its authority
is scoped, and the outcome of every decision it accepts: either the
``ADVANCE`` marker (move to the next pending stage) or a terminal status.

One generic engine consults this table; nothing else in the codebase
hard-codes a chain.

Chains:
    requisition          dept_head → admin
    department_report    dept_head → admin            (Final_Approved allowed)
    proposal             marketing → admin            (excluded-dept bypass)
    staff_client_report  marketing → admin            (excluded-dept bypass)
"""

from dataclasses import dataclass, field

from opsflow.core.exceptions import InvalidStateTransition, ValidationError
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF
from opsflow.models.document import (
    DOC_DEPARTMENT_REPORT,
    DOC_PROPOSAL,
    DOC_REQUISITION,
    DOC_STAFF_CLIENT_REPORT,
)


ADVANCE = "__advance__"

# Authority scopes
SCOPE_DOCUMENT_DEPARTMENT = "document_department"   # head of the document's own department
SCOPE_REVIEWER_DEPARTMENT = "reviewer_department"   # head of a fixed reviewing department
SCOPE_GLOBAL = "global"                             # role membership alone

# Stage keys
STAGE_DEPT_HEAD = "dept_head"
STAGE_MARKETING = "marketing"
STAGE_ADMIN = "admin"

# Statuses
PENDING_DEPT_HEAD = "Pending_DeptHead"
PENDING_MARKETING = "Pending_Marketing"
PENDING_ADMIN = "Pending_Admin"
DEPT_HEAD_REJECTED = "DeptHead_Rejected"
MARKETING_REJECTED = "Marketing_Rejected"
ADMIN_APPROVED = "Admin_Approved"
ADMIN_REJECTED = "Admin_Rejected"
FINAL_APPROVED = "Final_Approved"

# Decisions
DEPT_HEAD_APPROVED = "DeptHead_Approved"
MARKETING_APPROVED = "Marketing_Approved"


@dataclass(frozen=True)
class Stage:
    key: str
    pending_status: str
    roles: frozenset
    scope: str
    outcomes: dict
    reviewer_department: str | None = None

    @property
    def decisions(self) -> list[str]:
        return sorted(self.outcomes)

    def is_approval(self, decision: str) -> bool:
        outcome = self.outcomes.get(decision)
        return outcome == ADVANCE or outcome in (ADMIN_APPROVED, FINAL_APPROVED)


@dataclass(frozen=True)
class StageChain:
    doc_type: str
    stages: tuple
    required_fields: tuple = ()
    submitter_roles: frozenset = field(default_factory=lambda: frozenset({ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, ROLE_STAFF}))
    self_approvable: bool = True
    head_submits_to_next: bool = False
    bypassable_stage: str | None = None

    # ── Lookups ──────────────────────────────────────────────────────────

    def stage_for_status(self, status: str) -> Stage | None:
        for stage in self.stages:
            if stage.pending_status == status:
                return stage
        return None

    def stage_index(self, key: str) -> int:
        for i, stage in enumerate(self.stages):
            if stage.key == key:
                return i
        raise KeyError(key)

    @property
    def final_stage(self) -> Stage:
        return self.stages[-1]

    @property
    def pending_statuses(self) -> set[str]:
        return {s.pending_status for s in self.stages}

    @property
    def terminal_statuses(self) -> set[str]:
        return {
            outcome
            for stage in self.stages
            for outcome in stage.outcomes.values()
            if outcome != ADVANCE
        }

    def is_terminal(self, status: str) -> bool:
        return status in self.terminal_statuses

    # ── Pure transition functions ────────────────────────────────────────

    def _next_pending(self, after_index: int, skip: frozenset) -> Stage:
        for stage in self.stages[after_index + 1:]:
            if stage.key not in skip:
                return stage
        return self.final_stage

    def initial_status(
        self,
        *,
        is_excluded_department: bool = False,
        is_self_authored: bool = False,
        skip_stages: frozenset = frozenset(),
    ) -> str:
        """First pending status for a freshly submitted document.

        ``is_self_authored`` means an Admin authored the document; on a
        self-approvable chain it starts at the final (Admin) stage.
        ``skip_stages`` names stages that have no eligible reviewer or that
        the submitter would otherwise review themselves.
        """
        if is_self_authored and self.self_approvable:
            return self.final_stage.pending_status
        skip = set(skip_stages)
        if is_excluded_department and self.bypassable_stage:
            skip.add(self.bypassable_stage)
        return self._next_pending(-1, frozenset(skip)).pending_status

    def next_status(
        self,
        status: str,
        decision: str,
        *,
        is_excluded_department: bool = False,
        is_self_authored: bool = False,
        document_id: int | None = None,
    ) -> str:
        """Pure function of (type, status, decision, excluded, self-authored).

        Raises:
            InvalidStateTransition: ``status`` is not a pending status of this chain.
            ValidationError: ``decision`` is not accepted at that stage.
        """
        stage = self.stage_for_status(status)
        if stage is None:
            reason = "document is in a terminal status" if self.is_terminal(status) else "status is not pending"
            raise InvalidStateTransition(document_id, status, reason=reason)

        outcome = stage.outcomes.get(decision)
        if outcome is None:
            raise ValidationError(
                f"Decision '{decision}' is not valid at stage '{stage.key}'",
                details={"decision": f"must be one of {stage.decisions}"},
            )
        if outcome != ADVANCE:
            return outcome

        skip = set()
        if is_excluded_department and self.bypassable_stage:
            skip.add(self.bypassable_stage)
        if is_self_authored and self.self_approvable:
            skip.update(s.key for s in self.stages[:-1])
        return self._next_pending(self.stage_index(stage.key), frozenset(skip)).pending_status

    def graph(self) -> dict[str, set[str]]:
        """Directed edges of the chain, bypass edges included."""
        edges: dict[str, set[str]] = {}
        for i, stage in enumerate(self.stages):
            targets = edges.setdefault(stage.pending_status, set())
            for outcome in stage.outcomes.values():
                if outcome == ADVANCE:
                    targets.update(s.pending_status for s in self.stages[i + 1:])
                else:
                    targets.add(outcome)
        return edges


# ── Stage definitions ────────────────────────────────────────────────────────

_REVIEWER_ROLES = frozenset({ROLE_DEPARTMENT_HEAD, ROLE_ADMIN})

_DEPT_HEAD_STAGE = Stage(
    key=STAGE_DEPT_HEAD,
    pending_status=PENDING_DEPT_HEAD,
    roles=_REVIEWER_ROLES,
    scope=SCOPE_DOCUMENT_DEPARTMENT,
    outcomes={DEPT_HEAD_APPROVED: ADVANCE, DEPT_HEAD_REJECTED: DEPT_HEAD_REJECTED},
)

_MARKETING_STAGE = Stage(
    key=STAGE_MARKETING,
    pending_status=PENDING_MARKETING,
    roles=_REVIEWER_ROLES,
    scope=SCOPE_REVIEWER_DEPARTMENT,
    outcomes={MARKETING_APPROVED: ADVANCE, MARKETING_REJECTED: MARKETING_REJECTED},
    reviewer_department="marketing",
)

_ADMIN_STAGE = Stage(
    key=STAGE_ADMIN,
    pending_status=PENDING_ADMIN,
    roles=frozenset({ROLE_ADMIN}),
    scope=SCOPE_GLOBAL,
    outcomes={ADMIN_APPROVED: ADMIN_APPROVED, ADMIN_REJECTED: ADMIN_REJECTED},
)

_ADMIN_FINAL_STAGE = Stage(
    key=STAGE_ADMIN,
    pending_status=PENDING_ADMIN,
    roles=frozenset({ROLE_ADMIN}),
    scope=SCOPE_GLOBAL,
    outcomes={
        ADMIN_APPROVED: ADMIN_APPROVED,
        ADMIN_REJECTED: ADMIN_REJECTED,
        FINAL_APPROVED: FINAL_APPROVED,
    },
)


DOCUMENT_CHAINS: dict[str, StageChain] = {
    DOC_REQUISITION: StageChain(
        doc_type=DOC_REQUISITION,
        stages=(_DEPT_HEAD_STAGE, _ADMIN_STAGE),
        required_fields=("request_type", "requisition_date"),
        head_submits_to_next=True,
    ),
    DOC_DEPARTMENT_REPORT: StageChain(
        doc_type=DOC_DEPARTMENT_REPORT,
        stages=(_DEPT_HEAD_STAGE, _ADMIN_FINAL_STAGE),
        required_fields=("title", "content"),
        head_submits_to_next=True,
    ),
    DOC_PROPOSAL: StageChain(
        doc_type=DOC_PROPOSAL,
        stages=(_MARKETING_STAGE, _ADMIN_STAGE),
        required_fields=("client_name", "title"),
        bypassable_stage=STAGE_MARKETING,
    ),
    DOC_STAFF_CLIENT_REPORT: StageChain(
        doc_type=DOC_STAFF_CLIENT_REPORT,
        stages=(_MARKETING_STAGE, _ADMIN_FINAL_STAGE),
        required_fields=("report_title", "report_content", "client_name"),
        submitter_roles=frozenset({ROLE_STAFF}),
        self_approvable=False,
        bypassable_stage=STAGE_MARKETING,
    ),
}


def get_chain(doc_type: str) -> StageChain:
    """Return the chain for ``doc_type`` or raise ValidationError."""
    chain = DOCUMENT_CHAINS.get(doc_type)
    if chain is None:
        raise ValidationError(
            f"Unknown document type '{doc_type}'",
            details={"type": f"must be one of {sorted(DOCUMENT_CHAINS)}"},
        )
    return chain
