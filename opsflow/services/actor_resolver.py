"""
Actor Resolver — roles and departmental authority.

Authority is resolved once, when the actor is loaded for a request, into an
immutable ``ActorContext`` carrying the set of department ids the actor
leads. Every later check (``authority_over``, ``has_stage_authority``) is a
pure function of that context and the document, so authorization decisions
are reproducible.

An actor leads a department when:
    1. ``departments.manager_id`` is the actor's id, or
    2. ``departments.head_email`` equals the actor's email (trimmed,
       case-insensitive), or
    3. (only with AUTHORITY_NAME_FALLBACK, only for Department Heads) the
       actor's declared department name and the department name contain
       one another (trimmed, case-insensitive).

Admins have authority over every department.
"""

import logging
import re
from dataclasses import dataclass

from opsflow.models import db
from opsflow.models.auth import ROLE_ADMIN, ROLE_DEPARTMENT_HEAD, Actor, Department
from opsflow.models.stage_chain import SCOPE_DOCUMENT_DEPARTMENT, SCOPE_GLOBAL, SCOPE_REVIEWER_DEPARTMENT

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"[a-z0-9]+")


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def _words(value: str | None) -> set[str]:
    return set(_WORD_RE.findall(_norm(value)))


@dataclass(frozen=True)
class ActorContext:
    """Verified identity plus precomputed authority. Never mutated."""

    id: int
    role: str
    email: str
    department: str | None
    authority: frozenset
    full_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_department_head(self) -> bool:
        return self.role == ROLE_DEPARTMENT_HEAD

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "role": self.role,
            "email": self.email,
            "department": self.department,
            "authority": sorted(self.authority),
        }


class ActorResolver:
    """Builds ActorContexts and answers routing questions about departments."""

    def __init__(self, excluded_departments=(), marketing_tag="marketing", name_fallback=True):
        self.excluded_departments = frozenset(_norm(t) for t in excluded_departments if _norm(t))
        self.marketing_tag = _norm(marketing_tag)
        self.name_fallback = name_fallback

    @classmethod
    def from_config(cls, config) -> "ActorResolver":
        return cls(
            excluded_departments=config.get("EXCLUDED_DEPARTMENTS", ()),
            marketing_tag=config.get("MARKETING_DEPARTMENT_TAG", "marketing"),
            name_fallback=config.get("AUTHORITY_NAME_FALLBACK", True),
        )

    # ── Loading ──────────────────────────────────────────────────────────

    def load(self, actor_id: int) -> ActorContext | None:
        """Return the context for an active actor, or None."""
        actor = db.session.get(Actor, actor_id)
        if actor is None or not actor.is_active:
            return None
        return self.context_for(actor)

    def context_for(self, actor: Actor, departments: list[Department] | None = None) -> ActorContext:
        if departments is None:
            departments = Department.query.all()
        return ActorContext(
            id=actor.id,
            role=actor.role,
            email=actor.email,
            department=actor.department,
            authority=self._authority(actor, departments),
            full_name=actor.full_name,
        )

    def _authority(self, actor: Actor, departments: list[Department]) -> frozenset:
        email = _norm(actor.email)
        declared = _norm(actor.department)
        led = set()
        for dept in departments:
            if dept.manager_id is not None and dept.manager_id == actor.id:
                led.add(dept.id)
            elif email and _norm(dept.head_email) == email:
                led.add(dept.id)
            elif (
                self.name_fallback
                and actor.role == ROLE_DEPARTMENT_HEAD
                and declared
                and (declared in _norm(dept.name) or _norm(dept.name) in declared)
            ):
                led.add(dept.id)
        return frozenset(led)

    # ── Pure checks ──────────────────────────────────────────────────────

    @staticmethod
    def authority_over(ctx: ActorContext, doc) -> bool:
        """True if ``ctx`` has departmental authority over ``doc``."""
        if ctx.is_admin:
            return True
        return doc.department_id is not None and doc.department_id in ctx.authority

    def has_stage_authority(self, ctx: ActorContext, stage, doc, reviewer_department_ids=None) -> bool:
        """True if ``ctx`` may act on ``stage`` for ``doc``."""
        if ctx.role not in stage.roles:
            return False
        if stage.scope == SCOPE_GLOBAL or ctx.is_admin:
            return True
        if stage.scope == SCOPE_DOCUMENT_DEPARTMENT:
            return self.authority_over(ctx, doc)
        if stage.scope == SCOPE_REVIEWER_DEPARTMENT:
            if reviewer_department_ids is None:
                reviewer_department_ids = self.reviewer_department_ids(stage)
            return bool(ctx.authority & set(reviewer_department_ids))
        return False

    def is_excluded_department(self, name: str | None) -> bool:
        """Whole-word match of the department name against the excluded tags."""
        return bool(_words(name) & self.excluded_departments)

    # ── Directory lookups ────────────────────────────────────────────────

    def resolve_department(self, department_id=None, department_name=None) -> Department | None:
        """Match by id first, then by trimmed case-insensitive exact name."""
        if department_id is not None:
            dept = db.session.get(Department, department_id)
            if dept is not None:
                return dept
        name = _norm(department_name)
        if not name:
            return None
        return Department.query.filter(db.func.lower(db.func.trim(Department.name)) == name).first()

    def reviewer_department_ids(self, stage) -> list[int]:
        """Departments that staff a reviewer-department stage (e.g. Marketing)."""
        tag = self.marketing_tag if stage.reviewer_department == "marketing" else _norm(stage.reviewer_department)
        if not tag:
            return []
        return [d.id for d in Department.query.order_by(Department.id).all() if tag in _words(d.name)]

    def active_ids_for_role(self, role: str) -> list[int]:
        rows = Actor.query.filter_by(role=role, is_active=True).order_by(Actor.id).all()
        return [a.id for a in rows]

    def all_active_ids(self) -> list[int]:
        rows = Actor.query.filter_by(is_active=True).order_by(Actor.id).all()
        return [a.id for a in rows]

    def heads_of(self, department_ids, roles=None) -> list[int]:
        """Active non-admin actors whose authority covers any of ``department_ids``.

        ``roles`` narrows the candidates further (a stage's acting roles).
        """
        if not department_ids:
            return []
        wanted = Department.query.filter(Department.id.in_(set(department_ids))).all()
        if not wanted:
            return []
        q = Actor.query.filter(Actor.is_active.is_(True), Actor.role != ROLE_ADMIN)
        if roles is not None:
            q = q.filter(Actor.role.in_(list(roles)))
        # Authority per department is independent, so only the wanted ones need checking
        return [actor.id for actor in q.order_by(Actor.id).all() if self._authority(actor, wanted)]

    def reviewers_for(self, doc, stage) -> list[int]:
        """Actors eligible to act on ``stage`` for ``doc``.

        The department head(s) when the stage is department-scoped and one
        exists, otherwise every active Admin.
        """
        heads = []
        if stage.scope == SCOPE_DOCUMENT_DEPARTMENT and doc.department_id is not None:
            heads = self.heads_of([doc.department_id], roles=stage.roles)
        elif stage.scope == SCOPE_REVIEWER_DEPARTMENT:
            heads = self.heads_of(self.reviewer_department_ids(stage), roles=stage.roles)
        if heads:
            return heads
        admins = self.active_ids_for_role(ROLE_ADMIN)
        if stage.scope != SCOPE_GLOBAL:
            logger.info(
                "No head for stage '%s' on document %s, routing to %d admin(s)",
                stage.key, doc.id, len(admins), extra={"document_id": doc.id},
            )
        return admins
