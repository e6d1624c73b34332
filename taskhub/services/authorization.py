from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import or_, select, true
from sqlalchemy.orm import Session

from taskhub.models.member import Member
from taskhub.models.project import Project
from taskhub.models.user import User
from taskhub.models.work_package import WorkPackage

VIEW_WORK_PACKAGES = "view_work_packages"
SAVE_QUERIES = "save_queries"
MANAGE_PUBLIC_QUERIES = "manage_public_queries"

ACTIVE_USER_STATUSES = {"active"}


@dataclass(frozen=True)
class AuthorizationContext:
    """Caller identity plus the permissions that decide row visibility."""

    user_id: int | None
    is_admin: bool = False
    global_permissions: frozenset[str] = frozenset()
    per_project_permissions: Mapping[int, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def anonymous(cls) -> "AuthorizationContext":
        return cls(user_id=None)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def allowed_in_project(self, permission: str, project_id: int | None) -> bool:
        if self.is_admin:
            return True
        if project_id is None:
            return False
        return permission in self.per_project_permissions.get(project_id, frozenset())

    def project_ids_with(self, permission: str) -> list[int]:
        return sorted(pid for pid, perms in self.per_project_permissions.items() if permission in perms)


def _claim_user_id(claims: dict[str, Any]) -> int | None:
    raw = str(claims.get("sub") or "").strip()
    try:
        user_id = int(raw)
    except ValueError:
        return None
    return user_id if user_id > 0 else None


def build_authorization_context(db: Session, claims: dict[str, Any] | None) -> AuthorizationContext | None:
    """Derive the caller's visibility context from token claims and memberships.

    ``None`` claims produce the anonymous context. Returns ``None`` when a
    subject is present but does not map to an active user.
    """
    if claims is None:
        return AuthorizationContext.anonymous()
    user_id = _claim_user_id(claims)
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if user is None or str(user.status or "").lower() not in ACTIVE_USER_STATUSES:
        return None
    per_project: dict[int, frozenset[str]] = {}
    for member in db.execute(select(Member).where(Member.user_id == user_id)).scalars():
        granted = frozenset(str(p) for p in (member.permissions or []))
        per_project[member.project_id] = per_project.get(member.project_id, frozenset()) | granted
    global_permissions = frozenset(str(p) for p in (claims.get("permissions") or []))
    return AuthorizationContext(
        user_id=user_id,
        is_admin=bool(user.admin),
        global_permissions=global_permissions,
        per_project_permissions=per_project,
    )


def active_projects_subquery():
    return select(Project.id).where(Project.active.is_(True))


def public_projects_subquery():
    return select(Project.id).where(Project.public.is_(True), Project.active.is_(True))


def work_package_visibility_clause(ctx: AuthorizationContext):
    """Predicate restricting work packages to projects the caller may view."""
    if ctx.is_admin or VIEW_WORK_PACKAGES in ctx.global_permissions:
        return true()
    member_projects = ctx.project_ids_with(VIEW_WORK_PACKAGES)
    clauses = [WorkPackage.project_id.in_(public_projects_subquery())]
    if member_projects:
        clauses.append(WorkPackage.project_id.in_(member_projects))
    return or_(*clauses)
