from __future__ import annotations

import logging

from sqlalchemy import and_, func, or_, select, true
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from taskhub.core.config import settings
from taskhub.models.common import utcnow
from taskhub.models.project import Project
from taskhub.models.query import SavedQuery
from taskhub.models.work_package import WorkPackage
from taskhub.services.authorization import (
    MANAGE_PUBLIC_QUERIES,
    SAVE_QUERIES,
    VIEW_WORK_PACKAGES,
    AuthorizationContext,
    public_projects_subquery,
)
from taskhub.services.query_errors import (
    AuthorizationError,
    ExecutionError,
    FieldError,
    QueryNotFoundError,
    QueryPermissionError,
    ValidationError,
)
from taskhub.services.query_executor import PaginatedResult, QueryExecutor
from taskhub.services.query_fields import FieldRegistry, load_field_registry
from taskhub.services.query_model import PageRequest, Query, QueryVisibility

logger = logging.getLogger(__name__)


def _require_identity(actor: AuthorizationContext | None) -> AuthorizationContext:
    if actor is None or actor.is_anonymous:
        raise AuthorizationError("Saved queries require a signed-in user", authenticated=False)
    return actor


def _visible_clause(actor: AuthorizationContext):
    if actor.is_admin:
        return true()
    project_viewable = [
        SavedQuery.project_id.in_(public_projects_subquery()),
        SavedQuery.project_id.in_(actor.project_ids_with(VIEW_WORK_PACKAGES)),
    ]
    if actor.user_id is not None:
        # public queries without a project are for signed-in users only
        project_viewable.append(SavedQuery.project_id.is_(None))
    clauses = [
        SavedQuery.visibility == QueryVisibility.GLOBAL.value,
        and_(SavedQuery.visibility == QueryVisibility.PUBLIC.value, or_(*project_viewable)),
    ]
    if actor.user_id is not None:
        clauses.append(SavedQuery.user_id == actor.user_id)
    return or_(*clauses)


def _can_view_project(db: Session, actor: AuthorizationContext, project_id: int | None) -> bool:
    if project_id is None or actor.is_admin:
        return True
    project = db.get(Project, project_id)
    if project is None or not project.active:
        return False
    return bool(project.public) or actor.allowed_in_project(VIEW_WORK_PACKAGES, project_id)


def _check_save_permissions(db: Session, actor: AuthorizationContext, query: Query) -> None:
    if not _can_view_project(db, actor, query.project_id):
        raise ValidationError.single("project_id", "project not found")
    if query.project_id is not None and not actor.allowed_in_project(SAVE_QUERIES, query.project_id):
        raise QueryPermissionError("Saving queries is not allowed in this project")
    if query.visibility is QueryVisibility.GLOBAL and not actor.is_admin:
        raise QueryPermissionError("Only administrators may publish global queries")
    if query.visibility is QueryVisibility.PUBLIC and query.project_id is not None:
        if not actor.allowed_in_project(MANAGE_PUBLIC_QUERIES, query.project_id):
            raise QueryPermissionError("Publishing queries is not allowed in this project")


def _validate_for_saving(query: Query, registry: FieldRegistry) -> None:
    errors = query.errors(registry)
    if not (query.name or "").strip() and not any(e.field == "name" for e in errors):
        errors.append(FieldError("name", "name is required"))
    if errors:
        raise ValidationError(errors)


def _load_visible(db: Session, query_id: int, actor: AuthorizationContext) -> SavedQuery:
    row = db.execute(
        select(SavedQuery).where(SavedQuery.id == query_id, _visible_clause(actor))
    ).scalar_one_or_none()
    if row is None:
        raise QueryNotFoundError(query_id)
    return row


def _load_owned(db: Session, query_id: int, actor: AuthorizationContext) -> SavedQuery:
    row = _load_visible(db, query_id, actor)
    if not actor.is_admin and row.user_id != actor.user_id:
        raise QueryPermissionError()
    return row


def _commit(db: Session, action: str, query_id: int | None) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("saved query %s rejected query_id=%s error=%s", action, query_id, exc.__class__.__name__)
        raise ExecutionError("Saved query conflicts with existing data", retryable=False) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("saved query %s failed query_id=%s error=%s", action, query_id, exc.__class__.__name__)
        raise ExecutionError("Saved query could not be stored", retryable=True) from exc


def create_saved_query(
    db: Session,
    query: Query,
    actor: AuthorizationContext | None,
    *,
    registry: FieldRegistry | None = None,
) -> Query:
    actor = _require_identity(actor)
    _validate_for_saving(query, registry if registry is not None else load_field_registry(db))
    _check_save_permissions(db, actor, query)

    values = query.to_persisted()
    values["user_id"] = actor.user_id
    row = SavedQuery(**values, starred=False)
    db.add(row)
    _commit(db, "create", None)
    db.refresh(row)
    logger.info("saved query created query_id=%s user_id=%s project_id=%s", row.id, actor.user_id, row.project_id)
    return Query.from_persisted(row)


def get_saved_query(db: Session, query_id: int, actor: AuthorizationContext | None) -> Query:
    if actor is None:
        raise AuthorizationError("Caller identity could not be established", authenticated=False)
    return Query.from_persisted(_load_visible(db, query_id, actor))


def list_visible_queries(
    db: Session,
    actor: AuthorizationContext | None,
    *,
    project_id: int | None = None,
    page: PageRequest | None = None,
) -> PaginatedResult[Query]:
    if actor is None:
        raise AuthorizationError("Caller identity could not be established", authenticated=False)
    page = page or PageRequest()
    errors = page.errors(settings.QUERY_MAX_PAGE_SIZE)
    if errors:
        raise ValidationError(errors)

    where = [_visible_clause(actor)]
    if project_id is not None:
        where.append(SavedQuery.project_id == project_id)
    total = db.execute(select(func.count(SavedQuery.id)).where(*where)).scalar_one()
    rows = (
        db.execute(
            select(SavedQuery)
            .where(*where)
            .order_by(SavedQuery.name.asc(), SavedQuery.id.asc())
            .offset(page.offset)
            .limit(page.page_size)
        )
        .scalars()
        .all()
    )
    return PaginatedResult(
        items=[Query.from_persisted(row) for row in rows],
        offset=page.offset,
        page_size=page.page_size,
        total=int(total or 0),
    )


def replace_saved_query(
    db: Session,
    query_id: int,
    query: Query,
    actor: AuthorizationContext | None,
    *,
    registry: FieldRegistry | None = None,
) -> Query:
    """Overwrite every stored attribute of a saved query in one transaction.

    Ownership and starring are not part of the definition and are left as they are.
    """
    actor = _require_identity(actor)
    row = _load_owned(db, query_id, actor)
    _validate_for_saving(query, registry if registry is not None else load_field_registry(db))
    _check_save_permissions(db, actor, query)

    values = query.to_persisted()
    values["user_id"] = row.user_id
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_at = utcnow()
    _commit(db, "replace", query_id)
    db.refresh(row)
    logger.info("saved query replaced query_id=%s user_id=%s", query_id, actor.user_id)
    return Query.from_persisted(row)


def delete_saved_query(db: Session, query_id: int, actor: AuthorizationContext | None) -> None:
    actor = _require_identity(actor)
    row = _load_owned(db, query_id, actor)
    db.delete(row)
    _commit(db, "delete", query_id)
    logger.info("saved query deleted query_id=%s user_id=%s", query_id, actor.user_id)


def _set_starred(db: Session, query_id: int, actor: AuthorizationContext | None, starred: bool) -> Query:
    actor = _require_identity(actor)
    row = _load_owned(db, query_id, actor)
    if row.starred != starred:
        row.starred = starred
        row.updated_at = utcnow()
        _commit(db, "star" if starred else "unstar", query_id)
        db.refresh(row)
        logger.info("saved query starred=%s query_id=%s user_id=%s", starred, query_id, actor.user_id)
    return Query.from_persisted(row)


def star_query(db: Session, query_id: int, actor: AuthorizationContext | None) -> Query:
    return _set_starred(db, query_id, actor, True)


def unstar_query(db: Session, query_id: int, actor: AuthorizationContext | None) -> Query:
    return _set_starred(db, query_id, actor, False)


def execute_saved_query(
    db: Session,
    query_id: int,
    actor: AuthorizationContext | None,
    page: PageRequest | None = None,
    *,
    registry: FieldRegistry | None = None,
) -> tuple[Query, PaginatedResult[WorkPackage]]:
    query = get_saved_query(db, query_id, actor)
    executor = QueryExecutor(db, registry if registry is not None else load_field_registry(db))
    return query, executor.execute(query, actor, page)
