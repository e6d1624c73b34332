from __future__ import annotations

from fastapi import APIRouter, Depends, Query as QueryParam
from sqlalchemy.orm import Session

from taskhub.api.v3.presenters import results_payload, saved_queries_payload, schema_payload
from taskhub.core.config import settings
from taskhub.core.deps import get_authorization_context, get_field_registry
from taskhub.db.session import get_db
from taskhub.schemas.query import FieldSchemaOut, SavedQueryPayload
from taskhub.services.authorization import AuthorizationContext
from taskhub.services.query_errors import AuthorizationError
from taskhub.services.query_fields import FieldRegistry
from taskhub.services.query_model import PageRequest, Query, default_query, predefined_queries
from taskhub.services import saved_queries

router = APIRouter()


def _page(offset: int, page_size: int | None) -> PageRequest:
    return PageRequest(offset=offset, page_size=page_size if page_size is not None else settings.QUERY_DEFAULT_PAGE_SIZE)


@router.get("/schema", response_model=list[FieldSchemaOut])
def query_schema(
    registry: FieldRegistry = Depends(get_field_registry),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    if ctx is None:
        raise AuthorizationError("Caller identity could not be established", authenticated=False)
    return schema_payload(registry)


@router.get("/default")
def get_default_query(
    project_id: int | None = QueryParam(default=None, alias="projectId"),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    if ctx is None:
        raise AuthorizationError("Caller identity could not be established", authenticated=False)
    return default_query(project_id).to_payload()


@router.get("/predefined")
def get_predefined_queries(
    project_id: int | None = QueryParam(default=None, alias="projectId"),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    if ctx is None:
        raise AuthorizationError("Caller identity could not be established", authenticated=False)
    return [query.to_payload() for query in predefined_queries(project_id)]


@router.get("")
def list_queries(
    project_id: int | None = QueryParam(default=None, alias="projectId"),
    offset: int = 0,
    page_size: int | None = QueryParam(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    result = saved_queries.list_visible_queries(db, ctx, project_id=project_id, page=_page(offset, page_size))
    return saved_queries_payload(result)


@router.post("", status_code=201)
def create_query(
    payload: SavedQueryPayload,
    db: Session = Depends(get_db),
    registry: FieldRegistry = Depends(get_field_registry),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    query = Query.from_payload(payload.model_dump())
    return saved_queries.create_saved_query(db, query, ctx, registry=registry).to_payload()


@router.get("/{query_id}")
def get_query(
    query_id: int,
    db: Session = Depends(get_db),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    return saved_queries.get_saved_query(db, query_id, ctx).to_payload()


@router.put("/{query_id}")
def replace_query(
    query_id: int,
    payload: SavedQueryPayload,
    db: Session = Depends(get_db),
    registry: FieldRegistry = Depends(get_field_registry),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    query = Query.from_payload(payload.model_dump())
    return saved_queries.replace_saved_query(db, query_id, query, ctx, registry=registry).to_payload()


@router.delete("/{query_id}", status_code=204)
def delete_query(
    query_id: int,
    db: Session = Depends(get_db),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    saved_queries.delete_saved_query(db, query_id, ctx)


@router.patch("/{query_id}/star")
def star_query(
    query_id: int,
    db: Session = Depends(get_db),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    return saved_queries.star_query(db, query_id, ctx).to_payload()


@router.patch("/{query_id}/unstar")
def unstar_query(
    query_id: int,
    db: Session = Depends(get_db),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    return saved_queries.unstar_query(db, query_id, ctx).to_payload()


@router.get("/{query_id}/results")
def query_results(
    query_id: int,
    offset: int = 0,
    page_size: int | None = QueryParam(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    registry: FieldRegistry = Depends(get_field_registry),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    query, result = saved_queries.execute_saved_query(db, query_id, ctx, _page(offset, page_size), registry=registry)
    return results_payload(query, result)
