from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from taskhub.api.v3.presenters import results_payload
from taskhub.core.config import settings
from taskhub.core.deps import get_authorization_context, get_field_registry
from taskhub.db.session import get_db
from taskhub.schemas.query import ExecuteQueryPayload
from taskhub.services.authorization import AuthorizationContext
from taskhub.services.query_executor import QueryExecutor
from taskhub.services.query_fields import FieldRegistry
from taskhub.services.query_model import PageRequest, Query

router = APIRouter()


@router.post("/query")
def run_query(
    payload: ExecuteQueryPayload,
    db: Session = Depends(get_db),
    registry: FieldRegistry = Depends(get_field_registry),
    ctx: AuthorizationContext | None = Depends(get_authorization_context),
):
    data = payload.model_dump(exclude={"page"})
    query = Query.from_payload(data)
    page = PageRequest(
        offset=payload.page.offset,
        page_size=payload.page.page_size if payload.page.page_size is not None else settings.QUERY_DEFAULT_PAGE_SIZE,
    )
    result = QueryExecutor(db, registry).execute(query, ctx, page)
    return results_payload(query, result)
