from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from time import perf_counter
from typing import Any, Callable, Generic, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import Float, Integer, and_, cast, exists, false, func, not_, or_, select
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from taskhub.core.config import settings
from taskhub.models.custom_field import CustomValue
from taskhub.models.project import Project
from taskhub.models.status import Status
from taskhub.models.work_package import WorkPackage
from taskhub.services.authorization import (
    AuthorizationContext,
    active_projects_subquery,
    work_package_visibility_clause,
)
from taskhub.services.query_errors import AuthorizationError, ExecutionError
from taskhub.services.query_fields import (
    TEXT_TYPES,
    CustomFieldRef,
    FieldDefinition,
    FieldRegistry,
    FieldType,
)
from taskhub.services.query_filters import ME, Filter, InvalidValue, Operator, coerce_value
from taskhub.services.query_model import PageRequest, Query, SortDirection

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEGATED = {
    Operator.NOT_EQUALS: Operator.EQUALS,
    Operator.NOT_CONTAINS: Operator.CONTAINS,
}


@dataclass(frozen=True)
class GroupSummary:
    key: Any
    count: int
    sums: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    """One page of matching rows plus the totals computed under the same predicate."""

    items: list[T]
    offset: int
    page_size: int
    total: int
    groups: list[GroupSummary] | None = None
    sums: dict[str, Any] | None = None
    custom_values: dict[int, dict[str, Any]] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.items)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _is_day(value: Any) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _execution_error(exc: SQLAlchemyError) -> ExecutionError:
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        retryable = True
    elif isinstance(exc, DBAPIError) and exc.connection_invalidated:
        retryable = True
    else:
        retryable = False
    return ExecutionError("Work package query could not be executed", retryable=retryable)


def _custom_value_expression(field_type: FieldType):
    # Blank values are stored as '', which PostgreSQL refuses to cast.
    if field_type in {FieldType.INTEGER, FieldType.USER}:
        return cast(func.nullif(CustomValue.value, ""), Integer)
    if field_type is FieldType.FLOAT:
        return cast(func.nullif(CustomValue.value, ""), Float)
    return CustomValue.value


def _custom_binder(field_type: FieldType) -> Callable[[Any], Any]:
    # Custom values are stored as text: dates as ISO days, booleans as true/false.
    if field_type is FieldType.DATE:
        return lambda v: v.isoformat() if isinstance(v, date) else v
    if field_type is FieldType.BOOLEAN:
        return lambda v: "true" if v else "false"
    return lambda v: v


def _identity(value: Any) -> Any:
    return value


def typed_custom_value(definition: FieldDefinition, raw: str | None) -> Any:
    if raw is None or raw == "":
        return None
    try:
        return coerce_value(definition.field_type, raw)
    except InvalidValue:
        return raw


class QueryExecutor:
    """Translates a validated Query into SQL and returns one page of work packages.

    The executor never commits and never retries. Field metadata comes from the
    registry handed in, so validation happens without touching the database.
    """

    def __init__(
        self,
        db: Session,
        registry: FieldRegistry,
        *,
        clock: Callable[[], datetime] | None = None,
        max_page_size: int | None = None,
        timezone_name: str | None = None,
    ):
        self.db = db
        self.registry = registry
        self.clock = clock or _utc_now
        self.max_page_size = max_page_size or settings.QUERY_MAX_PAGE_SIZE
        self.tz = ZoneInfo(timezone_name or settings.QUERY_TIMEZONE)

    def execute(
        self,
        query: Query,
        auth_context: AuthorizationContext | None,
        page: PageRequest | None = None,
    ) -> PaginatedResult[WorkPackage]:
        page = page or PageRequest()
        query.validate(self.registry, page=page, max_page_size=self.max_page_size)
        if auth_context is None:
            raise AuthorizationError("Caller identity could not be established", authenticated=False)

        started = perf_counter()
        try:
            self._ensure_scope_visible(query, auth_context)
            where = self.build_where(query, auth_context)
            order_by = self.build_order_by(query)
            summed = query.summed_columns(self.registry)
            total, sums = self._fetch_totals(where, summed)
            groups = self._fetch_groups(query, where, summed) if query.group_by is not None else None
            items = self._fetch_page(where, order_by, page)
            custom_values = self._fetch_custom_values(query, items)
        except SQLAlchemyError as exc:
            logger.warning(
                "query execution failed query_id=%s user_id=%s error=%s",
                query.id,
                auth_context.user_id,
                exc.__class__.__name__,
            )
            raise _execution_error(exc) from exc

        logger.debug(
            "query executed query_id=%s user_id=%s filters=%s total=%s offset=%s page_size=%s elapsed_ms=%.1f",
            query.id,
            auth_context.user_id,
            len(query.filters),
            total,
            page.offset,
            page.page_size,
            (perf_counter() - started) * 1000,
        )
        return PaginatedResult(
            items=items,
            offset=page.offset,
            page_size=page.page_size,
            total=total,
            groups=groups,
            sums=sums if query.display_sums else None,
            custom_values=custom_values,
        )

    # ── Predicate ─────────────────────────────────────────────────────

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def build_where(self, query: Query, ctx: AuthorizationContext) -> list:
        clauses = [WorkPackage.project_id.in_(active_projects_subquery())]
        if "archived" not in query.filters:
            clauses.append(WorkPackage.archived.is_(False))
        clauses.append(work_package_visibility_clause(ctx))
        if query.project_id is not None:
            clauses.append(self._project_scope_clause(query))
        today = self.today()
        for item in query.filters:
            clauses.append(self.filter_clause(item, ctx, today))
        return clauses

    def _ensure_scope_visible(self, query: Query, ctx: AuthorizationContext) -> None:
        if not ctx.is_anonymous or query.project_id is None:
            return
        row = self.db.execute(
            select(Project.public, Project.active).where(Project.id == query.project_id)
        ).first()
        if row is None or not row.public or not row.active:
            raise AuthorizationError("Anonymous access to this project is not allowed", authenticated=False)

    def _project_scope_clause(self, query: Query):
        if not query.include_subprojects:
            return WorkPackage.project_id == query.project_id
        children = select(Project.id).where(Project.parent_id == query.project_id)
        return or_(WorkPackage.project_id == query.project_id, WorkPackage.project_id.in_(children))

    def filter_clause(self, item: Filter, ctx: AuthorizationContext, today: date):
        definition = self.registry.resolve(item.field)
        values = item.typed_values(definition)
        if isinstance(definition.ref, CustomFieldRef):
            return self._custom_field_clause(definition, item.operator, values, ctx, today)
        column = getattr(WorkPackage, definition.ref.name)
        return self._operator_clause(column, item.operator, values, definition.field_type, ctx, today, _identity)

    def _custom_field_clause(self, definition, op, values, ctx, today):
        has_value = and_(
            CustomValue.customized_id == WorkPackage.id,
            CustomValue.custom_field_id == definition.ref.custom_field_id,
            CustomValue.value.isnot(None),
            CustomValue.value != "",
        )
        if op is Operator.IS_NULL:
            return not_(exists().where(has_value))
        if op is Operator.IS_NOT_NULL:
            return exists().where(has_value)
        expr = _custom_value_expression(definition.field_type)
        bind = _custom_binder(definition.field_type)
        positive = _NEGATED.get(op)
        if positive is not None:
            # Rows without a value count as "not equal" too.
            return not_(
                exists().where(
                    has_value,
                    self._operator_clause(expr, positive, values, definition.field_type, ctx, today, bind),
                )
            )
        return exists().where(
            has_value,
            self._operator_clause(expr, op, values, definition.field_type, ctx, today, bind),
        )

    def _operator_clause(self, expr, op, values, field_type, ctx, today, bind):
        if field_type is FieldType.USER:
            values = self._resolve_me(values, ctx)

        if op is Operator.EQUALS:
            return self._equals(expr, values, field_type, bind)
        if op is Operator.NOT_EQUALS:
            return or_(expr.is_(None), not_(self._equals(expr, values, field_type, bind)))
        if op is Operator.CONTAINS:
            return expr.ilike(f"%{_escape_like(values[0])}%", escape="\\")
        if op is Operator.NOT_CONTAINS:
            return or_(expr.is_(None), not_(expr.ilike(f"%{_escape_like(values[0])}%", escape="\\")))
        if op is Operator.IS_NULL:
            if field_type in TEXT_TYPES:
                return or_(expr.is_(None), expr == "")
            return expr.is_(None)
        if op is Operator.IS_NOT_NULL:
            if field_type in TEXT_TYPES:
                return and_(expr.isnot(None), expr != "")
            return expr.isnot(None)
        if op is Operator.GREATER_OR_EQUAL:
            return self._range_clause(expr, values[0], None, field_type, bind)
        if op is Operator.LESS_OR_EQUAL:
            return self._range_clause(expr, None, values[0], field_type, bind)
        if op is Operator.BETWEEN:
            return self._range_clause(expr, values[0], values[1], field_type, bind)
        if op is Operator.RELATIVE_DATE:
            first, last = values[0].bounds(today)
            return self._range_clause(expr, first, last, field_type, bind)
        if op is Operator.OPEN:
            return expr.in_(select(Status.id).where(Status.is_closed.is_(False)))
        if op is Operator.CLOSED:
            return expr.in_(select(Status.id).where(Status.is_closed.is_(True)))
        raise AssertionError(f"unhandled operator {op}")

    def _resolve_me(self, values: list[Any], ctx: AuthorizationContext) -> list[Any]:
        resolved = []
        for value in values:
            if value == ME:
                # Anonymous callers have no identity, so "me" matches nobody.
                if ctx.user_id is not None:
                    resolved.append(ctx.user_id)
            else:
                resolved.append(value)
        return resolved

    def _equals(self, expr, values, field_type, bind):
        if not values:
            return false()
        if field_type is FieldType.DATETIME:
            return or_(
                *[
                    self._range_clause(expr, v, v, field_type, bind) if _is_day(v) else expr == v
                    for v in values
                ]
            )
        bound = [bind(v) for v in values]
        if len(bound) == 1:
            return expr == bound[0]
        return expr.in_(bound)

    def _range_clause(self, expr, first, last, field_type, bind):
        """Inclusive range; either end may be None for an open side."""
        clauses = []
        if field_type is FieldType.DATETIME:
            if first is not None:
                clauses.append(expr >= (self._day_start(first) if _is_day(first) else first))
            if last is not None:
                if _is_day(last):
                    clauses.append(expr < self._day_start(last + timedelta(days=1)))
                else:
                    clauses.append(expr <= last)
        else:
            if first is not None:
                clauses.append(expr >= bind(first))
            if last is not None:
                clauses.append(expr <= bind(last))
        return and_(*clauses)

    def _day_start(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz).astimezone(timezone.utc)

    # ── Ordering ──────────────────────────────────────────────────────

    def field_expression(self, definition: FieldDefinition):
        if isinstance(definition.ref, CustomFieldRef):
            return (
                select(_custom_value_expression(definition.field_type))
                .where(
                    CustomValue.customized_id == WorkPackage.id,
                    CustomValue.custom_field_id == definition.ref.custom_field_id,
                )
                .scalar_subquery()
            )
        return getattr(WorkPackage, definition.ref.name)

    def build_order_by(self, query: Query) -> list:
        order = []
        if query.group_by is not None:
            key = self.field_expression(self.registry.resolve(query.group_by.key))
            order.append(key.asc().nulls_last())
        for criterion in query.sort.effective():
            expr = self.field_expression(self.registry.resolve(criterion.field))
            if criterion.direction is SortDirection.DESC:
                order.append(expr.desc().nulls_first())
            else:
                order.append(expr.asc().nulls_last())
        return order

    # ── Fetching ──────────────────────────────────────────────────────

    def _sum_columns(self, summed: list[FieldDefinition]) -> list:
        return [func.sum(self.field_expression(d)).label(d.key) for d in summed]

    def _fetch_totals(self, where: list, summed: list[FieldDefinition]) -> tuple[int, dict[str, Any]]:
        stmt = select(func.count(WorkPackage.id).label("row_count"), *self._sum_columns(summed)).where(*where)
        row = self.db.execute(stmt).one()
        sums = {d.key: row._mapping[d.key] for d in summed}
        return int(row.row_count or 0), sums

    def _fetch_groups(self, query: Query, where: list, summed: list[FieldDefinition]) -> list[GroupSummary]:
        key = self.field_expression(self.registry.resolve(query.group_by.key)).label("group_key")
        stmt = (
            select(key, func.count(WorkPackage.id).label("row_count"), *self._sum_columns(summed))
            .where(*where)
            .group_by(key)
            .order_by(key.asc().nulls_last())
        )
        return [
            GroupSummary(
                key=row.group_key,
                count=int(row.row_count),
                sums={d.key: row._mapping[d.key] for d in summed},
            )
            for row in self.db.execute(stmt)
        ]

    def _fetch_page(self, where: list, order_by: list, page: PageRequest) -> list[WorkPackage]:
        stmt = select(WorkPackage).where(*where).order_by(*order_by).offset(page.offset).limit(page.page_size)
        return list(self.db.execute(stmt).scalars().all())

    def _fetch_custom_values(self, query: Query, items: list[WorkPackage]) -> dict[int, dict[str, Any]]:
        definitions = {
            ref.custom_field_id: self.registry.get(ref.key)
            for ref in query.columns
            if isinstance(ref, CustomFieldRef) and ref.key in self.registry
        }
        if not definitions or not items:
            return {}
        result: dict[int, dict[str, Any]] = {wp.id: {} for wp in items}
        stmt = select(CustomValue).where(
            CustomValue.customized_id.in_(list(result)),
            CustomValue.custom_field_id.in_(sorted(definitions)),
        )
        for value in self.db.execute(stmt).scalars():
            definition = definitions[value.custom_field_id]
            result[value.customized_id][definition.key] = typed_custom_value(definition, value.value)
        return result

