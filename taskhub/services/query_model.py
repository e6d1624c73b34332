from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from taskhub.core.config import settings
from taskhub.services.query_errors import FieldError, ValidationError
from taskhub.services.query_fields import (
    DEFAULT_COLUMNS,
    BuiltinField,
    FieldDefinition,
    FieldRef,
    FieldRegistry,
    parse_field_ref,
)
from taskhub.services.query_filters import ME, Filter, FilterSet, Operator

PRIMARY_KEY_FIELD = "id"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @classmethod
    def parse(cls, raw: Any) -> "SortDirection | None":
        text = str(raw or "").strip().lower()
        if text in {"asc", "ascending"}:
            return cls.ASC
        if text in {"desc", "descending"}:
            return cls.DESC
        return None


class QueryVisibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"
    GLOBAL = "global"


class DisplayRepresentation(str, Enum):
    LIST = "list"
    BOARD = "board"
    GANTT = "gantt"
    CALENDAR = "calendar"
    TEAM_PLANNER = "team_planner"

    @classmethod
    def parse(cls, raw: Any) -> "DisplayRepresentation | None":
        text = str(raw or "list").strip().lower()
        aliases = {"table": "list", "cards": "board", "teamplanner": "team_planner"}
        try:
            return cls(aliases.get(text, text))
        except ValueError:
            return None


@dataclass(frozen=True)
class SortCriterion:
    field: str
    direction: SortDirection = SortDirection.ASC

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "direction": self.direction.value}


TIEBREAKER = SortCriterion(PRIMARY_KEY_FIELD, SortDirection.ASC)


@dataclass
class SortOrder:
    criteria: list[SortCriterion] = field(default_factory=list)

    def effective(self) -> list[SortCriterion]:
        # The primary key tiebreaker always comes last and cannot be removed.
        return [*self.criteria, TIEBREAKER]

    def to_list(self) -> list[dict[str, str]]:
        return [c.to_dict() for c in self.criteria]

    @classmethod
    def from_list(cls, raw: Any) -> "SortOrder":
        if raw is None:
            return cls()
        if not isinstance(raw, (list, tuple)):
            raise ValidationError.single("sort", "sort must be a list")
        criteria: list[SortCriterion] = []
        for index, item in enumerate(raw):
            if isinstance(item, (list, tuple)) and len(item) == 2:
                item = {"field": item[0], "direction": item[1]}
            if not isinstance(item, dict):
                raise ValidationError.single(f"sort[{index}]", "sort criterion must be an object")
            name = str(item.get("field") or "").strip()
            if not name:
                raise ValidationError.single(f"sort[{index}].field", "field is required")
            direction = SortDirection.parse(item.get("direction") or "asc")
            if direction is None:
                raise ValidationError.single(name, f'unknown sort direction "{item.get("direction")}"')
            criteria.append(SortCriterion(name, direction))
        return cls(criteria)


@dataclass(frozen=True)
class PageRequest:
    offset: int = 0
    page_size: int = field(default_factory=lambda: settings.QUERY_DEFAULT_PAGE_SIZE)

    def errors(self, max_page_size: int) -> list[FieldError]:
        errors: list[FieldError] = []
        if self.offset < 0:
            errors.append(FieldError("offset", "offset must not be negative"))
        if self.page_size < 1:
            errors.append(FieldError("page_size", "page size must be at least 1"))
        elif self.page_size > max_page_size:
            errors.append(FieldError("page_size", f"page size must not exceed {max_page_size}"))
        return errors


def _parse_refs(raw: Iterable[Any], label: str) -> list[FieldRef]:
    refs: list[FieldRef] = []
    for item in raw:
        try:
            refs.append(parse_field_ref(item))
        except ValueError as exc:
            raise ValidationError.single(str(item) or label, str(exc))
    return refs


@dataclass
class Query:
    """A work package view: filters, sort, columns, grouping and ownership.

    Instances are mutated by whole-aggregate replacement when persisted; the
    helpers below only ever build a new definition in memory.
    """

    filters: FilterSet = field(default_factory=FilterSet)
    sort: SortOrder = field(default_factory=SortOrder)
    columns: list[FieldRef] = field(default_factory=lambda: _parse_refs(DEFAULT_COLUMNS, "columns"))
    group_by: FieldRef | None = None
    display_sums: bool = False
    include_subprojects: bool = True
    id: int | None = None
    owner_id: int | None = None
    project_id: int | None = None
    name: str | None = None
    visibility: QueryVisibility = QueryVisibility.PRIVATE
    starred: bool = False
    display_representation: DisplayRepresentation = DisplayRepresentation.LIST
    show_hierarchies: bool = True
    timeline_visible: bool = False
    timestamps: list[str] = field(default_factory=list)

    def add_filter(self, item: Filter) -> None:
        self.filters.add_filter(item)

    def remove_filter(self, field_name: str) -> bool:
        return self.filters.remove_filter(field_name)

    def set_sort(self, criteria: Iterable[SortCriterion]) -> None:
        self.sort = SortOrder(list(criteria))

    def set_group_by(self, field_name: str | None) -> None:
        self.group_by = parse_field_ref(field_name) if field_name else None

    def set_columns(self, names: Iterable[str]) -> None:
        self.columns = _parse_refs(names, "columns")

    # ── Validation ────────────────────────────────────────────────────

    def errors(
        self,
        registry: FieldRegistry,
        *,
        page: PageRequest | None = None,
        max_page_size: int | None = None,
    ) -> list[FieldError]:
        errors: list[FieldError] = []
        for item in self.filters:
            errors.extend(item.errors(registry.get(item.field)))

        seen_sorts: set[str] = set()
        for criterion in self.sort.criteria:
            definition = registry.get(criterion.field)
            if definition is None:
                errors.append(FieldError(criterion.field, "unknown sort field"))
            elif not definition.sortable:
                errors.append(FieldError(criterion.field, "field is not sortable"))
            if criterion.field in seen_sorts:
                errors.append(FieldError(criterion.field, "field is sorted more than once"))
            seen_sorts.add(criterion.field)

        for ref in self.columns:
            if ref.key not in registry:
                errors.append(FieldError(ref.key, "unknown column"))

        if self.group_by is not None:
            definition = registry.get(self.group_by.key)
            if definition is None:
                errors.append(FieldError(self.group_by.key, "unknown group by field"))
            elif not definition.groupable:
                errors.append(FieldError(self.group_by.key, "field can not be grouped by"))

        if self.name is not None and not self.name.strip():
            errors.append(FieldError("name", "name must not be blank"))

        if any(not isinstance(stamp, str) or not stamp.strip() for stamp in self.timestamps):
            errors.append(FieldError("timestamps", "timestamps must be non-empty strings"))

        if page is not None:
            errors.extend(page.errors(max_page_size or settings.QUERY_MAX_PAGE_SIZE))
        return errors

    def validate(
        self,
        registry: FieldRegistry,
        *,
        page: PageRequest | None = None,
        max_page_size: int | None = None,
    ) -> None:
        errors = self.errors(registry, page=page, max_page_size=max_page_size)
        if errors:
            raise ValidationError(errors)

    def summed_columns(self, registry: FieldRegistry) -> list[FieldDefinition]:
        if not self.display_sums:
            return []
        definitions = [registry.get(ref.key) for ref in self.columns]
        return [d for d in definitions if d is not None and d.summable]

    # ── Transport shape ───────────────────────────────────────────────

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "project_id": self.project_id,
            "name": self.name,
            "filters": self.filters.to_list(),
            "sort": self.sort.to_list(),
            "columns": [ref.key for ref in self.columns],
            "group_by": self.group_by.key if self.group_by is not None else None,
            "display_sums": self.display_sums,
            "include_subprojects": self.include_subprojects,
            "visibility": self.visibility.value,
            "starred": self.starred,
            "display_representation": self.display_representation.value,
            "show_hierarchies": self.show_hierarchies,
            "timeline_visible": self.timeline_visible,
            "timestamps": list(self.timestamps),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Query":
        columns = payload.get("columns")
        visibility_raw = payload.get("visibility") or QueryVisibility.PRIVATE.value
        try:
            visibility = QueryVisibility(visibility_raw)
        except ValueError:
            raise ValidationError.single("visibility", f'unknown visibility "{visibility_raw}"')
        display = DisplayRepresentation.parse(payload.get("display_representation"))
        if display is None:
            raise ValidationError.single(
                "display_representation",
                f'unknown display representation "{payload.get("display_representation")}"',
            )
        timestamps = payload.get("timestamps") or []
        if not isinstance(timestamps, (list, tuple)):
            raise ValidationError.single("timestamps", "timestamps must be a list")
        group_by = payload.get("group_by")
        return cls(
            filters=FilterSet.from_list(payload.get("filters")),
            sort=SortOrder.from_list(payload.get("sort")),
            columns=_parse_refs(columns if columns else DEFAULT_COLUMNS, "columns"),
            group_by=_parse_refs([group_by], "group_by")[0] if group_by else None,
            display_sums=bool(payload.get("display_sums", False)),
            include_subprojects=bool(payload.get("include_subprojects", True)),
            id=payload.get("id"),
            owner_id=payload.get("owner_id"),
            project_id=payload.get("project_id"),
            name=payload.get("name"),
            visibility=visibility,
            starred=bool(payload.get("starred", False)),
            display_representation=display,
            show_hierarchies=bool(payload.get("show_hierarchies", True)),
            timeline_visible=bool(payload.get("timeline_visible", False)),
            timestamps=list(timestamps),
        )

    # ── Persisted shape ───────────────────────────────────────────────

    def to_persisted(self) -> dict[str, Any]:
        """Column values for the ``queries`` table, excluding identity and starring."""
        return {
            "user_id": self.owner_id,
            "project_id": self.project_id,
            "name": (self.name or "").strip(),
            "filters": self.filters.to_list(),
            "sort_criteria": [[c.field, c.direction.value] for c in self.sort.criteria],
            "column_names": [ref.key for ref in self.columns],
            "group_by": self.group_by.key if self.group_by is not None else None,
            "display_sums": self.display_sums,
            "include_subprojects": self.include_subprojects,
            "visibility": self.visibility.value,
            "display_representation": self.display_representation.value,
            "show_hierarchies": self.show_hierarchies,
            "timeline_visible": self.timeline_visible,
            "timestamps": list(self.timestamps),
        }

    @classmethod
    def from_persisted(cls, row: Any) -> "Query":
        return cls(
            filters=FilterSet.from_list(row.filters or []),
            sort=SortOrder.from_list(row.sort_criteria or []),
            columns=_parse_refs(row.column_names or DEFAULT_COLUMNS, "columns"),
            group_by=parse_field_ref(row.group_by) if row.group_by else None,
            display_sums=bool(row.display_sums),
            include_subprojects=bool(row.include_subprojects),
            id=row.id,
            owner_id=row.user_id,
            project_id=row.project_id,
            name=row.name,
            visibility=QueryVisibility(row.visibility),
            starred=bool(row.starred),
            display_representation=DisplayRepresentation.parse(row.display_representation) or DisplayRepresentation.LIST,
            show_hierarchies=bool(row.show_hierarchies),
            timeline_visible=bool(row.timeline_visible),
            timestamps=list(row.timestamps or []),
        )


def default_query(project_id: int | None = None) -> Query:
    return Query(
        sort=SortOrder([SortCriterion(PRIMARY_KEY_FIELD, SortDirection.DESC)]),
        project_id=project_id,
        name="Default",
    )


def _view(name: str, project_id: int | None, *filters: Filter, sort=(), **attributes) -> Query:
    query = Query(name=name, project_id=project_id, **attributes)
    for item in filters:
        query.add_filter(item)
    query.set_sort(sort)
    return query


def predefined_queries(project_id: int | None = None) -> list[Query]:
    """Unsaved starter views offered next to the default query."""
    is_open = Filter("status_id", Operator.OPEN)
    recently_updated = [SortCriterion("updated_at", SortDirection.DESC)]
    return [
        _view("All open", project_id, is_open, sort=recently_updated),
        _view(
            "My work packages",
            project_id,
            Filter("assigned_to_id", Operator.EQUALS, (ME,)),
            is_open,
            sort=recently_updated,
        ),
        _view("Created by me", project_id, Filter("author_id", Operator.EQUALS, (ME,)), sort=recently_updated),
        _view("Recently updated", project_id, sort=recently_updated),
        _view(
            "Overdue",
            project_id,
            Filter("due_date", Operator.RELATIVE_DATE, ("moreThanDaysAgo:0",)),
            is_open,
            sort=[SortCriterion("due_date")],
        ),
        _view(
            "Gantt chart",
            project_id,
            sort=[SortCriterion("start_date"), SortCriterion("due_date")],
            display_representation=DisplayRepresentation.GANTT,
            timeline_visible=True,
        ),
        _view(
            "Basic board",
            project_id,
            is_open,
            group_by=BuiltinField("status_id"),
            display_representation=DisplayRepresentation.BOARD,
        ),
    ]
