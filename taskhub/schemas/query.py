from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Literal, Optional

Dir = Literal["asc", "desc"]
Visibility = Literal["private", "public", "global"]
Display = Literal["list", "board", "gantt", "calendar", "team_planner"]

class FilterClause(BaseModel):
    field: str
    operator: str
    values: List[Any] = []

class SortClause(BaseModel):
    field: str
    direction: Dir = "asc"

class Page(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    offset: int = 0
    page_size: Optional[int] = Field(default=None, alias="pageSize")

class QueryPayload(BaseModel):
    filters: List[FilterClause] = []
    sort: List[SortClause] = []
    columns: List[str] = []
    group_by: Optional[str] = None
    display_sums: bool = False
    include_subprojects: bool = True
    project_id: Optional[int] = None
    display_representation: Display = "list"
    show_hierarchies: bool = True
    timeline_visible: bool = False
    timestamps: List[str] = []

class ExecuteQueryPayload(QueryPayload):
    page: Page = Page()

class SavedQueryPayload(QueryPayload):
    name: str
    visibility: Visibility = "private"

class FieldSchemaOut(BaseModel):
    key: str
    label: str
    type: str
    operators: List[str]
    sortable: bool
    groupable: bool
    summable: bool
