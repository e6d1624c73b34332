from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from taskhub.models.custom_field import CustomField
from taskhub.services.query_errors import ValidationError

CUSTOM_FIELD_KEY_RE = re.compile(r"^cf_(\d+)$")


class FieldType(str, Enum):
    STRING = "string"
    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    REFERENCE = "reference"
    STATUS = "status"
    USER = "user"


NUMERIC_TYPES = {FieldType.INTEGER, FieldType.FLOAT}
TEXT_TYPES = {FieldType.STRING, FieldType.TEXT}


@dataclass(frozen=True)
class BuiltinField:
    name: str

    @property
    def key(self) -> str:
        return self.name


@dataclass(frozen=True)
class CustomFieldRef:
    custom_field_id: int

    @property
    def key(self) -> str:
        return f"cf_{self.custom_field_id}"


FieldRef = Union[BuiltinField, CustomFieldRef]


def parse_field_ref(raw: str) -> FieldRef:
    text = str(raw or "").strip()
    if not text:
        raise ValueError("empty field identifier")
    if text.startswith("cf_"):
        match = CUSTOM_FIELD_KEY_RE.fullmatch(text)
        if match is None:
            raise ValueError(f'malformed custom field identifier "{text}"')
        return CustomFieldRef(int(match.group(1)))
    return BuiltinField(text)


@dataclass(frozen=True)
class FieldDefinition:
    ref: FieldRef
    field_type: FieldType
    label: str
    filterable: bool = True
    sortable: bool = True
    groupable: bool = False
    summable: bool = False

    @property
    def key(self) -> str:
        return self.ref.key


def _builtin(name: str, field_type: FieldType, label: str, **flags) -> FieldDefinition:
    return FieldDefinition(ref=BuiltinField(name), field_type=field_type, label=label, **flags)


# Work package attributes exposed to queries. Keys match WorkPackage column names.
BUILTIN_FIELDS: dict[str, FieldDefinition] = {
    definition.key: definition
    for definition in (
        _builtin("id", FieldType.INTEGER, "ID"),
        _builtin("subject", FieldType.STRING, "Subject"),
        _builtin("description", FieldType.TEXT, "Description", sortable=False),
        _builtin("project_id", FieldType.REFERENCE, "Project", groupable=True),
        _builtin("type_id", FieldType.REFERENCE, "Type", groupable=True),
        _builtin("status_id", FieldType.STATUS, "Status", groupable=True),
        _builtin("priority_id", FieldType.REFERENCE, "Priority", groupable=True),
        _builtin("author_id", FieldType.USER, "Author", groupable=True),
        _builtin("assigned_to_id", FieldType.USER, "Assignee", groupable=True),
        _builtin("responsible_id", FieldType.USER, "Accountable", groupable=True),
        _builtin("version_id", FieldType.REFERENCE, "Version", groupable=True),
        _builtin("parent_id", FieldType.REFERENCE, "Parent"),
        _builtin("start_date", FieldType.DATE, "Start date"),
        _builtin("due_date", FieldType.DATE, "Finish date"),
        _builtin("estimated_hours", FieldType.FLOAT, "Estimated time", summable=True),
        _builtin("done_ratio", FieldType.INTEGER, "Progress (%)"),
        _builtin("archived", FieldType.BOOLEAN, "Archived", sortable=False),
        _builtin("created_at", FieldType.DATETIME, "Created on"),
        _builtin("updated_at", FieldType.DATETIME, "Updated on"),
    )
}

DEFAULT_COLUMNS = ("id", "subject", "type_id", "status_id", "assigned_to_id", "priority_id")

CUSTOM_FIELD_FORMATS: dict[str, FieldType] = {
    "string": FieldType.STRING,
    "text": FieldType.TEXT,
    "int": FieldType.INTEGER,
    "float": FieldType.FLOAT,
    "date": FieldType.DATE,
    "bool": FieldType.BOOLEAN,
    "user": FieldType.USER,
}


def custom_field_definition(row: CustomField) -> FieldDefinition | None:
    field_type = CUSTOM_FIELD_FORMATS.get(str(row.field_format or "").strip().lower())
    if field_type is None:
        return None
    return FieldDefinition(
        ref=CustomFieldRef(int(row.id)),
        field_type=field_type,
        label=row.name,
        filterable=bool(row.is_filter),
        sortable=field_type is not FieldType.TEXT,
        groupable=field_type in {FieldType.STRING, FieldType.INTEGER, FieldType.BOOLEAN, FieldType.USER, FieldType.DATE},
        summable=field_type in NUMERIC_TYPES,
    )


class FieldRegistry:
    """Static field metadata for work package queries.

    Built-in attributes are fixed; custom fields are supplied by the caller
    (usually loaded once per request with ``load_field_registry``).
    """

    def __init__(self, custom_fields: Iterable[FieldDefinition] = ()):
        self._fields: dict[str, FieldDefinition] = dict(BUILTIN_FIELDS)
        for definition in custom_fields:
            self._fields[definition.key] = definition

    def get(self, key: str) -> FieldDefinition | None:
        return self._fields.get(key)

    def resolve(self, key: str) -> FieldDefinition:
        definition = self._fields.get(key)
        if definition is None:
            raise ValidationError.single(key, "unknown field")
        return definition

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def definitions(self) -> list[FieldDefinition]:
        return list(self._fields.values())


def load_field_registry(db: Session) -> FieldRegistry:
    rows = db.execute(select(CustomField).order_by(CustomField.id.asc())).scalars().all()
    definitions = [d for d in (custom_field_definition(row) for row in rows) if d is not None]
    return FieldRegistry(definitions)
