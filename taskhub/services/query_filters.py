from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Iterator

from taskhub.services.query_errors import FieldError, ValidationError
from taskhub.services.query_fields import (
    TEXT_TYPES,
    FieldDefinition,
    FieldType,
)

ME = "me"

# Bounds of the 32-bit integer columns that hold ids and numeric attributes.
INT_MIN = -(2**31)
INT_MAX = 2**31 - 1


class Operator(str, Enum):
    EQUALS = "="
    NOT_EQUALS = "!="
    CONTAINS = "~"
    NOT_CONTAINS = "!~"
    IS_NULL = "!*"
    IS_NOT_NULL = "*"
    GREATER_OR_EQUAL = ">="
    LESS_OR_EQUAL = "<="
    BETWEEN = "<>d"
    RELATIVE_DATE = "t"
    OPEN = "o"
    CLOSED = "c"

    @classmethod
    def parse(cls, raw: Any) -> "Operator | None":
        text = str(raw or "").strip()
        if text == "!":
            return cls.NOT_EQUALS
        try:
            return cls(text)
        except ValueError:
            return None


# (min, max) number of values; None means unbounded.
OPERATOR_ARITY: dict[Operator, tuple[int, int | None]] = {
    Operator.EQUALS: (1, None),
    Operator.NOT_EQUALS: (1, None),
    Operator.CONTAINS: (1, 1),
    Operator.NOT_CONTAINS: (1, 1),
    Operator.IS_NULL: (0, 0),
    Operator.IS_NOT_NULL: (0, 0),
    Operator.GREATER_OR_EQUAL: (1, 1),
    Operator.LESS_OR_EQUAL: (1, 1),
    Operator.BETWEEN: (2, 2),
    Operator.RELATIVE_DATE: (1, 1),
    Operator.OPEN: (0, 0),
    Operator.CLOSED: (0, 0),
}

_NULL_CHECKS = {Operator.IS_NULL, Operator.IS_NOT_NULL}
_ORDERED = {Operator.GREATER_OR_EQUAL, Operator.LESS_OR_EQUAL, Operator.BETWEEN}

OPERATORS_BY_TYPE: dict[FieldType, set[Operator]] = {
    FieldType.STRING: {Operator.EQUALS, Operator.NOT_EQUALS, Operator.CONTAINS, Operator.NOT_CONTAINS} | _NULL_CHECKS,
    FieldType.TEXT: {Operator.CONTAINS, Operator.NOT_CONTAINS} | _NULL_CHECKS,
    FieldType.INTEGER: {Operator.EQUALS, Operator.NOT_EQUALS} | _ORDERED | _NULL_CHECKS,
    FieldType.FLOAT: {Operator.EQUALS, Operator.NOT_EQUALS} | _ORDERED | _NULL_CHECKS,
    FieldType.DATE: {Operator.EQUALS, Operator.RELATIVE_DATE} | _ORDERED | _NULL_CHECKS,
    FieldType.DATETIME: {Operator.EQUALS, Operator.RELATIVE_DATE} | _ORDERED | _NULL_CHECKS,
    FieldType.BOOLEAN: {Operator.EQUALS, Operator.NOT_EQUALS},
    FieldType.REFERENCE: {Operator.EQUALS, Operator.NOT_EQUALS} | _NULL_CHECKS,
    FieldType.STATUS: {Operator.EQUALS, Operator.NOT_EQUALS, Operator.OPEN, Operator.CLOSED},
    FieldType.USER: {Operator.EQUALS, Operator.NOT_EQUALS} | _NULL_CHECKS,
}

assert set(OPERATOR_ARITY) == set(Operator)
assert set(OPERATORS_BY_TYPE) == set(FieldType)


# ── Value coercion ────────────────────────────────────────────────────


class InvalidValue(Exception):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(kind)


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in {"1", "true", "t", "yes", "y"}:
        return True
    if text in {"0", "false", "f", "no", "n"}:
        return False
    raise InvalidValue("boolean")


def _coerce_number(value: Any, python_type: type):
    kind = "integer" if python_type is int else "number"
    if isinstance(value, bool):
        raise InvalidValue("number")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise InvalidValue(kind)
        if python_type is int and isinstance(value, float) and not value.is_integer():
            raise InvalidValue("integer")
        try:
            number = python_type(value)
        except OverflowError:
            raise InvalidValue(kind)
    else:
        text = str(value or "").strip()
        if not text:
            raise InvalidValue("number")
        normalized = text.replace(",", ".")
        try:
            number = python_type(normalized)
        except (ValueError, TypeError):
            raise InvalidValue(kind)
    if python_type is float and not math.isfinite(number):
        raise InvalidValue(kind)
    if python_type is int and not INT_MIN <= number <= INT_MAX:
        raise InvalidValue(kind)
    return number


def _coerce_date(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        raise InvalidValue("date")
    try:
        # Accept either YYYY-MM-DD or full ISO datetime and take its date part.
        if "T" in text or " " in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidValue("date")


def is_date_only_literal(raw_value: Any) -> bool:
    if isinstance(raw_value, date) and not isinstance(raw_value, datetime):
        return True
    if not isinstance(raw_value, str):
        return False
    text = raw_value.strip()
    if not text or "T" in text or " " in text:
        return False
    try:
        date.fromisoformat(text)
        return True
    except ValueError:
        return False


def _coerce_datetime(value: Any) -> date | datetime:
    # A date-only literal on a timestamp field stays a date: it names a whole day.
    if is_date_only_literal(value):
        return _coerce_date(value)
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise InvalidValue("datetime")
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidValue("datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coerce_reference(value: Any, allow_me: bool):
    if allow_me and str(value).strip().lower() == ME:
        return ME
    number = _coerce_number(value, int)
    if number <= 0:
        raise InvalidValue("identifier")
    return number


def coerce_value(field_type: FieldType, value: Any):
    if field_type in TEXT_TYPES:
        text = str(value if value is not None else "")
        if not text.strip():
            raise InvalidValue("non-empty text")
        return text
    if field_type is FieldType.INTEGER:
        return _coerce_number(value, int)
    if field_type is FieldType.FLOAT:
        return _coerce_number(value, float)
    if field_type is FieldType.DATE:
        return _coerce_date(value)
    if field_type is FieldType.DATETIME:
        return _coerce_datetime(value)
    if field_type is FieldType.BOOLEAN:
        return _coerce_bool(value)
    if field_type in {FieldType.REFERENCE, FieldType.STATUS}:
        return _coerce_reference(value, allow_me=False)
    if field_type is FieldType.USER:
        return _coerce_reference(value, allow_me=True)
    raise AssertionError(f"unhandled field type {field_type}")


# ── Relative dates ────────────────────────────────────────────────────

_RELATIVE_WITH_DAYS_RE = re.compile(r"^(inLessThanDays|inMoreThanDays|lessThanDaysAgo|moreThanDaysAgo):(\d{1,4})$")


@dataclass(frozen=True)
class RelativeDate:
    """A symbolic date range, resolved against a clock only at execution time."""

    kind: str
    days: int = 0

    @classmethod
    def parse(cls, raw: Any) -> "RelativeDate":
        text = str(raw or "").strip()
        if text in {"today", "thisWeek"}:
            return cls(text)
        match = _RELATIVE_WITH_DAYS_RE.fullmatch(text)
        if match is None:
            raise InvalidValue("relative date token")
        return cls(match.group(1), int(match.group(2)))

    @property
    def token(self) -> str:
        if self.kind in {"today", "thisWeek"}:
            return self.kind
        return f"{self.kind}:{self.days}"

    def bounds(self, today: date) -> tuple[date | None, date | None]:
        """Inclusive (first_day, last_day); None means unbounded on that side."""
        if self.kind == "today":
            return today, today
        if self.kind == "thisWeek":
            monday = today - timedelta(days=today.weekday())
            return monday, monday + timedelta(days=6)
        if self.kind == "inLessThanDays":
            return today, today + timedelta(days=self.days)
        if self.kind == "inMoreThanDays":
            return today + timedelta(days=self.days + 1), None
        if self.kind == "lessThanDaysAgo":
            return today - timedelta(days=self.days), today
        if self.kind == "moreThanDaysAgo":
            return None, today - timedelta(days=self.days + 1)
        raise AssertionError(f"unhandled relative date kind {self.kind}")


# ── Filter ────────────────────────────────────────────────────────────


def _normalize_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (str, int, float)):
        return str(value)
    # null, objects and nested lists have no filter meaning
    raise InvalidValue("scalar")


@dataclass(frozen=True)
class Filter:
    """One ``field operator values`` predicate.

    Values are kept exactly as supplied (as strings). Symbolic values such as
    ``me`` and relative date tokens are stored verbatim and only resolved when
    the filter is translated for execution.
    """

    field: str
    operator: Operator
    values: tuple[str, ...] = ()

    def __post_init__(self):
        try:
            values = tuple(_normalize_value(v) for v in (self.values or ()))
        except InvalidValue:
            raise ValidationError.single(self.field, "invalid value")
        object.__setattr__(self, "values", values)

    def errors(self, definition: FieldDefinition | None) -> list[FieldError]:
        if definition is None:
            return [FieldError(self.field, "unknown field")]
        if not definition.filterable:
            return [FieldError(self.field, "field is not filterable")]
        if self.operator not in OPERATORS_BY_TYPE[definition.field_type]:
            return [
                FieldError(
                    self.field,
                    f'operator "{self.operator.value}" is not allowed for {definition.field_type.value} fields',
                )
            ]
        minimum, maximum = OPERATOR_ARITY[self.operator]
        count = len(self.values)
        if count < minimum or (maximum is not None and count > maximum):
            if minimum == maximum:
                expected = f"exactly {minimum}"
            elif maximum is None:
                expected = f"at least {minimum}"
            else:
                expected = f"{minimum}..{maximum}"
            return [
                FieldError(
                    self.field,
                    f'operator "{self.operator.value}" expects {expected} value(s), got {count}',
                )
            ]
        try:
            typed = self.typed_values(definition)
        except InvalidValue as exc:
            return [FieldError(self.field, f"invalid {exc.kind} value")]
        if self.operator is Operator.BETWEEN and _out_of_order(typed[0], typed[1]):
            return [FieldError(self.field, "range start is after range end")]
        return []

    def typed_values(self, definition: FieldDefinition) -> list[Any]:
        if self.operator is Operator.RELATIVE_DATE:
            return [RelativeDate.parse(self.values[0])]
        return [coerce_value(definition.field_type, value) for value in self.values]

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value, "values": list(self.values)}


def _out_of_order(lower: Any, upper: Any) -> bool:
    if isinstance(lower, datetime) != isinstance(upper, datetime):
        lower = lower.date() if isinstance(lower, datetime) else lower
        upper = upper.date() if isinstance(upper, datetime) else upper
    try:
        return lower > upper
    except TypeError:
        return False


def filter_from_dict(raw: Any, position: int) -> Filter:
    if not isinstance(raw, dict):
        raise ValidationError.single(f"filters[{position}]", "filter must be an object")
    field = str(raw.get("field") or "").strip()
    if not field:
        raise ValidationError.single(f"filters[{position}].field", "field is required")
    operator = Operator.parse(raw.get("operator"))
    if operator is None:
        raise ValidationError.single(field, f'unknown operator "{raw.get("operator")}"')
    values = raw.get("values")
    if values is None:
        values = []
    if not isinstance(values, (list, tuple)):
        raise ValidationError.single(field, "values must be a list")
    return Filter(field, operator, tuple(values))


class FilterSet:
    """Ordered filters, at most one per field, combined with AND."""

    def __init__(self, filters: Iterable[Filter] = ()):
        self._filters: list[Filter] = []
        for item in filters:
            self.add_filter(item)

    def add_filter(self, item: Filter) -> None:
        for index, existing in enumerate(self._filters):
            if existing.field == item.field:
                self._filters[index] = item
                return
        self._filters.append(item)

    def remove_filter(self, field: str) -> bool:
        before = len(self._filters)
        self._filters = [f for f in self._filters if f.field != field]
        return len(self._filters) != before

    def get(self, field: str) -> Filter | None:
        for item in self._filters:
            if item.field == field:
                return item
        return None

    @property
    def fields(self) -> list[str]:
        return [f.field for f in self._filters]

    def __contains__(self, field: object) -> bool:
        return any(f.field == field for f in self._filters)

    def __iter__(self) -> Iterator[Filter]:
        return iter(list(self._filters))

    def __len__(self) -> int:
        return len(self._filters)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FilterSet):
            return NotImplemented
        return self._filters == other._filters

    def __repr__(self) -> str:
        return f"FilterSet({self._filters!r})"

    def to_list(self) -> list[dict[str, Any]]:
        return [f.to_dict() for f in self._filters]

    @classmethod
    def from_list(cls, raw: Any) -> "FilterSet":
        if raw is None:
            return cls()
        if not isinstance(raw, (list, tuple)):
            raise ValidationError.single("filters", "filters must be a list")
        return cls(filter_from_dict(item, index) for index, item in enumerate(raw))
