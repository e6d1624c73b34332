from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from taskhub.models.work_package import WorkPackage
from taskhub.services.query_executor import PaginatedResult
from taskhub.services.query_fields import BuiltinField, FieldRegistry
from taskhub.services.query_filters import OPERATORS_BY_TYPE
from taskhub.services.query_model import PRIMARY_KEY_FIELD, Query


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def work_package_row(wp: WorkPackage, query: Query, custom_values: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {PRIMARY_KEY_FIELD: wp.id}
    for ref in query.columns:
        if isinstance(ref, BuiltinField):
            row[ref.key] = _serialize_value(getattr(wp, ref.name))
        else:
            row[ref.key] = _serialize_value(custom_values.get(ref.key))
    return row


def results_payload(query: Query, result: PaginatedResult[WorkPackage]) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "total": result.total,
        "count": result.count,
        "offset": result.offset,
        "pageSize": result.page_size,
        "columns": [ref.key for ref in query.columns],
        "items": [work_package_row(wp, query, result.custom_values.get(wp.id, {})) for wp in result.items],
    }
    if result.groups is not None:
        payload["groups"] = [
            {"value": _serialize_value(g.key), "count": g.count, "sums": _serialize_value(g.sums)}
            for g in result.groups
        ]
    if result.sums is not None:
        payload["sums"] = _serialize_value(result.sums)
    return payload


def saved_queries_payload(result: PaginatedResult[Query]) -> dict[str, Any]:
    return {
        "total": result.total,
        "count": result.count,
        "offset": result.offset,
        "pageSize": result.page_size,
        "items": [q.to_payload() for q in result.items],
    }


def schema_payload(registry: FieldRegistry) -> list[dict[str, Any]]:
    fields = []
    for definition in registry.definitions():
        operators = sorted(op.value for op in OPERATORS_BY_TYPE[definition.field_type]) if definition.filterable else []
        fields.append(
            {
                "key": definition.key,
                "label": definition.label,
                "type": definition.field_type.value,
                "operators": operators,
                "sortable": definition.sortable,
                "groupable": definition.groupable,
                "summable": definition.summable,
            }
        )
    return fields
