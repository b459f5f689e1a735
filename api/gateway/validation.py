"""
Query validation against the registered cube set.

Runs before the engine sees anything: unknown cubes/members, bad operators and
malformed shapes become `QueryValidationError` (HTTP 400). The returned query
has filter values and date ranges coerced to the member's type.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

import pydantic

from core.errors import QueryValidationError
from cubes.models import CubeDefinition
from cubes.query import (
    FILTER_OPERATORS,
    GRANULARITIES,
    RANGE_OPERATORS,
    UNARY_OPERATORS,
    Filter,
    Query,
    TimeDimension,
    fanned_out_measures,
)

STRING_OPERATORS = ("contains", "notContains", "startsWith", "endsWith")
COMPARISON_OPERATORS = ("gt", "gte", "lt", "lte")
DATE_OPERATORS = ("inDateRange", "notInDateRange", "beforeDate", "afterDate")


def _split_member(name: str) -> tuple[str, str]:
    cube, sep, member = (name or "").partition(".")
    if not sep or not cube or not member or "." in member:
        raise QueryValidationError(f"Member '{name}' must look like 'Cube.member'.")
    return cube, member


def _cube(name: str, cubes: Mapping[str, CubeDefinition]) -> CubeDefinition:
    cube = cubes.get(name)
    if cube is None:
        raise QueryValidationError(f"Cube '{name}' not found.")
    return cube


def member_type(name: str, cubes: Mapping[str, CubeDefinition]) -> tuple[str, str]:
    """
    Return ("measure" | "dimension", value type) for a `Cube.member` name.
    """
    cube_name, member = _split_member(name)
    cube = _cube(cube_name, cubes)
    measure = cube.measure(member)
    if measure is not None:
        return "measure", "number"
    dimension = cube.dimension(member)
    if dimension is not None:
        return "dimension", dimension.type
    raise QueryValidationError(f"Member '{name}' not found in cube '{cube_name}'.")


def parse_datetime(value: Any, *, end_of_day: bool = False) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value if value is not None else "").strip()
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as exc:
            raise QueryValidationError(f"Invalid date value: {value!r}.") from exc
        if end_of_day and len(text) == 10:
            dt = dt.replace(hour=23, minute=59, second=59, microsecond=999999)

    # Compare as naive UTC; the demo schema stores `timestamp` columns.
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def coerce_value(value: Any, value_type: str, *, member: str) -> Any:
    if value is None:
        raise QueryValidationError(f"Filter on '{member}' has a null value.")

    if value_type == "number":
        if isinstance(value, bool):
            raise QueryValidationError(f"Filter on '{member}' expects a number.")
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise QueryValidationError(f"Filter on '{member}' expects a number.") from exc

    if value_type == "boolean":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "1"):
            return True
        if text in ("false", "0"):
            return False
        raise QueryValidationError(f"Filter on '{member}' expects a boolean.")

    if value_type == "time":
        return parse_datetime(value)

    return str(value)


def _validate_filter(flt: Filter, cubes: Mapping[str, CubeDefinition]) -> Filter:
    if flt.operator not in FILTER_OPERATORS:
        raise QueryValidationError(f"Unknown filter operator '{flt.operator}'.")

    _, value_type = member_type(flt.member, cubes)
    op = flt.operator

    if op in STRING_OPERATORS and value_type != "string":
        raise QueryValidationError(f"Operator '{op}' needs a string member, got '{flt.member}'.")
    if op in COMPARISON_OPERATORS and value_type not in ("number", "time"):
        raise QueryValidationError(f"Operator '{op}' needs a number or time member, got '{flt.member}'.")
    if op in DATE_OPERATORS and value_type != "time":
        raise QueryValidationError(f"Operator '{op}' needs a time member, got '{flt.member}'.")

    if op in UNARY_OPERATORS:
        if flt.values:
            raise QueryValidationError(f"Operator '{op}' takes no values.")
        return flt

    if not flt.values:
        raise QueryValidationError(f"Filter on '{flt.member}' needs at least one value.")
    if op in RANGE_OPERATORS:
        if len(flt.values) != 2:
            raise QueryValidationError(f"Operator '{op}' needs exactly two values.")
        start, end = flt.values
        return flt.model_copy(update={"values": [parse_datetime(start), parse_datetime(end, end_of_day=True)]})
    if op in COMPARISON_OPERATORS + ("beforeDate", "afterDate") and len(flt.values) != 1:
        raise QueryValidationError(f"Operator '{op}' needs exactly one value.")

    return flt.model_copy(update={"values": [coerce_value(v, value_type, member=flt.member) for v in flt.values]})


def _validate_time_dimension(td: TimeDimension, cubes: Mapping[str, CubeDefinition]) -> TimeDimension:
    kind, value_type = member_type(td.dimension, cubes)
    if kind != "dimension" or value_type != "time":
        raise QueryValidationError(f"'{td.dimension}' is not a time dimension.")
    if td.granularity is not None and td.granularity not in GRANULARITIES:
        raise QueryValidationError(f"Unknown granularity '{td.granularity}'.")
    if td.date_range is None:
        return td
    if len(td.date_range) != 2:
        raise QueryValidationError(f"dateRange on '{td.dimension}' needs exactly two values.")
    start, end = td.date_range
    return td.model_copy(update={"date_range": [parse_datetime(start), parse_datetime(end, end_of_day=True)]})


def parse_query(raw: Any) -> Query:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise QueryValidationError("Query is not valid JSON.") from exc
    if not isinstance(raw, dict):
        raise QueryValidationError("Query must be a JSON object.")

    try:
        return Query.model_validate(raw)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ())) or "query"
        raise QueryValidationError(f"Invalid query at '{loc}': {first.get('msg')}") from exc


def validate_query(raw: Any, cubes: Mapping[str, CubeDefinition]) -> Query:
    """
    Parse `raw` and check every referenced member against `cubes`.
    """
    query = parse_query(raw)

    # A time dimension without granularity only filters; it selects no column.
    if not (query.measures or query.dimensions or any(td.granularity for td in query.time_dimensions)):
        raise QueryValidationError(
            "Query needs at least one measure, dimension or time dimension with a granularity."
        )

    for name in query.measures:
        if member_type(name, cubes)[0] != "measure":
            raise QueryValidationError(f"'{name}' is not a measure.")
    for name in query.dimensions:
        if member_type(name, cubes)[0] != "dimension":
            raise QueryValidationError(f"'{name}' is not a dimension.")

    time_dimensions = [_validate_time_dimension(td, cubes) for td in query.time_dimensions]
    filters = [_validate_filter(f, cubes) for f in query.filters]

    base = _cube(query.base_cube(), cubes)
    for name in query.cubes():
        _cube(name, cubes)
        if name != base.name and base.join_to(name) is None:
            raise QueryValidationError(f"Cube '{name}' is not joined from '{base.name}'.")

    inflated = fanned_out_measures(query, cubes)
    if inflated:
        raise QueryValidationError(
            f"Measure '{inflated[0]}' would be multiplied by a one-to-many join in this query; "
            "query it separately."
        )

    selected = set(query.result_keys())
    for member, _ in query.order:
        if member not in selected and member_type(member, cubes)[0] != "measure":
            raise QueryValidationError(f"Order member '{member}' must be selected.")

    return query.model_copy(update={"time_dimensions": time_dimensions, "filters": filters})

