"""
Query payload accepted by the gateway (cube.js-style JSON).

Example:
    {
      "measures": ["Employees.count"],
      "dimensions": ["Departments.name"],
      "timeDimensions": [{"dimension": "Employees.createdAt", "granularity": "month",
                          "dateRange": ["2024-01-01", "2024-12-31"]}],
      "filters": [{"member": "Employees.active", "operator": "equals", "values": [true]}],
      "order": {"Employees.count": "desc"},
      "limit": 100
    }
"""

from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import CubeDefinition, Measure

MAX_LIMIT = 50000

GRANULARITIES = ("second", "minute", "hour", "day", "week", "month", "quarter", "year")

FILTER_OPERATORS = (
    "equals",
    "notEquals",
    "contains",
    "notContains",
    "startsWith",
    "endsWith",
    "gt",
    "gte",
    "lt",
    "lte",
    "set",
    "notSet",
    "inDateRange",
    "notInDateRange",
    "beforeDate",
    "afterDate",
)

# Operators that take no values / exactly two values.
UNARY_OPERATORS = ("set", "notSet")
RANGE_OPERATORS = ("inDateRange", "notInDateRange")


class Filter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    member: str = Field(..., min_length=1)
    operator: str
    values: list[Any] = Field(default_factory=list)


class TimeDimension(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    dimension: str = Field(..., min_length=1)
    granularity: str | None = None
    date_range: list[Any] | None = Field(default=None, alias="dateRange")


class Query(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    measures: list[str] = Field(default_factory=list)
    dimensions: list[str] = Field(default_factory=list)
    time_dimensions: list[TimeDimension] = Field(default_factory=list, alias="timeDimensions")
    filters: list[Filter] = Field(default_factory=list)
    order: list[tuple[str, Literal["asc", "desc"]]] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=0, le=MAX_LIMIT)
    offset: int | None = Field(default=None, ge=0)

    @field_validator("order", mode="before")
    @classmethod
    def _order_pairs(cls, value: Any) -> Any:
        # Accept {"Cube.member": "desc"} as well as [["Cube.member", "desc"]].
        if isinstance(value, dict):
            return list(value.items())
        return value

    def members(self) -> list[str]:
        out = list(self.measures) + list(self.dimensions)
        out.extend(td.dimension for td in self.time_dimensions)
        out.extend(f.member for f in self.filters)
        out.extend(member for member, _ in self.order)
        return out

    def cubes(self) -> list[str]:
        """
        Cube names referenced anywhere in the query, first-seen order.
        """
        seen: list[str] = []
        for name in self.members():
            cube = name.partition(".")[0]
            if cube not in seen:
                seen.append(cube)
        return seen

    def base_cube(self) -> str:
        """
        Cube the query is rooted at: owner of the first measure, else the first
        dimension, else the first time dimension.
        """
        names = self.measures + self.dimensions + [td.dimension for td in self.time_dimensions]
        return names[0].partition(".")[0] if names else ""

    def result_keys(self) -> list[str]:
        keys = list(self.measures) + list(self.dimensions)
        for td in self.time_dimensions:
            if td.granularity:
                keys.append(f"{td.dimension}.{td.granularity}")
        return keys

    def public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _additive(cube: CubeDefinition, measure: Measure) -> bool:
    # `count` compiles to count(DISTINCT pk) when the cube has a primary key.
    if measure.type in ("sum", "avg"):
        return True
    return measure.type == "count" and not any(d.primary_key for d in cube.dimensions)


def fanned_out_measures(query: Query, cubes: Mapping[str, CubeDefinition]) -> list[str]:
    """
    Measures whose value would be inflated by the query's joins.

    A `hasMany` join repeats every row on the other side of it once per
    joined row, and a `belongsTo` join repeats the joined row once per base
    row. Only additive aggregates are affected; min, max and distinct counts
    are not.
    """
    base = cubes.get(query.base_cube())
    if base is None:
        return []

    relationships: dict[str, str] = {}
    for name in query.cubes():
        join = base.join_to(name) if name != base.name else None
        if join is not None:
            relationships[name] = join.relationship
    has_many = {name for name, rel in relationships.items() if rel == "hasMany"}

    referenced = list(query.measures)
    referenced.extend(f.member for f in query.filters)
    referenced.extend(member for member, _ in query.order)

    out: list[str] = []
    for name in referenced:
        cube_name, _, member = name.partition(".")
        cube = cubes.get(cube_name)
        measure = cube.measure(member) if cube is not None else None
        if measure is None or name in out or not _additive(cube, measure):
            continue
        if relationships.get(cube_name) == "belongsTo" or has_many - {cube_name}:
            out.append(name)
    return out
