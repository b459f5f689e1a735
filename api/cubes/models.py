"""
Declarative cube definitions.

A cube maps one schema table to named measures and dimensions. Definitions
are read-only after registration and shared by every tenant; isolation comes
from `security_filter`, which turns the request's `SecurityContext` into
column equality predicates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from auth.context import SecurityContext

MEASURE_TYPES = ("count", "countDistinct", "sum", "avg", "min", "max")
DIMENSION_TYPES = ("string", "number", "time", "boolean")
RELATIONSHIPS = ("belongsTo", "hasOne", "hasMany")

SecurityFilter = Callable[[SecurityContext], Mapping[str, Any]]


def organisation_filter(column: str = "organisation_id") -> SecurityFilter:
    def _filter(ctx: SecurityContext) -> Mapping[str, Any]:
        return {column: ctx.organisation_id}

    return _filter


@dataclass(frozen=True)
class Measure:
    name: str
    type: str
    # Column on the cube's table; None only for `count`.
    column: str | None = None
    title: str | None = None

    def __post_init__(self) -> None:
        if self.type not in MEASURE_TYPES:
            raise ValueError(f"Unknown measure type {self.type!r} on {self.name!r}")
        if self.column is None and self.type != "count":
            raise ValueError(f"Measure {self.name!r} of type {self.type!r} needs a column")


@dataclass(frozen=True)
class Dimension:
    name: str
    type: str
    column: str
    title: str | None = None
    primary_key: bool = False

    def __post_init__(self) -> None:
        if self.type not in DIMENSION_TYPES:
            raise ValueError(f"Unknown dimension type {self.type!r} on {self.name!r}")


@dataclass(frozen=True)
class Join:
    cube: str
    relationship: str
    # (local column, remote column) pairs AND-ed together.
    on: tuple[tuple[str, str], ...]

    def __post_init__(self) -> None:
        if self.relationship not in RELATIONSHIPS:
            raise ValueError(f"Unknown join relationship {self.relationship!r}")
        if not self.on:
            raise ValueError(f"Join to {self.cube!r} has no columns")


@dataclass(frozen=True)
class CubeDefinition:
    name: str
    table: str
    security_filter: SecurityFilter
    measures: tuple[Measure, ...] = ()
    dimensions: tuple[Dimension, ...] = ()
    joins: tuple[Join, ...] = ()
    title: str | None = None
    public: bool = True

    def __post_init__(self) -> None:
        names = [m.name for m in self.measures] + [d.name for d in self.dimensions]
        dupes = {n for n in names if names.count(n) > 1}
        if dupes:
            raise ValueError(f"Cube {self.name!r} has duplicate members: {sorted(dupes)}")

    def measure(self, name: str) -> Measure | None:
        return next((m for m in self.measures if m.name == name), None)

    def dimension(self, name: str) -> Dimension | None:
        return next((d for d in self.dimensions if d.name == name), None)

    def join_to(self, cube: str) -> Join | None:
        return next((j for j in self.joins if j.cube == cube), None)

    def columns(self) -> set[str]:
        cols = {m.column for m in self.measures if m.column}
        cols.update(d.column for d in self.dimensions)
        cols.update(local for j in self.joins for local, _ in j.on)
        return cols

    def meta(self) -> dict[str, Any]:
        """
        Public shape served by the metadata endpoint.
        """
        return {
            "name": self.name,
            "title": self.title or self.name,
            "measures": [
                {
                    "name": f"{self.name}.{m.name}",
                    "title": m.title or m.name,
                    "type": m.type,
                }
                for m in self.measures
            ],
            "dimensions": [
                {
                    "name": f"{self.name}.{d.name}",
                    "title": d.title or d.name,
                    "type": d.type,
                    "primaryKey": d.primary_key,
                }
                for d in self.dimensions
            ],
            "joins": [j.cube for j in self.joins],
        }
