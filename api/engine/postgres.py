"""
Postgres query engine: compiles a validated cube query into one raw SQL
statement and runs it on the process's `DatabaseHandle`.

Every cube touched by a query contributes its security filter as bound
parameters: in WHERE for the base cube, in the JOIN condition for joined
cubes. Nothing from the request is interpolated into SQL text except
identifiers that were checked against the cube definitions.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from auth.context import SecurityContext
from core.db import DatabaseHandle
from core.schema import Schema
from cubes.models import CubeDefinition
from cubes.query import Filter, Query, fanned_out_measures

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10000

# Explicit casts keep parameter types stable across both backends.
_CASTS = {
    "number": "numeric",
    "string": "text",
    "boolean": "boolean",
    "time": "timestamp",
}


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class _Params:
    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any, cast: str | None = None) -> str:
        self.values.append(value)
        placeholder = f"${len(self.values)}"
        return f"{placeholder}::{cast}" if cast else placeholder


class SqlCompiler:
    def __init__(self, cubes: Mapping[str, CubeDefinition], schema: Schema) -> None:
        self._cubes = cubes
        self._schema = schema

    def _member(self, name: str) -> tuple[CubeDefinition, str]:
        cube_name, _, member = name.partition(".")
        return self._cubes[cube_name], member

    def _column(self, cube: CubeDefinition, column: str) -> str:
        return f"{quote_ident(cube.name)}.{quote_ident(column)}"

    def _measure_sql(self, name: str) -> str:
        cube, member = self._member(name)
        measure = cube.measure(member)
        if measure is None:
            raise RuntimeError(f"Unknown measure {name!r}; validate the query first.")

        if measure.type == "count":
            pk = next((d for d in cube.dimensions if d.primary_key), None)
            if pk is None:
                return "count(*)"
            return f"count(DISTINCT {self._column(cube, pk.column)})"
        col = self._column(cube, measure.column or "")
        if measure.type == "countDistinct":
            return f"count(DISTINCT {col})"
        return f"{measure.type}({col})"

    def _dimension_sql(self, name: str) -> tuple[str, str]:
        cube, member = self._member(name)
        dimension = cube.dimension(member)
        if dimension is None:
            raise RuntimeError(f"Unknown dimension {name!r}; validate the query first.")
        return self._column(cube, dimension.column), dimension.type

    def _member_sql(self, name: str) -> tuple[str, str, bool]:
        """
        (expression, value type, is_measure)
        """
        cube, member = self._member(name)
        if cube.measure(member) is not None:
            return self._measure_sql(name), "number", True
        expr, value_type = self._dimension_sql(name)
        return expr, value_type, False

    def _security_predicates(self, cube: CubeDefinition, ctx: SecurityContext, params: _Params) -> list[str]:
        predicates = dict(cube.security_filter(ctx))
        if not predicates:
            raise RuntimeError(f"Security filter for cube {cube.name!r} returned no predicates.")

        out: list[str] = []
        for column, value in predicates.items():
            if not self._schema.has_column(cube.table, column):
                raise RuntimeError(f"Security column {cube.table}.{column} is not in the schema.")
            out.append(f"{self._column(cube, column)} = {params.add(value)}")
        return out

    def _filter_sql(self, flt: Filter, params: _Params) -> tuple[str, bool]:
        expr, value_type, is_measure = self._member_sql(flt.member)
        cast = _CASTS.get(value_type)
        op = flt.operator
        values = flt.values

        if op == "set":
            return f"{expr} IS NOT NULL", is_measure
        if op == "notSet":
            return f"{expr} IS NULL", is_measure

        if op == "equals":
            if len(values) == 1:
                return f"{expr} = {params.add(values[0], cast)}", is_measure
            placeholders = ", ".join(params.add(v, cast) for v in values)
            return f"{expr} IN ({placeholders})", is_measure
        if op == "notEquals":
            if len(values) == 1:
                return f"({expr} <> {params.add(values[0], cast)} OR {expr} IS NULL)", is_measure
            placeholders = ", ".join(params.add(v, cast) for v in values)
            return f"({expr} NOT IN ({placeholders}) OR {expr} IS NULL)", is_measure

        if op in ("contains", "notContains", "startsWith", "endsWith"):
            patterns = []
            for v in values:
                text = _escape_like(str(v))
                if op == "startsWith":
                    patterns.append(f"{text}%")
                elif op == "endsWith":
                    patterns.append(f"%{text}")
                else:
                    patterns.append(f"%{text}%")
            if op == "notContains":
                parts = " AND ".join(f"{expr} NOT ILIKE {params.add(p, 'text')}" for p in patterns)
                return f"(({parts}) OR {expr} IS NULL)", is_measure
            parts = " OR ".join(f"{expr} ILIKE {params.add(p, 'text')}" for p in patterns)
            return f"({parts})", is_measure

        comparisons = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<=", "beforeDate": "<", "afterDate": ">"}
        if op in comparisons:
            return f"{expr} {comparisons[op]} {params.add(values[0], cast)}", is_measure

        if op == "inDateRange":
            start, end = values
            return f"({expr} >= {params.add(start, cast)} AND {expr} <= {params.add(end, cast)})", is_measure
        if op == "notInDateRange":
            start, end = values
            return f"({expr} < {params.add(start, cast)} OR {expr} > {params.add(end, cast)})", is_measure

        raise ValueError(f"Unsupported filter operator {op!r}")

    def compile(self, query: Query, ctx: SecurityContext) -> tuple[str, list[Any]]:
        inflated = fanned_out_measures(query, self._cubes)
        if inflated:
            raise RuntimeError(f"Measures {inflated} would be inflated by the query's joins.")

        params = _Params()
        base = self._cubes[query.base_cube()]

        select: list[str] = []
        group_by: list[str] = []
        where: list[str] = []
        having: list[str] = []

        for name in query.dimensions:
            expr, _ = self._dimension_sql(name)
            select.append(f"{expr} AS {quote_ident(name)}")
            group_by.append(expr)

        for td in query.time_dimensions:
            expr, _ = self._dimension_sql(td.dimension)
            if td.granularity:
                # Granularity is checked against a fixed list during validation.
                truncated = f"date_trunc('{td.granularity}', {expr})"
                select.append(f"{truncated} AS {quote_ident(f'{td.dimension}.{td.granularity}')}")
                group_by.append(truncated)
            if td.date_range:
                start, end = td.date_range
                where.append(f"{expr} >= {params.add(start, 'timestamp')}")
                where.append(f"{expr} <= {params.add(end, 'timestamp')}")

        for name in query.measures:
            select.append(f"{self._measure_sql(name)} AS {quote_ident(name)}")

        joins: list[str] = []
        for cube_name in query.cubes():
            if cube_name == base.name:
                continue
            cube = self._cubes[cube_name]
            join = base.join_to(cube_name)
            if join is None:
                raise RuntimeError(f"Cube {cube_name!r} is not joined from {base.name!r}.")
            on = [
                f"{self._column(base, local)} = {self._column(cube, remote)}"
                for local, remote in join.on
            ]
            on.extend(self._security_predicates(cube, ctx, params))
            joins.append(
                f"LEFT JOIN {quote_ident(cube.table)} AS {quote_ident(cube.name)} ON {' AND '.join(on)}"
            )

        where[:0] = self._security_predicates(base, ctx, params)

        for flt in query.filters:
            sql, is_measure = self._filter_sql(flt, params)
            (having if is_measure else where).append(sql)

        lines = [
            "SELECT " + ", ".join(select),
            f"FROM {quote_ident(base.table)} AS {quote_ident(base.name)}",
        ]
        lines.extend(joins)
        lines.append("WHERE " + " AND ".join(where))
        if group_by:
            lines.append("GROUP BY " + ", ".join(group_by))
        if having:
            lines.append("HAVING " + " AND ".join(having))

        order = self._order_sql(query)
        if order:
            lines.append("ORDER BY " + ", ".join(order))

        limit = query.limit if query.limit is not None else DEFAULT_LIMIT
        lines.append(f"LIMIT {params.add(limit)}")
        if query.offset:
            lines.append(f"OFFSET {params.add(query.offset)}")

        return "\n".join(lines), params.values

    def _order_sql(self, query: Query) -> list[str]:
        selected = set(query.result_keys())
        if query.order:
            out = []
            for member, direction in query.order:
                expr = quote_ident(member) if member in selected else self._member_sql(member)[0]
                out.append(f"{expr} {direction.upper()}")
            return out

        # Defaults: time buckets ascending, else the first measure descending.
        for td in query.time_dimensions:
            if td.granularity:
                return [f"{quote_ident(f'{td.dimension}.{td.granularity}')} ASC"]
        if query.measures:
            return [f"{quote_ident(query.measures[0])} DESC"]
        if query.dimensions:
            return [f"{quote_ident(query.dimensions[0])} ASC"]
        return []


class PostgresQueryEngine:
    kind = "postgres"

    def __init__(
        self,
        *,
        cubes: Mapping[str, CubeDefinition],
        db: DatabaseHandle,
        schema: Schema,
    ) -> None:
        self._db = db
        self._compiler = SqlCompiler(cubes, schema)

    def sql(self, query: Query, ctx: SecurityContext) -> tuple[str, list[Any]]:
        return self._compiler.compile(query, ctx)

    async def load(self, query: Query, ctx: SecurityContext) -> list[dict[str, Any]]:
        text, params = self.sql(query, ctx)
        logger.debug(
            "query_execute organisation_id=%s cubes=%s params=%s",
            ctx.organisation_id,
            ",".join(query.cubes()),
            len(params),
        )
        return await self._db.fetch_all(text, *params)
