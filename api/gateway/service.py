"""
Gateway service (orchestration).

This is where we:
- validate an incoming query against the registered cubes
- hand the validated query plus the request's security context to the engine
- shape results, SQL previews and dry-run answers for the router
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Mapping, TypeVar

from fastapi import Request

from auth.context import SecurityContext
from core.errors import EngineError, GatewayError
from cubes.models import CubeDefinition
from cubes.query import Query
from engine import QueryEngine

from . import validation

logger = logging.getLogger(__name__)

DISCONNECT_POLL_S = 0.25

T = TypeVar("T")


class ClientDisconnected(Exception):
    pass


async def run_until_disconnected(
    request: Request,
    awaitable: Awaitable[T],
    *,
    poll_s: float = DISCONNECT_POLL_S,
) -> T:
    """
    Await `awaitable`, cancelling it if the client goes away first.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_s)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                logger.info("query_abandoned path=%s", request.url.path)
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


class GatewayService:
    def __init__(self, *, cubes: Mapping[str, CubeDefinition], engine: QueryEngine) -> None:
        self._cubes = cubes
        self._engine = engine

    @property
    def cube_names(self) -> list[str]:
        return list(self._cubes)

    def meta(self) -> dict[str, Any]:
        return {"cubes": [cube.meta() for cube in self._cubes.values() if cube.public]}

    def validate(self, raw: Any) -> Query:
        return validation.validate_query(raw, self._cubes)

    def _describe(self, name: str) -> dict[str, Any]:
        cube_name, _, member_name = name.partition(".")
        cube = self._cubes[cube_name]
        member = cube.measure(member_name) or cube.dimension(member_name)
        if member is None:
            raise RuntimeError(f"Unknown member {name!r}; validate the query first.")
        short = member.title or member.name
        return {
            "title": f"{cube.title or cube.name} {short}",
            "shortTitle": short,
            "type": member.type,
        }

    def annotation(self, query: Query) -> dict[str, Any]:
        return {
            "measures": {name: self._describe(name) for name in query.measures},
            "dimensions": {name: self._describe(name) for name in query.dimensions},
            "timeDimensions": {
                f"{td.dimension}.{td.granularity}": self._describe(td.dimension)
                for td in query.time_dimensions
                if td.granularity
            },
        }

    async def load(self, raw: Any, ctx: SecurityContext) -> dict[str, Any]:
        query = self.validate(raw)
        try:
            rows = await self._engine.load(query, ctx)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception(
                "query_failed organisation_id=%s cubes=%s",
                ctx.organisation_id,
                ",".join(query.cubes()),
            )
            raise EngineError(f"{type(exc).__name__}: {exc}") from exc

        return {
            "query": query.public(),
            "data": rows,
            "annotation": self.annotation(query),
        }

    def sql(self, raw: Any, ctx: SecurityContext) -> dict[str, Any]:
        query = self.validate(raw)
        try:
            text, params = self._engine.sql(query, ctx)
        except GatewayError:
            raise
        except Exception as exc:
            logger.exception("sql_failed organisation_id=%s", ctx.organisation_id)
            raise EngineError(f"{type(exc).__name__}: {exc}") from exc
        return {"sql": {"sql": [text, [str(p) for p in params]]}}

    def dry_run(self, raw: Any) -> dict[str, Any]:
        query = self.validate(raw)
        return {
            "queryType": "regularQuery",
            "normalizedQueries": [query.public()],
            "pivotQuery": query.public(),
            "cubes": query.cubes(),
        }
