"""
Query engine contract.

The gateway only talks to engines through this protocol; how a query becomes
rows is the engine's business.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol

from auth.context import SecurityContext
from cubes.query import Query


class QueryEngine(Protocol):
    def sql(self, query: Query, ctx: SecurityContext) -> tuple[str, list[Any]]: ...

    async def load(self, query: Query, ctx: SecurityContext) -> list[dict[str, Any]]: ...


# Called as factory(cubes=..., db=..., schema=...).
EngineFactory = Callable[..., QueryEngine]
