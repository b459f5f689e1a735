"""
Query gateway API endpoints (cube.js-compatible paths).

Mounted under a fixed base path by `register_gateway`; every endpoint that
touches data depends on the security context dependency, which FastAPI
resolves before the route body runs.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, Request, Response

from auth.context import SecurityContext
from core.errors import QueryValidationError

from .service import ClientDisconnected, GatewayService, run_until_disconnected

# Non-standard "client closed request" status.
CLIENT_CLOSED_REQUEST = 499


async def _query_from_body(request: Request) -> Any:
    try:
        body = await request.json()
    except ValueError as exc:
        raise QueryValidationError("Request body is not valid JSON.") from exc
    if isinstance(body, dict) and "query" in body:
        return body["query"]
    return body


def _query_from_param(query: str | None) -> str:
    if not query:
        raise QueryValidationError("Missing 'query' parameter.")
    return query


def build_router(
    service: GatewayService,
    get_security_context: Callable[[Request], Awaitable[SecurityContext]],
) -> APIRouter:
    router = APIRouter()

    async def _load(request: Request, raw: Any, ctx: SecurityContext) -> Any:
        try:
            return await run_until_disconnected(request, service.load(raw, ctx))
        except ClientDisconnected:
            return Response(status_code=CLIENT_CLOSED_REQUEST)

    @router.get("/meta")
    async def meta() -> dict:
        return service.meta()

    @router.post("/load")
    async def load_post(
        request: Request,
        ctx: SecurityContext = Depends(get_security_context),
    ) -> Any:
        raw = await _query_from_body(request)
        return await _load(request, raw, ctx)

    @router.get("/load")
    async def load_get(
        request: Request,
        query: str | None = None,
        ctx: SecurityContext = Depends(get_security_context),
    ) -> Any:
        return await _load(request, _query_from_param(query), ctx)

    @router.post("/sql")
    async def sql_post(
        request: Request,
        ctx: SecurityContext = Depends(get_security_context),
    ) -> dict:
        raw = await _query_from_body(request)
        return service.sql(raw, ctx)

    @router.get("/sql")
    async def sql_get(
        query: str | None = None,
        ctx: SecurityContext = Depends(get_security_context),
    ) -> dict:
        return service.sql(_query_from_param(query), ctx)

    @router.post("/dry-run")
    async def dry_run(
        request: Request,
        _: SecurityContext = Depends(get_security_context),
    ) -> dict:
        raw = await _query_from_body(request)
        return service.dry_run(raw)

    return router
