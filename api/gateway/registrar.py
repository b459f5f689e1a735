"""
Mounts the query gateway on a FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Sequence

from fastapi import FastAPI

from auth.context import SecurityContextResolver
from auth.dependencies import security_context_dependency
from core.db import DatabaseHandle
from core.schema import Schema
from cubes.models import CubeDefinition
from engine import create_query_engine

from .errors import register_exception_handlers
from .router import build_router
from .service import GatewayService

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = "/cubejs-api/v1"


def _check_cubes(cubes: Sequence[CubeDefinition], schema: Schema) -> dict[str, CubeDefinition]:
    by_name: dict[str, CubeDefinition] = {}
    for cube in cubes:
        if cube.name in by_name:
            raise ValueError(f"Duplicate cube name: {cube.name}")
        by_name[cube.name] = cube

    for cube in by_name.values():
        table = schema.table(cube.table)
        if table is None:
            raise ValueError(f"Cube {cube.name!r} references unknown table {cube.table!r}")
        missing = sorted(c for c in cube.columns() if not table.has_column(c))
        if missing:
            raise ValueError(f"Cube {cube.name!r} references unknown columns {missing} on {cube.table!r}")

        for join in cube.joins:
            target = by_name.get(join.cube)
            if target is None:
                raise ValueError(f"Cube {cube.name!r} joins unregistered cube {join.cube!r}")
            for _, remote in join.on:
                if not schema.has_column(target.table, remote):
                    raise ValueError(
                        f"Join {cube.name!r} -> {join.cube!r} references unknown column {target.table}.{remote}"
                    )
    return by_name


def register_gateway(
    app: FastAPI,
    *,
    cubes: Sequence[CubeDefinition],
    db: DatabaseHandle,
    schema: Schema,
    resolve_security_context: SecurityContextResolver,
    engine_kind: str,
    base_path: str = DEFAULT_BASE_PATH,
) -> GatewayService:
    """
    Validate the cube set, build the engine for `engine_kind` and mount the
    gateway routes under `base_path`. Raises ValueError on any mismatch.
    """
    if resolve_security_context is None:
        raise ValueError("A security context resolver is required.")
    if db.schema is not schema:
        raise ValueError("Database handle is bound to a different schema than the gateway.")

    by_name = _check_cubes(cubes, schema)
    engine = create_query_engine(engine_kind, cubes=by_name, db=db, schema=schema)
    service = GatewayService(cubes=by_name, engine=engine)

    router = build_router(service, security_context_dependency(resolve_security_context))
    app.include_router(router, prefix=base_path.rstrip("/"), tags=["cubes"])
    register_exception_handlers(app)

    logger.info(
        "gateway_registered base_path=%s engine=%s cubes=%s",
        base_path,
        engine_kind,
        ",".join(by_name),
    )
    return service
