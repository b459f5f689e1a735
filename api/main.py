from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Sequence

import pydantic
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from auth import SecurityContextResolver, demo_security_context
from core import db as database
from core.log import configure_logging
from core.schema import Schema
from core.settings import ServiceConfig
from cubes import CubeDefinition, all_cubes
from cubes import schema as demo_schema
from gateway import DEFAULT_BASE_PATH, register_gateway

logger = logging.getLogger(__name__)


def create_app(
    config: ServiceConfig,
    *,
    db: database.DatabaseHandle,
    cubes: Sequence[CubeDefinition] = all_cubes,
    schema: Schema = demo_schema,
    resolve_security_context: SecurityContextResolver = demo_security_context,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        # The handle is usually opened by start(); open() is a no-op then.
        await db.open()
        try:
            yield
        finally:
            await db.close()
            logger.info("database_closed kind=%s", db.kind.value)

    app = FastAPI(title=config.name, version=config.version, lifespan=lifespan)

    # Allow the local dashboard dev server to call this API from the browser.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if config.static_dir.is_dir():
        app.mount(config.static_prefix, StaticFiles(directory=config.static_dir), name="static")
    else:
        logger.info("static_dir_missing path=%s", config.static_dir)

    service = register_gateway(
        app,
        cubes=cubes,
        db=db,
        schema=schema,
        resolve_security_context=resolve_security_context,
        engine_kind=config.engine_kind,
        base_path=DEFAULT_BASE_PATH,
    )
    cube_names = service.cube_names

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/info")
    def info() -> dict:
        return {
            "name": config.name,
            "version": config.version,
            "endpoints": {
                f"GET {DEFAULT_BASE_PATH}/meta": "Get cube metadata",
                f"POST {DEFAULT_BASE_PATH}/load": "Execute queries",
                f"POST {DEFAULT_BASE_PATH}/sql": "Preview generated SQL",
                f"POST {DEFAULT_BASE_PATH}/dry-run": "Validate a query",
                "GET /health": "Health check",
                f"GET {config.static_prefix}/": "Frontend dashboard",
            },
            "cubes": list(cube_names),
        }

    return app


async def start(
    config: ServiceConfig,
    *,
    cubes: Sequence[CubeDefinition] = all_cubes,
    schema: Schema = demo_schema,
    resolve_security_context: SecurityContextResolver = demo_security_context,
) -> None:
    """
    Build everything, then listen. Any failure before listening exits with 1.
    """
    try:
        kind = database.select_backend(config.database_url)
        handle = database.create_database(kind, config.database_url, schema)
        await handle.open()
        try:
            app = create_app(
                config,
                db=handle,
                cubes=cubes,
                schema=schema,
                resolve_security_context=resolve_security_context,
            )
        except Exception:
            await handle.close()
            raise
    except Exception:
        logger.exception("startup_failed")
        raise SystemExit(1)

    server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_config=None))
    logger.info("server_starting url=http://localhost:%s", config.port)
    logger.info("cube_api url=http://localhost:%s%s/meta", config.port, DEFAULT_BASE_PATH)
    await server.serve()
    if not server.started:
        # uvicorn could not bind or lifespan startup failed.
        raise SystemExit(1)


def run() -> None:
    configure_logging()
    try:
        config = ServiceConfig.from_env()
    except pydantic.ValidationError as exc:
        logger.error("config_invalid errors=%s", exc.errors(include_url=False))
        sys.exit(1)
    asyncio.run(start(config))


if __name__ == "__main__":
    run()
