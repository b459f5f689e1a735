"""
JSON rendering for per-request errors.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from core.errors import EngineError, GatewayError

logger = logging.getLogger(__name__)


def error_body(exc: GatewayError) -> dict[str, str]:
    # Engine detail stays in the server log.
    message = exc.public_message if isinstance(exc, EngineError) else exc.message
    return {"error": exc.kind, "message": message}


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed path=%s kind=%s", request.url.path, exc.kind)
    else:
        logger.info(
            "request_rejected path=%s kind=%s message=%s",
            request.url.path,
            exc.kind,
            exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, gateway_error_handler)
