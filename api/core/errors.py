"""
Per-request error taxonomy.

These are raised anywhere on the request path and rendered by the gateway's
exception handlers as `{"error": kind, "message": ...}`. Startup failures
use `core.db.DatabaseConnectionError` / `ValueError` instead and are fatal.
"""

from __future__ import annotations


class GatewayError(Exception):
    status_code = 500
    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(GatewayError):
    status_code = 401
    kind = "authentication_error"


class AuthorizationError(AuthenticationError):
    status_code = 403
    kind = "authorization_error"


class QueryValidationError(GatewayError):
    status_code = 400
    kind = "validation_error"


class EngineError(GatewayError):
    status_code = 500
    kind = "engine_error"

    # Never sent to clients; the real cause is logged server-side.
    public_message = "Query execution failed."
