"""
Security context dependency for gateway routes.
"""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable

from fastapi import Request

from core.errors import AuthenticationError

from .context import SecurityContext, SecurityContextResolver

logger = logging.getLogger(__name__)


def security_context_dependency(
    resolver: SecurityContextResolver,
) -> Callable[[Request], Awaitable[SecurityContext]]:
    """
    Wrap `resolver` as a FastAPI dependency.

    FastAPI runs it once per request before the route body; the result lives
    only in that request's dependency cache.
    """

    async def get_security_context(request: Request) -> SecurityContext:
        result = resolver(request)
        if inspect.isawaitable(result):
            result = await result

        if not isinstance(result, SecurityContext):
            logger.warning(
                "security_context_invalid path=%s type=%s",
                request.url.path,
                type(result).__name__,
            )
            raise AuthenticationError("Security context could not be resolved.")
        return result

    return get_security_context
