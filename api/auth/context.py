"""
Security context: the tenant/user identity that scopes one request's queries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Union

from fastapi import Request


@dataclass(frozen=True)
class SecurityContext:
    organisation_id: int
    user_id: int
    claims: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))


SecurityContextResolver = Callable[
    [Request],
    Union[SecurityContext, Awaitable[SecurityContext]],
]


async def demo_security_context(_: Request) -> SecurityContext:
    """
    Unauthenticated stub: every request belongs to organisation 1, user 1.

    Replace with a resolver backed by real identity (e.g.
    `auth.security.bearer_token_resolver`) before serving real tenants.
    """
    return SecurityContext(organisation_id=1, user_id=1)
