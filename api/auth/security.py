"""
Bearer-token identity helpers.

Builds a `SecurityContextResolver` that trusts HS256 (or other) JWT access
tokens carrying `sub` (user id) and `organisation_id` claims.
"""

from __future__ import annotations

import time
from typing import Any

import jwt
from fastapi import Request

from core.errors import AuthenticationError, AuthorizationError

from .context import SecurityContext, SecurityContextResolver

ORGANISATION_CLAIM = "organisation_id"


def now_epoch_s() -> int:
    return int(time.time())


def extract_bearer_token(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if not raw:
        raise AuthenticationError("Missing Authorization header.")

    parts = raw.split(" ", 1)
    if len(parts) != 2:
        raise AuthenticationError("Invalid Authorization header format.")

    scheme, token = parts[0].strip().lower(), parts[1].strip()
    if scheme != "bearer" or not token:
        raise AuthenticationError("Authorization must be: Bearer <token>.")
    return token


def build_access_token(
    *,
    secret: str,
    user_id: int,
    organisation_id: int,
    algorithm: str = "HS256",
    expires_in_s: int = 15 * 60,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    issued_at = now_epoch_s()
    payload: dict[str, Any] = dict(extra_claims or {})
    payload.update(
        {
            "sub": str(user_id),
            ORGANISATION_CLAIM: organisation_id,
            "type": "access",
            "iat": issued_at,
            "exp": issued_at + expires_in_s,
        }
    )
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_access_token(token: str, *, secret: str, algorithm: str = "HS256") -> dict[str, Any]:
    raw = (token or "").strip()
    if not raw:
        raise AuthenticationError("Access token is empty.")

    try:
        payload = jwt.decode(raw, secret, algorithms=[algorithm])
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid access token.") from exc

    token_type = str(payload.get("type") or "").strip().lower()
    if token_type != "access":
        raise AuthenticationError("Token is not an access token.")

    return payload


def context_from_claims(payload: dict[str, Any]) -> SecurityContext:
    subject = str(payload.get("sub") or "").strip()
    if not subject.isdigit():
        raise AuthenticationError("Invalid access token subject.")

    organisation = payload.get(ORGANISATION_CLAIM)
    if isinstance(organisation, bool) or not str(organisation or "").strip().isdigit():
        raise AuthenticationError("Access token has no organisation.")

    if payload.get("active") is False:
        raise AuthorizationError("User is inactive.")

    return SecurityContext(
        organisation_id=int(organisation),
        user_id=int(subject),
        claims=payload,
    )


def bearer_token_resolver(secret: str, *, algorithm: str = "HS256") -> SecurityContextResolver:
    secret = (secret or "").strip()
    if not secret:
        raise ValueError("Bearer token resolver needs a non-empty secret.")

    async def resolve(request: Request) -> SecurityContext:
        token = extract_bearer_token(request.headers.get("authorization"))
        payload = decode_access_token(token, secret=secret, algorithm=algorithm)
        return context_from_claims(payload)

    return resolve
