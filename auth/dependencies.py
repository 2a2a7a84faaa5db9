"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Credentials arrive in the Authorization header:
    Authorization: Token <key>     (Django REST Framework style, canonical)
    Authorization: Bearer <key>    (accepted alias)

Any other shape is treated as no credential at all.

try_get_current_user() is the optional variant: it returns None for anonymous
callers, and also when the credential store itself fails (logged, then the
request continues anonymously).
get_current_user() is the mandatory variant: it raises AuthenticationError
(401) when no identity resolves. A store failure and a bad credential are
logged differently but give the client the same response.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from auth.models import Identity
from core.errors import AuthenticationError

logger = logging.getLogger("bltapi.auth")

_SCHEMES = ("token", "bearer")


def credential_from(request: Request) -> str | None:
    """Extract the raw key from the Authorization header, or None."""
    header = request.headers.get("Authorization", "")
    scheme, _, key = header.strip().partition(" ")
    if scheme.lower() not in _SCHEMES:
        return None
    key = key.strip()
    return key or None


def try_get_current_user(request: Request) -> Identity | None:
    """Resolve the caller if a valid credential is present; never raises for auth.

    Use as a FastAPI dependency on routes where anonymous access is allowed:
        @router.get("/issues")
        def route(viewer: Identity | None = Depends(try_get_current_user)): ...
    """
    credential = credential_from(request)
    if credential is None:
        return None
    try:
        return request.app.state.credential_store.resolve(credential)
    except SQLAlchemyError:
        logger.exception("Credential lookup failed; continuing as anonymous")
        return None


def get_current_user(request: Request) -> Identity:
    """Require authentication. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.post("/issues/{issue_id}/like")
        def route(user: Identity = Depends(get_current_user)): ...
    """
    credential = credential_from(request)
    if credential is None:
        raise AuthenticationError("Authentication credentials were not provided.")
    try:
        identity = request.app.state.credential_store.resolve(credential)
    except SQLAlchemyError:
        logger.exception("Credential lookup failed on an authenticated route")
        raise AuthenticationError("Invalid or expired token.") from None
    if identity is None:
        logger.info("Rejected invalid credential for %s %s", request.method, request.url.path)
        raise AuthenticationError("Invalid or expired token.")
    return identity
