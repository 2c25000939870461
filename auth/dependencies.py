"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The gate reads "Authorization: Bearer <token>", asks SessionService to
validate it, and stores the resulting TokenClaims on request.state.claims.
That one value, with user_id always an int, is everything downstream
handlers need to know about the caller.

try_get_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidToken
from auth.models import TokenClaims
from auth.service import SessionService


def get_session_service(request: Request) -> SessionService:
    """Return the SessionService wired into app.state during lifespan startup."""
    return request.app.state.session_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def try_get_claims(request: Request) -> TokenClaims | None:
    """Authenticate the request via its Bearer token.

    Returns the TokenClaims on success, None on any failure. Never raises --
    callers that need a hard 401 should use get_current_claims().
    """
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        claims = get_session_service(request).validate_token(token)
    except InvalidToken:
        return None
    request.state.claims = claims
    return claims


def get_current_claims(request: Request) -> TokenClaims:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: TokenClaims = Depends(get_current_claims)): ...
    """
    claims = try_get_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims
