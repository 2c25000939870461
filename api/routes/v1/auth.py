"""
api/routes/v1/auth.py -- Registration and session REST endpoints.

Routes:
  POST /api/v1/auth/register    -- create an unverified account; 201
  POST /api/v1/auth/login       -- username-or-email + password; returns a session
  POST /api/v1/auth/refresh     -- refresh token -> new access token (refresh token echoed)
  POST /api/v1/auth/logout      -- revoke one refresh token (requires auth)
  POST /api/v1/auth/logout-all  -- revoke every session of the caller (requires auth)
  GET  /api/v1/auth/me          -- caller's validated claims (requires auth)

Handlers are thin: bind JSON, call SessionService, map the result onto the
response model. AuthError subclasses raised by the service are turned into
the error envelope by the handler in api/main.py.

Security:
  [C1] Login failures for unknown identifiers and wrong passwords share one
       error code (invalid_credentials).
  [M5] Cache-Control: no-store on every response that carries a token.
  Logout checks that the refresh token's subject is the authenticated caller.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import (
    LoginRequest,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    UserResponse,
)
from auth.dependencies import get_current_claims, get_session_service
from auth.models import TokenClaims
from auth.service import SessionService

# Auth policy:
# - POST /api/v1/auth/register:    public
# - POST /api/v1/auth/login:       public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:     public -- the refresh token is the credential
# - POST /api/v1/auth/logout:      requires auth (get_current_claims)
# - POST /api/v1/auth/logout-all:  requires auth (get_current_claims)
# - GET  /api/v1/auth/me:          requires auth (get_current_claims)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, service: SessionService = Depends(get_session_service)) -> UserResponse:
    """Create a new account. The account cannot log in until its email is verified."""
    user = service.register(body.username, body.email, body.password, body.name)
    return UserResponse.from_user(user)


@router.post("/auth/login", response_model=SessionResponse)
def login(
    body: LoginRequest,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    """Authenticate with a username or email and a password; open a new session."""
    session = service.login(body.identifier, body.password)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return SessionResponse.from_session(session)


@router.post("/auth/refresh", response_model=SessionResponse)
def refresh(
    body: RefreshRequest,
    response: Response,
    service: SessionService = Depends(get_session_service),
) -> SessionResponse:
    """Exchange a refresh token for a new access token. The refresh token is not rotated."""
    session = service.refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return SessionResponse.from_session(session)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    body: RefreshRequest,
    claims: TokenClaims = Depends(get_current_claims),
    service: SessionService = Depends(get_session_service),
) -> MessageResponse:
    """Revoke the given refresh token. It must belong to the authenticated caller."""
    service.logout(claims.user_id, body.refresh_token)
    return MessageResponse(message="Logged out.")


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(
    claims: TokenClaims = Depends(get_current_claims),
    service: SessionService = Depends(get_session_service),
) -> LogoutAllResponse:
    """Revoke every live session of the authenticated caller."""
    revoked = service.logout_all(claims.user_id)
    return LogoutAllResponse(message="Logged out everywhere.", revoked=revoked)


@router.get("/auth/me", response_model=MeResponse)
def me(claims: TokenClaims = Depends(get_current_claims)) -> MeResponse:
    """Return the validated claims of the current bearer token."""
    return MeResponse.from_claims(claims)
