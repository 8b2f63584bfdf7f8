"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register        -- create account; returns user + token pair
  POST /api/v1/auth/login           -- password login; returns user + token pair
  POST /api/v1/auth/refresh-token   -- exchange a refresh token for a new pair
  POST /api/v1/auth/logout          -- drop the presented refresh token (requires auth)
  GET  /api/v1/auth/me              -- current user info (requires auth)
  GET  /api/v1/auth/session         -- current user if signed in, else anonymous

The router declares paths relative to the version root (/auth/...); api/main.py
mounts it with prefix="/api/v1", so clients always call /api/v1/auth/<route>.

Security:
  [H2] POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Login failures are indistinguishable; AuthFlows.login owns that rule.
  [R1] Refresh tokens are single-use; a replayed token is a 401. Every refresh
       rejection except expiry is token_unknown_or_reused with one message.
  [M5] Cache-Control: no-store on every response that carries a token.

Handlers are plain def: AuthFlows does bcrypt work synchronously, and FastAPI
runs def endpoints in its worker thread pool instead of on the event loop.
Errors raised by AuthFlows propagate to the AuthError handler in api/main.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import credential_rate_limit, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionResponse,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_current_user, try_get_current_user
from auth.flows import AuthFlows
from auth.models import AuthResult, Principal

# Auth policy:
# - POST /api/v1/auth/register:       public, rate-limited
# - POST /api/v1/auth/login:          public, rate-limited
# - POST /api/v1/auth/refresh-token:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:         requires auth (get_current_user)
# - GET  /api/v1/auth/me:             requires auth (get_current_user)
# - GET  /api/v1/auth/session:        soft auth (try_get_current_user)
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _auth_payload(result: AuthResult) -> dict:
    return AuthResponse(
        user=UserResponse.from_principal(result.principal),
        token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
        expires_in=result.tokens.expires_in,
    ).model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a USER account and sign it in.

    400 for a bad name, email or weak password; 409 if the email is taken.
    """
    flows: AuthFlows = request.app.state.flows
    result = flows.register(body.name, body.email, body.password)
    return _no_store(_auth_payload(result), status_code=201)


@limiter.limit(credential_rate_limit)  # [H2]
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, wrong password and inactive account all return the same
    401 invalid_credentials body [C1].
    """
    flows: AuthFlows = request.app.state.flows
    result = flows.login(body.email, body.password)
    return _no_store(_auth_payload(result))


@router.post("/auth/refresh-token", response_model=TokenResponse)
def refresh_token(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate a refresh token: the presented token is consumed and a new pair returned [R1]."""
    flows: AuthFlows = request.app.state.flows
    pair = flows.refresh(body.refresh_token)
    return _no_store(
        TokenResponse(
            token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.expires_in,
        ).model_dump(by_alias=True)
    )


@router.get("/auth/session", response_model=SessionResponse)
def session(principal: Optional[Principal] = Depends(try_get_current_user)) -> SessionResponse:
    """Report whether the caller is signed in. Never returns 401."""
    if principal is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=UserResponse.from_principal(principal))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    current_user: Principal = Depends(get_current_user),
) -> MessageResponse:
    """End the session for the presented refresh token.

    Idempotent: a missing, unknown, already-used or foreign refresh token
    still returns 200. The access token stays valid until it expires.
    """
    flows: AuthFlows = request.app.state.flows
    flows.logout(body.refresh_token if body is not None else None, current_user)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: Principal = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(user=UserResponse.from_principal(current_user))
