"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

AuthenticationGate:
  authenticate(request, soft=False) is the single routine. It reads
  Authorization: Bearer <token>, verifies it as an access token, reloads the
  principal from the store and attaches it to request.state.principal.

  get_current_user() is the hard variant: any failure raises Unauthenticated.
  try_get_current_user() is the soft variant: any failure yields None. Both
  call authenticate(); there is no second code path.

  The principal is re-read on every request, so deactivation and role changes
  apply immediately rather than at token expiry.

AuthorizationGate:
  require_role(*roles) and require_owner_or_role(get_owner_id, role) build
  dependencies that run after get_current_user() and raise Forbidden.

Every outcome is written to the AuditSink on app.state with the client ip,
user-agent and url.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Depends, Request

from auth.errors import AuthReason, Forbidden, Unauthenticated, ValidationError, unauthenticated
from auth.flows import token_error_reason
from auth.models import Principal, Role, TokenClass
from auth.tokens import TokenError

_BEARER_PREFIX = "bearer "


def extract_bearer(header: str | None) -> str | None:
    """Return the token from an Authorization header value, or None.

    The scheme is matched case-insensitively. "Bearer" with nothing after it,
    or any other scheme, counts as no token.
    """
    if not header or not header.lower().startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


def request_metadata(request: Request) -> dict[str, Any]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "url": str(request.url),
    }


# ---------------------------------------------------------------------------
# AuthenticationGate
# ---------------------------------------------------------------------------


def authenticate(request: Request, soft: bool = False) -> Principal | None:
    """Authenticate the request from its Bearer token.

    Returns the Principal on success. On failure raises Unauthenticated, or
    returns None when soft is True.
    """
    state = request.app.state
    metadata = request_metadata(request)
    subject: int | None = None
    try:
        token = extract_bearer(request.headers.get("Authorization"))
        if token is None:
            raise unauthenticated(AuthReason.MISSING_TOKEN)

        try:
            claims = state.codec.verify(token, TokenClass.ACCESS)
        except TokenError as exc:
            raise unauthenticated(token_error_reason(exc)) from exc
        subject = claims.subject

        principal = state.user_store.find_by_id(claims.subject)
        if principal is None:
            raise unauthenticated(AuthReason.PRINCIPAL_NOT_FOUND)
        if not principal.is_active:
            raise unauthenticated(AuthReason.PRINCIPAL_INACTIVE)
    except Unauthenticated as exc:
        state.audit.record("auth.failure", subject, {**metadata, "reason": exc.reason.value, "soft": soft})
        if soft:
            return None
        raise

    request.state.principal = principal
    state.audit.record("auth.success", principal.id, {**metadata, "role": principal.role.value})
    return principal


def try_get_current_user(request: Request) -> Principal | None:
    """Soft authentication: the Principal, or None if the request is anonymous or invalid.

    Never raises Unauthenticated. Use for endpoints that render differently
    for signed-in callers:
        @router.get("/session")
        def route(principal: Principal | None = Depends(try_get_current_user)): ...
    """
    return authenticate(request, soft=True)


def get_current_user(request: Request) -> Principal:
    """Require authentication. Raises Unauthenticated (HTTP 401) on any failure.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_user)): ...
    """
    return authenticate(request, soft=False)


# ---------------------------------------------------------------------------
# AuthorizationGate
# ---------------------------------------------------------------------------


def _role_allowed(role: Role, allowed: frozenset[Role]) -> bool:
    # Every Role member is listed so a new role has to be placed deliberately.
    if role is Role.ADMIN:
        return Role.ADMIN in allowed
    if role is Role.EDITOR:
        return Role.EDITOR in allowed
    if role is Role.USER:
        return Role.USER in allowed
    raise ValueError(f"Unhandled role: {role!r}")


def require_role(*roles: Role | str) -> Callable[..., Principal]:
    """Build a dependency that admits only principals holding one of roles.

    Raises ValueError at import time for a role name outside the Role enum.

    Usage:
        @router.post("/admin-only")
        def route(principal: Principal = Depends(require_role(Role.ADMIN))): ...
    """
    if not roles:
        raise ValueError("require_role() needs at least one role")
    allowed = frozenset(Role(r) for r in roles)
    required = sorted(r.value for r in allowed)

    def dependency(request: Request, principal: Principal = Depends(get_current_user)) -> Principal:
        audit = request.app.state.audit
        metadata = {**request_metadata(request), "role": principal.role.value, "required": required}
        if not _role_allowed(principal.role, allowed):
            audit.record("authz.denied", principal.id, {**metadata, "reason": AuthReason.INSUFFICIENT_ROLE.value})
            raise Forbidden(AuthReason.INSUFFICIENT_ROLE)
        audit.record("authz.granted", principal.id, metadata)
        return principal

    return dependency


def path_owner_id(param: str = "user_id") -> Callable[[Request], int]:
    """Return a get_owner_id callable that reads an integer path parameter."""

    def get_owner_id(request: Request) -> int:
        raw = request.path_params.get(param)
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ValidationError(AuthReason.INVALID_INPUT, f"Path parameter '{param}' must be an integer.") from exc

    return get_owner_id


def require_owner_or_role(
    get_owner_id: Callable[[Request], int],
    role: Role = Role.ADMIN,
) -> Callable[..., Principal]:
    """Build a dependency that admits the resource owner or any holder of role.

    get_owner_id receives the Request and returns the owning principal's id,
    typically from a path parameter (see path_owner_id()).

    Usage:
        owner_or_admin = require_owner_or_role(path_owner_id("user_id"))

        @router.get("/users/{user_id}")
        def route(user_id: int, principal: Principal = Depends(owner_or_admin)): ...
    """
    role = Role(role)

    def dependency(request: Request, principal: Principal = Depends(get_current_user)) -> Principal:
        audit = request.app.state.audit
        owner_id = get_owner_id(request)
        metadata = {**request_metadata(request), "role": principal.role.value, "owner_id": owner_id}
        if principal.id == owner_id or principal.role is role:
            audit.record("authz.granted", principal.id, metadata)
            return principal
        audit.record("authz.denied", principal.id, {**metadata, "reason": AuthReason.NOT_OWNER.value})
        raise Forbidden(AuthReason.NOT_OWNER, "You may only access your own account.")

    return dependency
