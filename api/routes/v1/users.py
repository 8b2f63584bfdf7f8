"""
api/routes/v1/users.py -- Account endpoints for signed-in users.

Routes:
  PUT    /api/v1/users/change-password     -- change own password (requires auth)
  GET    /api/v1/users/{user_id}           -- account details (owner or ADMIN)
  DELETE /api/v1/users/{user_id}/sessions  -- revoke every refresh token (owner or ADMIN)

The router declares paths relative to the version root (/users/...); api/main.py
mounts it with prefix="/api/v1", so clients always call /api/v1/users/<route>.

Security:
  IDOR guard: the {user_id} routes go through require_owner_or_role, so a
  USER can only reach their own account. Denials are audited as authz.denied.
  A password change revokes all refresh tokens for the account; already
  issued access tokens remain valid until they expire.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ChangePasswordRequest, MeResponse, MessageResponse, RevokedResponse, UserResponse
from auth.dependencies import get_current_user, path_owner_id, require_owner_or_role
from auth.flows import AuthFlows
from auth.models import Principal, Role

# Auth policy:
# - PUT    /api/v1/users/change-password:     requires auth (get_current_user)
# - GET    /api/v1/users/{user_id}:           owner or ADMIN
# - DELETE /api/v1/users/{user_id}/sessions:  owner or ADMIN
router = APIRouter()

owner_or_admin = require_owner_or_role(path_owner_id("user_id"), role=Role.ADMIN)


@router.put("/users/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: Principal = Depends(get_current_user),
) -> MessageResponse:
    """Change the caller's password and sign them out everywhere.

    401 current_password_incorrect if the current password is wrong; 400 if
    the new one fails the policy or equals the current one.
    """
    flows: AuthFlows = request.app.state.flows
    flows.change_password(current_user.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully. Please log in again.")


@router.get("/users/{user_id}", response_model=MeResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: Principal = Depends(owner_or_admin),
) -> MeResponse:
    flows: AuthFlows = request.app.state.flows
    return MeResponse(user=UserResponse.from_principal(flows.get_principal(user_id)))


@router.delete("/users/{user_id}/sessions", response_model=RevokedResponse)
def revoke_sessions(
    request: Request,
    user_id: int,
    current_user: Principal = Depends(owner_or_admin),
) -> RevokedResponse:
    """Delete every refresh token for the account (sign out on all devices)."""
    flows: AuthFlows = request.app.state.flows
    revoked = flows.revoke_sessions(user_id, actor_id=current_user.id)
    return RevokedResponse(revoked=revoked)
