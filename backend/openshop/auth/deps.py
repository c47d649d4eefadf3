"""FastAPI dependencies for authentication and wizard sessions.

Dependencies:
  get_current_user → decode the bearer JWT, return CurrentUser
  get_device_id    → X-Device-Id header (scopes the draft slot)
  get_sessions     → the app-wide SessionRegistry
  get_controller   → the caller's live WizardController (or 409)
"""

from dataclasses import dataclass

from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer

from openshop.auth.jwt import decode_token
from openshop.middleware.exceptions import AuthError, IllegalTransitionError
from openshop.services.controller import WizardController
from openshop.services.sessions import SessionRegistry

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    token: str
    email: str | None = None


async def get_current_user(token: str | None = Depends(oauth2_scheme)) -> CurrentUser:
    """Decode the JWT and return the caller.  No local user table."""
    if not token:
        raise AuthError("Not authenticated")
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise AuthError("Invalid or expired token")
    return CurrentUser(user_id=str(user_id), token=token, email=payload.get("email"))


async def get_device_id(x_device_id: str = Header(default="default")) -> str:
    return x_device_id.strip() or "default"


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_controller(
    user: CurrentUser = Depends(get_current_user),
    device_id: str = Depends(get_device_id),
    sessions: SessionRegistry = Depends(get_sessions),
) -> WizardController:
    controller = sessions.get(user.user_id, device_id)
    if controller is None:
        raise IllegalTransitionError("No active wizard session; call /api/wizard/start first")
    # Pick up a refreshed token for outgoing store API calls
    controller.client.set_token(user.token)
    return controller
