"""Identity endpoints.

Endpoints:
    POST /auth/login          - Exchange username/password for a bearer token
    GET  /auth/me             - Current user
    POST /users               - Create a user (admin/superAdmin)
    PUT  /users/{user_id}/role - Change a user's global role (superAdmin)
"""
import logging

from fastapi import APIRouter, Depends

from groupchat.chat.hub import SessionHub

from .dependencies import get_current_user, hub_dependency
from .schemas import LoginRequest, LoginResponse, RoleUpdate, User, UserCreate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["identity"])


@router.post("/auth/login", response_model=LoginResponse)
async def login(body: LoginRequest, hub: SessionHub = Depends(hub_dependency)) -> LoginResponse:
    user = hub.identity.verify(body.username, body.password)
    token = hub.tokens.issue(user)
    logger.info("[Identity] %s logged in", user.id)
    return LoginResponse(token=token, user=user)


@router.get("/auth/me", response_model=User)
async def me(user: User = Depends(get_current_user)) -> User:
    return user


@router.post("/users", response_model=User, status_code=201)
async def create_user(
    body: UserCreate,
    actor: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> User:
    """Create a user and enroll them in every default group with room.

    Only admins and superAdmins may create users; only superAdmins may
    create admins or superAdmins.
    """
    user = hub.identity.create_user(body, requesting_actor=actor)
    hub.groups.join_default_groups(user.id)
    return user


@router.put("/users/{user_id}/role", response_model=User)
async def update_role(
    user_id: str,
    body: RoleUpdate,
    actor: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> User:
    return hub.identity.set_role(user_id, body.role, actor)
