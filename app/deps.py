"""Shared FastAPI dependencies."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request

from app.core.exceptions import UnauthenticatedError
from app.core.logging import bind_actor
from app.core.permissions import Actor, Capability, authorize
from app.core.security import load_session_cookie
from app.models.user import User

SESSION_COOKIE_NAME = "mentor_points_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthenticatedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthenticatedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthenticatedError("Invalid session")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except (InvalidId, TypeError):
        raise UnauthenticatedError("Invalid session") from None
    if not user:
        raise UnauthenticatedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthenticatedError("Session invalidated")
    return user


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    """Dependency: caller identity {id, role} for the authorization gate."""
    actor = Actor.from_user(user)
    bind_actor(actor.id, actor.role)
    return actor


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency: require an actor that may view all ledger data (administrators)."""
    authorize(actor, Capability.VIEW_ALL)
    return actor
