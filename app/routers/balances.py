from fastapi import APIRouter, Depends

from app.core.permissions import Actor
from app.deps import get_current_actor
from app.services import reporting as reporting_service

router = APIRouter()


@router.get("/me/balance")
async def my_balance(actor: Actor = Depends(get_current_actor)):
    """Return the caller's points and experience."""
    return await reporting_service.get_visible_balance(actor, actor.id)


@router.get("/{user_id}/balance")
async def user_balance(user_id: str, actor: Actor = Depends(get_current_actor)):
    """Admins: any user. Tutors: their students. Others: only themselves."""
    return await reporting_service.get_visible_balance(actor, user_id)
