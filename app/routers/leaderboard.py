from fastapi import APIRouter, Depends, Query

from app.core.pagination import PageParams, page_params
from app.core.permissions import Actor
from app.deps import get_current_actor
from app.services import reporting as reporting_service

router = APIRouter()


@router.get("")
async def leaderboard(
    actor: Actor = Depends(get_current_actor),
    tutor_id: str | None = None,
    paging: PageParams = Depends(page_params),
):
    """Students by experience, with the caller's own rank when the caller is a student."""
    board = await reporting_service.leaderboard(
        actor,
        tutor_id=tutor_id,
        limit=paging.limit,
        offset=paging.offset,
    )
    return board.model_dump(mode="json")


@router.get("/tutor")
async def tutor_leaderboard(
    actor: Actor = Depends(get_current_actor),
    paging: PageParams = Depends(page_params),
):
    """Tutors: their own students, ranked."""
    board = await reporting_service.tutor_leaderboard(actor, limit=paging.limit, offset=paging.offset)
    return board.model_dump(mode="json")


@router.get("/weekly")
async def weekly_top_earners(
    actor: Actor = Depends(get_current_actor),
    limit: int | None = Query(None, ge=1),
):
    """Top earners of the current week."""
    board = await reporting_service.weekly_top_earners(limit=limit)
    return board.model_dump(mode="json")
