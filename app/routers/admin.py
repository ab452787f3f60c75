from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.core.pagination import PageParams, page_params
from app.core.permissions import Actor
from app.deps import get_current_actor, require_admin
from app.models.transaction import TransactionKind
from app.services import balances as balances_service
from app.services import reporting as reporting_service
from app.services import rollbacks as rollbacks_service
from app.services.ledger import parse_object_id
from app.services.reporting import RollbackView

router = APIRouter()


class RollbackRequest(BaseModel):
    transaction_id: str
    transaction_kind: TransactionKind
    reason: str


@router.post("/transactions/rollback", status_code=status.HTTP_201_CREATED)
async def admin_transaction_rollback(body: RollbackRequest, actor: Actor = Depends(get_current_actor)):
    """Admin: reverse one transaction. 409 ALREADY_ROLLED_BACK if it was reversed before."""
    # Permission is checked inside the engine so non-admins get the same answer for any id
    record = await rollbacks_service.rollback(
        body.transaction_id,
        body.transaction_kind,
        actor,
        body.reason,
    )
    return RollbackView.build(record).model_dump(mode="json")


@router.get("/transactions/rollbacks")
async def admin_rollback_history(
    actor: Actor = Depends(require_admin),
    transaction_kind: TransactionKind | None = None,
    subject_user_id: str | None = None,
    admin_id: str | None = None,
    paging: PageParams = Depends(page_params),
):
    """Admin: rollback history, newest first."""
    page = await reporting_service.list_rollbacks(
        actor,
        transaction_kind=transaction_kind,
        subject_user_id=subject_user_id,
        admin_id=admin_id,
        limit=paging.limit,
        offset=paging.offset,
    )
    return page.model_dump(mode="json")


@router.get("/users/{user_id}/reconcile")
async def admin_reconcile_balance(user_id: str, actor: Actor = Depends(require_admin)):
    """Admin: compare a user's stored balance with a replay of their ledger."""
    return await balances_service.reconcile_balance(parse_object_id(user_id))
