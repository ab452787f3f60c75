from fastapi import APIRouter, Depends, Header, status
from pydantic import BaseModel, Field

from app.core.pagination import PageParams, page_params
from app.core.permissions import Actor
from app.core.security import normalize_idempotency_key
from app.deps import get_current_actor
from app.models.transaction import TransactionKind
from app.services import ledger as ledger_service
from app.services import reporting as reporting_service
from app.services.reporting import TransactionView

router = APIRouter()


class TransactionCreate(BaseModel):
    user_id: str
    kind: TransactionKind = TransactionKind.POINTS
    amount: int = Field(..., description="Positive to award, negative to deduct")
    reason: str
    reference_type: str | None = "manual"
    reference_id: str | None = None


@router.get("")
async def transactions_list(
    actor: Actor = Depends(get_current_actor),
    kind: TransactionKind | None = None,
    user_id: str | None = None,
    rolled_back: bool | None = None,
    paging: PageParams = Depends(page_params),
):
    """Ledger rows visible to the caller, newest first, each with its rolled_back flag."""
    page = await reporting_service.list_transactions(
        actor,
        kind=kind,
        user_id=user_id,
        rolled_back=rolled_back,
        limit=paging.limit,
        offset=paging.offset,
    )
    return page.model_dump(mode="json")


@router.post("", status_code=status.HTTP_201_CREATED)
async def transaction_create(
    body: TransactionCreate,
    actor: Actor = Depends(get_current_actor),
    idempotency_key: str | None = Header(None, alias="Idempotency-Key"),
):
    """Manual award (amount > 0) or deduction (amount < 0). Optional Idempotency-Key."""
    entry = await ledger_service.append(
        body.user_id,
        body.kind,
        body.amount,
        body.reason,
        actor,
        reference_type=body.reference_type,
        reference_id=body.reference_id,
        idempotency_key=normalize_idempotency_key(idempotency_key),
    )
    return TransactionView.build(entry, None).model_dump(mode="json")
