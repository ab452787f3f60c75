"""Balance store: the materialised per-user sum of the ledger."""

from beanie import PydanticObjectId, UpdateResponse
from beanie.operators import Inc
from pydantic import BaseModel

from app.core.exceptions import InsufficientBalanceError, NotFoundError
from app.core.logging import get_logger
from app.db.transactions import run_in_transaction
from app.models.transaction import LedgerTransaction, TransactionKind
from app.models.user import User

log = get_logger(__name__)


class Balance(BaseModel):
    points: int = 0
    experience: int = 0

    def of(self, kind: TransactionKind) -> int:
        return getattr(self, kind.balance_field)


async def get_balance(user_id: PydanticObjectId, session=None) -> Balance:
    """Return {points, experience} for user. Raises NotFoundError for unknown users."""
    user = await User.get(user_id, session=session)
    if not user:
        raise NotFoundError("User not found")
    return Balance(points=user.points, experience=user.experience)


async def apply_delta(
    user_id: PydanticObjectId,
    kind: TransactionKind,
    amount: int,
    session,
) -> int:
    """
    Atomically add `amount` to the user's balance field for `kind`; return the new value.
    Must be called inside the transaction that writes the matching ledger row.
    Deductions only match while the result stays >= 0, so a concurrent spend cannot overdraw.
    """
    field = kind.balance_field
    query = {"_id": user_id}
    if amount < 0:
        query[field] = {"$gte": -amount}
    updated = await User.find_one(query, session=session).update(
        Inc({field: amount}),
        session=session,
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        if await User.get(user_id, session=session) is None:
            raise NotFoundError("User not found")
        raise InsufficientBalanceError(
            f"Cannot decrease more {field} than the user has",
            details={"kind": kind.value, "amount": amount},
        )
    return getattr(updated, field)


async def replay_balance(user_id: PydanticObjectId, session=None) -> Balance:
    """Rebuild the balance from the ledger alone (sum of every amount per kind)."""
    rows = await LedgerTransaction.find(
        LedgerTransaction.user_id == user_id,
        session=session,
    ).aggregate(
        [{"$group": {"_id": "$kind", "total": {"$sum": "$amount"}}}],
        session=session,
    ).to_list()
    totals = {row["_id"]: row["total"] for row in rows}
    return Balance(
        points=totals.get(TransactionKind.POINTS.value, 0),
        experience=totals.get(TransactionKind.EXPERIENCE.value, 0),
    )


async def reconcile_balance(user_id: PydanticObjectId) -> dict:
    """Compare the stored balance with a ledger replay taken from the same snapshot."""
    async def _read(session):
        stored = await get_balance(user_id, session=session)
        replayed = await replay_balance(user_id, session=session)
        return stored, replayed

    stored, replayed = await run_in_transaction(_read)
    in_sync = stored == replayed
    if not in_sync:
        log.warning(
            "balance_drift_detected",
            user_id=str(user_id),
            stored=stored.model_dump(),
            replayed=replayed.model_dump(),
        )
    return {
        "user_id": str(user_id),
        "stored": stored.model_dump(),
        "replayed": replayed.model_dump(),
        "in_sync": in_sync,
    }
