from datetime import datetime
from enum import Enum

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel


class TransactionKind(str, Enum):
    POINTS = "POINTS"
    EXPERIENCE = "EXPERIENCE"

    @property
    def balance_field(self) -> str:
        """Name of the User field this kind of transaction moves."""
        return self.value.lower()


SYSTEM_ACTOR_ID = "system"


class LedgerTransaction(Document):
    """One immutable point/experience change. Corrections are new rows, never edits."""

    user_id: PydanticObjectId
    kind: TransactionKind
    amount: int  # positive = award, negative = deduction
    balance_after: int
    reason: str
    actor_id: str  # user id, or "system" for feature processes
    reference_type: str | None = None  # event, attendance_session, store_request, rollback, manual
    reference_id: str | None = None
    reverses_transaction_id: PydanticObjectId | None = None  # set on compensating entries only
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("kind", 1), ("created_at", -1)],
            [("created_at", -1)],
            IndexModel(
                [("user_id", 1), ("kind", 1), ("idempotency_key", 1)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
                name="uniq_user_kind_idempotency_key",
            ),
        ]
