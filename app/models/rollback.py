from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import IndexModel

from app.models.transaction import TransactionKind

ROLLBACK_UNIQUE_INDEX = "uniq_transaction_rollback"


class TransactionRollback(Document):
    """Permanent audit link: original transaction -> compensation -> admin -> reason."""

    transaction_id: PydanticObjectId
    transaction_kind: TransactionKind
    subject_user_id: PydanticObjectId
    admin_id: str
    reason: str
    compensation_id: PydanticObjectId
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transaction_rollbacks"
        indexes = [
            # At most one rollback per original transaction, enforced by the server
            IndexModel(
                [("transaction_id", 1), ("transaction_kind", 1)],
                unique=True,
                name=ROLLBACK_UNIQUE_INDEX,
            ),
            [("subject_user_id", 1), ("created_at", -1)],
            [("admin_id", 1), ("created_at", -1)],
        ]
