from datetime import datetime
from enum import Enum
from typing import Any

from beanie import Document, PydanticObjectId
from pydantic import Field

from app.models.transaction import TransactionKind


class AuditEvent(str, Enum):
    LEDGER_APPEND = "ledger_append"
    TRANSACTION_ROLLBACK = "transaction_rollback"


class AuditLog(Document):
    """Who changed which balance, written in the same transaction as the change."""

    event: AuditEvent
    actor_id: str  # user id, or "system" for feature processes
    subject_user_id: PydanticObjectId
    transaction_id: PydanticObjectId
    kind: TransactionKind
    amount: int
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("subject_user_id", 1), ("created_at", -1)],
            [("actor_id", 1), ("created_at", -1)],
            "transaction_id",
        ]
