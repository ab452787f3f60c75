"""Audit trail for balance mutations."""

from typing import Any

from app.models.audit_log import AuditEvent, AuditLog
from app.models.transaction import LedgerTransaction


async def record_event(
    event: AuditEvent,
    actor_id: str,
    entry: LedgerTransaction,
    session,
    **metadata: Any,
) -> AuditLog:
    """Insert an audit row for `entry` using the caller's session, so it commits or aborts with the mutation."""
    row = AuditLog(
        event=event,
        actor_id=actor_id,
        subject_user_id=entry.user_id,
        transaction_id=entry.id,
        kind=entry.kind,
        amount=entry.amount,
        metadata=metadata,
    )
    await row.insert(session=session)
    return row
