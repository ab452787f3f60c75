"""Administrative reversal of a single ledger transaction, at most once, with an audit record."""

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.audit import record_event
from app.core.exceptions import AlreadyRolledBackError, NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.permissions import Actor, Capability, authorize
from app.db.transactions import run_in_transaction
from app.models.audit_log import AuditEvent
from app.models.rollback import TransactionRollback
from app.models.transaction import LedgerTransaction, TransactionKind
from app.services.ledger import parse_kind, parse_object_id, write_entry

log = get_logger(__name__)

ROLLBACK_REFERENCE_TYPE = "rollback"


def compensation_reason(reason: str) -> str:
    return f"Rollback: {reason}"


async def find_rollback(
    transaction_id: PydanticObjectId,
    kind: TransactionKind,
    session=None,
) -> TransactionRollback | None:
    return await TransactionRollback.find_one(
        TransactionRollback.transaction_id == transaction_id,
        TransactionRollback.transaction_kind == kind,
        session=session,
    )


async def rollback(
    transaction_id: str | PydanticObjectId,
    transaction_kind: str | TransactionKind,
    actor: Actor,
    reason: str,
) -> TransactionRollback:
    """
    Reverse one transaction by appending a compensating entry of the negated amount,
    and record who did it and why. The compensation, the balance change and the rollback
    record commit together or not at all.

    Order of checks: permission, existence, prior rollback, reason. A second rollback of the
    same transaction fails with AlreadyRolledBackError, also when two admins race: the unique
    (transaction_id, transaction_kind) index lets only one insert commit.
    """
    authorize(actor, Capability.ROLLBACK)
    kind = parse_kind(transaction_kind)
    tid = parse_object_id(transaction_id, "Transaction")

    async def _apply(session) -> TransactionRollback:
        original = await LedgerTransaction.find_one(
            LedgerTransaction.id == tid,
            LedgerTransaction.kind == kind,
            session=session,
        )
        if not original:
            raise NotFoundError("Transaction not found")
        if await find_rollback(tid, kind, session=session):
            raise AlreadyRolledBackError(details={"transaction_id": str(tid), "transaction_kind": kind.value})
        clean_reason = (reason or "").strip()
        if not clean_reason:
            raise ValidationError("reason is required")
        if original.reverses_transaction_id is not None:
            raise ValidationError(
                "Compensating transactions cannot be rolled back",
                details={"reverses_transaction_id": str(original.reverses_transaction_id)},
            )

        compensation = await write_entry(
            session,
            user_id=original.user_id,
            kind=kind,
            amount=-original.amount,
            reason=compensation_reason(clean_reason),
            actor_id=actor.id,
            reference_type=ROLLBACK_REFERENCE_TYPE,
            reference_id=str(original.id),
            reverses_transaction_id=original.id,
        )
        record = TransactionRollback(
            transaction_id=original.id,
            transaction_kind=kind,
            subject_user_id=original.user_id,
            admin_id=actor.id,
            reason=clean_reason,
            compensation_id=compensation.id,
        )
        await record.insert(session=session)
        await record_event(
            AuditEvent.TRANSACTION_ROLLBACK,
            actor.id,
            original,
            session,
            rollback_id=str(record.id),
            compensation_id=str(compensation.id),
            reason=clean_reason,
        )
        return record

    try:
        record = await run_in_transaction(_apply)
    except DuplicateKeyError as e:
        log.info("rollback_rejected", transaction_id=str(tid), kind=kind.value, cause="unique_index")
        raise AlreadyRolledBackError(
            details={"transaction_id": str(tid), "transaction_kind": kind.value}
        ) from e
    except AlreadyRolledBackError:
        log.info("rollback_rejected", transaction_id=str(tid), kind=kind.value, cause="existing_record")
        raise

    log.info(
        "rollback_applied",
        rollback_id=str(record.id),
        transaction_id=str(tid),
        kind=kind.value,
        compensation_id=str(record.compensation_id),
        subject_user_id=str(record.subject_user_id),
        admin_id=actor.id,
    )
    return record
