"""Points/experience ledger: append-only transactions with atomic balance updates."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from pymongo.errors import DuplicateKeyError

from app.core.audit import record_event
from app.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from app.core.logging import get_logger
from app.core.permissions import Actor, authorize, capability_for_amount, is_allowed
from app.db.transactions import run_in_transaction
from app.models.audit_log import AuditEvent
from app.models.transaction import LedgerTransaction, TransactionKind
from app.models.user import User, UserRole
from app.services import balances

log = get_logger(__name__)


def parse_object_id(value: str | PydanticObjectId, what: str = "User") -> PydanticObjectId:
    """Malformed ids are reported as missing, same as well-formed ids that match nothing."""
    if isinstance(value, PydanticObjectId):
        return value
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError, ValueError):
        raise NotFoundError(f"{what} not found") from None


def parse_kind(kind: str | TransactionKind) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError:
        raise ValidationError(
            "transaction kind must be POINTS or EXPERIENCE",
            details={"kind": str(kind)},
        ) from None


def validate_entry(kind: str | TransactionKind, amount: int, reason: str | None) -> tuple[TransactionKind, str]:
    """Reject malformed input before any storage access. Returns (kind, stripped reason)."""
    kind = parse_kind(kind)
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("amount must be an integer", details={"amount": repr(amount)})
    if amount == 0:
        raise ValidationError("amount must not be zero")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    return kind, reason


async def write_entry(
    session,
    *,
    user_id: PydanticObjectId,
    kind: TransactionKind,
    amount: int,
    reason: str,
    actor_id: str,
    reference_type: str | None = None,
    reference_id: str | None = None,
    reverses_transaction_id: PydanticObjectId | None = None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    """
    Apply the balance delta and insert the ledger row inside the caller's transaction.
    Callers are responsible for validation and authorization; this is the only writer of balances.
    """
    balance_after = await balances.apply_delta(user_id, kind, amount, session)
    entry = LedgerTransaction(
        user_id=user_id,
        kind=kind,
        amount=amount,
        balance_after=balance_after,
        reason=reason,
        actor_id=actor_id,
        reference_type=reference_type,
        reference_id=reference_id,
        reverses_transaction_id=reverses_transaction_id,
        idempotency_key=idempotency_key,
    )
    await entry.insert(session=session)
    await record_event(
        AuditEvent.LEDGER_APPEND,
        actor_id,
        entry,
        session,
        balance_after=balance_after,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    return entry


async def find_by_idempotency_key(
    user_id: PydanticObjectId,
    kind: TransactionKind,
    idempotency_key: str,
    session=None,
) -> LedgerTransaction | None:
    return await LedgerTransaction.find_one(
        LedgerTransaction.user_id == user_id,
        LedgerTransaction.kind == kind,
        LedgerTransaction.idempotency_key == idempotency_key,
        session=session,
    )


async def _append_in(
    session,
    uid: PydanticObjectId,
    kind: TransactionKind,
    amount: int,
    reason: str,
    actor: Actor,
    reference_type: str | None,
    reference_id: str | None,
    idempotency_key: str | None,
) -> tuple[LedgerTransaction, bool]:
    """Load and check the subject, then write one entry. Returns (entry, replayed)."""
    capability = capability_for_amount(amount)
    user = await User.get(uid, session=session)
    if user is None or (user.role != UserRole.STUDENT and not actor.is_system):
        # Tutors get the same answer for unknown users as for other tutors' students
        if not is_allowed(actor, capability):
            raise UnauthorizedError(f"Permission denied: {capability.value}")
        raise NotFoundError("User not found")
    authorize(actor, capability, tutor_id=user.tutor_id)
    if idempotency_key:
        existing = await find_by_idempotency_key(uid, kind, idempotency_key, session=session)
        if existing:
            return existing, True
    entry = await write_entry(
        session,
        user_id=uid,
        kind=kind,
        amount=amount,
        reason=reason,
        actor_id=actor.id,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )
    return entry, False


def _check_gate(actor: Actor, amount: int) -> None:
    capability = capability_for_amount(amount)
    # Actors with no route to this capability are turned away before any lookup
    if not (is_allowed(actor, capability) or is_allowed(actor, capability, tutor_id=actor.id)):
        raise UnauthorizedError(f"Permission denied: {capability.value}")


def _log_result(entry: LedgerTransaction, replayed: bool, actor: Actor, idempotency_key: str | None) -> None:
    if replayed:
        log.info("ledger_idempotent_replay", transaction_id=entry.id, idempotency_key=idempotency_key)
    else:
        log.info(
            "ledger_append",
            transaction_id=entry.id,
            user_id=entry.user_id,
            kind=entry.kind,
            amount=entry.amount,
            balance_after=entry.balance_after,
            actor_id=actor.id,
        )


async def append(
    user_id: str | PydanticObjectId,
    kind: str | TransactionKind,
    amount: int,
    reason: str,
    actor: Actor,
    *,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerTransaction:
    """
    Record a points/experience change for a student and move their balance by `amount`, atomically.
    Idempotency: if idempotency_key is set and a transaction already exists for (user, kind, key),
    return it and do not apply it again.
    """
    entries = await append_many(
        user_id,
        [(kind, amount)],
        reason,
        actor,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )
    return entries[0]


async def append_many(
    user_id: str | PydanticObjectId,
    changes: list[tuple[str | TransactionKind, int]],
    reason: str,
    actor: Actor,
    *,
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> list[LedgerTransaction]:
    """
    Several (kind, amount) changes for one user in a single transaction: all are recorded or none.
    The idempotency key is scoped per kind, so one key can cover a points and an experience entry.
    """
    if not changes:
        raise ValidationError("at least one change is required")
    checked = []
    for kind, amount in changes:
        kind, reason = validate_entry(kind, amount, reason)
        checked.append((kind, amount))
    kinds = [kind for kind, _ in checked]
    if len(set(kinds)) != len(kinds):
        raise ValidationError("each kind may appear once per call", details={"kinds": [k.value for k in kinds]})
    for _, amount in checked:
        _check_gate(actor, amount)
    uid = parse_object_id(user_id)

    async def _apply(session) -> list[tuple[LedgerTransaction, bool]]:
        return [
            await _append_in(
                session,
                uid,
                kind,
                amount,
                reason,
                actor,
                reference_type,
                reference_id,
                idempotency_key,
            )
            for kind, amount in checked
        ]

    try:
        results = await run_in_transaction(_apply)
    except DuplicateKeyError:
        # Lost a race with a concurrent append carrying the same key; the winner's rows stand
        if not idempotency_key:
            raise
        results = []
        for kind, _ in checked:
            existing = await find_by_idempotency_key(uid, kind, idempotency_key)
            if existing is None:
                raise
            results.append((existing, True))

    for entry, replayed in results:
        _log_result(entry, replayed, actor, idempotency_key)
    return [entry for entry, _ in results]
