"""Rollback engine against a live replica set (skipped when none is reachable)."""

import asyncio

import pytest

from app.core.exceptions import (
    AlreadyRolledBackError,
    InsufficientBalanceError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.core.permissions import Actor
from app.models.audit_log import AuditEvent, AuditLog
from app.models.rollback import TransactionRollback
from app.models.transaction import LedgerTransaction, TransactionKind
from app.models.user import UserRole
from app.services import balances, ledger, rollbacks

pytestmark = pytest.mark.asyncio


async def _award(admin, student, amount=10, kind=TransactionKind.POINTS):
    return await ledger.append(student.id, kind, amount, "event X", Actor.from_user(admin))


async def test_award_then_rollback_then_duplicate(db, admin, student):
    actor = Actor.from_user(admin)
    original = await _award(admin, student)
    assert (await balances.get_balance(student.id)).points == 10

    record = await rollbacks.rollback(str(original.id), "POINTS", actor, "duplicate award")
    assert record.transaction_id == original.id
    assert record.admin_id == actor.id
    assert record.reason == "duplicate award"
    assert (await balances.get_balance(student.id)).points == 0

    compensation = await LedgerTransaction.get(record.compensation_id)
    assert compensation.amount == -10
    assert compensation.reverses_transaction_id == original.id
    assert compensation.reason == "Rollback: duplicate award"
    audit = await AuditLog.find(AuditLog.event == AuditEvent.TRANSACTION_ROLLBACK).to_list()
    assert len(audit) == 1
    assert audit[0].transaction_id == original.id
    assert audit[0].metadata["compensation_id"] == str(compensation.id)

    with pytest.raises(AlreadyRolledBackError):
        await rollbacks.rollback(original.id, TransactionKind.POINTS, actor, "again")
    assert (await balances.get_balance(student.id)).points == 0
    assert await TransactionRollback.count() == 1
    # Original row is untouched
    assert (await LedgerTransaction.get(original.id)).amount == 10


async def test_concurrent_rollbacks_one_winner(db, make_user, admin, student):
    second_admin = await make_user(UserRole.ADMIN)
    original = await _award(admin, student)
    results = await asyncio.gather(
        rollbacks.rollback(original.id, TransactionKind.POINTS, Actor.from_user(admin), "dup"),
        rollbacks.rollback(original.id, TransactionKind.POINTS, Actor.from_user(second_admin), "dup"),
        return_exceptions=True,
    )
    wins = [r for r in results if isinstance(r, TransactionRollback)]
    losses = [r for r in results if isinstance(r, AlreadyRolledBackError)]
    assert len(wins) == 1 and len(losses) == 1
    assert await TransactionRollback.count() == 1
    assert await LedgerTransaction.find(LedgerTransaction.reverses_transaction_id == original.id).count() == 1
    assert (await balances.get_balance(student.id)).points == 0


async def test_unauthorized_rollback_changes_nothing(db, admin, tutor, student):
    original = await _award(admin, student)
    with pytest.raises(UnauthorizedError):
        await rollbacks.rollback(original.id, TransactionKind.POINTS, Actor.from_user(tutor), "mine")
    assert await TransactionRollback.count() == 0
    assert await LedgerTransaction.count() == 1
    assert (await balances.get_balance(student.id)).points == 10


async def test_blank_reason_is_rejected(db, admin, student):
    original = await _award(admin, student)
    with pytest.raises(ValidationError):
        await rollbacks.rollback(original.id, TransactionKind.POINTS, Actor.from_user(admin), "   ")
    assert await TransactionRollback.count() == 0
    assert (await balances.get_balance(student.id)).points == 10


async def test_kind_must_match(db, admin, student):
    original = await _award(admin, student)
    with pytest.raises(NotFoundError):
        await rollbacks.rollback(original.id, TransactionKind.EXPERIENCE, Actor.from_user(admin), "wrong kind")


async def test_unknown_transaction_is_not_found(db, admin):
    with pytest.raises(NotFoundError):
        await rollbacks.rollback("64b0000000000000000000ff", "POINTS", Actor.from_user(admin), "gone")


async def test_compensating_entry_cannot_be_rolled_back(db, admin, student):
    actor = Actor.from_user(admin)
    original = await _award(admin, student)
    record = await rollbacks.rollback(original.id, TransactionKind.POINTS, actor, "dup")
    with pytest.raises(ValidationError):
        await rollbacks.rollback(record.compensation_id, TransactionKind.POINTS, actor, "undo the undo")
    assert (await balances.get_balance(student.id)).points == 0


async def test_rolling_back_a_deduction_restores_points(db, admin, student):
    actor = Actor.from_user(admin)
    await _award(admin, student, 20)
    spend = await ledger.append(student.id, TransactionKind.POINTS, -15, "store", actor)
    await rollbacks.rollback(spend.id, TransactionKind.POINTS, actor, "refund")
    assert (await balances.get_balance(student.id)).points == 20


async def test_rollback_of_spent_award_is_rejected(db, admin, student):
    actor = Actor.from_user(admin)
    original = await _award(admin, student, 10)
    await ledger.append(student.id, TransactionKind.POINTS, -8, "store", actor)
    with pytest.raises(InsufficientBalanceError):
        await rollbacks.rollback(original.id, TransactionKind.POINTS, actor, "late correction")
    assert await TransactionRollback.count() == 0
    assert (await balances.get_balance(student.id)).points == 2


async def test_experience_rollback(db, admin, student):
    actor = Actor.from_user(admin)
    original = await _award(admin, student, 40, TransactionKind.EXPERIENCE)
    record = await rollbacks.rollback(original.id, TransactionKind.EXPERIENCE, actor, "wrong student")
    assert record.transaction_kind is TransactionKind.EXPERIENCE
    balance = await balances.get_balance(student.id)
    assert balance.experience == 0
    assert balance == await balances.replay_balance(student.id)


async def test_failure_after_compensation_leaves_no_trace(db, admin, student, monkeypatch):
    actor = Actor.from_user(admin)
    original = await _award(admin, student)

    async def broken_audit(*args, **kwargs):
        raise RuntimeError("audit store unavailable")

    # Fails after the compensating entry and the rollback record were written
    monkeypatch.setattr(rollbacks, "record_event", broken_audit)
    with pytest.raises(RuntimeError):
        await rollbacks.rollback(original.id, TransactionKind.POINTS, actor, "duplicate award")
    assert (await balances.get_balance(student.id)).points == 10
    assert await LedgerTransaction.count() == 1
    assert await TransactionRollback.count() == 0
    assert await AuditLog.find(AuditLog.event == AuditEvent.TRANSACTION_ROLLBACK).count() == 0

    monkeypatch.undo()
    await rollbacks.rollback(original.id, TransactionKind.POINTS, actor, "duplicate award")
    assert (await balances.get_balance(student.id)).points == 0
