"""Feature paths that call into the ledger (live replica set)."""

import pytest

from app.core.exceptions import InsufficientBalanceError, UnauthorizedError
from app.core.permissions import SYSTEM, Actor
from app.models.transaction import LedgerTransaction, TransactionKind
from app.services import balances, rewards

pytestmark = pytest.mark.asyncio


async def test_event_attendance_awards_points_and_experience_once(db, tutor, student):
    actor = Actor.from_user(tutor)
    first = await rewards.award_event_attendance(actor, str(student.id), "evt-1", "Chess club", 15)
    again = await rewards.award_event_attendance(actor, str(student.id), "evt-1", "Chess club", 15)
    assert [t.kind for t in first] == [TransactionKind.POINTS, TransactionKind.EXPERIENCE]
    assert [t.id for t in first] == [t.id for t in again]
    balance = await balances.get_balance(student.id)
    assert (balance.points, balance.experience) == (15, 15)


async def test_event_experience_can_differ(db, tutor, student):
    out = await rewards.award_event_attendance(Actor.from_user(tutor), str(student.id), "evt-2", "Hike", 5, experience=20)
    assert [t.amount for t in out] == [5, 20]


async def test_weekly_checkin_pays_configured_points(db, student):
    entry = await rewards.award_weekly_checkin(SYSTEM, str(student.id), "week-7")
    assert entry.amount == 30
    assert entry.reference_type == "attendance_session"
    await rewards.award_weekly_checkin(SYSTEM, str(student.id), "week-7")
    assert (await balances.get_balance(student.id)).points == 30


async def test_store_redemption_spends_points(db, student):
    await rewards.award_weekly_checkin(SYSTEM, str(student.id), "week-1")
    entry = await rewards.redeem_store_item(SYSTEM, str(student.id), "req-1", "Notebook", 25)
    assert entry.amount == -25
    assert (await balances.get_balance(student.id)).points == 5
    with pytest.raises(InsufficientBalanceError):
        await rewards.redeem_store_item(SYSTEM, str(student.id), "req-2", "Backpack", 25)
    assert await LedgerTransaction.find(LedgerTransaction.reference_id == "req-2").count() == 0


async def test_other_tutor_cannot_award_event(db, make_user, student):
    from app.models.user import UserRole

    stranger = await make_user(UserRole.TUTOR)
    with pytest.raises(UnauthorizedError):
        await rewards.award_event_attendance(Actor.from_user(stranger), str(student.id), "evt-3", "Quiz", 10)


async def test_event_attendance_is_atomic(db, tutor, student, monkeypatch):
    from app.services import ledger

    real_write = ledger.write_entry

    async def fail_on_experience(session, **kwargs):
        if kwargs["kind"] is TransactionKind.EXPERIENCE:
            raise RuntimeError("write failed")
        return await real_write(session, **kwargs)

    monkeypatch.setattr(ledger, "write_entry", fail_on_experience)
    with pytest.raises(RuntimeError):
        await rewards.award_event_attendance(Actor.from_user(tutor), str(student.id), "evt-4", "Debate", 12)
    balance = await balances.get_balance(student.id)
    assert (balance.points, balance.experience) == (0, 0)
    assert await LedgerTransaction.count() == 0

    monkeypatch.undo()
    out = await rewards.award_event_attendance(Actor.from_user(tutor), str(student.id), "evt-4", "Debate", 12)
    assert len(out) == 2
