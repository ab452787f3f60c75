"""Feature paths that grant or spend points: event attendance, weekly check-in, store redemption.

Each is a thin caller of ledger.append with a reference and an idempotency key, so a retried
request or a double click never pays out twice.
"""

from app.core.config import get_settings
from app.core.exceptions import ValidationError
from app.core.permissions import Actor
from app.models.transaction import LedgerTransaction, TransactionKind
from app.services import ledger


async def award_event_attendance(
    actor: Actor,
    student_id: str,
    event_id: str,
    event_title: str,
    points: int,
    experience: int | None = None,
) -> list[LedgerTransaction]:
    """
    Student attended an event: award its points, and experience (defaults to the points value).
    Both entries commit in one transaction, so a student never ends up with one without the other.
    """
    if experience is None:
        experience = points
    changes = [
        (kind, amount)
        for kind, amount in ((TransactionKind.POINTS, points), (TransactionKind.EXPERIENCE, experience))
        if amount > 0
    ]
    if not changes:
        raise ValidationError("event reward must be positive", details={"points": points, "experience": experience})
    return await ledger.append_many(
        student_id,
        changes,
        f"Event attendance: {event_title}",
        actor,
        reference_type="event",
        reference_id=event_id,
        idempotency_key=f"event_attendance_{event_id}",
    )


async def award_weekly_checkin(actor: Actor, student_id: str, session_id: str) -> LedgerTransaction:
    """Weekly attendance check-in; pays settings.attendance_checkin_points once per session."""
    return await ledger.append(
        student_id,
        TransactionKind.POINTS,
        get_settings().attendance_checkin_points,
        "Weekly attendance check-in",
        actor,
        reference_type="attendance_session",
        reference_id=session_id,
        idempotency_key=f"attendance_checkin_{session_id}",
    )


async def redeem_store_item(
    actor: Actor,
    student_id: str,
    request_id: str,
    item_name: str,
    cost: int,
) -> LedgerTransaction:
    """Approve a store request by spending points. Fails with InsufficientBalanceError if the student cannot pay."""
    if cost <= 0:
        raise ValidationError("cost must be positive", details={"cost": cost})
    return await ledger.append(
        student_id,
        TransactionKind.POINTS,
        -cost,
        f"Store purchase: {item_name}",
        actor,
        reference_type="store_request",
        reference_id=request_id,
        idempotency_key=f"store_request_{request_id}",
    )
